"""
Tests for the auto-pay processor: single-payment handler and batch run.
"""

import asyncio
from decimal import Decimal
from types import SimpleNamespace
from unittest import mock

from asgiref.sync import async_to_sync
from django.core import mail
from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from apps.core.exceptions import BatchFetchError, ScheduleUpdateError, TransferInitiationError
from apps.loans.models import Loan, LoanStatus, Payment, PaymentScheduleItem, Transfer
from apps.notifications.services import Notifier
from apps.payments.processor import (
    PROCESSED,
    SKIPPED,
    AutoPayConfig,
    AutoPayProcessor,
    _apply_trust_update,
    plan_waves,
    process_due_payment,
)
from apps.trust.services import TrustEngine, TrustUpdateResult
from tests.fakes import FakeGateway, load_item, make_item, make_loan, make_member


class SlowGateway(FakeGateway):
    """Holds each transfer open briefly and tracks how many overlap."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.in_flight = 0
        self.peak_in_flight = 0
        self.finished = 0
        # finished count seen by each call as it started
        self.finished_at_start = []

    async def create_facilitated_transfer(self, request):
        self.finished_at_start.append(self.finished)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.05)
            return await super().create_facilitated_transfer(request)
        finally:
            self.in_flight -= 1
            self.finished += 1


def mock_trust_engine():
    engine = mock.AsyncMock(spec=TrustEngine)
    engine.on_payment_completed.return_value = TrustUpdateResult(trust_score_updated=True)
    engine.on_payment_missed.return_value = TrustUpdateResult(trust_score_updated=True)
    return engine


class ProcessDuePaymentTests(TestCase):
    """Test process_due_payment() on a single installment."""

    def setUp(self):
        self.gateway = FakeGateway()
        self.trust = mock_trust_engine()
        self.notifier = Notifier(app_url='http://testserver')
        self.loan = make_loan()

    def process(self, item_id):
        return async_to_sync(process_due_payment)(
            load_item(item_id),
            gateway=self.gateway,
            trust_engine=self.trust,
            notifier=self.notifier,
        )

    def test_processes_due_payment(self):
        """Happy path: transfer, schedule flip, audit row, loan balance."""
        item = make_item(self.loan, amount='50.00')
        make_item(self.loan, amount='450.00', days_ago=-30)

        outcome = self.process(item.pk)

        self.assertEqual(outcome.status, PROCESSED)
        self.assertEqual(outcome.transfer.transfer_id, 'transfer-1')
        self.assertEqual(outcome.amount_remaining, Decimal('450.00'))

        item.refresh_from_db()
        self.assertTrue(item.is_paid)
        self.assertEqual(item.status, 'paid')
        self.assertEqual(item.transfer_id, 'transfer-1')
        self.assertIsNotNone(item.paid_at)
        self.assertEqual(item.platform_fee, Decimal('1.50'))
        self.assertIsNotNone(item.payment_id)

        transfer = Transfer.objects.get()
        self.assertEqual(transfer.dwolla_transfer_id, 'transfer-1')
        self.assertEqual(transfer.type, 'repayment')
        self.assertEqual(transfer.status, 'pending')
        self.assertEqual(transfer.gross_amount, Decimal('50.00'))
        self.assertEqual(transfer.net_amount, Decimal('48.50'))

        payment = Payment.objects.get()
        self.assertEqual(payment.schedule_id, item.pk)
        self.assertIn('Transfer ID: transfer-1', payment.note)
        self.assertIn('Net to lender: $48.50', payment.note)

        self.loan.refresh_from_db()
        self.assertEqual(self.loan.amount_paid, Decimal('50.00'))
        self.assertEqual(self.loan.amount_remaining, Decimal('450.00'))
        self.assertEqual(self.loan.status, LoanStatus.ACTIVE)
        self.assertIsNotNone(self.loan.last_payment_at)

    def test_gateway_receives_canonical_request(self):
        item = make_item(self.loan, amount='50.00')
        self.process(item.pk)

        request = self.gateway.calls[0]
        self.assertEqual(request.source, self.loan.borrower_funding_source_url)
        self.assertEqual(request.destination, self.loan.lender_funding_source_url)
        self.assertEqual(request.amount, Decimal('50.00'))
        self.assertEqual(request.metadata['payment_id'], str(item.pk))
        self.assertEqual(request.metadata['loan_id'], str(self.loan.pk))
        self.assertEqual(request.metadata['type'], 'repayment')

    def test_item_with_transfer_id_is_skipped(self):
        """An item carrying a transfer id never reaches the gateway."""
        item = make_item(self.loan, transfer_id='existing-transfer')

        outcome = self.process(item.pk)

        self.assertEqual(outcome.status, SKIPPED)
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(Transfer.objects.count(), 0)
        item.refresh_from_db()
        self.assertFalse(item.is_paid)

    def test_paid_item_is_skipped(self):
        item = make_item(self.loan, is_paid=True)

        outcome = self.process(item.pk)

        self.assertEqual(outcome.status, SKIPPED)
        self.assertEqual(self.gateway.calls, [])

    def test_inactive_loan_is_skipped(self):
        loan = make_loan(status=LoanStatus.COMPLETED)
        item = make_item(loan)

        outcome = self.process(item.pk)

        self.assertEqual(outcome.status, SKIPPED)
        self.assertEqual(self.gateway.calls, [])

    def test_gateway_error_propagates(self):
        item = make_item(self.loan)
        self.gateway.fail_on = {str(item.pk)}

        with self.assertRaises(TransferInitiationError):
            self.process(item.pk)

        item.refresh_from_db()
        self.assertFalse(item.is_paid)
        self.assertIsNone(item.transfer_id)
        self.assertEqual(Transfer.objects.count(), 0)

    def test_empty_leg_list_raises(self):
        item = make_item(self.loan)
        self.gateway.leg_ids = []

        with self.assertRaises(TransferInitiationError):
            self.process(item.pk)

        self.assertEqual(Transfer.objects.count(), 0)

    def test_rounding_tolerance_completes_loan(self):
        """remaining -0.05 after the last cents: completed, floored at zero."""
        loan = make_loan(
            total_amount=Decimal('1000.00'),
            amount=Decimal('1000.00'),
            amount_paid=Decimal('999.60'),
            amount_remaining=Decimal('0.40'),
        )
        item = make_item(loan, amount='0.45')

        outcome = self.process(item.pk)

        self.assertEqual(outcome.status, PROCESSED)
        self.assertEqual(outcome.amount_remaining, Decimal('0.00'))
        loan.refresh_from_db()
        self.assertEqual(loan.status, LoanStatus.COMPLETED)
        self.assertEqual(loan.amount_remaining, Decimal('0.00'))
        self.assertEqual(loan.amount_paid, Decimal('1000.00'))
        self.assertIsNotNone(loan.completed_at)

    def test_tolerance_completes_loan_with_unpaid_items_left(self):
        loan = make_loan(
            total_amount=Decimal('100.00'),
            amount=Decimal('100.00'),
            amount_paid=Decimal('50.00'),
            amount_remaining=Decimal('50.00'),
        )
        item = make_item(loan, amount='49.70')
        make_item(loan, amount='0.30', days_ago=-30)

        self.process(item.pk)

        loan.refresh_from_db()
        self.assertEqual(loan.status, LoanStatus.COMPLETED)
        self.assertEqual(loan.amount_paid + loan.amount_remaining, loan.total_amount)

    def test_loan_not_completed_above_tolerance(self):
        item = make_item(self.loan, amount='50.00')
        make_item(self.loan, amount='450.00', days_ago=-30)

        self.process(item.pk)

        self.loan.refresh_from_db()
        self.assertEqual(self.loan.status, LoanStatus.ACTIVE)
        self.assertEqual(self.loan.amount_paid + self.loan.amount_remaining, self.loan.total_amount)

    def test_last_installment_completes_loan(self):
        loan = make_loan(
            total_amount=Decimal('100.00'),
            amount=Decimal('100.00'),
            amount_paid=Decimal('40.00'),
            amount_remaining=Decimal('60.00'),
        )
        item = make_item(loan, amount='60.00')

        self.process(item.pk)

        loan.refresh_from_db()
        self.assertEqual(loan.status, LoanStatus.COMPLETED)
        self.assertEqual(loan.amount_remaining, Decimal('0.00'))

    def test_gateway_loan_does_not_call_trust_engine(self):
        """Trust for gateway payments is credited when the transfer settles."""
        item = make_item(self.loan)

        self.process(item.pk)

        self.trust.on_payment_completed.assert_not_called()

    def test_manual_rail_loan_calls_trust_engine_once(self):
        loan = make_loan(borrower_funding_source_url='', lender_funding_source_url='')
        item = make_item(loan, amount='25.00')

        called = async_to_sync(_apply_trust_update)(loan, item, 7, self.trust)

        self.assertTrue(called)
        self.trust.on_payment_completed.assert_awaited_once()
        kwargs = self.trust.on_payment_completed.await_args.kwargs
        self.assertEqual(kwargs['loan_id'], loan.pk)
        self.assertEqual(kwargs['borrower_id'], loan.borrower_id)
        self.assertEqual(kwargs['payment_id'], 7)
        self.assertEqual(kwargs['schedule_id'], item.pk)
        self.assertEqual(kwargs['payment_method'], 'auto')
        self.assertFalse(kwargs['skip_user_stats'])

    def test_trust_engine_error_does_not_fail_payment(self):
        loan = make_loan(borrower_funding_source_url='')
        item = make_item(loan)
        self.trust.on_payment_completed.return_value = TrustUpdateResult(error='boom')

        self.assertTrue(async_to_sync(_apply_trust_update)(loan, item, None, self.trust))

    def test_emails_sent_to_lender_and_borrower(self):
        item = make_item(self.loan, amount='50.00')
        make_item(self.loan, amount='450.00', days_ago=-30)

        self.process(item.pk)

        recipients = {message.to[0] for message in mail.outbox}
        self.assertIn(self.loan.lender.email, recipients)
        self.assertIn(self.loan.borrower.email, recipients)
        lender_mail = next(m for m in mail.outbox if m.to[0] == self.loan.lender.email)
        self.assertEqual(lender_mail.subject, 'Payment Received from Bea Borrower')

    def test_notification_failure_does_not_fail_payment(self):
        item = make_item(self.loan)

        with mock.patch('apps.notifications.services.send_mail', side_effect=OSError('smtp down')):
            outcome = self.process(item.pk)

        self.assertEqual(outcome.status, PROCESSED)

    def test_payment_row_failure_does_not_fail_payment(self):
        item = make_item(self.loan)

        with mock.patch.object(Payment.objects, 'acreate', side_effect=DatabaseError('insert failed')):
            outcome = self.process(item.pk)

        self.assertEqual(outcome.status, PROCESSED)
        item.refresh_from_db()
        self.assertTrue(item.is_paid)
        self.assertIsNone(item.payment_id)

    def test_concurrent_attempts_flip_item_once(self):
        """A retry race creates one transfer row and pays the item once."""
        item = make_item(self.loan, amount='50.00')
        make_item(self.loan, amount='450.00', days_ago=-30)
        self.gateway.leg_ids = ['fee-leg-race', 'transfer-race']
        first, second = load_item(item.pk), load_item(item.pk)

        async def race():
            return await asyncio.gather(
                *(
                    process_due_payment(
                        copy, gateway=self.gateway,
                        trust_engine=self.trust, notifier=self.notifier,
                    )
                    for copy in (first, second)
                ),
                return_exceptions=True,
            )

        results = async_to_sync(race)()

        processed = [r for r in results if not isinstance(r, BaseException)]
        errors = [r for r in results if isinstance(r, BaseException)]
        self.assertEqual(len(processed), 1)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], ScheduleUpdateError)
        self.assertEqual(Transfer.objects.filter(dwolla_transfer_id='transfer-race').count(), 1)
        self.assertEqual(Payment.objects.count(), 1)

        self.loan.refresh_from_db()
        self.assertEqual(self.loan.amount_paid, Decimal('50.00'))


class MissingFundingSourceTests(TestCase):
    """Scenario: $50 due on a $500 loan, borrower has no bank connected."""

    def setUp(self):
        self.gateway = FakeGateway()
        self.trust = mock_trust_engine()
        self.borrower = make_member(full_name='Bea Borrower')
        self.lender = make_member(full_name='Len Lender', email='len@example.com')
        self.loan = make_loan(
            borrower=self.borrower,
            lender=self.lender,
            borrower_funding_source_url='',
        )
        self.item = make_item(self.loan, amount='50.00', days_ago=3)

    def process(self):
        return async_to_sync(process_due_payment)(
            load_item(self.item.pk),
            gateway=self.gateway,
            trust_engine=self.trust,
            notifier=Notifier(app_url='http://testserver'),
        )

    def test_missing_borrower_source_marks_missed(self):
        outcome = self.process()

        self.assertEqual(outcome.status, SKIPPED)
        self.assertEqual(self.gateway.calls, [])

        self.item.refresh_from_db()
        self.assertEqual(self.item.status, 'missed')
        self.assertFalse(self.item.is_paid)
        self.assertIsNone(self.item.transfer_id)
        self.assertIn('Borrower bank not connected', self.item.notes)

        self.borrower.refresh_from_db()
        self.assertEqual(self.borrower.payments_missed, 1)

        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, ['len@example.com'])
        self.assertEqual(mail.outbox[0].subject, 'Payment Missed - Bea Borrower')

    def test_trust_engine_told_about_missed_payment(self):
        self.process()

        self.trust.on_payment_missed.assert_awaited_once_with(
            borrower_id=self.borrower.pk,
            loan_id=self.loan.pk,
            schedule_id=self.item.pk,
            days_overdue=3,
        )
        self.trust.on_payment_completed.assert_not_called()

    def test_missing_lender_source_marks_missed(self):
        Loan.objects.filter(pk=self.loan.pk).update(
            borrower_funding_source_url='https://api-sandbox.dwolla.com/funding-sources/b',
            lender_funding_source_url='',
        )

        outcome = self.process()

        self.assertEqual(outcome.status, SKIPPED)
        self.assertEqual(outcome.reason, 'Lender bank not connected')

    def test_third_miss_makes_rating_worst(self):
        self.borrower.payments_missed = 2
        self.borrower.borrower_rating = 'bad'
        self.borrower.save()

        self.process()

        self.borrower.refresh_from_db()
        self.assertEqual(self.borrower.payments_missed, 3)
        self.assertEqual(self.borrower.borrower_rating, 'worst')

    def test_trust_engine_exception_does_not_stop_missed_path(self):
        self.trust.on_payment_missed.side_effect = RuntimeError('trust down')

        outcome = self.process()

        self.assertEqual(outcome.status, SKIPPED)
        self.item.refresh_from_db()
        self.assertEqual(self.item.status, 'missed')
        self.borrower.refresh_from_db()
        self.assertEqual(self.borrower.payments_missed, 1)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, 'Payment Missed - Bea Borrower')


class AutoPayProcessorRunTests(TestCase):
    """Test AutoPayProcessor.run() over a batch."""

    def setUp(self):
        self.gateway = FakeGateway()
        self.trust = mock_trust_engine()
        self.borrower = make_member()
        self.lender = make_member()

    def processor(self, batch_size=25, concurrency=5):
        return AutoPayProcessor(
            config=AutoPayConfig(batch_size=batch_size, concurrency=concurrency,
                                 app_url='http://testserver'),
            gateway=self.gateway,
            trust_engine=self.trust,
        )

    def make_due_items(self, count):
        return [
            make_item(make_loan(borrower=self.borrower, lender=self.lender), days_ago=count - n)
            for n in range(count)
        ]

    def test_no_payments_due(self):
        result = async_to_sync(self.processor().run)()

        data = result.as_dict()
        self.assertTrue(data['success'])
        self.assertEqual(data['processed'], 0)
        self.assertEqual(data['note'], 'No payments due')
        self.assertNotIn('deferred', data)

    def test_batch_size_bounds_run(self):
        """40 due, batch of 25: 25 charged, 15 deferred."""
        self.make_due_items(40)

        result = async_to_sync(self.processor(batch_size=25).run)()

        self.assertEqual(len(self.gateway.calls), 25)
        self.assertEqual(result.processed, 25)
        self.assertEqual(result.deferred, 15)
        self.assertEqual(result.as_dict()['deferred'], 15)
        self.assertEqual(PaymentScheduleItem.objects.filter(is_paid=False).count(), 15)

    def test_oldest_items_processed_first(self):
        items = self.make_due_items(6)

        async_to_sync(self.processor(batch_size=3).run)()

        paid = set(PaymentScheduleItem.objects.filter(is_paid=True).values_list('pk', flat=True))
        self.assertEqual(paid, {item.pk for item in items[:3]})

    def test_one_failure_does_not_abort_batch(self):
        """Item 3 of 10 fails; the other nine still settle."""
        items = self.make_due_items(10)
        self.gateway.fail_on = {str(items[2].pk)}

        result = async_to_sync(self.processor().run)()

        self.assertEqual(result.failed, 1)
        self.assertEqual(result.processed, 9)
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith(f'Payment {items[2].pk}: '))
        self.assertIn('Gateway unavailable', result.errors[0])

        items[2].refresh_from_db()
        self.assertFalse(items[2].is_paid)
        self.assertEqual(PaymentScheduleItem.objects.filter(is_paid=True).count(), 9)

    def test_skipped_items_counted(self):
        make_item(make_loan(borrower=self.borrower, lender=self.lender, lender_funding_source_url=''))
        make_item(make_loan(borrower=self.borrower, lender=self.lender))

        result = async_to_sync(self.processor().run)()

        self.assertEqual(result.processed, 1)
        self.assertEqual(result.skipped, 1)
        self.assertEqual(result.failed, 0)

    def test_missed_items_not_refetched(self):
        loan = make_loan(borrower=self.borrower, lender=self.lender, borrower_funding_source_url='')
        make_item(loan)

        async_to_sync(self.processor().run)()
        second = async_to_sync(self.processor().run)()

        self.assertEqual(second.note, 'No payments due')
        self.borrower.refresh_from_db()
        self.assertEqual(self.borrower.payments_missed, 1)

    def test_same_loan_items_both_applied(self):
        loan = make_loan(borrower=self.borrower, lender=self.lender)
        make_item(loan, amount='50.00', days_ago=14)
        make_item(loan, amount='50.00', days_ago=7)
        make_item(loan, amount='400.00', days_ago=-30)

        result = async_to_sync(self.processor().run)()

        self.assertEqual(result.processed, 2)
        loan.refresh_from_db()
        self.assertEqual(loan.amount_paid, Decimal('100.00'))
        self.assertEqual(loan.amount_remaining, Decimal('400.00'))

    def test_future_items_ignored(self):
        make_item(make_loan(borrower=self.borrower, lender=self.lender), days_ago=-1)

        result = async_to_sync(self.processor().run)()

        self.assertEqual(result.note, 'No payments due')
        self.assertEqual(self.gateway.calls, [])

    def test_fetch_failure_raises(self):
        with mock.patch.object(
            PaymentScheduleItem.objects, 'due', side_effect=DatabaseError('connection lost'),
        ):
            with self.assertRaises(BatchFetchError) as ctx:
                async_to_sync(self.processor().run)()

        self.assertIn('connection lost', str(ctx.exception.detail))

    def test_result_date_is_run_date(self):
        today = timezone.localdate()
        result = async_to_sync(self.processor().run)(today=today)
        self.assertEqual(result.as_dict()['date'], today.isoformat())

    def test_waves_bound_transfers_in_flight(self):
        """12 due at concurrency 5: waves of 5, 5, 2, each after the last settles."""
        self.gateway = SlowGateway()
        self.make_due_items(12)

        result = async_to_sync(self.processor(concurrency=5).run)()

        self.assertEqual(result.processed, 12)
        self.assertEqual(self.gateway.peak_in_flight, 5)
        self.assertEqual(self.gateway.finished_at_start, [0] * 5 + [5] * 5 + [10] * 2)

    def test_config_from_settings(self):
        with self.settings(AUTO_PAY={'BATCH_SIZE': 10, 'CONCURRENCY': 2}, APP_URL='https://app.test'):
            config = AutoPayConfig.from_settings()
        self.assertEqual(config, AutoPayConfig(batch_size=10, concurrency=2, app_url='https://app.test'))


class PlanWavesTests(TestCase):

    def test_waves_capped_at_concurrency(self):
        items = [SimpleNamespace(pk=n, loan_id=n) for n in range(12)]
        waves = plan_waves(items, 5)
        self.assertEqual([len(wave) for wave in waves], [5, 5, 2])

    def test_same_loan_never_shares_a_wave(self):
        items = [
            SimpleNamespace(pk=1, loan_id='a'),
            SimpleNamespace(pk=2, loan_id='a'),
            SimpleNamespace(pk=3, loan_id='b'),
        ]
        waves = plan_waves(items, 5)
        self.assertEqual([[item.pk for item in wave] for wave in waves], [[1, 3], [2]])

    def test_input_order_kept_inside_wave(self):
        items = [SimpleNamespace(pk=n, loan_id=n) for n in range(3)]
        self.assertEqual([item.pk for item in plan_waves(items, 5)[0]], [0, 1, 2])
