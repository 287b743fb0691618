"""
Auto-pay processor.

process_due_payment() charges exactly one installment and is shared by
the scheduled batch run and the manual single-payment trigger.
AutoPayProcessor runs the batch: fetch due installments, cap the batch,
and process it in waves of bounded concurrency.

Steps 4-6 of a payment (transfer, transfer record, schedule update)
must succeed or raise. Everything after is best-effort and only logged.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone

from apps.core.exceptions import (
    BatchFetchError,
    FundingSourceMissingError,
    LoanNotActiveError,
    PaymentAlreadyProcessedError,
    PaymentNotFoundError,
    ScheduleUpdateError,
    TransferAlreadyExistsError,
)
from apps.core.utils import format_money, to_money
from apps.loans.models import (
    ROUNDING_TOLERANCE,
    Loan,
    LoanStatus,
    Payment,
    PaymentScheduleItem,
    PaymentStatus,
    ScheduleStatus,
    Transfer,
    TransferStatus,
    TransferType,
)
from apps.notifications.services import Notifier
from apps.payments.gateway import FacilitatedTransfer, TransferRequest, get_transfer_gateway
from apps.payments.missed import handle_missed_payment
from apps.trust.services import TrustEngine

logger = logging.getLogger(__name__)

PROCESSED = 'processed'
SKIPPED = 'skipped'
FAILED = 'failed'


@dataclass(frozen=True)
class AutoPayConfig:
    batch_size: int = 25
    concurrency: int = 5
    app_url: str = 'http://localhost:3000'

    @classmethod
    def from_settings(cls):
        auto_pay = getattr(settings, 'AUTO_PAY', {})
        return cls(
            batch_size=int(auto_pay.get('BATCH_SIZE', cls.batch_size)),
            concurrency=int(auto_pay.get('CONCURRENCY', cls.concurrency)),
            app_url=getattr(settings, 'APP_URL', cls.app_url),
        )


@dataclass
class PaymentOutcome:
    status: str
    item_id: int
    reason: str = ''
    transfer: Optional[FacilitatedTransfer] = None
    amount_remaining: Optional[Decimal] = None


@dataclass
class AutoPayResult:
    date: date
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list = field(default_factory=list)
    deferred: int = 0
    note: str = ''

    def record(self, item: PaymentScheduleItem, outcome):
        """Fold one settled unit (outcome or raised exception) into the counters."""
        if isinstance(outcome, BaseException):
            self.failed += 1
            self.errors.append(f"Payment {item.pk}: {outcome}")
        elif outcome.status == PROCESSED:
            self.processed += 1
        elif outcome.status == SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1
            self.errors.append(f"Payment {item.pk}: {outcome.reason}")

    def as_dict(self) -> dict:
        data = {
            'success': True,
            'date': self.date.isoformat(),
            'processed': self.processed,
            'failed': self.failed,
            'skipped': self.skipped,
            'errors': list(self.errors),
        }
        if self.deferred:
            data['deferred'] = self.deferred
        if self.note:
            data['note'] = self.note
        return data


async def process_due_payment(
    item: PaymentScheduleItem,
    *,
    gateway,
    trust_engine,
    notifier,
    today: Optional[date] = None,
) -> PaymentOutcome:
    """
    Charge one installment.

    item must come from PaymentScheduleItem.objects.with_parties() so
    its loan and parties are already loaded.

    Returns a processed or skipped PaymentOutcome. Gateway and schedule
    update failures raise; the batch turns them into failed outcomes.
    """
    loan = item.loan
    today = today or timezone.localdate()

    # 1. Already paid
    if item.is_paid:
        logger.warning("Payment %s already paid, skipping", item.pk)
        return PaymentOutcome(SKIPPED, item.pk, reason='Already paid')

    # 2. Idempotency marker
    if item.transfer_id:
        logger.warning(
            "Payment %s already has transfer %s, skipping", item.pk, item.transfer_id,
        )
        return PaymentOutcome(SKIPPED, item.pk, reason='Transfer already exists')

    if loan.status != LoanStatus.ACTIVE:
        logger.warning("Payment %s skipped: loan %s is %s", item.pk, loan.pk, loan.status)
        return PaymentOutcome(SKIPPED, item.pk, reason='Loan not active')

    # 3. Funding sources
    if not loan.borrower_funding_source_url or not loan.lender_funding_source_url:
        reason = (
            'Borrower bank not connected' if not loan.borrower_funding_source_url
            else 'Lender bank not connected'
        )
        logger.warning("Payment %s: %s, marking missed", item.pk, reason)
        await handle_missed_payment(
            item, loan, reason,
            trust_engine=trust_engine, notifier=notifier, today=today,
        )
        return PaymentOutcome(SKIPPED, item.pk, reason=reason)

    # 4. Transfer initiation
    logger.info("Processing payment %s on loan %s: %s", item.pk, loan.pk, item.amount)
    transfer = await gateway.create_facilitated_transfer(TransferRequest(
        source=loan.borrower_funding_source_url,
        destination=loan.lender_funding_source_url,
        amount=item.amount,
        currency=loan.currency,
        metadata={
            'loan_id': str(loan.pk),
            'payment_id': str(item.pk),
            'type': TransferType.REPAYMENT,
        },
    ))
    fee = transfer.fee
    now = timezone.now()

    # 5. Transfer record, keyed by the canonical id
    await Transfer.objects.abulk_create(
        [
            Transfer(
                loan_id=loan.pk,
                dwolla_transfer_id=transfer.transfer_id,
                dwolla_transfer_url=transfer.transfer_url,
                type=TransferType.REPAYMENT,
                amount=item.amount,
                currency=loan.currency,
                status=TransferStatus.PENDING,
                platform_fee=fee.platform_fee,
                fee_type=fee.fee_type,
                gross_amount=fee.gross_amount,
                net_amount=fee.net_amount,
            ),
        ],
        ignore_conflicts=True,
    )

    # 6. Schedule update; flips is_paid at most once
    try:
        updated = await PaymentScheduleItem.objects.filter(
            pk=item.pk, is_paid=False, transfer_id__isnull=True,
        ).aupdate(
            is_paid=True,
            status=ScheduleStatus.PAID,
            transfer_id=transfer.transfer_id,
            paid_at=now,
            platform_fee=fee.platform_fee,
            updated_at=now,
        )
    except DatabaseError as exc:
        logger.error("Schedule update failed for payment %s after transfer %s",
                     item.pk, transfer.transfer_id)
        raise ScheduleUpdateError(
            detail=f"Failed to update payment schedule after transfer {transfer.transfer_id}: {exc}"
        ) from exc
    if not updated:
        logger.error("Payment %s was settled concurrently; transfer %s needs reconciliation",
                     item.pk, transfer.transfer_id)
        raise ScheduleUpdateError(
            detail=f"Payment schedule changed concurrently after transfer {transfer.transfer_id}."
        )
    item.is_paid = True
    item.status = ScheduleStatus.PAID
    item.transfer_id = transfer.transfer_id
    item.paid_at = now
    item.platform_fee = fee.platform_fee

    logger.info(
        "Payment %s transferred: id=%s gross=%s fee=%s net=%s",
        item.pk,
        transfer.transfer_id,
        fee.gross_amount,
        fee.platform_fee,
        fee.net_amount,
    )

    # 7. Payments audit row
    payment_id = None
    try:
        payment = await Payment.objects.acreate(
            loan_id=loan.pk,
            schedule_id=item.pk,
            amount=item.amount,
            payment_date=now,
            status=PaymentStatus.CONFIRMED,
            note=(
                f"Auto-pay ACH transfer - Transfer ID: {transfer.transfer_id} | "
                f"Fee: {format_money(fee.platform_fee)} | "
                f"Net to lender: {format_money(fee.net_amount)}"
            ),
        )
        payment_id = payment.pk
        await PaymentScheduleItem.objects.filter(pk=item.pk).aupdate(payment_id=payment_id)
    except Exception:
        logger.exception("Failed to record payment row for schedule item %s", item.pk)

    # 8. Loan balance and completion
    amount_remaining = max(Decimal('0.00'), to_money(loan.amount_remaining - item.amount))
    is_completed = False
    try:
        amount_remaining, is_completed = await _update_loan_balance(loan.pk, item.amount, now)
    except Exception:
        logger.exception("Failed to update loan %s after payment %s", loan.pk, item.pk)

    # 9. Trust score (manual-rail loans only)
    try:
        await _apply_trust_update(loan, item, payment_id, trust_engine)
    except Exception:
        logger.exception("Trust update failed for payment %s", item.pk)

    # 10. Notifications
    try:
        await notifier.payment_received(loan, item, amount_remaining, is_completed)
    except Exception:
        logger.exception("Notifications failed for payment %s", item.pk)

    return PaymentOutcome(
        PROCESSED,
        item.pk,
        transfer=transfer,
        amount_remaining=amount_remaining,
    )


async def _update_loan_balance(loan_id: int, amount, now) -> tuple:
    """
    Apply a payment to the loan row, re-read fresh.

    The loan completes when no unpaid installments remain or the
    remaining balance is within ROUNDING_TOLERANCE.
    """
    loan = await Loan.objects.aget(pk=loan_id)
    new_amount_paid = to_money(loan.amount_paid + amount)
    remaining = loan.total_amount - new_amount_paid

    has_unpaid = await PaymentScheduleItem.objects.filter(
        loan_id=loan_id, is_paid=False,
    ).aexists()
    is_completed = not has_unpaid or remaining <= ROUNDING_TOLERANCE

    changes = {'last_payment_at': now, 'updated_at': now}
    if is_completed:
        changes.update(
            amount_paid=loan.total_amount,
            amount_remaining=Decimal('0.00'),
            status=LoanStatus.COMPLETED,
            completed_at=now,
        )
        logger.info("Loan %s completed", loan_id)
    else:
        changes.update(
            amount_paid=new_amount_paid,
            amount_remaining=max(Decimal('0.00'), to_money(remaining)),
        )

    await Loan.objects.filter(pk=loan_id).aupdate(**changes)
    return changes['amount_remaining'], is_completed


async def _apply_trust_update(loan: Loan, item: PaymentScheduleItem,
                              payment_id: Optional[int], trust_engine) -> bool:
    """
    Credit trust for a settled payment on a manual-rail loan.

    Gateway-capable loans are credited later, once the transfer
    settles, so a settlement is never counted twice.
    """
    if loan.is_gateway_capable or not loan.borrower_id:
        return False

    result = await trust_engine.on_payment_completed(
        loan_id=loan.pk,
        borrower_id=loan.borrower_id,
        payment_id=payment_id,
        schedule_id=item.pk,
        amount=item.amount,
        due_date=item.due_date,
        payment_method='auto',
        skip_user_stats=False,
    )
    if result.error:
        logger.error("Trust engine error for payment %s: %s", item.pk, result.error)
    return True


def plan_waves(items: list, concurrency: int) -> list:
    """
    Split items into waves of at most `concurrency`.

    A wave never holds two items of the same loan; the later one moves
    to the next wave with room.
    """
    waves = []
    for item in items:
        for wave in waves:
            if len(wave) < concurrency and all(other.loan_id != item.loan_id for other in wave):
                wave.append(item)
                break
        else:
            waves.append([item])
    return waves


class AutoPayProcessor:
    """One run of the auto-pay job."""

    def __init__(self, config: Optional[AutoPayConfig] = None, gateway=None,
                 trust_engine=None, notifier=None):
        self.config = config or AutoPayConfig.from_settings()
        self.gateway = gateway or get_transfer_gateway()
        self.trust_engine = trust_engine or TrustEngine()
        self.notifier = notifier or Notifier(app_url=self.config.app_url)

    async def process(self, item: PaymentScheduleItem, today: Optional[date] = None) -> PaymentOutcome:
        return await process_due_payment(
            item,
            gateway=self.gateway,
            trust_engine=self.trust_engine,
            notifier=self.notifier,
            today=today,
        )

    async def run(self, today: Optional[date] = None) -> AutoPayResult:
        today = today or timezone.localdate()
        logger.info("Auto-pay run for %s", today)

        try:
            due = PaymentScheduleItem.objects.due(today)
            total = await due.acount()
            batch = [item async for item in due.with_parties()[:self.config.batch_size]]
        except Exception as exc:
            logger.exception("Auto-pay fetch failed")
            raise BatchFetchError(detail=str(exc)) from exc

        result = AutoPayResult(date=today)
        if not batch:
            logger.info("No payments due on %s", today)
            result.note = 'No payments due'
            return result

        if total > len(batch):
            result.deferred = total - len(batch)
            logger.info("%d due payments deferred to the next run", result.deferred)

        logger.info("Found %d due payments, processing %d", total, len(batch))

        for wave in plan_waves(batch, self.config.concurrency):
            outcomes = await asyncio.gather(
                *(self.process(item, today) for item in wave),
                return_exceptions=True,
            )
            for item, outcome in zip(wave, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error("Payment %s failed: %s", item.pk, outcome)
                result.record(item, outcome)

        logger.info(
            "Auto-pay complete. Processed: %d, Failed: %d, Skipped: %d, Deferred: %d",
            result.processed,
            result.failed,
            result.skipped,
            result.deferred,
        )
        return result


async def resolve_manual_payment(loan_id: Optional[int] = None,
                                 payment_id: Optional[int] = None) -> PaymentScheduleItem:
    """
    Find the installment for a manual trigger and apply its gates.

    payment_id wins over loan_id. For a loan, the earliest unpaid
    installment is used, including one previously marked missed.
    """
    items = PaymentScheduleItem.objects.with_parties()
    if payment_id:
        item = await items.filter(pk=payment_id).afirst()
    else:
        item = await items.filter(loan_id=loan_id, is_paid=False).order_by('due_date', 'id').afirst()

    if item is None:
        raise PaymentNotFoundError()
    if item.is_paid:
        raise PaymentAlreadyProcessedError()
    if item.transfer_id:
        raise TransferAlreadyExistsError(item.transfer_id)

    loan = item.loan
    if loan.status != LoanStatus.ACTIVE:
        raise LoanNotActiveError()
    if not loan.borrower_funding_source_url:
        raise FundingSourceMissingError(detail='Borrower has not connected their bank account.')
    if not loan.lender_funding_source_url:
        raise FundingSourceMissingError(detail='Lender has not connected their bank account.')
    return item


async def run_manual_payment(loan_id: Optional[int] = None, payment_id: Optional[int] = None,
                             processor: Optional[AutoPayProcessor] = None) -> dict:
    """Charge one installment now and return the manual trigger response."""
    item = await resolve_manual_payment(loan_id=loan_id, payment_id=payment_id)
    processor = processor or AutoPayProcessor()

    outcome = await processor.process(item)
    if outcome.status != PROCESSED:
        # Lost a race with another run between resolve and process
        raise PaymentAlreadyProcessedError()

    transfer = outcome.transfer
    logger.info(
        "Manual payment %s processed: transfer=%s gross=%s fee=%s net=%s",
        item.pk,
        transfer.transfer_id,
        transfer.fee.gross_amount,
        transfer.fee.platform_fee,
        transfer.fee.net_amount,
    )
    return {
        'success': True,
        'payment_id': item.pk,
        'transfer_id': transfer.transfer_id,
        'amount': item.amount,
        'amount_remaining': outcome.amount_remaining,
        'fee': transfer.fee.as_dict(),
    }
