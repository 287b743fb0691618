"""
Trust / reputation engine.

Turns payment outcomes into a borrower's trust score, rating and
borrowing tier. Every entry point is idempotent per event through the
dedup key on TrustScoreEvent, and never raises: failures come back in
TrustUpdateResult.error so callers can treat trust as best-effort.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from asgiref.sync import sync_to_async

from django.db import IntegrityError, transaction
from django.db.models import F, Sum, Value
from django.db.models.functions import Greatest
from django.utils import timezone

from apps.core.utils import days_between, format_money, to_money
from apps.loans.models import Loan, LoanStatus, PaymentScheduleItem
from apps.members.models import BorrowerRating, Member
from apps.trust.models import BASE_SCORE, TrustEventType, TrustScore, TrustScoreEvent

logger = logging.getLogger(__name__)

# Score impact per event
IMPACT_PAYMENT_EARLY = 4
IMPACT_PAYMENT_ONTIME = 2
IMPACT_PAYMENT_LATE = -3
IMPACT_PAYMENT_VERY_LATE = -8
IMPACT_LOAN_COMPLETED = 10
IMPACT_FIRST_LOAN_COMPLETED = 15

# Borrowing tier ladder: max borrowing amount per tier, and completed
# loans needed at a tier before moving up from it.
TIER_LIMITS = {
    1: Decimal('150.00'),
    2: Decimal('300.00'),
    3: Decimal('500.00'),
    4: Decimal('1000.00'),
    5: Decimal('2000.00'),
}
LOANS_NEEDED_PER_TIER = {1: 2, 2: 3, 3: 4, 4: 5}

UPGRADE_ELIGIBLE_RATINGS = (
    BorrowerRating.GREAT,
    BorrowerRating.GOOD,
    BorrowerRating.NEUTRAL,
)


@dataclass
class TrustUpdateResult:
    trust_score_updated: bool = False
    loan_completed: bool = False
    new_score: Optional[int] = None
    error: Optional[str] = None


def missed_payment_penalty(days_overdue: int) -> tuple:
    """
    Event type and score impact for an overdue installment.

    The penalty grows with lateness; past 30 days it counts as missed.
    """
    if days_overdue > 30:
        return TrustEventType.PAYMENT_MISSED, -15
    if days_overdue > 14:
        return TrustEventType.PAYMENT_LATE, -8
    if days_overdue > 7:
        return TrustEventType.PAYMENT_LATE, -5
    return TrustEventType.PAYMENT_LATE, -3


def rate_from_history(total_payments: int, on_time_or_early: int, current: str) -> str:
    """
    Borrower rating from on-time history, applied when a loan completes.

    Falls back to the current rating when there is too little history
    to justify a 'bad' verdict.
    """
    on_time_rate = on_time_or_early / total_payments if total_payments else 0.0

    if on_time_rate >= 0.95 and total_payments >= 4:
        return BorrowerRating.GREAT
    if on_time_rate >= 0.85 and total_payments >= 3:
        return BorrowerRating.GOOD
    if on_time_rate >= 0.7:
        return BorrowerRating.NEUTRAL
    if on_time_rate >= 0.5:
        return BorrowerRating.POOR
    if total_payments >= 3:
        return BorrowerRating.BAD
    return current or BorrowerRating.NEUTRAL


def payment_timing(days_from_due: int) -> str:
    """
    'early', 'on_time' or 'late'.

    More than two days ahead of the due date is early. Paying on the due
    date is the last on-time day; any day after it is late.
    """
    if days_from_due < -2:
        return 'early'
    if days_from_due <= 0:
        return 'on_time'
    return 'late'


class TrustEngine:
    """
    Records trust events and maintains the borrower reputation fields.

    This is the only writer of total_loans_completed and
    loans_at_current_tier.
    """

    async def on_payment_completed(
        self,
        *,
        loan_id: int,
        borrower_id: int,
        payment_id: Optional[int],
        schedule_id: Optional[int],
        amount,
        due_date: Optional[date] = None,
        payment_method: str = 'auto',
        skip_user_stats: bool = False,
    ) -> TrustUpdateResult:
        try:
            return await sync_to_async(self.record_payment_completed)(
                loan_id=loan_id,
                borrower_id=borrower_id,
                payment_id=payment_id,
                schedule_id=schedule_id,
                amount=amount,
                due_date=due_date,
                payment_method=payment_method,
                skip_user_stats=skip_user_stats,
            )
        except Exception as exc:
            logger.exception(
                "Trust update failed for loan %s, borrower %s", loan_id, borrower_id,
            )
            return TrustUpdateResult(error=str(exc))

    async def on_payment_missed(
        self,
        *,
        borrower_id: int,
        loan_id: int,
        schedule_id: int,
        days_overdue: int,
    ) -> TrustUpdateResult:
        try:
            return await sync_to_async(self.record_payment_missed)(
                borrower_id=borrower_id,
                loan_id=loan_id,
                schedule_id=schedule_id,
                days_overdue=days_overdue,
            )
        except Exception as exc:
            logger.exception(
                "Missed-payment trust update failed for loan %s, borrower %s",
                loan_id,
                borrower_id,
            )
            return TrustUpdateResult(error=str(exc))

    def record_payment_completed(
        self,
        loan_id: int,
        borrower_id: int,
        payment_id: Optional[int],
        schedule_id: Optional[int],
        amount,
        due_date: Optional[date] = None,
        payment_method: str = 'auto',
        skip_user_stats: bool = False,
    ) -> TrustUpdateResult:
        """
        Record a settled installment.

        Steps:
            1. Record an early / on-time / late event (dedup per settlement)
            2. Update the borrower's payment counters unless skip_user_stats
            3. If the loan is complete, record completion, re-rate and
               apply the tier ladder
            4. Recalculate the score
        """
        amount = to_money(amount)
        today = timezone.now()
        days_from_due = days_between(due_date, today) if due_date else 0
        settlement_ref = schedule_id or payment_id
        if settlement_ref is None:
            raise ValueError("payment_id or schedule_id is required.")

        event_type, impact, title = self._payment_event(days_from_due)
        if days_from_due < 0:
            when = f"{abs(days_from_due)} days early"
        elif days_from_due > 0:
            when = f"{days_from_due} days late"
        else:
            when = "on time"

        recorded = self._record_event(
            member_id=borrower_id,
            event_type=event_type,
            score_impact=impact,
            title=title,
            description=f"Payment of {format_money(amount)} made {when}",
            loan_id=loan_id,
            dedup_key=f"payment:{settlement_ref}",
            metadata={
                'payment_id': payment_id,
                'schedule_id': schedule_id,
                'payment_method': payment_method,
                'days_from_due': days_from_due,
            },
        )
        if not recorded:
            logger.info(
                "Settlement %s for loan %s already recorded; nothing to do",
                settlement_ref,
                loan_id,
            )
            return TrustUpdateResult(new_score=self.current_score(borrower_id))

        if not skip_user_stats:
            self._update_payment_counters(borrower_id, amount, days_from_due)

        loan = Loan.objects.get(pk=loan_id)
        loan_completed = self._loan_is_completed(loan)
        if loan_completed:
            self._record_loan_completed(borrower_id, loan)

        new_score = self.recalculate(borrower_id)

        logger.info(
            "Trust updated for borrower %s: %s (%+d), score=%d, loan_completed=%s",
            borrower_id,
            event_type,
            impact,
            new_score,
            loan_completed,
        )

        return TrustUpdateResult(
            trust_score_updated=True,
            loan_completed=loan_completed,
            new_score=new_score,
        )

    def record_payment_missed(
        self,
        borrower_id: int,
        loan_id: int,
        schedule_id: int,
        days_overdue: int,
    ) -> TrustUpdateResult:
        """Record a late / missed event for an overdue installment."""
        event_type, impact = missed_payment_penalty(days_overdue)
        title = 'Payment missed' if event_type == TrustEventType.PAYMENT_MISSED else 'Payment late'

        recorded = self._record_event(
            member_id=borrower_id,
            event_type=event_type,
            score_impact=impact,
            title=title,
            description=f"Payment {days_overdue} days overdue",
            loan_id=loan_id,
            dedup_key=f"missed:{schedule_id}",
            metadata={'schedule_id': schedule_id, 'days_overdue': days_overdue},
        )
        if not recorded:
            return TrustUpdateResult(new_score=self.current_score(borrower_id))

        new_score = self.recalculate(borrower_id)
        logger.info(
            "Missed payment recorded for borrower %s (%+d pts), score=%d",
            borrower_id,
            impact,
            new_score,
        )
        return TrustUpdateResult(trust_score_updated=True, new_score=new_score)

    def recalculate(self, member_id: int) -> int:
        """Recompute and store the score from the event log."""
        events = TrustScoreEvent.objects.filter(member_id=member_id)
        totals = events.aggregate(total=Sum('score_impact'))
        score = BASE_SCORE + (totals['total'] or 0)
        score = max(0, min(100, score))

        TrustScore.objects.update_or_create(
            member_id=member_id,
            defaults={'score': score, 'event_count': events.count()},
        )
        return score

    def current_score(self, member_id: int) -> int:
        trust = TrustScore.objects.filter(member_id=member_id).first()
        return trust.score if trust else BASE_SCORE

    @staticmethod
    def _payment_event(days_from_due: int) -> tuple:
        timing = payment_timing(days_from_due)
        if timing == 'early':
            return TrustEventType.PAYMENT_EARLY, IMPACT_PAYMENT_EARLY, 'Early Payment'
        if timing == 'on_time':
            return TrustEventType.PAYMENT_ONTIME, IMPACT_PAYMENT_ONTIME, 'On-Time Payment'
        if days_from_due <= 7:
            return TrustEventType.PAYMENT_LATE, IMPACT_PAYMENT_LATE, 'Late Payment'
        return TrustEventType.PAYMENT_LATE, IMPACT_PAYMENT_VERY_LATE, 'Very Late Payment'

    @staticmethod
    def _record_event(member_id, event_type, score_impact, title, description,
                      loan_id, dedup_key, metadata) -> bool:
        """Insert one event. Returns False when dedup_key was already used."""
        try:
            with transaction.atomic():
                TrustScoreEvent.objects.create(
                    member_id=member_id,
                    event_type=event_type,
                    score_impact=score_impact,
                    title=title,
                    description=description,
                    loan_id=loan_id,
                    dedup_key=dedup_key,
                    metadata=metadata,
                )
        except IntegrityError:
            return False
        return True

    @staticmethod
    def _loan_is_completed(loan: Loan) -> bool:
        if loan.status == LoanStatus.COMPLETED:
            return True
        return not PaymentScheduleItem.objects.filter(loan=loan, is_paid=False).exists()

    @staticmethod
    def _update_payment_counters(member_id: int, amount: Decimal, days_from_due: int):
        timing = payment_timing(days_from_due)
        Member.objects.filter(pk=member_id).update(
            total_payments_made=F('total_payments_made') + 1,
            payments_early=F('payments_early') + (1 if timing == 'early' else 0),
            payments_on_time=F('payments_on_time') + (1 if timing == 'on_time' else 0),
            payments_late=F('payments_late') + (1 if timing == 'late' else 0),
            total_amount_repaid=F('total_amount_repaid') + amount,
            current_outstanding_amount=Greatest(
                F('current_outstanding_amount') - amount, Value(Decimal('0.00')),
            ),
        )

    @transaction.atomic
    def _record_loan_completed(self, member_id: int, loan: Loan):
        member = Member.objects.select_for_update().get(pk=member_id)
        is_first = member.total_loans_completed == 0

        recorded = self._record_event(
            member_id=member_id,
            event_type=(
                TrustEventType.FIRST_LOAN_COMPLETED if is_first
                else TrustEventType.LOAN_COMPLETED
            ),
            score_impact=IMPACT_FIRST_LOAN_COMPLETED if is_first else IMPACT_LOAN_COMPLETED,
            title='First Loan Completed' if is_first else 'Loan Completed',
            description=f"Successfully repaid {format_money(loan.total_amount, loan.currency)} loan",
            loan_id=loan.pk,
            dedup_key=f"loan_completed:{loan.pk}",
            metadata={'amount': str(loan.total_amount)},
        )
        if not recorded:
            return

        member.total_loans_completed += 1
        member.loans_at_current_tier += 1
        update_fields = ['total_loans_completed', 'loans_at_current_tier', 'updated_at']

        new_rating = rate_from_history(
            member.total_payments_made,
            member.payments_early + member.payments_on_time,
            member.borrower_rating,
        )
        if new_rating != member.borrower_rating:
            logger.info(
                "Borrower %s rating updated: %s -> %s",
                member_id,
                member.borrower_rating,
                new_rating,
            )
            member.borrower_rating = new_rating
            member.borrower_rating_updated_at = timezone.now()
            update_fields += ['borrower_rating', 'borrower_rating_updated_at']

        # Tier upgrades only come from business loans
        if loan.business_lender_id and new_rating in UPGRADE_ELIGIBLE_RATINGS:
            current_tier = member.borrowing_tier
            needed = LOANS_NEEDED_PER_TIER.get(current_tier)
            if needed is not None and member.loans_at_current_tier >= needed:
                member.borrowing_tier = current_tier + 1
                member.max_borrowing_amount = TIER_LIMITS[member.borrowing_tier]
                member.loans_at_current_tier = 0
                update_fields += ['borrowing_tier', 'max_borrowing_amount']
                logger.info(
                    "Borrower %s tier upgraded: %d -> %d, max=%s",
                    member_id,
                    current_tier,
                    member.borrowing_tier,
                    member.max_borrowing_amount,
                )

        member.save(update_fields=update_fields)
