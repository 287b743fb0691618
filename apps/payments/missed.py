"""
Missed-payment path.

Runs when an installment cannot be charged because either party has no
connected funding source. The item is marked missed (not paid, no
transfer id), the trust engine records the lateness, the borrower's
rating is stepped down, and the lender is told.
"""

import logging
from datetime import date
from typing import Optional

from django.utils import timezone

from apps.core.utils import days_overdue
from apps.loans.models import Loan, PaymentScheduleItem, ScheduleStatus
from apps.members.models import BorrowerRating, Member

logger = logging.getLogger(__name__)


def next_borrower_rating(payments_missed: int, current: str) -> str:
    """
    Rating after a miss, given the new missed-payment count.

    Three or more misses is 'worst', two is 'bad'. A single miss only
    pulls good / great borrowers down to neutral.
    """
    if payments_missed >= 3:
        return BorrowerRating.WORST
    if payments_missed >= 2:
        return BorrowerRating.BAD
    if payments_missed >= 1 and current in (BorrowerRating.GOOD, BorrowerRating.GREAT):
        return BorrowerRating.NEUTRAL
    return current


async def handle_missed_payment(
    item: PaymentScheduleItem,
    loan: Loan,
    reason: str,
    *,
    trust_engine,
    notifier,
    today: Optional[date] = None,
):
    today = today or timezone.localdate()

    await PaymentScheduleItem.objects.filter(pk=item.pk).aupdate(
        status=ScheduleStatus.MISSED,
        notes=f"Payment failed: {reason}",
        updated_at=timezone.now(),
    )
    item.status = ScheduleStatus.MISSED
    logger.info("Payment %s on loan %s marked missed: %s", item.pk, loan.pk, reason)

    overdue = days_overdue(item.due_date, today)

    if loan.borrower_id:
        try:
            result = await trust_engine.on_payment_missed(
                borrower_id=loan.borrower_id,
                loan_id=loan.pk,
                schedule_id=item.pk,
                days_overdue=overdue,
            )
            if result.error:
                logger.error(
                    "Trust engine could not record missed payment %s: %s", item.pk, result.error,
                )
        except Exception:
            logger.exception("Trust update failed for missed payment %s", item.pk)

        try:
            await _downgrade_borrower(loan.borrower_id)
        except Exception:
            logger.exception("Failed to update borrower %s after missed payment", loan.borrower_id)

    await notifier.payment_missed(loan, item, reason)


async def _downgrade_borrower(borrower_id: int):
    borrower = await Member.objects.aget(pk=borrower_id)
    missed = borrower.payments_missed + 1
    rating = next_borrower_rating(missed, borrower.borrower_rating)

    await Member.objects.filter(pk=borrower_id).aupdate(
        payments_missed=missed,
        borrower_rating=rating,
        borrower_rating_updated_at=timezone.now(),
        updated_at=timezone.now(),
    )
    logger.info(
        "Borrower %s missed count: %d, rating: %s -> %s",
        borrower_id,
        missed,
        borrower.borrower_rating,
        rating,
    )
