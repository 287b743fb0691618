"""
Loan service layer.

Builds the repayment plan (payment schedule) for a loan. The auto-pay
job only ever consumes these rows; it never creates them.
"""

import logging
from datetime import date
from decimal import ROUND_DOWN, Decimal

from dateutil.relativedelta import relativedelta

from django.db import transaction

from apps.core.utils import CENTS, to_money
from apps.loans.models import Loan, PaymentScheduleItem

logger = logging.getLogger(__name__)


class RepaymentPlanService:
    """
    Service for splitting a loan's total into dated installments.

    Cadences map to a relativedelta step between due dates.
    """

    CADENCES = {
        'weekly': relativedelta(weeks=1),
        'biweekly': relativedelta(weeks=2),
        'monthly': relativedelta(months=1),
    }

    @classmethod
    def split_amount(cls, total: Decimal, installments: int) -> list:
        """
        Split total into equal cent amounts.

        The last installment absorbs the rounding drift so the parts
        always sum to total exactly.

        Example:
            split_amount(Decimal('100.00'), 3) → [33.33, 33.33, 33.34]
        """
        if installments < 1:
            raise ValueError("installments must be at least 1.")

        total = to_money(total)
        base = (total / installments).quantize(CENTS, rounding=ROUND_DOWN)
        amounts = [base] * (installments - 1)
        amounts.append(total - base * (installments - 1))
        return amounts

    @classmethod
    def due_dates(cls, first_due: date, installments: int, cadence: str) -> list:
        """Due dates starting at first_due, one cadence step apart."""
        try:
            step = cls.CADENCES[cadence]
        except KeyError:
            raise ValueError(f"Unknown cadence '{cadence}'.")
        return [first_due + step * n for n in range(installments)]

    @classmethod
    @transaction.atomic
    def build_schedule(
        cls,
        loan: Loan,
        installments: int,
        first_due: date,
        cadence: str = 'monthly',
    ) -> list:
        """
        Create the payment schedule for a loan.

        Also initialises amount_paid / amount_remaining so that
        amount_paid + amount_remaining == total_amount from the start.

        Args:
            loan: The Loan instance (must have no schedule yet).
            installments: Number of installments.
            first_due: Due date of the first installment.
            cadence: 'weekly', 'biweekly' or 'monthly'.

        Returns:
            List of created PaymentScheduleItem instances.
        """
        if PaymentScheduleItem.objects.filter(loan=loan).exists():
            raise ValueError(f"Loan {loan.pk} already has a payment schedule.")

        amounts = cls.split_amount(loan.total_amount, installments)
        dates = cls.due_dates(first_due, installments, cadence)

        items = PaymentScheduleItem.objects.bulk_create([
            PaymentScheduleItem(loan=loan, amount=amount, due_date=due)
            for amount, due in zip(amounts, dates)
        ])

        loan.amount_paid = Decimal('0.00')
        loan.amount_remaining = to_money(loan.total_amount)
        loan.save(update_fields=['amount_paid', 'amount_remaining', 'updated_at'])

        logger.info(
            "Schedule built for loan #%d: %d %s installments of ~%s from %s",
            loan.pk,
            installments,
            cadence,
            amounts[0],
            first_due,
        )

        return items
