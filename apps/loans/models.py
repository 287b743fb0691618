"""
Ledger models for the Auto-Pay service.

Loan, its repayment schedule, the payments audit trail, and the
record of money movements initiated through the transfer gateway.
"""

from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

# A loan whose remaining balance is within this amount counts as repaid.
ROUNDING_TOLERANCE = Decimal('0.50')


class LoanStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    ACTIVE = 'active', 'Active'
    COMPLETED = 'completed', 'Completed'
    DECLINED = 'declined', 'Declined'
    CANCELLED = 'cancelled', 'Cancelled'
    DEFAULTED = 'defaulted', 'Defaulted'


class Loan(models.Model):
    """
    Represents one lending agreement.

    The lender is either an individual Member or a BusinessProfile,
    never both. Both funding source URLs present means the loan can be
    repaid through the automated transfer gateway.
    """

    borrower = models.ForeignKey(
        'members.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='borrowed_loans',
        help_text="Registered borrower (empty for guest borrowers)."
    )
    lender = models.ForeignKey(
        'members.Member',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='lent_loans',
        help_text="Individual lender."
    )
    business_lender = models.ForeignKey(
        'members.BusinessProfile',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='loans',
        help_text="Business lender."
    )

    amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Principal amount.",
    )
    total_amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Principal plus interest.",
    )
    amount_paid = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    amount_remaining = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))],
    )
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(
        max_length=10,
        choices=LoanStatus.choices,
        default=LoanStatus.PENDING,
        db_index=True,
    )

    borrower_funding_source_url = models.URLField(
        max_length=500,
        blank=True,
        default='',
        help_text="Borrower's gateway funding source handle.",
    )
    lender_funding_source_url = models.URLField(
        max_length=500,
        blank=True,
        default='',
        help_text="Lender's gateway funding source handle.",
    )

    # Denormalised party identity used for notifications
    borrower_name = models.CharField(max_length=200, blank=True, default='')
    borrower_email = models.EmailField(blank=True, default='')
    lender_name = models.CharField(max_length=200, blank=True, default='')
    lender_email = models.EmailField(blank=True, default='')

    # Guest access tokens (set for loans created through an invite)
    invite_token = models.CharField(max_length=64, blank=True, default='')
    borrower_access_token = models.CharField(max_length=64, blank=True, default='')

    last_payment_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'loans'
        ordering = ['-created_at']
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(lender__isnull=True)
                    | models.Q(business_lender__isnull=True)
                ),
                name='loan_single_lender_kind',
            ),
        ]

    def __str__(self):
        return f"Loan #{self.pk} - {self.total_amount} {self.currency} ({self.status})"

    @property
    def is_gateway_capable(self):
        """Both parties have a connected funding source."""
        return bool(self.borrower_funding_source_url and self.lender_funding_source_url)

    @property
    def is_guest_loan(self):
        return bool(self.invite_token)


class ScheduleStatus(models.TextChoices):
    SCHEDULED = 'scheduled', 'Scheduled'
    PAID = 'paid', 'Paid'
    MISSED = 'missed', 'Missed'


class PaymentScheduleQuerySet(models.QuerySet):

    def with_parties(self):
        """Join the parent loan and its borrower / lender rows in one query."""
        return self.select_related(
            'loan',
            'loan__borrower',
            'loan__lender',
            'loan__business_lender',
        )

    def due(self, on_date):
        """
        Unpaid installments due on or before on_date, oldest first.

        Items already marked missed stay out of the scheduled run; they
        can only be retried through the manual trigger.
        """
        return (
            self.filter(is_paid=False, due_date__lte=on_date)
            .exclude(status=ScheduleStatus.MISSED)
            .order_by('due_date', 'id')
        )


class PaymentScheduleItem(models.Model):
    """
    One installment due on a loan.

    transfer_id is the idempotency marker: once set, the item is never
    charged again.
    """

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='schedule',
    )
    amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
    )
    due_date = models.DateField(db_index=True)
    is_paid = models.BooleanField(default=False, db_index=True)
    status = models.CharField(
        max_length=10,
        choices=ScheduleStatus.choices,
        default=ScheduleStatus.SCHEDULED,
    )
    transfer_id = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        db_index=True,
    )
    paid_at = models.DateTimeField(null=True, blank=True)
    platform_fee = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        null=True,
        blank=True,
    )
    payment = models.ForeignKey(
        'loans.Payment',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+',
    )
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PaymentScheduleQuerySet.as_manager()

    class Meta:
        db_table = 'payment_schedule'
        ordering = ['due_date', 'id']
        indexes = [
            models.Index(
                fields=['is_paid', 'due_date'],
                name='idx_schedule_unpaid_due',
            ),
        ]

    def __str__(self):
        return f"Installment #{self.pk} of loan {self.loan_id} due {self.due_date}"


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    CONFIRMED = 'confirmed', 'Confirmed'


class Payment(models.Model):
    """Audit record of a settled installment."""

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='payments',
    )
    schedule = models.ForeignKey(
        PaymentScheduleItem,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='payments',
    )
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    payment_date = models.DateTimeField()
    status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.CONFIRMED,
    )
    note = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'payments'
        ordering = ['-payment_date']

    def __str__(self):
        return f"Payment #{self.pk} - {self.amount} on loan {self.loan_id}"


class TransferType(models.TextChoices):
    REPAYMENT = 'repayment', 'Repayment'
    DISBURSEMENT = 'disbursement', 'Disbursement'


class TransferStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    PROCESSING = 'processing', 'Processing'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'


class Transfer(models.Model):
    """
    One logical money movement, keyed by the gateway's transfer id.

    A facilitated transfer has two legs at the gateway; only the final
    leg's id is stored here.
    """

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='transfers',
    )
    dwolla_transfer_id = models.CharField(max_length=100, unique=True)
    dwolla_transfer_url = models.URLField(max_length=500, blank=True, default='')
    type = models.CharField(max_length=12, choices=TransferType.choices)
    amount = models.DecimalField(max_digits=15, decimal_places=2)
    currency = models.CharField(max_length=3, default='USD')
    status = models.CharField(
        max_length=10,
        choices=TransferStatus.choices,
        default=TransferStatus.PENDING,
    )
    platform_fee = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal('0.00'),
    )
    fee_type = models.CharField(max_length=10, blank=True, default='')
    gross_amount = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    net_amount = models.DecimalField(max_digits=15, decimal_places=2, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'transfers'
        ordering = ['-created_at']

    def __str__(self):
        return f"Transfer {self.dwolla_transfer_id} ({self.type}, {self.status})"
