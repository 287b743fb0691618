"""
Member and business profile models.

A Member is any registered person on the platform, borrower or lender.
Business lenders lend through a BusinessProfile instead.
"""

from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class BorrowerRating(models.TextChoices):
    GREAT = 'great', 'Great'
    GOOD = 'good', 'Good'
    NEUTRAL = 'neutral', 'Neutral'
    POOR = 'poor', 'Poor'
    BAD = 'bad', 'Bad'
    WORST = 'worst', 'Worst'


class Member(models.Model):
    """
    Represents a platform user.

    Carries the borrower reputation fields that the trust engine and
    the missed-payment path maintain.
    """

    email = models.EmailField(
        unique=True,
        help_text="Member's email address."
    )
    full_name = models.CharField(
        max_length=200,
        help_text="Member's full name."
    )

    # Borrower reputation
    payments_missed = models.PositiveIntegerField(default=0)
    borrower_rating = models.CharField(
        max_length=10,
        choices=BorrowerRating.choices,
        default=BorrowerRating.NEUTRAL,
    )
    borrower_rating_updated_at = models.DateTimeField(null=True, blank=True)
    borrowing_tier = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(5)],
    )
    max_borrowing_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('150.00'),
    )

    # Borrower payment counters
    total_payments_made = models.PositiveIntegerField(default=0)
    payments_early = models.PositiveIntegerField(default=0)
    payments_on_time = models.PositiveIntegerField(default=0)
    payments_late = models.PositiveIntegerField(default=0)
    total_amount_repaid = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    current_outstanding_amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0'))],
    )
    loans_at_current_tier = models.PositiveIntegerField(default=0)
    total_loans_completed = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.full_name} (ID: {self.pk})"


class BusinessProfile(models.Model):
    """A lending business. Loans from a business carry business_lender."""

    business_name = models.CharField(max_length=200)
    contact_email = models.EmailField(blank=True, default='')
    owner = models.ForeignKey(
        Member,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='businesses',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'business_profiles'
        ordering = ['business_name']

    def __str__(self):
        return self.business_name
