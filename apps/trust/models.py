"""
Trust score models.

The score is derived from the event log: 50 plus the sum of all event
impacts, clamped to 0-100. Every event carries a unique dedup_key so
replaying the same settlement never counts twice.
"""

from django.db import models

BASE_SCORE = 50


class TrustEventType(models.TextChoices):
    PAYMENT_EARLY = 'payment_early', 'Early payment'
    PAYMENT_ONTIME = 'payment_ontime', 'On-time payment'
    PAYMENT_LATE = 'payment_late', 'Late payment'
    PAYMENT_MISSED = 'payment_missed', 'Missed payment'
    LOAN_COMPLETED = 'loan_completed', 'Loan completed'
    FIRST_LOAN_COMPLETED = 'first_loan_completed', 'First loan completed'


class TrustScore(models.Model):
    """Current trust score of a member."""

    member = models.OneToOneField(
        'members.Member',
        on_delete=models.CASCADE,
        related_name='trust_score',
    )
    score = models.PositiveSmallIntegerField(default=BASE_SCORE)
    event_count = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'trust_scores'

    def __str__(self):
        return f"Trust score {self.score} for member {self.member_id}"


class TrustScoreEvent(models.Model):
    """One scored event in a member's trust history."""

    member = models.ForeignKey(
        'members.Member',
        on_delete=models.CASCADE,
        related_name='trust_events',
    )
    event_type = models.CharField(max_length=24, choices=TrustEventType.choices)
    score_impact = models.SmallIntegerField()
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True, default='')
    loan = models.ForeignKey(
        'loans.Loan',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='trust_events',
    )
    dedup_key = models.CharField(max_length=100, unique=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'trust_score_events'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.event_type} ({self.score_impact:+d}) for member {self.member_id}"
