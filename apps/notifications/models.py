from django.db import models


class NotificationType(models.TextChoices):
    PAYMENT_RECEIVED = 'payment_received', 'Payment received'
    PAYMENT_PROCESSED = 'payment_processed', 'Payment processed'
    PAYMENT_MISSED = 'payment_missed', 'Payment missed'


class Notification(models.Model):
    """In-app notification shown to a registered member."""

    member = models.ForeignKey(
        'members.Member',
        on_delete=models.CASCADE,
        related_name='notifications',
    )
    loan = models.ForeignKey(
        'loans.Loan',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications',
    )
    type = models.CharField(max_length=20, choices=NotificationType.choices)
    title = models.CharField(max_length=200)
    message = models.TextField()
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'notifications'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.type} for member {self.member_id}: {self.title}"
