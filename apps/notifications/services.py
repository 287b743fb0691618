"""
Notification service for the Auto-Pay job.

Emails are rendered from templates and sent with Django's mail API.
Everything here is best-effort: failures are logged, never raised.
"""

import logging
from typing import Optional

from asgiref.sync import sync_to_async

from django.conf import settings
from django.core.mail import send_mail
from django.template.loader import render_to_string
from django.utils.html import strip_tags

from apps.core.utils import format_money
from apps.loans.models import Loan, PaymentScheduleItem
from apps.notifications.models import Notification, NotificationType

logger = logging.getLogger(__name__)


class Notifier:
    """Sends payment emails and records in-app notifications."""

    def __init__(self, app_url: Optional[str] = None):
        self.app_url = (app_url or settings.APP_URL).rstrip('/')

    async def payment_received(self, loan: Loan, item: PaymentScheduleItem,
                               amount_remaining, is_completed: bool):
        """Lender 'payment received' and borrower 'payment processed'."""
        try:
            await sync_to_async(self.send_payment_received)(
                loan, item, amount_remaining, is_completed,
            )
        except Exception:
            logger.exception("Payment notifications failed for loan %s", loan.pk)

    async def payment_missed(self, loan: Loan, item: PaymentScheduleItem, reason: str):
        try:
            await sync_to_async(self.send_payment_missed)(loan, item, reason)
        except Exception:
            logger.exception("Missed-payment notification failed for loan %s", loan.pk)

    def send_payment_received(self, loan, item, amount_remaining, is_completed):
        lender_email, lender_name = self.resolve_lender(loan)
        borrower_email, borrower_name = self.resolve_borrower(loan)
        amount = format_money(item.amount, loan.currency)
        remaining = format_money(amount_remaining, loan.currency)

        context = {
            'lender_name': lender_name,
            'borrower_name': borrower_name,
            'amount': amount,
            'remaining': remaining,
            'is_completed': is_completed,
            'loan_id': loan.pk,
        }

        if lender_email:
            if loan.is_guest_loan:
                subject = (
                    f"Loan Fully Repaid by {borrower_name}" if is_completed
                    else f"Payment Received - {amount}"
                )
                self._send(
                    lender_email, subject,
                    'notifications/email/payment_received_guest_lender.html',
                    dict(context, cta_url=f"{self.app_url}/lender/{loan.invite_token}",
                         cta_label='View Loan Dashboard'),
                )
            else:
                subject = (
                    f"Loan Fully Repaid by {borrower_name}!" if is_completed
                    else f"Payment Received from {borrower_name}"
                )
                self._send(
                    lender_email, subject,
                    'notifications/email/payment_received_lender.html',
                    dict(context, cta_url=f"{self.app_url}/loans/{loan.pk}",
                         cta_label='View Loan'),
                )
        else:
            logger.warning("No lender email found for loan %s; lender not notified", loan.pk)

        if borrower_email:
            if loan.is_guest_loan and loan.borrower_access_token:
                cta_url = f"{self.app_url}/borrower/{loan.borrower_access_token}"
            else:
                cta_url = f"{self.app_url}/loans/{loan.pk}"
            subject = (
                "Congratulations! Loan Fully Repaid" if is_completed
                else f"Payment Processed - {amount}"
            )
            self._send(
                borrower_email, subject,
                'notifications/email/payment_processed_borrower.html',
                dict(context, cta_url=cta_url, cta_label='View Loan Details'),
            )

        if loan.lender_id:
            self._notify_member(
                loan.lender_id, loan, NotificationType.PAYMENT_RECEIVED,
                'Loan fully repaid' if is_completed else 'Payment received',
                f"{borrower_name} paid {amount}. Remaining balance: {remaining}.",
            )
        if loan.borrower_id:
            self._notify_member(
                loan.borrower_id, loan, NotificationType.PAYMENT_PROCESSED,
                'Loan fully repaid' if is_completed else 'Payment processed',
                f"Your payment of {amount} was processed. Remaining balance: {remaining}.",
            )

    def send_payment_missed(self, loan, item, reason):
        lender_email, lender_name = self.resolve_lender(loan)
        _, borrower_name = self.resolve_borrower(loan)
        amount = format_money(item.amount, loan.currency)

        if lender_email:
            self._send(
                lender_email,
                f"Payment Missed - {borrower_name}",
                'notifications/email/payment_missed.html',
                {
                    'lender_name': lender_name,
                    'borrower_name': borrower_name,
                    'amount': amount,
                    'due_date': item.due_date,
                    'reason': reason,
                    'cta_url': f"{self.app_url}/loans/{loan.pk}",
                    'cta_label': 'View Loan',
                },
            )
        else:
            logger.warning("No lender email found for loan %s; missed payment not emailed", loan.pk)

        if loan.lender_id:
            self._notify_member(
                loan.lender_id, loan, NotificationType.PAYMENT_MISSED,
                'Payment missed',
                f"{borrower_name} missed a payment of {amount} due {item.due_date}: {reason}",
            )

    def resolve_lender(self, loan: Loan) -> tuple:
        """
        Lender email and display name.

        Looks at the loan's own fields first, then the business profile,
        then the lender member. A newly found email is saved back onto
        the loan so later runs skip the lookup.
        """
        email = loan.lender_email
        name = loan.lender_name

        if not email:
            if loan.business_lender_id:
                business = loan.business_lender
                email = business.contact_email or (
                    business.owner.email if business.owner_id else ''
                )
                name = name or business.business_name
            elif loan.lender_id:
                email = loan.lender.email
                name = name or loan.lender.full_name

            if email:
                Loan.objects.filter(pk=loan.pk).update(lender_email=email, lender_name=name)
                loan.lender_email = email
                loan.lender_name = name
                logger.info("Cached lender email on loan %s", loan.pk)

        return email, name or 'Lender'

    @staticmethod
    def resolve_borrower(loan: Loan) -> tuple:
        email = loan.borrower_email
        name = loan.borrower_name
        if loan.borrower_id:
            email = email or loan.borrower.email
            name = name or loan.borrower.full_name
        return email, name or 'Borrower'

    @staticmethod
    def _send(to: str, subject: str, template: str, context: dict) -> bool:
        try:
            html = render_to_string(template, dict(context, subject=subject))
            send_mail(
                subject=subject,
                message=strip_tags(html),
                from_email=settings.DEFAULT_FROM_EMAIL,
                recipient_list=[to],
                html_message=html,
            )
        except Exception:
            logger.exception("Failed to send '%s' email to %s", subject, to)
            return False
        logger.info("Sent '%s' email to %s", subject, to)
        return True

    @staticmethod
    def _notify_member(member_id, loan, notification_type, title, message):
        try:
            Notification.objects.create(
                member_id=member_id,
                loan=loan,
                type=notification_type,
                title=title,
                message=message,
            )
        except Exception:
            logger.exception("Failed to record %s notification for member %s",
                             notification_type, member_id)
