"""
Custom exceptions and DRF exception handler for the Auto-Pay service.
"""

import logging

from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class PaymentNotFoundError(APIException):
    """Raised when no schedule item matches a manual trigger."""

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'No unpaid payment found.'
    default_code = 'payment_not_found'


class PaymentAlreadyProcessedError(APIException):
    """Raised when a schedule item is already marked paid."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'This payment has already been processed.'
    default_code = 'payment_already_processed'


class TransferAlreadyExistsError(APIException):
    """Raised when a schedule item already carries a transfer id."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'This payment already has a transfer associated.'
    default_code = 'transfer_already_exists'

    def __init__(self, transfer_id):
        super().__init__(detail={
            'message': str(self.default_detail),
            'transfer_id': transfer_id,
        })


class FundingSourceMissingError(APIException):
    """Raised when either party has no connected bank account."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Bank account not connected.'
    default_code = 'funding_source_missing'


class LoanNotActiveError(APIException):
    """Raised when a manual trigger targets a loan that is not active."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Loan is not active.'
    default_code = 'loan_not_active'


class TransferInitiationError(APIException):
    """Raised when the transfer gateway did not return a usable transfer."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Failed to create transfer.'
    default_code = 'transfer_initiation_failed'


class ScheduleUpdateError(APIException):
    """
    Raised when a schedule item cannot be marked paid after its transfer
    was initiated. Money has moved; the row needs manual reconciliation.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Failed to update payment schedule.'
    default_code = 'schedule_update_failed'


class BatchFetchError(APIException):
    """Raised when the due-payments query itself fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Auto-pay processing failed.'
    default_code = 'batch_fetch_failed'


def custom_exception_handler(exc, context):
    """
    Custom DRF exception handler that returns consistent error responses.

    Handles all DRF exceptions and adds logging for server errors.
    """
    response = exception_handler(exc, context)

    if response is not None:
        if response.status_code >= 500:
            logger.error(
                "Server error in %s: %s",
                context.get('view', 'unknown'),
                exc,
            )
        detail = response.data
        # DRF wraps plain-string details as {'detail': msg}
        if isinstance(detail, dict) and set(detail) == {'detail'}:
            detail = detail['detail']
        error_data = {
            'error': True,
            'status_code': response.status_code,
            'detail': detail,
        }
        response.data = error_data
    else:
        # Unhandled exceptions — log and return 500
        logger.exception(
            "Unhandled exception in %s",
            context.get('view', 'unknown'),
            exc_info=exc,
        )
        response = Response(
            {
                'error': True,
                'status_code': 500,
                'detail': 'An unexpected error occurred. Please try again later.',
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return response
