"""
Auto-pay trigger views.

Views are thin; the processor does the work. The cron secret is
checked by CronSecretMiddleware before these run.
"""

import logging

from asgiref.sync import async_to_sync
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.payments.processor import AutoPayProcessor, run_manual_payment
from apps.payments.serializers import (
    AutoPayRunSerializer,
    ManualPaymentResponseSerializer,
    ManualPaymentSerializer,
)

logger = logging.getLogger(__name__)


class AutoPayView(APIView):
    """
    GET  /cron/auto-pay  run the scheduled batch
    POST /cron/auto-pay  charge one installment now
    """

    def get(self, request):
        """Handle the scheduled run."""
        result = async_to_sync(AutoPayProcessor().run)()

        serializer = AutoPayRunSerializer(result.as_dict())
        return Response(serializer.data, status=status.HTTP_200_OK)

    def post(self, request):
        """Handle a manual single-payment trigger."""
        serializer = ManualPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = async_to_sync(run_manual_payment)(
            loan_id=serializer.validated_data.get('loan_id'),
            payment_id=serializer.validated_data.get('payment_id'),
        )

        response_serializer = ManualPaymentResponseSerializer(result)
        return Response(response_serializer.data, status=status.HTTP_200_OK)
