"""
Auto-pay serializers.
"""

from rest_framework import serializers


class ManualPaymentSerializer(serializers.Serializer):
    """Serializer for the manual single-payment trigger."""

    loan_id = serializers.IntegerField(
        min_value=1,
        required=False,
        allow_null=True,
        help_text="Charge the earliest unpaid installment of this loan.",
    )
    payment_id = serializers.IntegerField(
        min_value=1,
        required=False,
        allow_null=True,
        help_text="Charge this schedule item.",
    )

    def validate(self, attrs):
        if not attrs.get('loan_id') and not attrs.get('payment_id'):
            raise serializers.ValidationError('loan_id or payment_id required')
        return attrs


class AutoPayRunSerializer(serializers.Serializer):
    """Serializer for the batch run response."""

    success = serializers.BooleanField()
    date = serializers.DateField()
    processed = serializers.IntegerField()
    failed = serializers.IntegerField()
    skipped = serializers.IntegerField()
    errors = serializers.ListField(child=serializers.CharField())
    deferred = serializers.IntegerField(required=False)
    note = serializers.CharField(required=False)


class FeeBreakdownSerializer(serializers.Serializer):
    platform_fee = serializers.DecimalField(max_digits=10, decimal_places=2)
    gross_amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    net_amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    fee_type = serializers.CharField()
    fee_label = serializers.CharField()


class ManualPaymentResponseSerializer(serializers.Serializer):
    """Serializer for the manual trigger response."""

    success = serializers.BooleanField()
    payment_id = serializers.IntegerField()
    transfer_id = serializers.CharField()
    amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    amount_remaining = serializers.DecimalField(max_digits=15, decimal_places=2)
    fee = FeeBreakdownSerializer()
