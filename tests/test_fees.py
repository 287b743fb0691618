"""
Tests for platform fee calculation.
"""

from decimal import Decimal

from django.test import SimpleTestCase, override_settings

from apps.payments.fees import calculate_platform_fee, no_fee

PERCENTAGE_FEE = {
    'ENABLED': True,
    'TYPE': 'percentage',
    'PERCENTAGE': '2.5',
    'MIN_FEE': '0.50',
    'MAX_FEE': '25.00',
    'LABEL': 'Service Fee',
}


class PlatformFeeTests(SimpleTestCase):

    def test_fixed_fee(self):
        fee = calculate_platform_fee(Decimal('50.00'), {
            'ENABLED': True, 'TYPE': 'fixed', 'FIXED_AMOUNT': '1.50',
        })
        self.assertEqual(fee.platform_fee, Decimal('1.50'))
        self.assertEqual(fee.net_amount, Decimal('48.50'))
        self.assertEqual(fee.gross_amount, Decimal('50.00'))
        self.assertTrue(fee.fee_enabled)

    def test_percentage_fee(self):
        fee = calculate_platform_fee(Decimal('100.00'), PERCENTAGE_FEE)
        self.assertEqual(fee.platform_fee, Decimal('2.50'))
        self.assertEqual(fee.net_amount, Decimal('97.50'))

    def test_percentage_fee_rounds_half_up(self):
        fee = calculate_platform_fee(Decimal('30.10'), PERCENTAGE_FEE)
        # 2.5% of 30.10 is 0.7525
        self.assertEqual(fee.platform_fee, Decimal('0.75'))

    def test_percentage_fee_clamped(self):
        self.assertEqual(
            calculate_platform_fee(Decimal('10.00'), PERCENTAGE_FEE).platform_fee,
            Decimal('0.50'),
        )
        self.assertEqual(
            calculate_platform_fee(Decimal('5000.00'), PERCENTAGE_FEE).platform_fee,
            Decimal('25.00'),
        )

    def test_fee_never_exceeds_amount(self):
        fee = calculate_platform_fee(Decimal('1.00'), {
            'ENABLED': True, 'TYPE': 'fixed', 'FIXED_AMOUNT': '1.50',
        })
        self.assertEqual(fee.platform_fee, Decimal('1.00'))
        self.assertEqual(fee.net_amount, Decimal('0.00'))

    def test_disabled_fee(self):
        fee = calculate_platform_fee(Decimal('50.00'), {'ENABLED': False})
        self.assertEqual(fee, no_fee(Decimal('50.00')))
        self.assertEqual(fee.net_amount, Decimal('50.00'))
        self.assertEqual(fee.fee_label, 'No Fee')

    def test_unknown_fee_type(self):
        with self.assertRaises(ValueError):
            calculate_platform_fee(Decimal('50.00'), {'ENABLED': True, 'TYPE': 'tiered'})

    @override_settings(PLATFORM_FEE={'ENABLED': True, 'TYPE': 'fixed', 'FIXED_AMOUNT': '2.00'})
    def test_defaults_to_settings(self):
        self.assertEqual(calculate_platform_fee(Decimal('20.00')).platform_fee, Decimal('2.00'))

    def test_as_dict(self):
        fee = calculate_platform_fee(Decimal('50.00'), PERCENTAGE_FEE)
        self.assertEqual(fee.as_dict(), {
            'platform_fee': Decimal('1.25'),
            'gross_amount': Decimal('50.00'),
            'net_amount': Decimal('48.75'),
            'fee_type': 'percentage',
            'fee_label': 'Service Fee',
        })
