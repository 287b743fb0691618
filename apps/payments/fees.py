"""
Platform fee calculation.

The payer is charged the gross amount; the lender receives the gross
amount minus the platform fee.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.conf import settings

from apps.core.utils import to_money

FEE_TYPE_FIXED = 'fixed'
FEE_TYPE_PERCENTAGE = 'percentage'


@dataclass(frozen=True)
class FeeCalculation:
    gross_amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    fee_type: str
    fee_label: str
    fee_description: str
    fee_enabled: bool

    def as_dict(self) -> dict:
        """Fee breakdown as returned by the manual trigger."""
        return {
            'platform_fee': self.platform_fee,
            'gross_amount': self.gross_amount,
            'net_amount': self.net_amount,
            'fee_type': self.fee_type,
            'fee_label': self.fee_label,
        }


def no_fee(amount) -> FeeCalculation:
    amount = to_money(amount)
    return FeeCalculation(
        gross_amount=amount,
        platform_fee=Decimal('0.00'),
        net_amount=amount,
        fee_type=FEE_TYPE_FIXED,
        fee_label='No Fee',
        fee_description='Fee skipped',
        fee_enabled=False,
    )


def calculate_platform_fee(amount, fee_settings: Optional[dict] = None) -> FeeCalculation:
    """
    Calculate the platform fee for a transfer amount.

    Fixed fees are charged as-is. Percentage fees are clamped to
    MIN_FEE / MAX_FEE. The fee never exceeds the amount itself, so the
    net amount is never negative.

    Args:
        amount: Gross transfer amount.
        fee_settings: Dict shaped like settings.PLATFORM_FEE; defaults to it.

    Returns:
        FeeCalculation with every money value rounded to cents.
    """
    fee_settings = settings.PLATFORM_FEE if fee_settings is None else fee_settings
    amount = to_money(amount)

    if not fee_settings.get('ENABLED', False):
        return no_fee(amount)

    fee_type = fee_settings.get('TYPE', FEE_TYPE_FIXED)
    if fee_type == FEE_TYPE_FIXED:
        fee = Decimal(str(fee_settings.get('FIXED_AMOUNT', '0')))
    elif fee_type == FEE_TYPE_PERCENTAGE:
        fee = amount * Decimal(str(fee_settings.get('PERCENTAGE', '0'))) / Decimal('100')
        min_fee = Decimal(str(fee_settings.get('MIN_FEE') or '0'))
        max_fee = Decimal(str(fee_settings.get('MAX_FEE') or '0'))
        if min_fee and fee < min_fee:
            fee = min_fee
        if max_fee and fee > max_fee:
            fee = max_fee
    else:
        raise ValueError(f"Unknown platform fee type '{fee_type}'.")

    fee = min(to_money(fee), amount)

    return FeeCalculation(
        gross_amount=amount,
        platform_fee=fee,
        net_amount=amount - fee,
        fee_type=fee_type,
        fee_label=fee_settings.get('LABEL', 'Service Fee'),
        fee_description=fee_settings.get('DESCRIPTION', ''),
        fee_enabled=True,
    )
