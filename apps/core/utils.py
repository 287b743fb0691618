"""
Core utility functions for the Auto-Pay service.

Money and date helpers used across the application.
All money arithmetic uses Python's Decimal.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal('0.01')


def to_money(value) -> Decimal:
    """
    Coerce a value to a Decimal quantized to cents (ROUND_HALF_UP).

    Accepts Decimal, int, float or str. Floats go through str() so that
    0.1 becomes Decimal('0.10') rather than its binary expansion.
    """
    if value is None:
        return Decimal('0.00')
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_money(amount, currency: str = 'USD') -> str:
    """
    Format an amount for display in emails and notes.

    Examples:
        format_money(Decimal('1234.5')) → '$1,234.50'
        format_money(Decimal('1.5'), 'EUR') → 'EUR 1.50'
    """
    amount = to_money(amount)
    if currency == 'USD':
        return f'${amount:,.2f}'
    return f'{currency} {amount:,.2f}'


def days_between(start, end) -> int:
    """
    Whole days from start to end (negative when end is before start).

    Datetimes are reduced to their date part, so this equals
    floor((end - start) / 1 day) for midnight-aligned due dates.
    """
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    if not isinstance(start, date) or not isinstance(end, date):
        raise TypeError("days_between expects date or datetime arguments.")
    return (end - start).days


def days_overdue(due_date, today) -> int:
    """Days past due, clamped to zero for payments not yet late."""
    return max(0, days_between(due_date, today))
