"""Ledger — Money helpers.

Amounts and quantities are Decimal end to end; binary floats never reach
the ledger.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, getcontext
from typing import Union

getcontext().prec = 28

Q2 = Decimal("0.01")
Q0 = Decimal("1")
ZERO = Decimal("0")

Number = Union[Decimal, int, str, float]


def to_decimal(value: Number) -> Decimal:
    """Coerce a number to Decimal. Floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        raise TypeError("Amount must not be None")
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    """Round to minor units (two places), half-up."""
    return value.quantize(Q2, rounding=ROUND_HALF_UP)


def round_whole(value: Decimal) -> Decimal:
    """Round to a whole amount, half-up."""
    return value.quantize(Q0, rounding=ROUND_HALF_UP)


def floor_units(value: Decimal) -> Decimal:
    """Largest whole number not above a non-negative value."""
    return value.quantize(Q0, rounding=ROUND_DOWN)


def format_rupiah(value: Number) -> str:
    """Render an amount the way customers read it, e.g. ``Rp30.000``."""
    amount = round_whole(to_decimal(value))
    sign = "-" if amount < 0 else ""
    return f"{sign}Rp{abs(int(amount)):,}".replace(",", ".")
