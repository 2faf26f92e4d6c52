"""Usage Billing & Settlement — Late-Fee Accrual (denda)."""

from datetime import datetime
from decimal import Decimal

from src.ledger.money import ZERO, Number, round_whole, to_decimal

LATE_FEE_RATE_PER_MONTH = Decimal("0.02")
DAYS_PER_MONTH = 30


def compute_late_fee(
    principal: Number,
    days_late: int,
    rate_per_month: Decimal = LATE_FEE_RATE_PER_MONTH,
    days_per_month: int = DAYS_PER_MONTH,
) -> Decimal:
    """Penalty for paying ``days_late`` days after the due date.

    Every started 30-day month costs 2% of the principal; the result is
    rounded half-up to a whole amount. Zero or negative lateness is free.
    """
    if days_late <= 0:
        return ZERO
    months_late = -(-days_late // days_per_month)
    return round_whole(to_decimal(principal) * rate_per_month * months_late)


def days_between(due_date: datetime, now: datetime) -> int:
    """Whole days elapsed from due_date to now, floored (negative if not yet due)."""
    return (now - due_date).days
