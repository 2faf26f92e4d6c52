"""Usage Billing & Settlement — Billing periods.

A period is a calendar month written ``YYYY-MM``.
"""

import re
from datetime import datetime, tzinfo
from typing import Optional, Tuple

from src.errors import ErrorCode, ValidationError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_period(period: str) -> Tuple[int, int]:
    """Split ``YYYY-MM`` into (year, month), validating the month."""
    match = _PERIOD_RE.match(period or "")
    if not match:
        raise ValidationError(
            f"Invalid billing period: {period!r} (expected YYYY-MM)",
            error_code=ErrorCode.INVALID_PERIOD,
            field="period",
        )
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(
            f"Invalid billing period month: {period!r}",
            error_code=ErrorCode.INVALID_PERIOD,
            field="period",
        )
    return year, month


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def shift_period(period: str, months: int) -> str:
    """Move a period forward (or backward) by a number of months."""
    year, month = parse_period(period)
    index = year * 12 + (month - 1) + months
    return format_period(index // 12, index % 12 + 1)


def previous_period(period: str) -> str:
    return shift_period(period, -1)


def current_period(now: datetime, tz: Optional[tzinfo] = None) -> str:
    """Period containing ``now`` in the billing timezone."""
    local = now.astimezone(tz) if tz is not None else now
    return format_period(local.year, local.month)


def due_date_for_period(period: str, tz: tzinfo, due_day: int = 25) -> datetime:
    """Due date of a period's invoice: ``due_day`` of the following month, local midnight."""
    year, month = parse_period(shift_period(period, 1))
    return datetime(year, month, due_day, tzinfo=tz)
