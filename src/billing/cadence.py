"""Usage Billing & Settlement — Billing cadence strategies.

Each cadence has its own boundary rule. Daily, monthly and yearly cadences
are due on a calendar rollover in the billing timezone; the weekly cadence
is due once seven full days have elapsed.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, tzinfo
from typing import Dict, Optional

from .config import BillingCadence


class CadenceStrategy(ABC):
    """Boundary rule deciding whether a new billing window has started."""

    cadence: BillingCadence

    @abstractmethod
    def is_due(self, last: datetime, now: datetime) -> bool:
        """Both datetimes are already expressed in the billing timezone."""


class DailyCadence(CadenceStrategy):
    """Due when the day-of-month or the month differs.

    The year is not compared: the same day and month one year apart
    counts as not due.
    """

    cadence = BillingCadence.DAILY

    def is_due(self, last: datetime, now: datetime) -> bool:
        return now.day != last.day or now.month != last.month


class WeeklyCadence(CadenceStrategy):
    """Due once at least 7x24h have elapsed."""

    cadence = BillingCadence.WEEKLY
    period = timedelta(days=7)

    def is_due(self, last: datetime, now: datetime) -> bool:
        return now - last >= self.period


class MonthlyCadence(CadenceStrategy):
    cadence = BillingCadence.MONTHLY

    def is_due(self, last: datetime, now: datetime) -> bool:
        return now.month != last.month or now.year != last.year


class YearlyCadence(CadenceStrategy):
    cadence = BillingCadence.YEARLY

    def is_due(self, last: datetime, now: datetime) -> bool:
        return now.year != last.year


CADENCE_STRATEGIES: Dict[BillingCadence, CadenceStrategy] = {
    strategy.cadence: strategy
    for strategy in (DailyCadence(), WeeklyCadence(), MonthlyCadence(), YearlyCadence())
}


def get_strategy(cadence: BillingCadence) -> CadenceStrategy:
    return CADENCE_STRATEGIES[cadence]


def is_due(
    last_settled_at: Optional[datetime],
    cadence: BillingCadence,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> bool:
    """Whether a subscription last settled at ``last_settled_at`` is due again.

    A subscription that has never settled is always due.
    """
    if last_settled_at is None:
        return True
    if tz is not None:
        last_settled_at = last_settled_at.astimezone(tz)
        now = now.astimezone(tz)
    return get_strategy(cadence).is_due(last_settled_at, now)
