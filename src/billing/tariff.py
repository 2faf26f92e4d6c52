"""Usage Billing & Settlement — Tariff Calculator."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from src.ledger.models import TariffTier
from src.ledger.money import ZERO, Number, to_decimal

DEFAULT_THRESHOLD_UNITS = 10


@dataclass(frozen=True)
class CostBreakdown:
    """Monetary breakdown of one billed quantity."""

    usage_cost: Decimal
    base_fee: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {
            "usage_cost": str(self.usage_cost),
            "base_fee": str(self.base_fee),
            "total": str(self.total),
        }


def compute_usage_cost(
    quantity: Number,
    tier: TariffTier,
    threshold: int = DEFAULT_THRESHOLD_UNITS,
) -> CostBreakdown:
    """Price a consumption quantity against a two-step tariff tier.

    Units up to ``threshold`` are charged at the lower price, the rest at
    the upper price, and the tier's fixed base fee is added on top.
    The quantity is not clamped; callers validate it is non-negative.
    """
    qty = to_decimal(quantity)
    if qty <= threshold:
        usage_cost = qty * tier.price_below_threshold
    else:
        usage_cost = (
            threshold * tier.price_below_threshold
            + (qty - threshold) * tier.price_above_threshold
        )
    base_fee = tier.base_fee if tier.base_fee is not None else ZERO
    return CostBreakdown(
        usage_cost=usage_cost,
        base_fee=base_fee,
        total=usage_cost + base_fee,
    )
