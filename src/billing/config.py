"""Usage Billing & Settlement — Configuration."""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from src.ledger.models import BillingCadence, PaymentStatus


class PaymentMethod(Enum):
    """Common payment methods; any string is accepted by the engine."""

    MANUAL = "MANUAL"
    TRANSFER = "TRANSFER"
    EWALLET = "EWALLET"
    GATEWAY = "GATEWAY"


@dataclass
class BillingConfig:
    """Billing policy constants."""

    tariff_threshold_units: int = 10
    late_fee_rate_per_month: Decimal = Decimal("0.02")
    late_fee_days_per_month: int = 30
    due_day_of_month: int = 25
    token_conversion_rate: Decimal = Decimal("90")
    timezone: str = "Asia/Jakarta"
    currency: str = "IDR"
    batch_concurrency: int = 8
    batch_item_timeout_seconds: Optional[float] = 30.0
    # Re-reads after losing a subscription version race.
    settlement_retry_attempts: int = 5
    frontend_url: str = "http://localhost:3000"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_settings(cls, settings) -> "BillingConfig":
        """Build the policy from application settings."""
        return cls(
            tariff_threshold_units=settings.tariff_threshold_units,
            late_fee_rate_per_month=Decimal(settings.late_fee_rate_per_month),
            late_fee_days_per_month=settings.late_fee_days_per_month,
            due_day_of_month=settings.due_day_of_month,
            token_conversion_rate=Decimal(settings.token_conversion_rate),
            timezone=settings.billing_timezone,
            currency=settings.currency,
            batch_concurrency=settings.batch_concurrency,
            batch_item_timeout_seconds=settings.batch_item_timeout_seconds,
            settlement_retry_attempts=settings.settlement_retry_attempts,
            frontend_url=settings.frontend_url,
        )


DEFAULT_BILLING_CONFIG = BillingConfig()

__all__ = [
    "BillingCadence",
    "BillingConfig",
    "DEFAULT_BILLING_CONFIG",
    "PaymentMethod",
    "PaymentStatus",
]
