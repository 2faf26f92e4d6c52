"""Usage Billing & Settlement.

Tariff and late-fee calculators, the periodic invoice lifecycle for
metered accounts, and pay-as-you-go settlement for wallet-funded plans.
"""

from .config import (
    BillingCadence,
    BillingConfig,
    DEFAULT_BILLING_CONFIG,
    PaymentMethod,
    PaymentStatus,
)
from .tariff import (
    CostBreakdown,
    compute_usage_cost,
)
from .late_fee import (
    compute_late_fee,
    days_between,
)
from .periods import (
    current_period,
    due_date_for_period,
    previous_period,
)
from .cadence import (
    CadenceStrategy,
    get_strategy,
    is_due,
)
from .locks import KeyedLock
from .invoices import (
    BatchItemResult,
    BatchOutcome,
    BatchSummary,
    InvoiceLifecycle,
    MonthlyReport,
    PaymentReceipt,
    UnpaidSummary,
)
from .settlement import (
    PayAsYouGoSettlement,
    SettlementKind,
    SettlementOutcome,
)
from .analytics import (
    CollectionStatus,
    PeriodConsumption,
    UsageAnalytics,
)

__all__ = [
    # Config
    "BillingCadence",
    "BillingConfig",
    "DEFAULT_BILLING_CONFIG",
    "PaymentMethod",
    "PaymentStatus",
    # Calculators
    "CostBreakdown",
    "compute_usage_cost",
    "compute_late_fee",
    "days_between",
    # Periods and cadence
    "current_period",
    "due_date_for_period",
    "previous_period",
    "CadenceStrategy",
    "get_strategy",
    "is_due",
    "KeyedLock",
    # Invoices
    "BatchItemResult",
    "BatchOutcome",
    "BatchSummary",
    "InvoiceLifecycle",
    "MonthlyReport",
    "PaymentReceipt",
    "UnpaidSummary",
    # Settlement
    "PayAsYouGoSettlement",
    "SettlementKind",
    "SettlementOutcome",
    # Analytics
    "CollectionStatus",
    "PeriodConsumption",
    "UsageAnalytics",
]
