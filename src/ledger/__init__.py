"""Account/Ledger.

Persisted entities, the authoritative balance and counter adjustments,
and the BillingStore persistence contract with its in-memory and SQL
implementations.
"""

from src.ledger.money import (
    ZERO,
    floor_units,
    format_rupiah,
    quantize_money,
    round_whole,
    to_decimal,
)
from src.ledger.models import (
    BillingCadence,
    Customer,
    Invoice,
    LedgerTransaction,
    MeterAccount,
    PaymentStatus,
    Subscription,
    TariffTier,
    TransactionCategory,
    UsageLedgerEntry,
    Wallet,
    WaterCreditPlan,
    new_id,
)
from src.ledger.accounts import (
    adjust_unpaid_consumption,
    advance_lifetime_reading,
    convert_conservation_tokens,
    credit_tokens,
    credit_wallet,
    debit_wallet,
    ingest_meter_reading,
)
from src.ledger.store import (
    BillingStore,
    InMemoryBillingStore,
)

__all__ = [
    # Money
    "ZERO",
    "floor_units",
    "format_rupiah",
    "quantize_money",
    "round_whole",
    "to_decimal",
    # Models
    "BillingCadence",
    "Customer",
    "Invoice",
    "LedgerTransaction",
    "MeterAccount",
    "PaymentStatus",
    "Subscription",
    "TariffTier",
    "TransactionCategory",
    "UsageLedgerEntry",
    "Wallet",
    "WaterCreditPlan",
    "new_id",
    # Accounts
    "adjust_unpaid_consumption",
    "advance_lifetime_reading",
    "convert_conservation_tokens",
    "credit_tokens",
    "credit_wallet",
    "debit_wallet",
    "ingest_meter_reading",
    # Store
    "BillingStore",
    "InMemoryBillingStore",
]
