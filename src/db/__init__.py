"""Database package for the Tirta billing engine."""

from src.db.base import Base
from src.db.engine import (
    AsyncSessionLocal,
    SyncSessionLocal,
    dispose_engines,
    get_async_engine,
    get_sync_engine,
)
from src.db.models import (
    CustomerRecord,
    InvoiceRecord,
    LedgerTransactionRecord,
    MeterAccountRecord,
    NotificationRecord,
    SubscriptionRecord,
    TariffTierRecord,
    UsageLedgerEntryRecord,
    WalletRecord,
    WaterCreditPlanRecord,
)

__all__ = [
    "Base",
    "get_async_engine",
    "get_sync_engine",
    "dispose_engines",
    "AsyncSessionLocal",
    "SyncSessionLocal",
    "CustomerRecord",
    "InvoiceRecord",
    "LedgerTransactionRecord",
    "MeterAccountRecord",
    "NotificationRecord",
    "SubscriptionRecord",
    "TariffTierRecord",
    "UsageLedgerEntryRecord",
    "WalletRecord",
    "WaterCreditPlanRecord",
]
