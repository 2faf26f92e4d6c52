"""Ledger — Persistence contract and in-memory store.

``BillingStore`` is the async data-access contract the billing services
depend on. ``transaction()`` opens a unit of work exposing the same
methods: writes made through it become visible together on commit and
are discarded if the block raises.
"""

import copy
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Dict,
    Hashable,
    Iterator,
    List,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)

from src.errors import AlreadyExistsError, ConcurrentUpdateError
from src.ledger.models import (
    Customer,
    Invoice,
    LedgerTransaction,
    MeterAccount,
    PaymentStatus,
    Subscription,
    TariffTier,
    UsageLedgerEntry,
    Wallet,
    WaterCreditPlan,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class BillingStore(Protocol):
    """Async data access used by the invoice lifecycle and settlement."""

    async def get_customer(self, customer_id: str) -> Optional[Customer]: ...

    async def get_meter(self, meter_id: str) -> Optional[MeterAccount]: ...

    async def list_meters(self, active_only: bool = False) -> List[MeterAccount]: ...

    async def save_meter(self, meter: MeterAccount) -> None: ...

    async def get_tariff(self, tier_id: str) -> Optional[TariffTier]: ...

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]: ...

    async def find_invoice(self, meter_id: str, period: str) -> Optional[Invoice]: ...

    async def insert_invoice(self, invoice: Invoice) -> None:
        """Persist a new invoice; raises AlreadyExistsError on a duplicate (meter, period)."""
        ...

    async def save_invoice(self, invoice: Invoice) -> None: ...

    async def delete_invoice(self, invoice_id: str) -> bool: ...

    async def list_invoices(
        self,
        customer_id: Optional[str] = None,
        meter_id: Optional[str] = None,
        period: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        overdue: Optional[bool] = None,
        due_before: Optional[datetime] = None,
    ) -> List[Invoice]: ...

    async def get_plan(self, plan_id: str) -> Optional[WaterCreditPlan]: ...

    async def save_plan(self, plan: WaterCreditPlan) -> None: ...

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]: ...

    async def find_subscription(self, customer_id: str, plan_id: str) -> Optional[Subscription]: ...

    async def insert_subscription(self, subscription: Subscription) -> None: ...

    async def save_subscription(self, subscription: Subscription) -> None:
        """Write if the stored version still equals ``subscription.version``.

        Bumps the version on success; raises ConcurrentUpdateError otherwise.
        """
        ...

    async def get_wallet(self, owner_id: str) -> Optional[Wallet]: ...

    async def save_wallet(self, wallet: Wallet) -> None: ...

    async def append_usage(self, entry: UsageLedgerEntry) -> None: ...

    async def list_usage(
        self,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        meter_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageLedgerEntry]: ...

    async def append_transaction(self, transaction: LedgerTransaction) -> None: ...

    async def list_transactions(
        self,
        payer_id: Optional[str] = None,
        payee_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LedgerTransaction]: ...

    def transaction(self) -> AsyncContextManager["BillingStore"]:
        """Open a unit of work: commit on normal exit, abort on exception."""
        ...


# ── In-memory implementation ─────────────────────────────────────────

_DELETED = object()

# table name -> (entity type, key attribute)
_TABLES: Dict[str, Tuple[type, str]] = {
    "customers": (Customer, "customer_id"),
    "meters": (MeterAccount, "meter_id"),
    "tariffs": (TariffTier, "tier_id"),
    "invoices": (Invoice, "invoice_id"),
    "plans": (WaterCreditPlan, "plan_id"),
    "subscriptions": (Subscription, "subscription_id"),
    "wallets": (Wallet, "owner_id"),
}
_LOGS: Dict[str, type] = {
    "usage": UsageLedgerEntry,
    "transactions": LedgerTransaction,
}


def _in_range(ts: datetime, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start and ts < start:
        return False
    if end and ts > end:
        return False
    return True


def _stale(subscription_id: str, version: Optional[int]) -> ConcurrentUpdateError:
    return ConcurrentUpdateError(
        f"Subscription {subscription_id} changed since version {version}",
        resource_type="subscription",
        resource_id=subscription_id,
    )


class _InMemoryOps:
    """Query/mutation methods written against four storage primitives."""

    # Primitives implemented by the store and the unit of work.
    def _read(self, table: str, key: Hashable) -> Any:
        raise NotImplementedError

    def _write(self, table: str, key: Hashable, value: Any) -> None:
        raise NotImplementedError

    def _rows(self, table: str) -> Iterator[Any]:
        raise NotImplementedError

    def _append(self, log: str, entry: Any) -> None:
        raise NotImplementedError

    def _entries(self, log: str) -> Iterator[Any]:
        raise NotImplementedError

    def _get(self, table: str, key: str) -> Any:
        value = self._read(table, key)
        return copy.deepcopy(value) if value is not None else None

    def _put(self, table: str, entity: Any) -> None:
        key_attr = _TABLES[table][1]
        self._write(table, getattr(entity, key_attr), copy.deepcopy(entity))

    # ── Customers / meters / tariffs ──

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self._get("customers", customer_id)

    async def get_meter(self, meter_id: str) -> Optional[MeterAccount]:
        return self._get("meters", meter_id)

    async def list_meters(self, active_only: bool = False) -> List[MeterAccount]:
        meters = [copy.deepcopy(m) for m in self._rows("meters")]
        if active_only:
            meters = [m for m in meters if m.active]
        return sorted(meters, key=lambda m: m.account_number)

    async def save_meter(self, meter: MeterAccount) -> None:
        self._put("meters", meter)

    async def get_tariff(self, tier_id: str) -> Optional[TariffTier]:
        return self._get("tariffs", tier_id)

    # ── Invoices ──

    def _find_invoice_row(self, meter_id: str, period: str) -> Optional[Invoice]:
        for inv in self._rows("invoices"):
            if inv.meter_id == meter_id and inv.period == period:
                return inv
        return None

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return self._get("invoices", invoice_id)

    async def find_invoice(self, meter_id: str, period: str) -> Optional[Invoice]:
        found = self._find_invoice_row(meter_id, period)
        return copy.deepcopy(found) if found else None

    async def insert_invoice(self, invoice: Invoice) -> None:
        if self._find_invoice_row(invoice.meter_id, invoice.period) is not None:
            raise AlreadyExistsError(
                f"Invoice already exists for meter {invoice.meter_id} period {invoice.period}"
            )
        self._put("invoices", invoice)

    async def save_invoice(self, invoice: Invoice) -> None:
        self._put("invoices", invoice)

    async def delete_invoice(self, invoice_id: str) -> bool:
        if self._read("invoices", invoice_id) is None:
            return False
        self._write("invoices", invoice_id, _DELETED)
        return True

    async def list_invoices(
        self,
        customer_id: Optional[str] = None,
        meter_id: Optional[str] = None,
        period: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        overdue: Optional[bool] = None,
        due_before: Optional[datetime] = None,
    ) -> List[Invoice]:
        invoices = list(self._rows("invoices"))
        if customer_id:
            invoices = [i for i in invoices if i.customer_id == customer_id]
        if meter_id:
            invoices = [i for i in invoices if i.meter_id == meter_id]
        if period:
            invoices = [i for i in invoices if i.period == period]
        if status is not None:
            invoices = [i for i in invoices if i.status == status]
        if overdue is not None:
            invoices = [i for i in invoices if i.overdue == overdue]
        if due_before is not None:
            invoices = [i for i in invoices if i.due_date < due_before]
        return [
            copy.deepcopy(i)
            for i in sorted(invoices, key=lambda i: i.created_at, reverse=True)
        ]

    # ── Plans / subscriptions / wallets ──

    async def get_plan(self, plan_id: str) -> Optional[WaterCreditPlan]:
        return self._get("plans", plan_id)

    async def save_plan(self, plan: WaterCreditPlan) -> None:
        self._put("plans", plan)

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self._get("subscriptions", subscription_id)

    async def find_subscription(self, customer_id: str, plan_id: str) -> Optional[Subscription]:
        for sub in self._rows("subscriptions"):
            if sub.customer_id == customer_id and sub.plan_id == plan_id:
                return copy.deepcopy(sub)
        return None

    async def insert_subscription(self, subscription: Subscription) -> None:
        existing = await self.find_subscription(subscription.customer_id, subscription.plan_id)
        if existing is not None:
            raise AlreadyExistsError(
                f"Subscription already exists for customer {subscription.customer_id} "
                f"plan {subscription.plan_id}"
            )
        self._put("subscriptions", subscription)

    async def save_subscription(self, subscription: Subscription) -> None:
        current = self._read("subscriptions", subscription.subscription_id)
        if current is not None and current.version != subscription.version:
            raise _stale(subscription.subscription_id, subscription.version)
        subscription.version += 1
        self._put("subscriptions", subscription)

    async def get_wallet(self, owner_id: str) -> Optional[Wallet]:
        return self._get("wallets", owner_id)

    async def save_wallet(self, wallet: Wallet) -> None:
        self._put("wallets", wallet)

    # ── Append-only logs ──

    async def append_usage(self, entry: UsageLedgerEntry) -> None:
        self._append("usage", entry)

    async def list_usage(
        self,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        meter_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageLedgerEntry]:
        entries = [e for e in self._entries("usage") if _in_range(e.recorded_at, start, end)]
        if customer_id:
            entries = [e for e in entries if e.customer_id == customer_id]
        if subscription_id:
            entries = [e for e in entries if e.subscription_id == subscription_id]
        if meter_id:
            entries = [e for e in entries if e.meter_id == meter_id]
        return entries

    async def append_transaction(self, transaction: LedgerTransaction) -> None:
        self._append("transactions", transaction)

    async def list_transactions(
        self,
        payer_id: Optional[str] = None,
        payee_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LedgerTransaction]:
        txs = [t for t in self._entries("transactions") if _in_range(t.created_at, start, end)]
        if payer_id:
            txs = [t for t in txs if t.payer_id == payer_id]
        if payee_id:
            txs = [t for t in txs if t.payee_id == payee_id]
        return txs


class InMemoryBillingStore(_InMemoryOps):
    """Dict-backed BillingStore for tests, demos and single-process use.

    Entities are copied on the way in and out, so a caller mutating a
    fetched object changes nothing until it saves it.

    Example:
        store = InMemoryBillingStore()
        store.load(customer, tier, meter)
        async with store.transaction() as tx:
            wallet = await tx.get_wallet("cust-1")
            ...
            await tx.save_wallet(wallet)
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[Hashable, Any]] = {name: {} for name in _TABLES}
        self._logs: Dict[str, List[Any]] = {name: [] for name in _LOGS}
        self.commits = 0
        self.aborts = 0

    def _read(self, table: str, key: Hashable) -> Any:
        return self._tables[table].get(key)

    def _write(self, table: str, key: Hashable, value: Any) -> None:
        if value is _DELETED:
            self._tables[table].pop(key, None)
        else:
            self._tables[table][key] = value

    def _rows(self, table: str) -> Iterator[Any]:
        return iter(list(self._tables[table].values()))

    def _append(self, log: str, entry: Any) -> None:
        self._logs[log].append(entry)

    def _entries(self, log: str) -> Iterator[Any]:
        return iter(list(self._logs[log]))

    def load(self, *entities: Any) -> "InMemoryBillingStore":
        """Seed entities synchronously, dispatching on their type."""
        for entity in entities:
            for table, (entity_type, _) in _TABLES.items():
                if isinstance(entity, entity_type):
                    self._put(table, entity)
                    break
            else:
                for log, entity_type in _LOGS.items():
                    if isinstance(entity, entity_type):
                        self._append(log, entity)
                        break
                else:
                    raise TypeError(f"Unsupported entity: {type(entity).__name__}")
        return self

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["_InMemoryUnitOfWork"]:
        uow = _InMemoryUnitOfWork(self)
        try:
            yield uow
        except BaseException:
            self.aborts += 1
            logger.debug("In-memory transaction aborted, %d staged writes discarded", len(uow))
            raise
        uow.commit()
        self.commits += 1


class _InMemoryUnitOfWork(_InMemoryOps):
    """Staged writes over an InMemoryBillingStore; applied atomically on commit."""

    def __init__(self, store: InMemoryBillingStore) -> None:
        self._store = store
        self._staged: Dict[Tuple[str, Hashable], Any] = {}
        self._appends: List[Tuple[str, Any]] = []
        # subscription_id -> committed version seen before the first staged write
        self._base_versions: Dict[Hashable, Optional[int]] = {}

    def __len__(self) -> int:
        return len(self._staged) + len(self._appends)

    def _read(self, table: str, key: Hashable) -> Any:
        staged = self._staged.get((table, key))
        if staged is _DELETED:
            return None
        if staged is not None:
            return staged
        return self._store._read(table, key)

    def _write(self, table: str, key: Hashable, value: Any) -> None:
        if table == "subscriptions" and key not in self._base_versions:
            committed = self._store._read(table, key)
            self._base_versions[key] = committed.version if committed is not None else None
        self._staged[(table, key)] = value

    def _rows(self, table: str) -> Iterator[Any]:
        key_attr = _TABLES[table][1]
        merged = {getattr(row, key_attr): row for row in self._store._rows(table)}
        for (staged_table, key), value in self._staged.items():
            if staged_table != table:
                continue
            if value is _DELETED:
                merged.pop(key, None)
            else:
                merged[key] = value
        return iter(list(merged.values()))

    def _append(self, log: str, entry: Any) -> None:
        self._appends.append((log, entry))

    def _entries(self, log: str) -> Iterator[Any]:
        staged = [entry for name, entry in self._appends if name == log]
        return iter(list(self._store._entries(log)) + staged)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["_InMemoryUnitOfWork"]:
        # Nested units of work join the enclosing one.
        yield self

    def commit(self) -> None:
        for key, base in self._base_versions.items():
            committed = self._store._read("subscriptions", key)
            if (committed.version if committed is not None else None) != base:
                raise _stale(key, base)
        # Re-check invoice uniqueness against writes committed since staging.
        for (table, key), value in self._staged.items():
            if table != "invoices" or value is _DELETED:
                continue
            for row in self._store._rows("invoices"):
                if (
                    row.invoice_id != key
                    and row.meter_id == value.meter_id
                    and row.period == value.period
                ):
                    raise AlreadyExistsError(
                        f"Invoice already exists for meter {value.meter_id} period {value.period}"
                    )
        for (table, key), value in self._staged.items():
            self._store._write(table, key, value)
        for log, entry in self._appends:
            self._store._append(log, entry)
        self._staged.clear()
        self._appends.clear()
        self._base_versions.clear()
