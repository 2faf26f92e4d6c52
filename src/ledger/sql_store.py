"""Ledger — SQLAlchemy implementation of the BillingStore protocol.

Each unit of work is one ``AsyncSession`` inside ``session.begin()``:
commit on normal exit, rollback on exception. Rows that take part in
read-modify-write cycles are read ``FOR UPDATE`` (ignored on SQLite).
Timestamps are written in UTC and read back timezone-aware.
Subscriptions carry a version column and are written compare-and-swap,
so two workers settling the same window cannot both commit, even on
SQLite where row locks are not available.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, List, Optional, Type

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.db.base import Base
from src.db.models import (
    CustomerRecord,
    InvoiceRecord,
    LedgerTransactionRecord,
    MeterAccountRecord,
    SubscriptionRecord,
    TariffTierRecord,
    UsageLedgerEntryRecord,
    WalletRecord,
    WaterCreditPlanRecord,
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

# SQLSTATE for unique_violation; asyncpg reports it as .sqlstate, psycopg2 as .pgcode.
_UNIQUE_VIOLATION = "23505"


def _to_column(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc)
    return value


def _from_column(value: Any, annotation: Any) -> Any:
    if value is None:
        return None
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return annotation(value)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_unique_violation(error: IntegrityError) -> bool:
    """True for unique and primary-key violations only.

    Foreign-key, CHECK and NOT NULL failures are real faults, not
    "already exists" outcomes, and must keep propagating.
    """
    orig = error.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate:
        return sqlstate == _UNIQUE_VIOLATION
    # sqlite3 has no SQLSTATE; its message names the constraint kind.
    return "UNIQUE constraint failed" in str(orig)


def column_values(entity: Any, exclude: tuple = ()) -> dict:
    return {
        f.name: _to_column(getattr(entity, f.name))
        for f in fields(entity)
        if f.name not in exclude
    }


def to_record(entity: Any, record_cls: Type[Base], row: Optional[Base] = None) -> Base:
    """Copy dataclass fields onto an ORM row (new or existing)."""
    row = row if row is not None else record_cls()
    for f in fields(entity):
        setattr(row, f.name, _to_column(getattr(entity, f.name)))
    return row


def from_record(row: Base, entity_cls: Type) -> Any:
    return entity_cls(**{
        f.name: _from_column(getattr(row, f.name), f.type)
        for f in fields(entity_cls)
    })


class SqlUnitOfWork:
    """BillingStore operations bound to one open session/transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── helpers ──

    async def _get_locked(self, record_cls, entity_cls, column, key):
        stmt = select(record_cls).where(column == key).with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return from_record(row, entity_cls) if row is not None else None

    async def _upsert(self, record_cls, entity) -> None:
        pk_name = record_cls.__mapper__.primary_key[0].name
        row = await self.session.get(record_cls, getattr(entity, pk_name))
        if row is None:
            self.session.add(to_record(entity, record_cls))
        else:
            to_record(entity, record_cls, row)

    async def _insert_unique(self, record_cls, entity, message: str) -> None:
        self.session.add(to_record(entity, record_cls))
        try:
            await self.session.flush()
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            logger.debug("Unique constraint violated: %s", e.orig)
            raise AlreadyExistsError(message) from e

    async def _all(self, stmt, entity_cls) -> list:
        rows = (await self.session.execute(stmt)).scalars().all()
        return [from_record(r, entity_cls) for r in rows]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SqlUnitOfWork"]:
        # Nested units of work join the enclosing transaction.
        yield self

    # ── Customers / meters / tariffs ──

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        row = await self.session.get(CustomerRecord, customer_id)
        return from_record(row, Customer) if row is not None else None

    async def get_meter(self, meter_id: str) -> Optional[MeterAccount]:
        return await self._get_locked(
            MeterAccountRecord, MeterAccount, MeterAccountRecord.meter_id, meter_id,
        )

    async def list_meters(self, active_only: bool = False) -> List[MeterAccount]:
        stmt = select(MeterAccountRecord).order_by(MeterAccountRecord.account_number)
        if active_only:
            stmt = stmt.where(MeterAccountRecord.active.is_(True))
        return await self._all(stmt, MeterAccount)

    async def save_meter(self, meter: MeterAccount) -> None:
        await self._upsert(MeterAccountRecord, meter)

    async def get_tariff(self, tier_id: str) -> Optional[TariffTier]:
        row = await self.session.get(TariffTierRecord, tier_id)
        return from_record(row, TariffTier) if row is not None else None

    # ── Invoices ──

    async def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        return await self._get_locked(
            InvoiceRecord, Invoice, InvoiceRecord.invoice_id, invoice_id,
        )

    async def find_invoice(self, meter_id: str, period: str) -> Optional[Invoice]:
        stmt = select(InvoiceRecord).where(
            InvoiceRecord.meter_id == meter_id,
            InvoiceRecord.period == period,
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return from_record(row, Invoice) if row is not None else None

    async def insert_invoice(self, invoice: Invoice) -> None:
        await self._insert_unique(
            InvoiceRecord, invoice,
            f"Invoice already exists for meter {invoice.meter_id} period {invoice.period}",
        )

    async def save_invoice(self, invoice: Invoice) -> None:
        await self._upsert(InvoiceRecord, invoice)

    async def delete_invoice(self, invoice_id: str) -> bool:
        row = await self.session.get(InvoiceRecord, invoice_id)
        if row is None:
            return False
        await self.session.delete(row)
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
        stmt = select(InvoiceRecord).order_by(InvoiceRecord.created_at.desc())
        if customer_id:
            stmt = stmt.where(InvoiceRecord.customer_id == customer_id)
        if meter_id:
            stmt = stmt.where(InvoiceRecord.meter_id == meter_id)
        if period:
            stmt = stmt.where(InvoiceRecord.period == period)
        if status is not None:
            stmt = stmt.where(InvoiceRecord.status == status.value)
        if overdue is not None:
            stmt = stmt.where(InvoiceRecord.overdue.is_(overdue))
        if due_before is not None:
            stmt = stmt.where(InvoiceRecord.due_date < _to_column(due_before))
        return await self._all(stmt, Invoice)

    # ── Plans / subscriptions / wallets ──

    async def get_plan(self, plan_id: str) -> Optional[WaterCreditPlan]:
        return await self._get_locked(
            WaterCreditPlanRecord, WaterCreditPlan, WaterCreditPlanRecord.plan_id, plan_id,
        )

    async def save_plan(self, plan: WaterCreditPlan) -> None:
        await self._upsert(WaterCreditPlanRecord, plan)

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return await self._get_locked(
            SubscriptionRecord, Subscription, SubscriptionRecord.subscription_id, subscription_id,
        )

    async def find_subscription(self, customer_id: str, plan_id: str) -> Optional[Subscription]:
        stmt = select(SubscriptionRecord).where(
            SubscriptionRecord.customer_id == customer_id,
            SubscriptionRecord.plan_id == plan_id,
        ).with_for_update()
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        return from_record(row, Subscription) if row is not None else None

    async def insert_subscription(self, subscription: Subscription) -> None:
        await self._insert_unique(
            SubscriptionRecord, subscription,
            f"Subscription already exists for customer {subscription.customer_id} "
            f"plan {subscription.plan_id}",
        )

    async def save_subscription(self, subscription: Subscription) -> None:
        """Compare-and-swap on ``version``, which is bumped on success.

        Raises:
            ConcurrentUpdateError: the row was rewritten since it was read.
        """
        r = SubscriptionRecord
        result = await self.session.execute(
            update(r)
            .where(
                r.subscription_id == subscription.subscription_id,
                r.version == subscription.version,
            )
            .values(
                version=subscription.version + 1,
                **column_values(subscription, exclude=("subscription_id", "version")),
            )
        )
        if result.rowcount == 1:
            subscription.version += 1
            return
        if await self.session.get(r, subscription.subscription_id) is None:
            self.session.add(to_record(subscription, r))
            return
        raise ConcurrentUpdateError(
            f"Subscription {subscription.subscription_id} changed since version "
            f"{subscription.version}",
            resource_type="subscription",
            resource_id=subscription.subscription_id,
        )

    async def get_wallet(self, owner_id: str) -> Optional[Wallet]:
        return await self._get_locked(WalletRecord, Wallet, WalletRecord.owner_id, owner_id)

    async def save_wallet(self, wallet: Wallet) -> None:
        await self._upsert(WalletRecord, wallet)

    # ── Append-only logs ──

    async def append_usage(self, entry: UsageLedgerEntry) -> None:
        self.session.add(to_record(entry, UsageLedgerEntryRecord))

    async def list_usage(
        self,
        customer_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        meter_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[UsageLedgerEntry]:
        r = UsageLedgerEntryRecord
        stmt = select(r).order_by(r.recorded_at)
        if customer_id:
            stmt = stmt.where(r.customer_id == customer_id)
        if subscription_id:
            stmt = stmt.where(r.subscription_id == subscription_id)
        if meter_id:
            stmt = stmt.where(r.meter_id == meter_id)
        if start:
            stmt = stmt.where(r.recorded_at >= _to_column(start))
        if end:
            stmt = stmt.where(r.recorded_at <= _to_column(end))
        return await self._all(stmt, UsageLedgerEntry)

    async def append_transaction(self, transaction: LedgerTransaction) -> None:
        self.session.add(to_record(transaction, LedgerTransactionRecord))

    async def list_transactions(
        self,
        payer_id: Optional[str] = None,
        payee_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LedgerTransaction]:
        r = LedgerTransactionRecord
        stmt = select(r).order_by(r.created_at)
        if payer_id:
            stmt = stmt.where(r.payer_id == payer_id)
        if payee_id:
            stmt = stmt.where(r.payee_id == payee_id)
        if start:
            stmt = stmt.where(r.created_at >= _to_column(start))
        if end:
            stmt = stmt.where(r.created_at <= _to_column(end))
        return await self._all(stmt, LedgerTransaction)

    # ── Seeding ──

    async def add_customer(self, customer: Customer) -> None:
        await self._upsert(CustomerRecord, customer)

    async def add_tariff(self, tier: TariffTier) -> None:
        await self._upsert(TariffTierRecord, tier)


class SqlBillingStore:
    """BillingStore backed by an async SQLAlchemy session factory.

    Example:
        store = SqlBillingStore(get_async_session_factory())
        async with store.transaction() as tx:
            meter = await tx.get_meter(meter_id)
            ...
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @staticmethod
    async def create_schema(engine: AsyncEngine) -> None:
        """Create every table; used by tests and local demos."""
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlUnitOfWork]:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield SqlUnitOfWork(session)
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                raise AlreadyExistsError(f"Unique constraint violated: {e.orig}") from e

    async def _run(self, op: str, *args, **kwargs):
        async with self.transaction() as tx:
            return await getattr(tx, op)(*args, **kwargs)

    async def get_customer(self, customer_id):
        return await self._run("get_customer", customer_id)

    async def get_meter(self, meter_id):
        return await self._run("get_meter", meter_id)

    async def list_meters(self, active_only=False):
        return await self._run("list_meters", active_only)

    async def save_meter(self, meter):
        await self._run("save_meter", meter)

    async def get_tariff(self, tier_id):
        return await self._run("get_tariff", tier_id)

    async def get_invoice(self, invoice_id):
        return await self._run("get_invoice", invoice_id)

    async def find_invoice(self, meter_id, period):
        return await self._run("find_invoice", meter_id, period)

    async def insert_invoice(self, invoice):
        await self._run("insert_invoice", invoice)

    async def save_invoice(self, invoice):
        await self._run("save_invoice", invoice)

    async def delete_invoice(self, invoice_id):
        return await self._run("delete_invoice", invoice_id)

    async def list_invoices(self, **filters):
        return await self._run("list_invoices", **filters)

    async def get_plan(self, plan_id):
        return await self._run("get_plan", plan_id)

    async def save_plan(self, plan):
        await self._run("save_plan", plan)

    async def get_subscription(self, subscription_id):
        return await self._run("get_subscription", subscription_id)

    async def find_subscription(self, customer_id, plan_id):
        return await self._run("find_subscription", customer_id, plan_id)

    async def insert_subscription(self, subscription):
        await self._run("insert_subscription", subscription)

    async def save_subscription(self, subscription):
        await self._run("save_subscription", subscription)

    async def get_wallet(self, owner_id):
        return await self._run("get_wallet", owner_id)

    async def save_wallet(self, wallet):
        await self._run("save_wallet", wallet)

    async def append_usage(self, entry):
        await self._run("append_usage", entry)

    async def list_usage(self, **filters):
        return await self._run("list_usage", **filters)

    async def append_transaction(self, transaction):
        await self._run("append_transaction", transaction)

    async def list_transactions(self, **filters):
        return await self._run("list_transactions", **filters)

    async def load(self, *entities: Any) -> "SqlBillingStore":
        """Seed entities in one transaction, dispatching on their type."""
        savers = {
            Customer: "add_customer",
            TariffTier: "add_tariff",
            MeterAccount: "save_meter",
            Invoice: "save_invoice",
            WaterCreditPlan: "save_plan",
            Subscription: "save_subscription",
            Wallet: "save_wallet",
            UsageLedgerEntry: "append_usage",
            LedgerTransaction: "append_transaction",
        }
        async with self.transaction() as tx:
            for entity in entities:
                op = savers.get(type(entity))
                if op is None:
                    raise TypeError(f"Unsupported entity: {type(entity).__name__}")
                await getattr(tx, op)(entity)
        return self
