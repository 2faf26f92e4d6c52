"""SQLAlchemy ORM models for the Tirta billing engine.

Tables:
- customers: Billed principals
- tariff_tiers: Two-step pricing plans (kelompok pelanggan)
- meter_accounts: Physical water connections with lifetime and unpaid counters
- invoices: Periodic charges, unique per (meter, period)
- water_credit_plans: Wallet-funded pay-as-you-go plans
- subscriptions: Customer/plan relationships, unique per (customer, plan)
- wallets: Monetary and conservation-token balances
- usage_ledger_entries: Append-only metered increments
- ledger_transactions: Append-only money movements
- notifications: Customer inbox, unique per recipient/title/category/day for daily warnings
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)

from src.db.base import Base

MONEY = Numeric(18, 2)
QUANTITY = Numeric(18, 4)


class CustomerRecord(Base):
    __tablename__ = "customers"

    customer_id = Column(String(32), primary_key=True)
    full_name = Column(String(200), nullable=False, default="")
    email = Column(String(200), nullable=False, default="")
    phone = Column(String(40), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TariffTierRecord(Base):
    """Pricing plan: one price up to the threshold, another above it."""

    __tablename__ = "tariff_tiers"

    tier_id = Column(String(32), primary_key=True)
    name = Column(String(100), nullable=False)
    price_below_threshold = Column(MONEY, nullable=False)
    price_above_threshold = Column(MONEY, nullable=False)
    base_fee = Column(MONEY)


class MeterAccountRecord(Base):
    """Water connection. ``unpaid_consumption`` never goes below zero."""

    __tablename__ = "meter_accounts"

    meter_id = Column(String(32), primary_key=True)
    account_number = Column(String(50), unique=True, nullable=False)
    customer_id = Column(String(32), ForeignKey("customers.customer_id"), nullable=False, index=True)
    tariff_tier_id = Column(String(32), ForeignKey("tariff_tiers.tier_id"), nullable=False)
    meter_number = Column(String(50), nullable=False, default="")
    lifetime_reading = Column(QUANTITY, nullable=False, default=0)
    unpaid_consumption = Column(QUANTITY, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True, index=True)
    next_due_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("unpaid_consumption >= 0", name="ck_meter_unpaid_non_negative"),
    )


class InvoiceRecord(Base):
    """Periodic charge (tagihan). Exactly one per meter and period."""

    __tablename__ = "invoices"

    invoice_id = Column(String(32), primary_key=True)
    customer_id = Column(String(32), nullable=False, index=True)
    meter_id = Column(String(32), ForeignKey("meter_accounts.meter_id"), nullable=False)
    period = Column(String(7), nullable=False)
    previous_reading = Column(QUANTITY, nullable=False)
    current_reading = Column(QUANTITY, nullable=False)
    consumption = Column(QUANTITY, nullable=False)
    usage_cost = Column(MONEY, nullable=False)
    base_fee = Column(MONEY, nullable=False)
    late_fee = Column(MONEY, nullable=False, default=0)
    total = Column(MONEY, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="Pending")
    overdue = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True))
    payment_method = Column(String(50))
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("meter_id", "period", name="uq_invoice_meter_period"),
        Index("ix_invoices_status_due", "status", "due_date"),
        Index("ix_invoices_customer_status", "customer_id", "status"),
    )


class WaterCreditPlanRecord(Base):
    __tablename__ = "water_credit_plans"

    plan_id = Column(String(32), primary_key=True)
    owner_id = Column(String(32), nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    price = Column(MONEY, nullable=False)
    unit_size = Column(QUANTITY, nullable=False)
    cadence = Column(String(20), nullable=False)
    reward_cadence = Column(String(20), nullable=False)
    reward_threshold = Column(QUANTITY, nullable=False, default=0)
    reward_amount = Column(QUANTITY, nullable=False, default=0)
    income = Column(MONEY, nullable=False, default=0)
    total_income = Column(MONEY, nullable=False, default=0)
    subscriber_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SubscriptionRecord(Base):
    __tablename__ = "subscriptions"

    subscription_id = Column(String(32), primary_key=True)
    customer_id = Column(String(32), nullable=False)
    plan_id = Column(String(32), ForeignKey("water_credit_plans.plan_id"), nullable=False)
    total_used = Column(QUANTITY, nullable=False, default=0)
    used_in_window = Column(QUANTITY, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    pipe_closed = Column(Boolean, nullable=False, default=False)
    last_settled_at = Column(DateTime(timezone=True))
    prepaid_remainder = Column(MONEY, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("customer_id", "plan_id", name="uq_subscription_customer_plan"),
    )


class WalletRecord(Base):
    __tablename__ = "wallets"

    owner_id = Column(String(32), primary_key=True)
    balance = Column(MONEY, nullable=False, default=0)
    conservation_tokens = Column(QUANTITY, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )


class UsageLedgerEntryRecord(Base):
    """Append-only; rows are never updated."""

    __tablename__ = "usage_ledger_entries"

    entry_id = Column(String(32), primary_key=True)
    customer_id = Column(String(32), nullable=False, index=True)
    subscription_id = Column(String(32), index=True)
    plan_id = Column(String(32))
    meter_id = Column(String(32), index=True)
    quantity = Column(QUANTITY, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False, index=True)


class LedgerTransactionRecord(Base):
    """Append-only; rows are never updated."""

    __tablename__ = "ledger_transactions"

    transaction_id = Column(String(32), primary_key=True)
    payer_id = Column(String(32), nullable=False, index=True)
    payee_id = Column(String(32), nullable=False, index=True)
    payer_name = Column(String(200), nullable=False, default="")
    amount = Column(MONEY, nullable=False)
    category = Column(String(30), nullable=False)
    reference = Column(String(200), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)


class NotificationRecord(Base):
    """Customer inbox.

    ``dedupe_date`` is the local calendar day of a once-per-day message
    and NULL otherwise, so the unique constraint only binds daily ones.
    """

    __tablename__ = "notifications"

    notification_id = Column(String(32), primary_key=True)
    recipient_id = Column(String(32), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False, default="")
    category = Column(String(20), nullable=False)
    link = Column(String(200), nullable=False, default="")
    read = Column(Boolean, nullable=False, default=False)
    dedupe_date = Column(Date)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint(
            "recipient_id", "title", "category", "dedupe_date",
            name="uq_notification_daily",
        ),
    )
