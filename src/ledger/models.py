"""Ledger — Persisted entities.

Dataclasses for every record the billing engine reads or writes:
customers, meter accounts, tariff tiers, invoices, water-credit plans,
subscriptions, wallets, and the two append-only logs (usage entries and
ledger transactions).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from src.ledger.money import ZERO, to_decimal


def new_id() -> str:
    return uuid.uuid4().hex[:16]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentStatus(Enum):
    """Invoice payment states as reported by the payment gateway."""

    PENDING = "Pending"
    SETTLEMENT = "Settlement"
    CANCEL = "Cancel"
    EXPIRE = "Expire"
    REFUND = "Refund"
    CHARGEBACK = "Chargeback"
    FRAUD = "Fraud"

    @property
    def is_paid(self) -> bool:
        return self is PaymentStatus.SETTLEMENT


class BillingCadence(Enum):
    """Recurring cadence of a pay-as-you-go plan."""

    DAILY = "Perhari"
    WEEKLY = "Perminggu"
    MONTHLY = "Perbulan"
    YEARLY = "Pertahun"


class TransactionCategory(Enum):
    """Kind of money movement recorded in the ledger."""

    WATER_USAGE = "water_usage"
    PARTIAL_WATER_USAGE = "partial_water_usage"
    TOKEN_CONVERSION = "token_conversion"
    # Sub-unit residue moved between the wallet and a subscription reserve.
    PREPAID_RESERVE = "prepaid_reserve"
    PREPAID_RELEASE = "prepaid_release"


@dataclass
class Customer:
    customer_id: str
    full_name: str = ""
    email: str = ""
    phone: str = ""


@dataclass
class TariffTier:
    """Named pricing plan for metered customers (kelompok pelanggan)."""

    tier_id: str
    name: str
    price_below_threshold: Decimal
    price_above_threshold: Decimal
    base_fee: Optional[Decimal] = None

    def __post_init__(self):
        self.price_below_threshold = to_decimal(self.price_below_threshold)
        self.price_above_threshold = to_decimal(self.price_above_threshold)
        if self.base_fee is not None:
            self.base_fee = to_decimal(self.base_fee)


@dataclass
class MeterAccount:
    """One physical water connection.

    ``lifetime_reading`` only grows (telemetry). ``unpaid_consumption`` is
    the billed-but-unsettled usage and never goes below zero.
    """

    meter_id: str
    account_number: str
    customer_id: str
    tariff_tier_id: str
    meter_number: str = ""
    lifetime_reading: Decimal = ZERO
    unpaid_consumption: Decimal = ZERO
    active: bool = True
    next_due_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=_now)

    def __post_init__(self):
        self.lifetime_reading = to_decimal(self.lifetime_reading)
        self.unpaid_consumption = to_decimal(self.unpaid_consumption)


@dataclass
class Invoice:
    """One billing-period charge (tagihan) for a metered account."""

    invoice_id: str
    customer_id: str
    meter_id: str
    period: str
    previous_reading: Decimal
    current_reading: Decimal
    consumption: Decimal
    usage_cost: Decimal
    base_fee: Decimal
    total: Decimal
    due_date: datetime
    late_fee: Decimal = ZERO
    status: PaymentStatus = PaymentStatus.PENDING
    overdue: bool = False
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: str = ""
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def billed_total(self) -> Decimal:
        """Total before any late fee."""
        return self.usage_cost + self.base_fee

    def to_dict(self) -> Dict[str, Any]:
        return {
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "meter_id": self.meter_id,
            "period": self.period,
            "previous_reading": str(self.previous_reading),
            "current_reading": str(self.current_reading),
            "consumption": str(self.consumption),
            "usage_cost": str(self.usage_cost),
            "base_fee": str(self.base_fee),
            "late_fee": str(self.late_fee),
            "total": str(self.total),
            "status": self.status.value,
            "due_date": self.due_date.isoformat(),
            "overdue": self.overdue,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "payment_method": self.payment_method,
        }


@dataclass
class WaterCreditPlan:
    """A wallet-funded pay-as-you-go water service offered by an owner.

    ``price`` buys ``unit_size`` units. Consumers who use less than
    ``reward_threshold`` units in a reward window earn ``reward_amount``
    conservation tokens.
    """

    plan_id: str
    owner_id: str
    price: Decimal
    unit_size: Decimal
    cadence: BillingCadence = BillingCadence.MONTHLY
    reward_cadence: BillingCadence = BillingCadence.MONTHLY
    reward_threshold: Decimal = ZERO
    reward_amount: Decimal = ZERO
    name: str = ""
    income: Decimal = ZERO
    total_income: Decimal = ZERO
    subscriber_count: int = 0
    created_at: datetime = field(default_factory=_now)

    def __post_init__(self):
        self.price = to_decimal(self.price)
        self.unit_size = to_decimal(self.unit_size)
        self.reward_threshold = to_decimal(self.reward_threshold)
        self.reward_amount = to_decimal(self.reward_amount)
        self.income = to_decimal(self.income)
        self.total_income = to_decimal(self.total_income)

    @property
    def cost_per_unit(self) -> Decimal:
        return self.price / self.unit_size


@dataclass
class Subscription:
    """A customer's pay-as-you-go relationship with one plan."""

    subscription_id: str
    customer_id: str
    plan_id: str
    total_used: Decimal = ZERO
    used_in_window: Decimal = ZERO
    active: bool = True
    pipe_closed: bool = False
    last_settled_at: Optional[datetime] = None
    prepaid_remainder: Decimal = ZERO
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    # Bumped by every store write; a stale version means a lost race.
    version: int = 0

    def __post_init__(self):
        self.total_used = to_decimal(self.total_used)
        self.used_in_window = to_decimal(self.used_in_window)
        self.prepaid_remainder = to_decimal(self.prepaid_remainder)


@dataclass
class Wallet:
    """Monetary balance of one principal (customer or plan owner)."""

    owner_id: str
    balance: Decimal = ZERO
    conservation_tokens: Decimal = ZERO
    updated_at: datetime = field(default_factory=_now)

    def __post_init__(self):
        self.balance = to_decimal(self.balance)
        self.conservation_tokens = to_decimal(self.conservation_tokens)


@dataclass(frozen=True)
class UsageLedgerEntry:
    """Append-only record of a metered increment."""

    entry_id: str
    customer_id: str
    quantity: Decimal
    subscription_id: Optional[str] = None
    plan_id: Optional[str] = None
    meter_id: Optional[str] = None
    recorded_at: datetime = field(default_factory=_now)


@dataclass(frozen=True)
class LedgerTransaction:
    """Append-only audit record of a completed money movement."""

    transaction_id: str
    payer_id: str
    payee_id: str
    amount: Decimal
    category: TransactionCategory
    payer_name: str = ""
    reference: str = ""
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "payer_id": self.payer_id,
            "payee_id": self.payee_id,
            "amount": str(self.amount),
            "category": self.category.value,
            "reference": self.reference,
            "created_at": self.created_at.isoformat(),
        }
