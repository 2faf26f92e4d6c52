"""Pytest configuration and shared fixtures."""

import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.billing.config import BillingConfig  # noqa: E402
from src.ledger.models import (  # noqa: E402
    BillingCadence,
    Customer,
    MeterAccount,
    Subscription,
    TariffTier,
    Wallet,
    WaterCreditPlan,
)
from src.ledger.store import InMemoryBillingStore  # noqa: E402
from src.notifications import NotificationCenter  # noqa: E402

# 2024-05-10 12:00 Asia/Jakarta
NOW = datetime(2024, 5, 10, 5, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    # No per-item timeout keeps batch tests deterministic.
    return BillingConfig(batch_item_timeout_seconds=None)


@pytest.fixture
def center():
    return NotificationCenter(timezone="Asia/Jakarta")


@pytest.fixture
def tier():
    return TariffTier(
        tier_id="tier-rt",
        name="Rumah Tangga",
        price_below_threshold=Decimal("3000"),
        price_above_threshold=Decimal("5000"),
        base_fee=Decimal("10000"),
    )


@pytest.fixture
def customer():
    return Customer(
        customer_id="cust-1",
        full_name="Siti Aminah",
        email="siti@example.com",
        phone="081234567890",
    )


@pytest.fixture
def meter():
    return MeterAccount(
        meter_id="meter-1",
        account_number="ACC-001",
        customer_id="cust-1",
        tariff_tier_id="tier-rt",
        meter_number="MTR-001",
        lifetime_reading=Decimal("15"),
        unpaid_consumption=Decimal("15"),
        created_at=NOW,
    )


@pytest.fixture
def store(customer, tier, meter):
    return InMemoryBillingStore().load(customer, tier, meter)


@pytest.fixture
def plan():
    """Rp3.000 per 10 liters, billed monthly; under 20 liters earns 5 tokens."""
    return WaterCreditPlan(
        plan_id="plan-1",
        owner_id="owner-1",
        name="Air Bersih Desa",
        price=Decimal("3000"),
        unit_size=Decimal("10"),
        cadence=BillingCadence.MONTHLY,
        reward_cadence=BillingCadence.MONTHLY,
        reward_threshold=Decimal("20"),
        reward_amount=Decimal("5"),
        subscriber_count=1,
        created_at=NOW,
    )


@pytest.fixture
def subscription():
    return Subscription(
        subscription_id="sub-1",
        customer_id="cust-1",
        plan_id="plan-1",
        # Settled last month, so the next increment crosses the boundary.
        last_settled_at=datetime(2024, 4, 10, 5, 0, tzinfo=timezone.utc),
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def payg_store(customer, plan, subscription):
    owner = Customer(customer_id="owner-1", full_name="BUMDes Tirta")
    return InMemoryBillingStore().load(
        customer,
        owner,
        plan,
        subscription,
        Wallet(owner_id="cust-1", balance=Decimal("10000"), updated_at=NOW),
        Wallet(owner_id="owner-1", balance=Decimal("0"), updated_at=NOW),
    )
