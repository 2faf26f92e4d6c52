"""Tests for consumption trends, rankings and collection status."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.billing.analytics import UsageAnalytics
from src.errors import ValidationError
from src.ledger.models import Invoice, PaymentStatus, UsageLedgerEntry
from src.ledger.store import InMemoryBillingStore

DUE = datetime(2024, 6, 24, 17, 0, tzinfo=timezone.utc)


def _invoice(invoice_id, customer_id, period, consumption, total, status=PaymentStatus.PENDING, overdue=False):
    return Invoice(
        invoice_id=invoice_id,
        customer_id=customer_id,
        meter_id=f"meter-{customer_id}",
        period=period,
        previous_reading=Decimal("0"),
        current_reading=Decimal(consumption),
        consumption=Decimal(consumption),
        usage_cost=Decimal(total),
        base_fee=Decimal("0"),
        total=Decimal(total),
        due_date=DUE,
        status=status,
        overdue=overdue,
    )


@pytest.fixture
def analytics():
    store = InMemoryBillingStore().load(
        _invoice("i1", "cust-1", "2024-03", "10", "40000", PaymentStatus.SETTLEMENT),
        _invoice("i2", "cust-1", "2024-04", "15", "65000", overdue=True),
        _invoice("i3", "cust-1", "2024-05", "12", "49000"),
        _invoice("i4", "cust-2", "2024-04", "30", "10000", PaymentStatus.SETTLEMENT),
        _invoice("i5", "cust-2", "2024-05", "8", "51000", PaymentStatus.SETTLEMENT),
    )
    return UsageAnalytics(store)


class TestConsumptionTrend:
    @pytest.mark.asyncio
    async def test_trend_oldest_first(self, analytics):
        rows = await analytics.consumption_trend("cust-1", "2024-05", periods=3)
        assert [r.period for r in rows] == ["2024-03", "2024-04", "2024-05"]
        assert [r.consumption for r in rows] == [Decimal("10"), Decimal("15"), Decimal("12")]
        assert rows[1].trend_pct == 50.0
        assert rows[2].trend_pct == -20.0
        assert rows[1].billed == Decimal("65000")

    @pytest.mark.asyncio
    async def test_missing_period_is_zero(self, analytics):
        rows = await analytics.consumption_trend("cust-1", "2024-05", periods=4)
        assert rows[0].period == "2024-02"
        assert rows[0].consumption == Decimal("0")
        assert rows[1].trend_pct == 0.0

    @pytest.mark.asyncio
    async def test_rejects_bad_period(self, analytics):
        with pytest.raises(ValidationError):
            await analytics.consumption_trend("cust-1", "2024-5")


class TestTopConsumers:
    @pytest.mark.asyncio
    async def test_ranked_by_consumption(self, analytics):
        ranked = await analytics.top_consumers("2024-04")
        assert [r["customer_id"] for r in ranked] == ["cust-2", "cust-1"]
        assert ranked[0]["rank"] == 1
        assert ranked[0]["billed"] == Decimal("10000")

    @pytest.mark.asyncio
    async def test_limit(self, analytics):
        assert len(await analytics.top_consumers("2024-04", limit=1)) == 1


class TestCollectionStatus:
    @pytest.mark.asyncio
    async def test_critical(self, analytics):
        status = await analytics.collection_status("2024-04")
        assert status.billed == Decimal("75000.00")
        assert status.collected == Decimal("10000.00")
        assert status.outstanding == Decimal("65000.00")
        assert status.overdue_count == 1
        assert status.collection_rate_pct == 13.33
        assert status.status == "critical"

    @pytest.mark.asyncio
    async def test_warning(self, analytics):
        status = await analytics.collection_status("2024-05")
        assert status.collection_rate_pct == 51.0
        assert status.status == "warning"

    @pytest.mark.asyncio
    async def test_healthy(self, analytics):
        status = await analytics.collection_status("2024-03")
        assert status.collection_rate_pct == 100.0
        assert status.status == "healthy"

    @pytest.mark.asyncio
    async def test_nothing_billed_counts_as_collected(self, analytics):
        status = await analytics.collection_status("2024-01")
        assert status.billed == Decimal("0")
        assert status.collection_rate_pct == 100.0
        assert status.status == "healthy"


class TestUsageProfile:
    @pytest.mark.asyncio
    async def test_steady_use(self, now):
        store = InMemoryBillingStore().load(*[
            UsageLedgerEntry(f"e{i}", "cust-1", Decimal("10"), recorded_at=now + timedelta(hours=i))
            for i in range(5)
        ])
        profile = await UsageAnalytics(store).usage_profile("cust-1")
        assert profile["entries"] == 5
        assert profile["total"] == Decimal("50")
        assert profile["mean"] == 10.0
        assert profile["stdev"] == 0.0
        assert profile["steady"] is True

    @pytest.mark.asyncio
    async def test_window_and_spiky_use(self, now):
        store = InMemoryBillingStore().load(
            UsageLedgerEntry("e1", "cust-1", Decimal("2"), recorded_at=now),
            UsageLedgerEntry("e2", "cust-1", Decimal("40"), recorded_at=now + timedelta(hours=1)),
            UsageLedgerEntry("e3", "cust-1", Decimal("99"), recorded_at=now + timedelta(days=30)),
        )
        profile = await UsageAnalytics(store).usage_profile(
            "cust-1", start=now, end=now + timedelta(days=1),
        )
        assert profile["entries"] == 2
        assert profile["max"] == 40.0
        assert profile["steady"] is False

    @pytest.mark.asyncio
    async def test_no_usage(self):
        profile = await UsageAnalytics(InMemoryBillingStore()).usage_profile("cust-9")
        assert profile == {"customer_id": "cust-9", "entries": 0}
