"""Tests for the billing calculators: tariff, late fee, periods, cadence, locks."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from src.billing.cadence import get_strategy, is_due
from src.billing.config import (
    DEFAULT_BILLING_CONFIG,
    BillingCadence,
    BillingConfig,
    PaymentMethod,
    PaymentStatus,
)
from src.billing.late_fee import compute_late_fee, days_between
from src.billing.locks import KeyedLock
from src.billing.periods import (
    current_period,
    due_date_for_period,
    parse_period,
    previous_period,
    shift_period,
)
from src.billing.tariff import compute_usage_cost
from src.errors import ErrorCode, ValidationError
from src.ledger.models import TariffTier
from src.ledger.money import floor_units, format_rupiah, quantize_money, round_whole

JAKARTA = ZoneInfo("Asia/Jakarta")


# ── Config Tests ──────────────────────────────────────────────────────


class TestBillingConfig:
    def test_defaults(self):
        cfg = BillingConfig()
        assert cfg.tariff_threshold_units == 10
        assert cfg.late_fee_rate_per_month == Decimal("0.02")
        assert cfg.late_fee_days_per_month == 30
        assert cfg.due_day_of_month == 25
        assert cfg.token_conversion_rate == Decimal("90")
        assert cfg.timezone == "Asia/Jakarta"
        assert cfg.currency == "IDR"

    def test_tzinfo(self):
        assert DEFAULT_BILLING_CONFIG.tzinfo == JAKARTA

    def test_payment_status_values(self):
        assert PaymentStatus.PENDING.value == "Pending"
        assert PaymentStatus.SETTLEMENT.value == "Settlement"
        assert PaymentStatus.SETTLEMENT.is_paid
        assert not PaymentStatus.EXPIRE.is_paid

    def test_cadence_values(self):
        assert BillingCadence.DAILY.value == "Perhari"
        assert BillingCadence.WEEKLY.value == "Perminggu"
        assert BillingCadence.MONTHLY.value == "Perbulan"
        assert BillingCadence.YEARLY.value == "Pertahun"

    def test_payment_method_values(self):
        assert PaymentMethod.GATEWAY.value == "GATEWAY"
        assert len(PaymentMethod) == 4


# ── Money Tests ───────────────────────────────────────────────────────


class TestMoney:
    def test_quantize_half_up(self):
        assert quantize_money(Decimal("10.005")) == Decimal("10.01")
        assert quantize_money(Decimal("10.004")) == Decimal("10.00")

    def test_round_whole_half_up(self):
        assert round_whole(Decimal("2.5")) == Decimal("3")
        assert round_whole(Decimal("2.49")) == Decimal("2")

    def test_floor_units(self):
        assert floor_units(Decimal("3.999")) == Decimal("3")
        assert floor_units(Decimal("0.5")) == Decimal("0")

    def test_format_rupiah(self):
        assert format_rupiah(Decimal("30000")) == "Rp30.000"
        assert format_rupiah(Decimal("1234567.50")) == "Rp1.234.568"
        assert format_rupiah(0) == "Rp0"


# ── Tariff Tests ──────────────────────────────────────────────────────


class TestTariffCalculator:
    def test_below_threshold(self, tier):
        cost = compute_usage_cost(Decimal("8"), tier)
        assert cost.usage_cost == Decimal("24000")
        assert cost.base_fee == Decimal("10000")
        assert cost.total == Decimal("34000")

    def test_exactly_threshold_uses_lower_price(self, tier):
        cost = compute_usage_cost(10, tier)
        assert cost.usage_cost == Decimal("30000")

    def test_above_threshold_splits_units(self, tier):
        cost = compute_usage_cost(15, tier)
        assert cost.usage_cost == Decimal("55000")
        assert cost.total == Decimal("65000")

    def test_fractional_quantity(self, tier):
        cost = compute_usage_cost("10.5", tier)
        assert cost.usage_cost == Decimal("32500.0")

    def test_zero_quantity_charges_base_fee(self, tier):
        cost = compute_usage_cost(0, tier)
        assert cost.usage_cost == Decimal("0")
        assert cost.total == Decimal("10000")

    def test_missing_base_fee_is_zero(self):
        tier = TariffTier("t", "Sosial", Decimal("1000"), Decimal("2000"))
        cost = compute_usage_cost(12, tier)
        assert cost.base_fee == Decimal("0")
        assert cost.total == Decimal("14000")

    def test_custom_threshold(self, tier):
        cost = compute_usage_cost(15, tier, threshold=20)
        assert cost.usage_cost == Decimal("45000")

    def test_to_dict(self, tier):
        data = compute_usage_cost(10, tier).to_dict()
        assert data == {"usage_cost": "30000", "base_fee": "10000", "total": "40000"}

    @pytest.mark.parametrize("quantity,usage,total", [
        (10, "25000", "30000"),
        (11, "28000", "33000"),
    ])
    def test_social_tier_either_side_of_threshold(self, quantity, usage, total):
        tier = TariffTier("t", "Sosial", Decimal("2500"), Decimal("3000"), Decimal("5000"))
        cost = compute_usage_cost(quantity, tier)
        assert cost.usage_cost == Decimal(usage)
        assert cost.base_fee == Decimal("5000")
        assert cost.total == Decimal(total)

    def test_cost_strictly_increases_with_quantity(self, tier):
        quantities = [Decimal(n) / 2 for n in range(0, 61)]
        totals = [compute_usage_cost(q, tier).total for q in quantities]
        assert all(b > a for a, b in zip(totals, totals[1:]))


# ── Late Fee Tests ────────────────────────────────────────────────────


class TestLateFee:
    def test_not_late_is_free(self):
        assert compute_late_fee(Decimal("65000"), 0) == Decimal("0")
        assert compute_late_fee(Decimal("65000"), -5) == Decimal("0")

    def test_one_day_late_is_one_month(self):
        assert compute_late_fee(Decimal("65000"), 1) == Decimal("1300")

    def test_thirty_days_is_still_one_month(self):
        assert compute_late_fee(Decimal("65000"), 30) == Decimal("1300")

    def test_thirty_one_days_is_two_months(self):
        assert compute_late_fee(Decimal("65000"), 31) == Decimal("2600")

    def test_rounds_half_up_to_whole(self):
        assert compute_late_fee(Decimal("12345"), 1) == Decimal("247")
        assert compute_late_fee(Decimal("125"), 1) == Decimal("3")

    def test_custom_rate(self):
        assert compute_late_fee(Decimal("10000"), 10, rate_per_month=Decimal("0.05")) == Decimal("500")

    @pytest.mark.parametrize("days,fee", [(0, "0"), (1, "2000"), (31, "4000")])
    def test_two_percent_per_started_month(self, days, fee):
        assert compute_late_fee(Decimal("100000"), days) == Decimal(fee)

    def test_days_between_floors(self):
        due = datetime(2024, 6, 25, tzinfo=JAKARTA)
        assert days_between(due, datetime(2024, 6, 26, tzinfo=JAKARTA)) == 1
        assert days_between(due, datetime(2024, 6, 25, 23, 0, tzinfo=JAKARTA)) == 0
        assert days_between(due, datetime(2024, 6, 20, tzinfo=JAKARTA)) == -5


# ── Period Tests ──────────────────────────────────────────────────────


class TestPeriods:
    def test_parse(self):
        assert parse_period("2024-05") == (2024, 5)

    @pytest.mark.parametrize("bad", ["2024-13", "2024-00", "2024-5", "May 2024", ""])
    def test_parse_rejects_malformed(self, bad):
        with pytest.raises(ValidationError) as exc_info:
            parse_period(bad)
        assert exc_info.value.error_code == ErrorCode.INVALID_PERIOD

    def test_previous_period_wraps_year(self):
        assert previous_period("2024-01") == "2023-12"
        assert previous_period("2024-05") == "2024-04"

    def test_shift_period(self):
        assert shift_period("2024-11", 3) == "2025-02"

    def test_current_period_uses_billing_timezone(self):
        # 18:00 UTC on May 31st is already June 1st in Jakarta.
        now = datetime(2024, 5, 31, 18, 0, tzinfo=timezone.utc)
        assert current_period(now, JAKARTA) == "2024-06"
        assert current_period(now, timezone.utc) == "2024-05"

    def test_due_date_is_next_month(self):
        due = due_date_for_period("2024-05", JAKARTA)
        assert due == datetime(2024, 6, 25, tzinfo=JAKARTA)

    def test_due_date_december_rolls_year(self):
        due = due_date_for_period("2024-12", JAKARTA, due_day=20)
        assert due == datetime(2025, 1, 20, tzinfo=JAKARTA)


# ── Cadence Tests ─────────────────────────────────────────────────────


class TestCadence:
    def test_never_settled_is_due(self):
        now = datetime(2024, 5, 10, tzinfo=JAKARTA)
        for cadence in BillingCadence:
            assert is_due(None, cadence, now)

    def test_daily(self):
        last = datetime(2024, 5, 10, 8, 0, tzinfo=JAKARTA)
        assert not is_due(last, BillingCadence.DAILY, datetime(2024, 5, 10, 23, 0, tzinfo=JAKARTA))
        assert is_due(last, BillingCadence.DAILY, datetime(2024, 5, 11, 0, 1, tzinfo=JAKARTA))

    def test_daily_ignores_year(self):
        last = datetime(2023, 5, 10, tzinfo=JAKARTA)
        assert not is_due(last, BillingCadence.DAILY, datetime(2024, 5, 10, tzinfo=JAKARTA))

    def test_weekly_needs_seven_full_days(self):
        last = datetime(2024, 5, 1, 12, 0, tzinfo=JAKARTA)
        almost = last + timedelta(days=6, hours=23)
        assert not is_due(last, BillingCadence.WEEKLY, almost)
        assert is_due(last, BillingCadence.WEEKLY, last + timedelta(days=7))

    def test_monthly(self):
        last = datetime(2024, 4, 30, tzinfo=JAKARTA)
        assert not is_due(last, BillingCadence.MONTHLY, datetime(2024, 4, 30, 23, 59, tzinfo=JAKARTA))
        assert is_due(last, BillingCadence.MONTHLY, datetime(2024, 5, 1, tzinfo=JAKARTA))

    def test_monthly_same_month_next_year(self):
        last = datetime(2023, 5, 10, tzinfo=JAKARTA)
        assert is_due(last, BillingCadence.MONTHLY, datetime(2024, 5, 10, tzinfo=JAKARTA))

    def test_yearly(self):
        last = datetime(2024, 1, 1, tzinfo=JAKARTA)
        assert not is_due(last, BillingCadence.YEARLY, datetime(2024, 12, 31, tzinfo=JAKARTA))
        assert is_due(last, BillingCadence.YEARLY, datetime(2025, 1, 1, tzinfo=JAKARTA))

    def test_boundary_evaluated_in_billing_timezone(self):
        # 23:00 Apr 30 Jakarta, then 00:30 May 1 Jakarta (still Apr 30 in UTC).
        last = datetime(2024, 4, 30, 16, 0, tzinfo=timezone.utc)
        now = datetime(2024, 4, 30, 17, 30, tzinfo=timezone.utc)
        assert is_due(last, BillingCadence.MONTHLY, now, JAKARTA)
        assert not is_due(last, BillingCadence.MONTHLY, now, timezone.utc)

    def test_get_strategy(self):
        assert get_strategy(BillingCadence.WEEKLY).cadence is BillingCadence.WEEKLY


# ── Keyed Lock Tests ──────────────────────────────────────────────────


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        events = []

        async def worker(name):
            async with locks.hold(("subscription", "s1")):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_overlap(self):
        locks = KeyedLock()
        events = []

        async def worker(key):
            async with locks.hold(key):
                events.append(f"{key}-in")
                await asyncio.sleep(0.01)
                events.append(f"{key}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events[:2] == ["a-in", "b-in"]

    @pytest.mark.asyncio
    async def test_idle_locks_are_dropped(self):
        locks = KeyedLock()
        async with locks.hold("k"):
            assert locks.locked("k")
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.locked("k")

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("boom")
        assert len(locks) == 0
