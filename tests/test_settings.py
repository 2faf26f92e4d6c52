"""Tests for environment-driven settings."""

from decimal import Decimal

from src.billing.config import BillingConfig
from src.settings import Settings, get_settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.billing_timezone == "Asia/Jakarta"
        assert settings.tariff_threshold_units == 10
        assert settings.late_fee_rate_per_month == Decimal("0.02")
        assert settings.due_day_of_month == 25
        assert settings.payment_server_key == ""
        assert settings.database_url.startswith("postgresql+asyncpg://")

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TIRTA_DUE_DAY_OF_MONTH", "20")
        monkeypatch.setenv("TIRTA_LATE_FEE_RATE_PER_MONTH", "0.05")
        monkeypatch.setenv("TIRTA_PAYMENT_IS_PRODUCTION", "true")
        settings = Settings(_env_file=None)
        assert settings.due_day_of_month == 20
        assert settings.late_fee_rate_per_month == Decimal("0.05")
        assert settings.payment_is_production is True

    def test_unknown_env_ignored(self, monkeypatch):
        monkeypatch.setenv("TIRTA_NOT_A_SETTING", "x")
        assert not hasattr(Settings(_env_file=None), "not_a_setting")

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_billing_config_from_settings(self, monkeypatch):
        monkeypatch.setenv("TIRTA_TARIFF_THRESHOLD_UNITS", "15")
        monkeypatch.setenv("TIRTA_BATCH_CONCURRENCY", "2")
        cfg = BillingConfig.from_settings(Settings(_env_file=None))
        assert cfg.tariff_threshold_units == 15
        assert cfg.batch_concurrency == 2
        assert cfg.timezone == "Asia/Jakarta"
