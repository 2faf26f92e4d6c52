"""Tests for structured logging, operation context and performance timing."""

import json
import logging
import sys
import time
from types import SimpleNamespace

import pytest

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import (
    RequestContext,
    generate_request_id,
    get_context_dict,
    get_correlation_id,
    get_job,
    get_request_id,
    get_user_id,
)
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
    get_logger,
)


def _record(msg="test", level=logging.INFO, name="src.billing.invoices", lineno=1, exc_info=None):
    return logging.LogRecord(
        name=name, level=level, pathname="invoices.py",
        lineno=lineno, msg=msg, args=(), exc_info=exc_info,
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLoggingConfig:
    """Tests for logging configuration dataclasses."""

    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.JSON
        assert config.include_caller is True
        assert config.slow_threshold_ms == 1000.0
        assert config.service_name == "tirta"

    def test_from_settings(self):
        config = LoggingConfig.from_settings(SimpleNamespace(log_level="debug", log_format="CONSOLE"))
        assert config.level == LogLevel.DEBUG
        assert config.format == LogFormat.CONSOLE

    def test_from_settings_falls_back_on_bad_values(self):
        config = LoggingConfig.from_settings(SimpleNamespace(log_level="chatty", log_format="xml"))
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.JSON


class TestRequestContext:
    """Tests for operation context management."""

    def test_generate_request_id_unique(self):
        ids = {generate_request_id() for _ in range(100)}
        assert len(ids) == 100

    def test_context_sets_principal_and_job(self):
        with RequestContext(request_id="req-1", user_id="cust-1", job="pay_invoice"):
            assert get_request_id() == "req-1"
            assert get_user_id() == "cust-1"
            assert get_job() == "pay_invoice"
        assert get_request_id() == ""
        assert get_user_id() == ""
        assert get_job() == ""

    def test_correlation_id_defaults_to_request_id(self):
        with RequestContext(request_id="req-777") as ctx:
            assert ctx.correlation_id == "req-777"
            assert get_correlation_id() == "req-777"

    def test_auto_generates_request_id(self):
        with RequestContext() as ctx:
            assert ctx.request_id != ""
            assert get_request_id() == ctx.request_id

    def test_context_dict_skips_empty_values(self):
        with RequestContext(request_id="r1", job="sweep-overdue"):
            ctx = get_context_dict()
        assert ctx["job"] == "sweep-overdue"
        assert "user_id" not in ctx

    def test_context_dict_empty_outside(self):
        assert get_context_dict() == {}

    def test_bind_extra_context(self):
        with RequestContext(request_id="r1") as ctx:
            ctx.bind(period="2024-05")
            assert get_context_dict()["period"] == "2024-05"
        assert "period" not in get_context_dict()

    def test_nested_contexts_restore_outer(self):
        with RequestContext(request_id="outer", job="generate"):
            with RequestContext(request_id="inner", user_id="cust-1"):
                assert get_request_id() == "inner"
                assert get_job() == ""
            assert get_request_id() == "outer"
            assert get_job() == "generate"

    def test_elapsed_ms(self):
        with RequestContext() as ctx:
            time.sleep(0.01)
            assert ctx.elapsed_ms >= 10


class TestStructuredFormatter:
    """Tests for JSON structured log formatting."""

    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record("Invoice generated")))
        assert parsed["message"] == "Invoice generated"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "src.billing.invoices"
        assert parsed["service"] == "tirta"
        assert "timestamp" in parsed

    def test_caller_info_toggle(self):
        with_caller = json.loads(StructuredFormatter(include_caller=True).format(_record(lineno=42)))
        without = json.loads(StructuredFormatter(include_caller=False).format(_record(lineno=42)))
        assert with_caller["line"] == 42
        assert "line" not in without

    def test_includes_operation_context(self):
        formatter = StructuredFormatter()
        with RequestContext(request_id="ctx-test", user_id="cust-1", job="generate"):
            parsed = json.loads(formatter.format(_record()))
        assert parsed["request_id"] == "ctx-test"
        assert parsed["user_id"] == "cust-1"
        assert parsed["job"] == "generate"

    def test_formats_exception(self):
        try:
            raise ValueError("tier missing")
        except ValueError:
            record = _record("failed", logging.ERROR, exc_info=sys.exc_info())
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["exception"]["type"] == "ValueError"
        assert "tier missing" in parsed["exception"]["message"]

    def test_includes_billing_extra_fields(self):
        record = _record()
        record.invoice_id = "inv-1"
        record.amount = "65000"
        record.duration_ms = 42.5
        record.unrelated = "x"
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["invoice_id"] == "inv-1"
        assert parsed["amount"] == "65000"
        assert parsed["duration_ms"] == 42.5
        assert "unrelated" not in parsed


class TestConsoleFormatter:
    """Tests for colored console log formatting."""

    def test_formats_readable_output(self):
        output = ConsoleFormatter().format(_record("hello", logging.WARNING))
        assert "src.billing.invoices" in output
        assert "hello" in output
        assert "WARNING" in output

    def test_includes_context_info(self):
        with RequestContext(request_id="abc"):
            output = ConsoleFormatter().format(_record())
        assert "request_id=abc" in output

    def test_has_color_codes(self):
        assert "\033[31m" in ConsoleFormatter().format(_record(level=logging.ERROR))


class TestConfigureLogging:
    """Tests for the configure_logging setup function."""

    def test_json_format(self, restore_root_logger):
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_console_format(self, restore_root_logger):
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert isinstance(restore_root_logger.handlers[0].formatter, ConsoleFormatter)

    def test_sets_log_level(self, restore_root_logger):
        configure_logging(LoggingConfig(level=LogLevel.DEBUG))
        assert restore_root_logger.level == logging.DEBUG

    def test_quiets_noisy_loggers(self, restore_root_logger):
        configure_logging()
        assert logging.getLogger("sqlalchemy.engine").level >= logging.WARNING
        assert logging.getLogger("aiohttp").level >= logging.WARNING

    def test_env_var_override_level(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("TIRTA_LOG_LEVEL", "debug")
        configure_logging(LoggingConfig(level=LogLevel.ERROR))
        assert restore_root_logger.level == logging.DEBUG

    def test_env_var_override_format(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("TIRTA_LOG_FORMAT", "CONSOLE")
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        assert isinstance(restore_root_logger.handlers[0].formatter, ConsoleFormatter)

    def test_get_logger_returns_logger(self):
        logger = get_logger("src.billing.settlement")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "src.billing.settlement"


class TestPerformanceLogging:
    """Tests for performance timing decorator and context manager."""

    def test_sync_fast_call_logs_debug(self, caplog):
        @log_performance(threshold_ms=10000, logger_name="perf.test")
        def fast():
            return 42

        with caplog.at_level(logging.DEBUG, logger="perf.test"):
            assert fast() == 42
        assert caplog.records[-1].levelname == "DEBUG"
        assert "completed" in caplog.records[-1].getMessage()

    def test_slow_call_logs_warning(self, caplog):
        @log_performance(threshold_ms=0, logger_name="perf.test")
        def slow():
            return "ok"

        with caplog.at_level(logging.DEBUG, logger="perf.test"):
            slow()
        assert caplog.records[-1].levelname == "WARNING"
        assert "Slow operation" in caplog.records[-1].getMessage()

    @pytest.mark.asyncio
    async def test_async_call(self):
        @log_performance(threshold_ms=10000)
        async def settle():
            return "ok"

        assert await settle() == "ok"

    @pytest.mark.asyncio
    async def test_async_failure_logs_error_and_reraises(self, caplog):
        @log_performance(threshold_ms=10000, logger_name="perf.test")
        async def failing():
            raise RuntimeError("gateway down")

        with caplog.at_level(logging.DEBUG, logger="perf.test"):
            with pytest.raises(RuntimeError, match="gateway down"):
                await failing()
        assert caplog.records[-1].levelname == "ERROR"
        assert "RuntimeError" in caplog.records[-1].getMessage()

    def test_sync_failure_reraises(self):
        @log_performance(threshold_ms=10000)
        def failing():
            raise ValueError("bad period")

        with pytest.raises(ValueError, match="bad period"):
            failing()

    def test_preserves_name(self):
        @log_performance()
        def generate_for_period():
            """Generate invoices."""

        assert generate_for_period.__name__ == "generate_for_period"
        assert generate_for_period.__doc__ == "Generate invoices."

    def test_include_args_summary(self, caplog):
        @log_performance(threshold_ms=10000, logger_name="perf.test", include_args=True)
        def pay(invoice_id, method=None):
            return invoice_id

        with caplog.at_level(logging.DEBUG, logger="perf.test"):
            pay("inv-1", method="TRANSFER")
        assert caplog.records[-1].extra_data == "'inv-1', method='TRANSFER'"

    def test_performance_timer(self):
        with PerformanceTimer("sweep_overdue", threshold_ms=10000) as timer:
            time.sleep(0.01)
        assert timer.duration_ms >= 10
        assert timer.operation_name == "sweep_overdue"

    def test_performance_timer_with_exception(self):
        with pytest.raises(ValueError):
            with PerformanceTimer("failing_op") as timer:
                raise ValueError("oops")
        assert timer.duration_ms >= 0

    def test_default_threshold(self):
        assert PerformanceTimer("op").threshold_ms == 1000.0
        assert PerformanceTimer("op", threshold_ms=500.0).threshold_ms == 500.0
