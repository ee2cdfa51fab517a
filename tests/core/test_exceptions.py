"""
Exception Hierarchy Tests.
"""

import pytest

from core.exceptions import (
    ConfigurationError,
    CorruptStoreError,
    ExchangeError,
    InvalidConfigError,
    MissingConfigError,
    PositionNotFoundError,
    StaleSnapshotError,
    StartupError,
    StoreError,
    TradingException,
)


class TestExceptionHierarchy:
    """Tests for exception classes."""

    @pytest.mark.parametrize("exc", [
        MissingConfigError("TAKE_PROFIT"),
        CorruptStoreError("bad json", path="records.json"),
        ExchangeError("down"),
        StartupError("no adapter", stage="adapter"),
    ])
    def test_all_are_trading_exceptions(self, exc):
        assert isinstance(exc, TradingException)

    def test_config_errors_carry_key_and_value(self):
        exc = InvalidConfigError("SLIPPAGE", "abc", "expected an integer")

        assert isinstance(exc, ConfigurationError)
        assert exc.context["config_key"] == "SLIPPAGE"
        assert exc.context["actual_value"] == "abc"

    def test_store_errors_carry_path(self):
        exc = CorruptStoreError("bad json", path="records.json")

        assert isinstance(exc, StoreError)
        assert exc.context["path"] == "records.json"

    def test_stale_snapshot_reports_generations(self):
        exc = StaleSnapshotError(expected=3, actual=5)

        assert exc.expected == 3
        assert exc.actual == 5
        assert "3" in exc.message

    def test_position_not_found(self):
        assert PositionNotFoundError("Mint1").asset == "Mint1"


class TestDescribe:
    """Tests for TradingException.describe()."""

    def test_without_context_is_message(self):
        assert TradingException("plain").describe() == "plain"

    def test_context_is_appended(self):
        exc = StartupError("no adapter", stage="adapter")

        assert exc.describe() == "no adapter | stage=adapter"

    def test_cause_is_recorded(self):
        exc = StoreError("write failed", path="records.json", cause=OSError("disk full"))

        assert exc.cause is not None
        assert "cause_type=OSError" in exc.describe()
        assert "cause_message=disk full" in exc.describe()


class TestExchangeError:
    """Tests for ExchangeError."""

    def test_code_and_retryable_flag(self):
        exc = ExchangeError("bad", error_code="EXC_BAD_REQUEST", is_retryable=False)

        assert exc.code == "EXC_BAD_REQUEST"
        assert not exc.is_retryable
        assert exc.context["error_code"] == "EXC_BAD_REQUEST"
