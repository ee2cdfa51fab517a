"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the trading bot.

- One base class, TradingException, for everything the
  engine raises on purpose
- Each error carries a context dict for log lines

============================================================
EXCEPTION HIERARCHY
============================================================
TradingException (base)
├── ConfigurationError
│   ├── MissingConfigError
│   └── InvalidConfigError
├── StoreError
│   ├── CorruptStoreError
│   ├── StaleSnapshotError
│   ├── PositionNotFoundError
│   └── StoreClosedError
├── ExecutionError
│   └── ExchangeError
├── StateTransitionError
│   └── InvalidTransitionError
└── StartupError

============================================================
"""

from typing import Any, Dict, Optional


# ============================================================
# BASE EXCEPTION
# ============================================================

class TradingException(Exception):
    """
    Base exception for all trading bot errors.

    Carries a message, a context dict and the underlying
    cause, if any.
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.context = context or {}
        self.cause = cause

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def describe(self) -> str:
        """Message plus context, for log lines."""
        if not self.context:
            return self.message
        details = " ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} | {details}"


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(TradingException):
    """Error in configuration. Always fatal at startup."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""

    def __init__(self, key: str, source: str = "environment"):
        super().__init__(
            message=f"Missing required configuration: {key}",
            config_key=key,
            context={"source": source},
        )


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


# ============================================================
# STORE ERRORS
# ============================================================

class StoreError(TradingException):
    """Base class for position store errors."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if path:
            context["path"] = path

        super().__init__(message, context=context, **kwargs)


class CorruptStoreError(StoreError):
    """Persisted snapshot could not be parsed."""


class StaleSnapshotError(StoreError):
    """Snapshot was committed against an outdated generation."""

    def __init__(self, expected: int, actual: int, **kwargs):
        context = kwargs.pop("context", {})
        context["expected_generation"] = expected
        context["actual_generation"] = actual

        super().__init__(
            f"Stale snapshot: generation {expected}, store is at {actual}",
            context=context,
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


class PositionNotFoundError(StoreError):
    """No position recorded for the asset."""

    def __init__(self, asset: str, **kwargs):
        context = kwargs.pop("context", {})
        context["asset"] = asset

        super().__init__(f"No position for {asset}", context=context, **kwargs)
        self.asset = asset


class StoreClosedError(StoreError):
    """Store no longer accepts writes."""


# ============================================================
# EXECUTION ERRORS
# ============================================================

class ExecutionError(TradingException):
    """Base class for execution-related errors."""


class ExchangeError(ExecutionError):
    """
    Execution, price or balance API error.

    The generic transient-error signal raised by adapters.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        endpoint: Optional[str] = None,
        is_retryable: bool = True,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if error_code:
            context["error_code"] = error_code
        if endpoint:
            context["endpoint"] = endpoint

        super().__init__(message, context=context, **kwargs)
        self.code = error_code
        self.is_retryable = is_retryable


# ============================================================
# STATE ERRORS
# ============================================================

class StateTransitionError(TradingException):
    """Base class for state machine errors."""

    def __init__(
        self,
        message: str,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if from_state:
            context["from_state"] = from_state
        if to_state:
            context["to_state"] = to_state
        if reason:
            context["reason"] = reason

        super().__init__(message, context=context, **kwargs)


class InvalidTransitionError(StateTransitionError):
    """Position status change not allowed by the lifecycle."""


# ============================================================
# STARTUP ERRORS
# ============================================================

class StartupError(TradingException):
    """Bot startup failed."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if stage:
            context["stage"] = stage

        super().__init__(message, context=context, **kwargs)


__all__ = [
    "TradingException",
    "ConfigurationError",
    "MissingConfigError",
    "InvalidConfigError",
    "StoreError",
    "CorruptStoreError",
    "StaleSnapshotError",
    "PositionNotFoundError",
    "StoreClosedError",
    "ExecutionError",
    "ExchangeError",
    "StateTransitionError",
    "InvalidTransitionError",
    "StartupError",
]
