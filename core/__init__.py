"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Injectable sleep for retries, polling and timers
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, SystemClock, MockClock, ClockFactory
from .exceptions import (
    TradingException,
    ConfigurationError,
    MissingConfigError,
    InvalidConfigError,
    StoreError,
    CorruptStoreError,
    StaleSnapshotError,
    PositionNotFoundError,
    StoreClosedError,
    ExecutionError,
    ExchangeError,
    StateTransitionError,
    InvalidTransitionError,
    StartupError,
)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
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
