"""
Position Engine - Error Codes.

============================================================
PURPOSE
============================================================
Registry of the error codes stamped on BuyResult and
SellResult.

Each code carries:
- severity: log level of the line reporting it
- is_retryable: what the HTTP adapter flags on ExchangeError
  (quotes stop early on non-retryable codes; sells retry
  every failure regardless)
- action: what the operator should do, appended to the log

PREFIXES:
VAL_  pre-submission checks
NET_  transport failures and timeouts
EXC_  API answered but did not fill
PRC_  no usable quote
STO_  records file
INT_  unexpected

============================================================
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict


class ErrorSeverity(Enum):
    """Log level for a failure code."""

    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass(frozen=True)
class ErrorCodeInfo:
    """Registry entry."""

    code: str
    severity: ErrorSeverity
    is_retryable: bool
    action: str


def _entries(*infos: ErrorCodeInfo) -> Dict[str, ErrorCodeInfo]:
    return {info.code: info for info in infos}


W, E, C = ErrorSeverity.WARNING, ErrorSeverity.ERROR, ErrorSeverity.CRITICAL

ERROR_CODES: Dict[str, ErrorCodeInfo] = _entries(
    # Validation
    ErrorCodeInfo("VAL_TRADING_DISABLED", W, False, "set TRADING_ENABLED=true to trade"),
    ErrorCodeInfo("VAL_INVALID_AMOUNT", E, False, "check BUY_AMOUNT / SELL_AMOUNT"),
    ErrorCodeInfo("VAL_INSUFFICIENT_BALANCE", W, False, "reduce the order size or fund the wallet"),
    ErrorCodeInfo("VAL_BUY_IN_FLIGHT", W, False, "none; the next interval tries again"),
    ErrorCodeInfo("VAL_SELL_IN_FLIGHT", W, False, "none; the running sell owns the position"),
    ErrorCodeInfo("VAL_POSITION_NOT_OPEN", W, False, "none"),
    ErrorCodeInfo("VAL_POSITION_FAILED", E, False, "settle the holding by hand and edit the records file"),
    # Network
    ErrorCodeInfo("NET_TRANSIENT", W, True, "retry with backoff"),
    ErrorCodeInfo("NET_TIMEOUT", W, True, "retry with backoff"),
    ErrorCodeInfo("NET_RATE_LIMITED", W, True, "retry with backoff; raise PRICE_CHECK_DELAY"),
    # Exchange
    ErrorCodeInfo("EXC_NOT_FILLED", E, True, "check liquidity and slippage"),
    ErrorCodeInfo("EXC_BAD_REQUEST", E, False, "check PRIVATE_KEY and order parameters"),
    ErrorCodeInfo("EXC_BAD_RESPONSE", E, True, "check the API status"),
    # Price
    ErrorCodeInfo("PRC_UNAVAILABLE", E, False, "none; the next cycle polls again"),
    # Store
    ErrorCodeInfo("STO_WRITE_FAILED", C, False, "reconcile the records file with the wallet"),
    ErrorCodeInfo("STO_UNREADABLE", E, True, "fix or restore the records file"),
    # Internal
    ErrorCodeInfo("INT_UNEXPECTED_ERROR", C, False, "investigate the traceback in the logs"),
)


def get_error_info(code: str) -> ErrorCodeInfo:
    """Registry entry; unknown codes are non-retryable errors."""
    return ERROR_CODES.get(code) or ErrorCodeInfo(code, E, False, "investigate the logs")


def log_level(code: str) -> int:
    """logging level for a line reporting this code."""
    return get_error_info(code).severity.value


def is_retryable(code: str) -> bool:
    return get_error_info(code).is_retryable


def map_http_status(status: int) -> str:
    """Map an HTTP status from the execution/price APIs to an error code."""
    if status == 429:
        return "NET_RATE_LIMITED"
    if status >= 500:
        return "NET_TRANSIENT"
    return "EXC_BAD_REQUEST"


__all__ = [
    "ErrorSeverity",
    "ErrorCodeInfo",
    "ERROR_CODES",
    "get_error_info",
    "log_level",
    "is_retryable",
    "map_http_status",
]
