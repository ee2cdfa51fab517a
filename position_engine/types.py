"""
Position Engine - Core Types.

============================================================
PURPOSE
============================================================
Type definitions for the position lifecycle.

TYPES:
- PositionStatus: Bought / Sold / Failed
- Position: persisted record, one per asset
- TradeReason: why a sell was triggered
- SellSizing: how a sell amount is interpreted
- ExecutionResultCode, BuyResult, SellResult: outcomes

Amounts and prices are Decimal throughout so threshold
arithmetic is exact (100 x 1.10 == 110).

============================================================
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional


ZERO = Decimal("0")

# entryPrice is always written with at least this many places
ENTRY_PRICE_PLACES = 10


# ============================================================
# DECIMAL HELPERS
# ============================================================

def to_decimal(value: Any) -> Decimal:
    """
    Convert an API or file value to Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValueError: value is empty, not numeric, or not finite
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Not a number: {value!r}")
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}") from None

    if not result.is_finite():
        raise ValueError(f"Not a finite number: {value!r}")
    return result


def format_decimal(value: Decimal, min_places: int = 0) -> str:
    """Render a Decimal as plain text, padding to min_places decimals."""
    exponent = value.as_tuple().exponent
    places = -exponent if isinstance(exponent, int) and exponent < 0 else 0
    if places < min_places:
        value = value.quantize(Decimal(1).scaleb(-min_places))
    return format(value, "f")


# ============================================================
# ENUMS
# ============================================================

class PositionStatus(Enum):
    """Position lifecycle status."""

    BOUGHT = "Bought"
    """Open, monitored, eligible to sell."""

    SOLD = "Sold"
    """Closed; reopened by a new buy."""

    FAILED = "Failed"
    """Sell retries exhausted; operator action required."""

    @classmethod
    def parse(cls, value: str) -> "PositionStatus":
        """Parse a stored status, case-insensitively."""
        if isinstance(value, str):
            for status in cls:
                if status.value.lower() == value.strip().lower():
                    return status
        raise ValueError(f"Unknown position status: {value!r}")

    @property
    def is_open(self) -> bool:
        return self is PositionStatus.BOUGHT


class TradeReason(Enum):
    """Why an order was placed."""

    TAKE_PROFIT = "TP"
    STOP_LOSS = "SL"
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class SellSizing(Enum):
    """How a requested sell amount is interpreted."""

    QUOTE = "quote"
    """Amount is base currency; units = amount / current price."""

    UNITS = "units"
    """Amount is already in asset units."""


class ExecutionResultCode(Enum):
    """Execution result codes."""

    # Success
    SUCCESS = "SUCCESS"
    """Order filled and recorded."""

    # Rejections (nothing submitted)
    REJECTED_BUY_IN_FLIGHT = "REJECTED_BUY_IN_FLIGHT"
    """Another buy for the asset is still running."""

    REJECTED_SELL_IN_FLIGHT = "REJECTED_SELL_IN_FLIGHT"
    """Another sell for the asset is still running."""

    REJECTED_NOT_OPEN = "REJECTED_NOT_OPEN"
    """No Bought position to sell."""

    REJECTED_POSITION_FAILED = "REJECTED_POSITION_FAILED"
    """Position is Failed and needs operator action."""

    REJECTED_INSUFFICIENT_BALANCE = "REJECTED_INSUFFICIENT_BALANCE"
    """Held units or balance do not cover the order."""

    REJECTED_INVALID_AMOUNT = "REJECTED_INVALID_AMOUNT"
    """Amount is zero or negative."""

    REJECTED_DISABLED = "REJECTED_DISABLED"
    """Trading is switched off."""

    # Failures (something was attempted)
    FAILED_NO_PRICE = "FAILED_NO_PRICE"
    """No quote available for sizing."""

    FAILED_EXCHANGE = "FAILED_EXCHANGE"
    """Execution API call failed."""

    FAILED_RETRIES_EXHAUSTED = "FAILED_RETRIES_EXHAUSTED"
    """Sell retries exhausted; position marked Failed."""

    FAILED_STORE = "FAILED_STORE"
    """Order result could not be recorded."""

    FAILED_INTERNAL = "FAILED_INTERNAL"
    """Unexpected internal error."""

    def is_success(self) -> bool:
        """Check if result is success."""
        return self is ExecutionResultCode.SUCCESS

    def is_rejection(self) -> bool:
        """Check if nothing was submitted."""
        return self.value.startswith("REJECTED_")


# ============================================================
# POSITION
# ============================================================

# Field names used by older records.json files
_LEGACY_KEYS = {
    "sol": "investedAmount",
    "tokens": "unitsHeld",
    "bought_at": "entryPrice",
    "price": "lastObservedPrice",
    "sold_at": "exitPrice",
    "sold_for": "proceeds",
}


@dataclass(frozen=True)
class Position:
    """
    Persisted position record, keyed by asset.

    Immutable: every change produces a new record through
    the reducers in state_machine.
    """

    asset: str
    """Traded instrument identifier."""

    status: PositionStatus
    """Lifecycle status."""

    invested_amount: Decimal = ZERO
    """Base currency spent to acquire the position."""

    units_held: Decimal = ZERO
    """Asset units currently held."""

    entry_price: Decimal = ZERO
    """Price at which the position was opened."""

    last_observed_price: Decimal = ZERO
    """Most recent polled price."""

    exit_price: Decimal = ZERO
    """Price realized at close."""

    proceeds: Decimal = ZERO
    """Base currency received at close."""

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the records file."""
        return {
            "asset": self.asset,
            "investedAmount": format_decimal(self.invested_amount),
            "unitsHeld": format_decimal(self.units_held),
            "entryPrice": format_decimal(self.entry_price, ENTRY_PRICE_PLACES),
            "lastObservedPrice": format_decimal(self.last_observed_price),
            "status": self.status.value,
            "exitPrice": format_decimal(self.exit_price),
            "proceeds": format_decimal(self.proceeds),
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "Position":
        """
        Deserialize a records file entry.

        Accepts both the current layout and the legacy
        (mint/sol/tokens/bought_at/...) layout.

        Raises:
            ValueError: malformed entry
        """
        if not isinstance(data, dict):
            raise ValueError(f"Record for {key} is not an object")

        fields = dict(data)
        for legacy, current in _LEGACY_KEYS.items():
            if legacy in fields and current not in fields:
                fields[current] = fields.pop(legacy)

        asset = fields.get("asset") or fields.get("mint") or key
        if asset != key:
            raise ValueError(f"Record key {key} does not match asset {asset}")

        def number(name: str) -> Decimal:
            raw = fields.get(name, 0)
            value = to_decimal(raw if raw not in ("", None) else 0)
            if value < 0:
                raise ValueError(f"{name} is negative for {key}")
            return value

        return cls(
            asset=key,
            status=PositionStatus.parse(fields.get("status", "")),
            invested_amount=number("investedAmount"),
            units_held=number("unitsHeld"),
            entry_price=number("entryPrice"),
            last_observed_price=number("lastObservedPrice"),
            exit_price=number("exitPrice"),
            proceeds=number("proceeds"),
        )

    def evolve(self, **changes: Any) -> "Position":
        """Return a copy with the given fields changed."""
        return replace(self, **changes)


# ============================================================
# EXECUTION RESULTS
# ============================================================

@dataclass
class BuyResult:
    """Outcome of OrderExecutor.buy()."""

    asset: str
    result_code: ExecutionResultCode
    amount: Decimal = ZERO
    tokens_received: Decimal = ZERO
    execution_price: Decimal = ZERO
    tx_ref: Optional[str] = None
    position: Optional[Position] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.result_code.is_success()


@dataclass
class SellResult:
    """Outcome of OrderExecutor.sell()."""

    asset: str
    result_code: ExecutionResultCode
    reason: TradeReason = TradeReason.MANUAL
    quantity: Decimal = ZERO
    proceeds: Decimal = ZERO
    exit_price: Decimal = ZERO
    attempts: int = 0
    tx_ref: Optional[str] = None
    position: Optional[Position] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.result_code.is_success()
