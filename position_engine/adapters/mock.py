"""
Position Engine - Mock Execution Adapter.

============================================================
PURPOSE
============================================================
In-memory adapter for tests and --dry-run.

FEATURES:
- Configurable latency
- Error injection per operation (fail next N calls)
- Order gate to hold orders in flight
- Full call tracking

============================================================
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from core.exceptions import ExchangeError

from ..config import DEFAULT_SOL_ADDRESS
from ..types import ZERO
from .base import BuyFill, ExecutionAdapter, OrderRequest, SellFill


logger = logging.getLogger(__name__)


# ============================================================
# MOCK CONFIGURATION
# ============================================================

@dataclass
class MockConfig:
    """Configuration for mock adapter."""

    latency_seconds: float = 0.0
    """Simulated latency per call."""

    base_asset: str = DEFAULT_SOL_ADDRESS
    """Identifier of the base currency."""

    initial_base_balance: Decimal = Decimal("10")
    """Starting base currency balance."""

    default_price: Decimal = Decimal("1")
    """Price for assets without an explicit one."""


# ============================================================
# MOCK EXECUTION ADAPTER
# ============================================================

class MockExecutionAdapter(ExecutionAdapter):
    """
    Mock execution adapter for testing.

    Buys spend base balance at the current price and credit
    asset units; sells do the reverse. Injected failures are
    raised as retryable ExchangeError unless stated otherwise.
    """

    def __init__(self, config: Optional[MockConfig] = None):
        self._config = config or MockConfig()
        self._connected = False

        self._prices: Dict[str, Decimal] = {}
        self._balances: Dict[str, Decimal] = {
            self._config.base_asset: self._config.initial_base_balance,
        }

        # Error injection: operation -> (remaining, code, retryable)
        self._failures: Dict[str, List] = {}

        # Set while orders may proceed
        self._gate = asyncio.Event()
        self._gate.set()

        self.calls: List[str] = []
        """Operation names in call order."""

        self.orders: List[OrderRequest] = []
        """Every buy and sell request received."""

    @property
    def adapter_id(self) -> str:
        return "mock"

    @property
    def is_connected(self) -> bool:
        return self._connected

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        self._connected = True
        logger.info("MockExecutionAdapter connected")

    async def disconnect(self) -> None:
        self._connected = False
        logger.info("MockExecutionAdapter disconnected")

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def buy(self, request: OrderRequest) -> BuyFill:
        self.calls.append("buy")
        self.orders.append(request)
        await self._simulate_latency(order=True)
        self._maybe_fail("buy")

        price = self._get_price(request.asset)
        base = self._config.base_asset
        if self._balances.get(base, ZERO) < request.amount:
            raise ExchangeError(
                "Insufficient base balance",
                error_code="EXC_BAD_REQUEST",
                is_retryable=False,
            )

        tokens = request.amount / price
        self._balances[base] -= request.amount
        self._balances[request.asset] = self._balances.get(request.asset, ZERO) + tokens

        return BuyFill(
            tokens=tokens,
            execution_price=price,
            tx_ref=str(uuid.uuid4()),
        )

    async def sell(self, request: OrderRequest) -> SellFill:
        self.calls.append("sell")
        self.orders.append(request)
        await self._simulate_latency(order=True)
        self._maybe_fail("sell")

        price = self._get_price(request.asset)
        proceeds = request.amount * price

        held = self._balances.get(request.asset, ZERO) - request.amount
        self._balances[request.asset] = held if held > 0 else ZERO
        base = self._config.base_asset
        self._balances[base] = self._balances.get(base, ZERO) + proceeds

        return SellFill(
            proceeds=proceeds,
            tx_ref=str(uuid.uuid4()),
            execution_price=price,
        )

    # --------------------------------------------------------
    # MARKET DATA / ACCOUNT
    # --------------------------------------------------------

    async def quote(self, asset: str) -> Decimal:
        self.calls.append("quote")
        await self._simulate_latency()
        self._maybe_fail("quote")
        return self._get_price(asset)

    async def balance(self, asset: str) -> Decimal:
        self.calls.append("balance")
        await self._simulate_latency()
        self._maybe_fail("balance")
        return self._balances.get(asset, ZERO)

    # --------------------------------------------------------
    # TEST HELPERS
    # --------------------------------------------------------

    def set_price(self, asset: str, price) -> None:
        """Set price for testing."""
        self._prices[asset] = Decimal(str(price))

    def set_balance(self, asset: str, amount) -> None:
        """Set balance for testing."""
        self._balances[asset] = Decimal(str(amount))

    def fail_next(
        self,
        operation: str,
        count: int = 1,
        error_code: str = "NET_TRANSIENT",
        is_retryable: bool = True,
    ) -> None:
        """Make the next `count` calls of an operation raise ExchangeError."""
        self._failures[operation] = [count, error_code, is_retryable]

    def hold_orders(self) -> None:
        """Keep buys and sells in flight until release_orders()."""
        self._gate.clear()

    def release_orders(self) -> None:
        self._gate.set()

    def call_count(self, operation: str) -> int:
        return self.calls.count(operation)

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _get_price(self, asset: str) -> Decimal:
        return self._prices.get(asset, self._config.default_price)

    def _maybe_fail(self, operation: str) -> None:
        failure = self._failures.get(operation)
        if not failure or failure[0] <= 0:
            return

        failure[0] -= 1
        _, code, retryable = failure
        raise ExchangeError(
            f"Injected {operation} failure",
            error_code=code,
            is_retryable=retryable,
        )

    async def _simulate_latency(self, order: bool = False) -> None:
        if order:
            await self._gate.wait()
        if self._config.latency_seconds > 0:
            await asyncio.sleep(self._config.latency_seconds)
        else:
            await asyncio.sleep(0)


__all__ = ["MockConfig", "MockExecutionAdapter"]
