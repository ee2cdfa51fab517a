"""
Position Engine - Execution Adapter Base.

============================================================
PURPOSE
============================================================
Abstract interface over the execution, price and balance
APIs.

DESIGN PRINCIPLES:
- The engine never talks HTTP directly
- Every failure surfaces as core.exceptions.ExchangeError
  with is_retryable set
- Fully testable with the mock adapter

============================================================
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


# ============================================================
# ADAPTER REQUEST/RESPONSE TYPES
# ============================================================

@dataclass
class OrderRequest:
    """Request to buy or sell an asset."""

    asset: str
    """Asset identifier."""

    amount: Decimal
    """Base currency to spend (buy) or asset units to sell (sell)."""

    fee_hint: int = 0
    """Priority fee, opaque to the engine."""

    slippage_bps: int = 100
    """Maximum price deviation in basis points."""


@dataclass
class BuyFill:
    """Successful buy."""

    tokens: Decimal
    """Asset units received."""

    execution_price: Decimal
    """Price of the fill."""

    tx_ref: Optional[str] = None
    """Transaction reference."""

    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SellFill:
    """Successful sell."""

    proceeds: Decimal
    """Base currency received."""

    tx_ref: Optional[str] = None
    """Transaction reference."""

    execution_price: Optional[Decimal] = None
    """Price of the fill, when the API reports one."""

    raw_response: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# EXECUTION ADAPTER INTERFACE
# ============================================================

class ExecutionAdapter(ABC):
    """
    Abstract base class for execution adapters.

    Methods raise ExchangeError on any failure; callers
    decide whether to retry.
    """

    @property
    @abstractmethod
    def adapter_id(self) -> str:
        """Unique adapter identifier."""
        pass

    @property
    def is_connected(self) -> bool:
        return True

    async def connect(self) -> None:
        """Open network resources."""

    async def disconnect(self) -> None:
        """Release network resources."""

    @abstractmethod
    async def buy(self, request: OrderRequest) -> BuyFill:
        """Spend request.amount of base currency on request.asset."""
        pass

    @abstractmethod
    async def sell(self, request: OrderRequest) -> SellFill:
        """Sell request.amount units of request.asset."""
        pass

    @abstractmethod
    async def quote(self, asset: str) -> Decimal:
        """Latest price for the asset."""
        pass

    @abstractmethod
    async def balance(self, asset: str) -> Decimal:
        """Wallet balance of the asset."""
        pass

    async def __aenter__(self) -> "ExecutionAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()


__all__ = [
    "OrderRequest",
    "BuyFill",
    "SellFill",
    "ExecutionAdapter",
]
