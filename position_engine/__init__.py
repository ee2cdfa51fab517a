"""
Position Engine.

============================================================
PURPOSE
============================================================
Position lifecycle for one operator and one wallet:

- PositionStore: durable asset -> Position mapping
- PriceOracleClient: latest quote with bounded retry
- OrderExecutor: buys and sells reconciled into the store
- MonitorLoop: take-profit / stop-loss sells
- Scheduler: fixed-interval buys and sells

============================================================
"""

__version__ = "1.0.0"

from .config import EngineConfig, RetryConfig, TimeoutConfig, ApiConfig, load_config
from .monitor import CycleReport, MonitorLoop, evaluate_thresholds
from .order_executor import OrderExecutor
from .position_store import PositionStore, StoreSnapshot
from .price_oracle import PriceOracleClient
from .retry import BackoffStrategy, RetryPolicy
from .scheduler import Scheduler
from .types import (
    BuyResult,
    ExecutionResultCode,
    Position,
    PositionStatus,
    SellResult,
    SellSizing,
    TradeReason,
)


__all__ = [
    "__version__",
    # Config
    "EngineConfig",
    "RetryConfig",
    "TimeoutConfig",
    "ApiConfig",
    "load_config",
    # Components
    "PositionStore",
    "StoreSnapshot",
    "PriceOracleClient",
    "OrderExecutor",
    "MonitorLoop",
    "CycleReport",
    "evaluate_thresholds",
    "Scheduler",
    # Retry
    "BackoffStrategy",
    "RetryPolicy",
    # Types
    "Position",
    "PositionStatus",
    "TradeReason",
    "SellSizing",
    "ExecutionResultCode",
    "BuyResult",
    "SellResult",
]
