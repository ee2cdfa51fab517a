"""
Position Engine - Adapters Package.

============================================================
PURPOSE
============================================================
Execution adapter implementations.

AVAILABLE ADAPTERS:
- HttpExecutionAdapter: hosted swap, price and balance APIs
- MockExecutionAdapter: for tests and dry runs

============================================================
"""

from .base import (
    BuyFill,
    ExecutionAdapter,
    OrderRequest,
    SellFill,
)
from .factory import create_adapter
from .http import HttpExecutionAdapter
from .logging_utils import mask_params, mask_value
from .mock import MockConfig, MockExecutionAdapter


__all__ = [
    # Base
    "BuyFill",
    "ExecutionAdapter",
    "OrderRequest",
    "SellFill",
    # Adapters
    "HttpExecutionAdapter",
    "MockExecutionAdapter",
    "MockConfig",
    # Factory
    "create_adapter",
    # Logging
    "mask_params",
    "mask_value",
]
