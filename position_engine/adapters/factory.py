"""
Execution Adapter Factory.

============================================================
PURPOSE
============================================================
Creates the adapter named by EngineConfig.adapter.

USAGE
```python
adapter = create_adapter("http", config)
adapter = create_adapter("mock", config)
```

============================================================
"""

import logging
from typing import Callable, Dict

from core.exceptions import ConfigurationError

from ..config import EngineConfig
from .base import ExecutionAdapter
from .http import HttpExecutionAdapter
from .mock import MockConfig, MockExecutionAdapter


logger = logging.getLogger(__name__)


def _create_http(config: EngineConfig) -> ExecutionAdapter:
    return HttpExecutionAdapter(
        config.api,
        timeout_seconds=config.timeout.request_timeout_seconds,
        base_asset=config.base_asset,
    )


def _create_mock(config: EngineConfig) -> ExecutionAdapter:
    return MockExecutionAdapter(MockConfig(base_asset=config.base_asset))


_REGISTRY: Dict[str, Callable[[EngineConfig], ExecutionAdapter]] = {
    "http": _create_http,
    "mock": _create_mock,
}


def create_adapter(name: str, config: EngineConfig) -> ExecutionAdapter:
    """
    Create execution adapter.

    Raises:
        ConfigurationError: unknown adapter name
    """
    factory = _REGISTRY.get(name.lower())
    if factory is None:
        raise ConfigurationError(
            f"Unknown adapter: {name}",
            config_key="ADAPTER",
            actual_value=name,
        )

    adapter = factory(config)
    logger.info(f"Created {adapter.adapter_id} adapter")
    return adapter


__all__ = ["create_adapter"]
