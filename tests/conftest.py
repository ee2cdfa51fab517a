"""
Shared fixtures for position engine tests.

Every component gets a MockClock so retry and polling delays
are recorded instead of slept.
"""

from decimal import Decimal

import pytest

from core.clock import ClockFactory, MockClock
from position_engine.adapters.mock import MockExecutionAdapter
from position_engine.config import EngineConfig, RetryConfig
from position_engine.monitor import MonitorLoop
from position_engine.order_executor import OrderExecutor
from position_engine.position_store import PositionStore
from position_engine.price_oracle import PriceOracleClient
from tests.factories import ASSET


@pytest.fixture(autouse=True)
def reset_clock():
    yield
    ClockFactory.reset()


@pytest.fixture
def clock():
    return MockClock()


@pytest.fixture
def records_path(tmp_path):
    return tmp_path / "records.json"


@pytest.fixture
def config(records_path):
    return EngineConfig(
        target_asset=ASSET,
        take_profit_pct=Decimal("10"),
        stop_loss_pct=Decimal("10"),
        price_check_delay_seconds=0.5,
        poll_interval_seconds=5.0,
        cycle_delay_seconds=1.0,
        records_file=str(records_path),
        adapter="mock",
        retry=RetryConfig(
            price_max_retries=3,
            price_retry_delay_seconds=2.0,
            sell_max_retries=3,
            sell_base_delay_seconds=2.0,
        ),
    )


@pytest.fixture
def adapter():
    return MockExecutionAdapter()


@pytest.fixture
def store(records_path):
    return PositionStore(records_path)


@pytest.fixture
def oracle(adapter, config, clock):
    return PriceOracleClient(
        adapter,
        policy=config.retry.price_policy(),
        timeout_seconds=config.timeout.request_timeout_seconds,
        clock=clock,
    )


@pytest.fixture
def executor(adapter, store, oracle, config, clock):
    return OrderExecutor(adapter, store, oracle, config, clock=clock)


@pytest.fixture
def monitor(store, oracle, executor, config, clock):
    return MonitorLoop(store, oracle, executor, config, clock=clock)
