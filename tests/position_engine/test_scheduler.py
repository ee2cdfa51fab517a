"""
Scheduler Tests.

============================================================
PURPOSE
============================================================
Buy/sell timers and their skip conditions.

============================================================
"""

import asyncio
from decimal import Decimal

import pytest

from core.clock import SystemClock
from position_engine.scheduler import Scheduler
from position_engine.types import ExecutionResultCode, PositionStatus, SellSizing, TradeReason
from tests.factories import ASSET, make_position, seed, wait_until


@pytest.fixture
def schedule_config(config):
    config.buy_amount = Decimal("1")
    config.sell_amount = Decimal("50")
    return config


@pytest.fixture
def scheduler(executor, adapter, schedule_config, clock):
    return Scheduler(executor, adapter, schedule_config, clock=clock)


# ============================================================
# TICKS
# ============================================================

class TestBuyTick:
    """Tests for Scheduler.buy_tick()."""

    @pytest.mark.asyncio
    async def test_buys_target_asset(self, scheduler, adapter, store):
        adapter.set_price(ASSET, "0.5")

        result = await scheduler.buy_tick()

        assert result.result_code is ExecutionResultCode.SUCCESS
        assert (await store.get(ASSET)).units_held == Decimal("2")
        assert adapter.calls == ["balance", "buy"]

    @pytest.mark.asyncio
    async def test_skips_when_balance_too_low(self, scheduler, adapter, schedule_config):
        adapter.set_balance(schedule_config.base_asset, "0.5")

        assert await scheduler.buy_tick() is None
        assert adapter.call_count("buy") == 0

    @pytest.mark.asyncio
    async def test_skips_when_balance_unavailable(self, scheduler, adapter):
        adapter.fail_next("balance")

        assert await scheduler.buy_tick() is None
        assert adapter.call_count("buy") == 0

    @pytest.mark.asyncio
    async def test_skips_while_buy_in_flight(self, scheduler, executor, adapter):
        adapter.hold_orders()
        first = asyncio.create_task(executor.buy(ASSET, "1"))
        await wait_until(lambda: adapter.call_count("buy") == 1)

        assert await scheduler.buy_tick() is None
        assert adapter.call_count("balance") == 0

        adapter.release_orders()
        await first


class TestSellTick:
    """Tests for Scheduler.sell_tick()."""

    @pytest.mark.asyncio
    async def test_sells_configured_amount(self, scheduler, adapter, store):
        await seed(store, make_position(units_held="10"))
        adapter.set_price(ASSET, "100")

        result = await scheduler.sell_tick()

        assert result.is_success
        assert result.reason is TradeReason.SCHEDULED
        assert result.quantity == Decimal("0.5")
        assert (await store.get(ASSET)).units_held == Decimal("9.5")

    @pytest.mark.asyncio
    async def test_without_position_is_rejected(self, scheduler, adapter):
        result = await scheduler.sell_tick()

        assert result.result_code is ExecutionResultCode.REJECTED_NOT_OPEN
        assert adapter.calls == []


# ============================================================
# LIFECYCLE
# ============================================================

class TestSchedulerLifecycle:
    """Tests for start() and stop()."""

    @pytest.mark.asyncio
    async def test_disabled_trading_starts_nothing(self, scheduler, schedule_config):
        schedule_config.trading_enabled = False
        schedule_config.buy_interval_seconds = 1.0

        scheduler.start()

        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_zero_intervals_start_nothing(self, scheduler):
        scheduler.start()

        assert not scheduler.is_running
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_buy_timer_fires_repeatedly(self, scheduler, schedule_config, adapter, clock):
        schedule_config.buy_interval_seconds = 30.0
        adapter.set_balance(schedule_config.base_asset, "100")

        scheduler.start()
        assert scheduler.is_running
        await wait_until(lambda: adapter.call_count("buy") >= 3)
        await scheduler.stop(timeout=1.0)

        assert not scheduler.is_running
        assert clock.sleeps[:3] == [30.0, 30.0, 30.0]

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_tick(self, executor, adapter, schedule_config, store):
        schedule_config.sell_interval_seconds = 0.01
        schedule_config.sell_sizing = SellSizing.UNITS
        await seed(store, make_position(units_held="1000"))
        adapter.hold_orders()
        scheduler = Scheduler(executor, adapter, schedule_config, clock=SystemClock())

        scheduler.start()
        await asyncio.wait_for(_until_sell_called(adapter), timeout=2.0)
        assert scheduler.pending_ticks >= 1

        stopping = asyncio.create_task(scheduler.stop(timeout=2.0))
        await asyncio.sleep(0.05)
        assert not stopping.done()
        adapter.release_orders()
        await stopping

        assert scheduler.pending_ticks == 0
        position = await store.get(ASSET)
        assert position.status is PositionStatus.SOLD
        assert position.units_held == Decimal("950")

    @pytest.mark.asyncio
    async def test_stop_cancels_ticks_after_timeout(self, executor, adapter, schedule_config):
        schedule_config.buy_interval_seconds = 0.01
        adapter.hold_orders()
        scheduler = Scheduler(executor, adapter, schedule_config, clock=SystemClock())

        scheduler.start()
        await asyncio.wait_for(_until_buy_called(adapter), timeout=2.0)
        await scheduler.stop(timeout=0.05)

        assert scheduler.pending_ticks == 0
        assert not executor.is_buy_in_flight(ASSET)


async def _until_sell_called(adapter):
    while adapter.call_count("sell") == 0:
        await asyncio.sleep(0.005)


async def _until_buy_called(adapter):
    while adapter.call_count("buy") == 0:
        await asyncio.sleep(0.005)
