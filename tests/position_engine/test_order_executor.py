"""
Order Executor Tests.

============================================================
PURPOSE
============================================================
Buy/sell execution and reconciliation into the store.

TEST CATEGORIES:
- Buy: open, reopen, accumulate, rejections
- Buy concurrency: per-asset exclusion
- Sell: sizing, balance checks, retries, Failed
- Sell concurrency: second sell rejected

============================================================
"""

import asyncio
import logging
from decimal import Decimal

import pytest

from position_engine.types import (
    ExecutionResultCode,
    PositionStatus,
    SellSizing,
    TradeReason,
    ZERO,
)
from tests.factories import ASSET, OTHER_ASSET, make_position, seed, wait_until


# ============================================================
# BUY
# ============================================================

class TestBuy:
    """Tests for OrderExecutor.buy()."""

    @pytest.mark.asyncio
    async def test_first_buy_creates_position(self, executor, adapter, store):
        adapter.set_price(ASSET, "0.5")

        result = await executor.buy(ASSET, "1")

        assert result.result_code is ExecutionResultCode.SUCCESS
        assert result.tokens_received == Decimal("2")
        position = await store.get(ASSET)
        assert position.status is PositionStatus.BOUGHT
        assert position.entry_price == Decimal("0.5")
        assert position.invested_amount == Decimal("1")
        assert position.units_held == Decimal("2")

    @pytest.mark.asyncio
    async def test_buy_reopens_sold_position(self, executor, adapter, store):
        await seed(store, make_position(
            status=PositionStatus.SOLD,
            units_held="0",
            exit_price=Decimal("120"),
            proceeds=Decimal("1.2"),
        ))
        adapter.set_price(ASSET, "80")

        result = await executor.buy(ASSET, "2")

        assert result.is_success
        position = await store.get(ASSET)
        assert position.status is PositionStatus.BOUGHT
        assert position.exit_price == ZERO
        assert position.proceeds == ZERO
        assert position.entry_price == Decimal("80")
        assert position.invested_amount == Decimal("2")
        assert position.units_held == Decimal("2") / Decimal("80")

    @pytest.mark.asyncio
    async def test_buy_accumulates_on_bought(self, executor, adapter, store):
        await seed(store, make_position(entry_price="100", units_held="10", invested_amount="1"))
        adapter.set_price(ASSET, "0.25")

        await executor.buy(ASSET, "1")

        position = await store.get(ASSET)
        assert position.invested_amount == Decimal("2")
        assert position.units_held == Decimal("14")
        assert position.entry_price == Decimal("100")

    @pytest.mark.asyncio
    async def test_buy_on_failed_position_is_rejected(self, executor, adapter, store):
        await seed(store, make_position(status=PositionStatus.FAILED))

        result = await executor.buy(ASSET, "1")

        assert result.result_code is ExecutionResultCode.REJECTED_POSITION_FAILED
        assert adapter.call_count("buy") == 0
        assert (await store.get(ASSET)).status is PositionStatus.FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1", "abc"])
    async def test_invalid_amount_is_rejected(self, executor, adapter, amount):
        result = await executor.buy(ASSET, amount)

        assert result.result_code is ExecutionResultCode.REJECTED_INVALID_AMOUNT
        assert adapter.call_count("buy") == 0

    @pytest.mark.asyncio
    async def test_disabled_trading_rejects(self, executor, adapter, config):
        config.trading_enabled = False

        result = await executor.buy(ASSET, "1")

        assert result.result_code is ExecutionResultCode.REJECTED_DISABLED
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_failure_logged_at_code_severity(self, executor, adapter, caplog):
        adapter.fail_next("buy", error_code="EXC_BAD_REQUEST", is_retryable=False)

        with caplog.at_level(logging.INFO, logger="position_engine.order_executor"):
            await executor.buy(ASSET, "1")

        failure = [r for r in caplog.records if "EXC_BAD_REQUEST" in r.getMessage()]
        assert failure[0].levelno == logging.ERROR
        assert "check PRIVATE_KEY" in failure[0].getMessage()

    @pytest.mark.asyncio
    async def test_exchange_failure_is_not_retried(self, executor, adapter, store):
        adapter.fail_next("buy")

        result = await executor.buy(ASSET, "1")

        assert result.result_code is ExecutionResultCode.FAILED_EXCHANGE
        assert result.error_code == "NET_TRANSIENT"
        assert adapter.call_count("buy") == 1
        assert await store.get(ASSET) is None

    @pytest.mark.asyncio
    async def test_corrupt_store_blocks_buy(self, executor, adapter, records_path):
        records_path.write_text("{broken")

        result = await executor.buy(ASSET, "1")

        assert result.result_code is ExecutionResultCode.FAILED_STORE
        assert adapter.call_count("buy") == 0


class TestBuyConcurrency:
    """Tests for per-asset buy exclusion."""

    @pytest.mark.asyncio
    async def test_second_buy_is_rejected_while_first_in_flight(self, executor, adapter, store):
        adapter.hold_orders()
        first = asyncio.create_task(executor.buy(ASSET, "1"))
        await wait_until(lambda: adapter.call_count("buy") == 1)

        second = await executor.buy(ASSET, "1")

        assert second.result_code is ExecutionResultCode.REJECTED_BUY_IN_FLIGHT
        assert executor.is_buy_in_flight(ASSET)

        adapter.release_orders()
        assert (await first).is_success
        assert adapter.call_count("buy") == 1
        assert not executor.is_buy_in_flight(ASSET)
        assert (await store.get(ASSET)).invested_amount == Decimal("1")

    @pytest.mark.asyncio
    async def test_buys_for_different_assets_run_together(self, executor, adapter):
        adapter.hold_orders()
        first = asyncio.create_task(executor.buy(ASSET, "1"))
        second = asyncio.create_task(executor.buy(OTHER_ASSET, "1"))
        await wait_until(lambda: adapter.call_count("buy") == 2)

        adapter.release_orders()

        assert (await first).is_success
        assert (await second).is_success

    @pytest.mark.asyncio
    async def test_lock_released_after_failure(self, executor, adapter):
        adapter.fail_next("buy")
        assert not (await executor.buy(ASSET, "1")).is_success

        result = await executor.buy(ASSET, "1")

        assert result.is_success


# ============================================================
# SELL
# ============================================================

class TestSell:
    """Tests for OrderExecutor.sell()."""

    @pytest.mark.asyncio
    async def test_full_sell_closes_position(self, executor, adapter, store):
        await seed(store, make_position(entry_price="100", units_held="10"))
        adapter.set_price(ASSET, "110")

        result = await executor.sell(ASSET, None, TradeReason.TAKE_PROFIT)

        assert result.result_code is ExecutionResultCode.SUCCESS
        assert result.reason is TradeReason.TAKE_PROFIT
        assert result.quantity == Decimal("10")
        assert result.attempts == 1
        position = await store.get(ASSET)
        assert position.status is PositionStatus.SOLD
        assert position.exit_price == Decimal("110")
        assert position.proceeds == Decimal("1100")
        assert position.units_held == ZERO

    @pytest.mark.asyncio
    async def test_quote_sizing_converts_amount(self, executor, adapter, store):
        await seed(store, make_position(units_held="10"))
        adapter.set_price(ASSET, "110")

        result = await executor.sell(ASSET, "220", TradeReason.SCHEDULED)

        assert result.is_success
        assert result.quantity == Decimal("2")
        assert adapter.orders[-1].amount == Decimal("2")
        position = await store.get(ASSET)
        assert position.status is PositionStatus.SOLD
        assert position.units_held == Decimal("8")

    @pytest.mark.asyncio
    async def test_units_sizing_uses_amount_directly(self, executor, adapter, store, config):
        config.sell_sizing = SellSizing.UNITS
        await seed(store, make_position(units_held="10"))

        result = await executor.sell(ASSET, "3")

        assert result.quantity == Decimal("3")
        assert adapter.call_count("quote") == 0

    @pytest.mark.asyncio
    async def test_more_than_held_is_rejected(self, executor, adapter, store, config):
        config.sell_sizing = SellSizing.UNITS
        await seed(store, make_position(units_held="10"))

        result = await executor.sell(ASSET, "11")

        assert result.result_code is ExecutionResultCode.REJECTED_INSUFFICIENT_BALANCE
        assert adapter.call_count("sell") == 0
        assert (await store.get(ASSET)).status is PositionStatus.BOUGHT

    @pytest.mark.asyncio
    async def test_no_price_fails_without_submitting(self, executor, adapter, store):
        await seed(store, make_position())
        adapter.fail_next("quote", count=100)

        result = await executor.sell(ASSET, "1")

        assert result.result_code is ExecutionResultCode.FAILED_NO_PRICE
        assert adapter.call_count("sell") == 0
        assert (await store.get(ASSET)).status is PositionStatus.BOUGHT

    @pytest.mark.asyncio
    async def test_wallet_balance_checked_when_enabled(self, executor, adapter, store, config):
        config.verify_token_balance = True
        await seed(store, make_position(units_held="10"))

        rejected = await executor.sell(ASSET, None)
        adapter.set_balance(ASSET, "10")
        accepted = await executor.sell(ASSET, None)

        assert rejected.result_code is ExecutionResultCode.REJECTED_INSUFFICIENT_BALANCE
        assert accepted.is_success

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,code", [
        (None, ExecutionResultCode.REJECTED_NOT_OPEN),
        (PositionStatus.SOLD, ExecutionResultCode.REJECTED_NOT_OPEN),
        (PositionStatus.FAILED, ExecutionResultCode.REJECTED_POSITION_FAILED),
    ])
    async def test_sell_requires_open_position(self, executor, adapter, store, status, code):
        if status is not None:
            await seed(store, make_position(status=status))

        result = await executor.sell(ASSET, None)

        assert result.result_code is code
        assert adapter.call_count("sell") == 0

    @pytest.mark.asyncio
    async def test_disabled_trading_rejects(self, executor, adapter, store, config):
        await seed(store, make_position())
        config.trading_enabled = False

        result = await executor.sell(ASSET, None)

        assert result.result_code is ExecutionResultCode.REJECTED_DISABLED
        assert adapter.calls == []


class TestSellRetries:
    """Tests for bounded sell retries (MAX_SELL_RETRIES = 3 in fixtures)."""

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, executor, adapter, store, clock):
        await seed(store, make_position())
        adapter.fail_next("sell", count=2)

        result = await executor.sell(ASSET, None)

        assert result.is_success
        assert result.attempts == 3
        assert clock.sleeps == [2.0, 4.0]
        assert (await store.get(ASSET)).status is PositionStatus.SOLD

    @pytest.mark.asyncio
    async def test_exhaustion_marks_failed_exactly_once(self, executor, adapter, store, clock):
        await seed(store, make_position())
        generation = store.generation
        adapter.fail_next("sell", count=100)

        result = await executor.sell(ASSET, None, TradeReason.STOP_LOSS)

        assert result.result_code is ExecutionResultCode.FAILED_RETRIES_EXHAUSTED
        assert result.attempts == 4
        assert adapter.call_count("sell") == 4
        assert clock.sleeps == [2.0, 4.0, 6.0]
        assert (await store.get(ASSET)).status is PositionStatus.FAILED
        assert store.generation == generation + 1

    @pytest.mark.asyncio
    async def test_failed_position_gets_no_more_attempts(self, executor, adapter, store):
        await seed(store, make_position())
        adapter.fail_next("sell", count=100)
        await executor.sell(ASSET, None)

        again = await executor.sell(ASSET, None)

        assert again.result_code is ExecutionResultCode.REJECTED_POSITION_FAILED
        assert adapter.call_count("sell") == 4

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_still_retried(self, executor, adapter, store, clock):
        await seed(store, make_position())
        adapter.fail_next("sell", count=100, error_code="EXC_BAD_REQUEST", is_retryable=False)

        result = await executor.sell(ASSET, None)

        assert result.result_code is ExecutionResultCode.FAILED_RETRIES_EXHAUSTED
        assert result.error_code == "EXC_BAD_REQUEST"
        assert result.attempts == 4
        assert adapter.call_count("sell") == 4
        assert clock.sleeps == [2.0, 4.0, 6.0]
        assert (await store.get(ASSET)).status is PositionStatus.FAILED

    @pytest.mark.asyncio
    async def test_single_rejection_then_success(self, executor, adapter, store, clock):
        await seed(store, make_position())
        adapter.fail_next("sell", error_code="EXC_BAD_REQUEST", is_retryable=False)

        result = await executor.sell(ASSET, None)

        assert result.is_success
        assert result.attempts == 2
        assert clock.sleeps == [2.0]
        assert (await store.get(ASSET)).status is PositionStatus.SOLD

    @pytest.mark.asyncio
    async def test_unexpected_error_is_retried(self, executor, adapter, store, clock):
        await seed(store, make_position())
        real_sell = adapter.sell
        errors = [RuntimeError("boom"), RuntimeError("boom")]

        async def flaky_sell(request):
            if errors:
                raise errors.pop(0)
            return await real_sell(request)

        adapter.sell = flaky_sell

        result = await executor.sell(ASSET, None)

        assert result.is_success
        assert result.attempts == 3
        assert clock.sleeps == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, adapter, store, oracle, config, clock):
        from position_engine.order_executor import OrderExecutor

        config.retry.sell_max_retries = 0
        executor = OrderExecutor(adapter, store, oracle, config, clock=clock)
        await seed(store, make_position())
        adapter.fail_next("sell", count=100)

        result = await executor.sell(ASSET, None)

        assert result.result_code is ExecutionResultCode.FAILED_RETRIES_EXHAUSTED
        assert adapter.call_count("sell") == 1


class TestSellConcurrency:
    """Tests for racing sells on one asset."""

    @pytest.mark.asyncio
    async def test_second_sell_is_rejected_while_first_in_flight(self, executor, adapter, store):
        await seed(store, make_position(units_held="10"))
        adapter.set_price(ASSET, "110")
        adapter.hold_orders()

        monitor_sell = asyncio.create_task(executor.sell(ASSET, None, TradeReason.TAKE_PROFIT))
        await wait_until(lambda: adapter.call_count("sell") == 1)
        scheduled = await executor.sell(ASSET, "1", TradeReason.SCHEDULED)

        assert scheduled.result_code is ExecutionResultCode.REJECTED_SELL_IN_FLIGHT

        adapter.release_orders()
        first = await monitor_sell
        assert first.is_success
        assert adapter.call_count("sell") == 1
        assert (await store.get(ASSET)).proceeds == Decimal("1100")

    @pytest.mark.asyncio
    async def test_sell_after_close_is_rejected(self, executor, adapter, store):
        await seed(store, make_position())

        first, second = await asyncio.gather(
            executor.sell(ASSET, None, TradeReason.TAKE_PROFIT),
            executor.sell(ASSET, None, TradeReason.SCHEDULED),
        )

        codes = {first.result_code, second.result_code}
        assert ExecutionResultCode.SUCCESS in codes
        assert codes & {
            ExecutionResultCode.REJECTED_SELL_IN_FLIGHT,
            ExecutionResultCode.REJECTED_NOT_OPEN,
        }
        assert adapter.call_count("sell") == 1

    @pytest.mark.asyncio
    async def test_price_poll_during_sell_is_not_lost(self, executor, adapter, store):
        from position_engine.state_machine import record_price

        await seed(store, make_position())
        adapter.hold_orders()
        sell = asyncio.create_task(executor.sell(ASSET, None))
        await wait_until(lambda: adapter.call_count("sell") == 1)

        await store.update(ASSET, lambda cur: record_price(cur, Decimal("95")))
        adapter.release_orders()
        await sell

        position = await store.get(ASSET)
        assert position.status is PositionStatus.SOLD
        assert position.last_observed_price == Decimal("95")
