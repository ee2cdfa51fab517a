"""
Position Engine - Scheduler.

============================================================
PURPOSE
============================================================
Two independent fixed-interval timers:

- buy:  every BUY_INTERVAL, buy BUY_AMOUNT of the target
        asset unless a buy is already in flight or the base
        balance does not cover it
- sell: every SELL_INTERVAL, sell SELL_AMOUNT of the target
        asset

Each tick runs as its own task so a slow order never delays
the next tick. An interval of 0 disables that timer; the
master switch disables both.

============================================================
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import ExchangeError

from .adapters.base import ExecutionAdapter
from .config import EngineConfig
from .order_executor import OrderExecutor
from .types import BuyResult, SellResult, TradeReason


logger = logging.getLogger(__name__)


class Scheduler:
    """Periodic buy and sell timers for the target asset."""

    def __init__(
        self,
        executor: OrderExecutor,
        adapter: ExecutionAdapter,
        config: EngineConfig,
        clock: Optional[ClockProtocol] = None,
    ):
        self._executor = executor
        self._adapter = adapter
        self._config = config
        self._clock = clock or ClockFactory.get_clock()

        self._timers: List[asyncio.Task] = []
        self._ticks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._timers)

    @property
    def pending_ticks(self) -> int:
        return len(self._ticks)

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    def start(self) -> None:
        """Start the enabled timers."""
        if self._timers:
            return

        if not self._config.trading_enabled:
            logger.warning("Trading disabled, scheduler timers not started")
            return

        if self._config.buy_interval_seconds > 0:
            self._timers.append(asyncio.create_task(
                self._run_timer("buy", self._config.buy_interval_seconds, self.buy_tick),
                name="scheduler-buy",
            ))

        if self._config.sell_interval_seconds > 0:
            self._timers.append(asyncio.create_task(
                self._run_timer("sell", self._config.sell_interval_seconds, self.sell_tick),
                name="scheduler-sell",
            ))

        logger.info(
            f"Scheduler started | asset={self._config.target_asset or '-'} "
            f"buy_every={self._config.buy_interval_seconds}s "
            f"sell_every={self._config.sell_interval_seconds}s"
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Cancel the timers, then let running ticks finish.

        Ticks still running after `timeout` seconds are cancelled.
        """
        for task in self._timers:
            task.cancel()
        if self._timers:
            await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers.clear()

        if self._ticks:
            pending = list(self._ticks)
            logger.info(f"Waiting for {len(pending)} scheduled order(s) to finish")
            _, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(f"Cancelled {len(still_running)} scheduled order(s) on shutdown")
                await asyncio.gather(*still_running, return_exceptions=True)

        logger.info("Scheduler stopped")

    # --------------------------------------------------------
    # TICKS
    # --------------------------------------------------------

    async def buy_tick(self) -> Optional[BuyResult]:
        """One scheduled buy, or None when skipped."""
        asset = self._config.target_asset
        amount = self._config.buy_amount

        if self._executor.is_buy_in_flight(asset):
            logger.info(f"Scheduled buy skipped: buy for {asset} still in flight")
            return None

        try:
            available = await asyncio.wait_for(
                self._adapter.balance(self._config.base_asset),
                timeout=self._config.timeout.request_timeout_seconds,
            )
        except (ExchangeError, asyncio.TimeoutError) as e:
            logger.warning(f"Scheduled buy skipped: balance unavailable ({e})")
            return None

        if available < amount:
            logger.warning(
                f"Scheduled buy skipped: balance {available} below buy amount {amount}"
            )
            return None

        result = await self._executor.buy(asset, amount)
        logger.info(f"Scheduled buy {asset}: {result.result_code.value}")
        return result

    async def sell_tick(self) -> SellResult:
        """One scheduled sell."""
        asset = self._config.target_asset
        result = await self._executor.sell(asset, self._config.sell_amount, TradeReason.SCHEDULED)
        logger.info(f"Scheduled sell {asset}: {result.result_code.value}")
        return result

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    async def _run_timer(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable],
    ) -> None:
        while True:
            await self._clock.sleep(interval)
            task = asyncio.create_task(tick(), name=f"scheduler-{name}-tick")
            self._ticks.add(task)
            task.add_done_callback(self._on_tick_done)

    def _on_tick_done(self, task: asyncio.Task) -> None:
        self._ticks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{task.get_name()} failed: {exc}", exc_info=exc)


__all__ = ["Scheduler"]
