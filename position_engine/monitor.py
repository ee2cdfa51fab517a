"""
Position Engine - Monitor Loop.

============================================================
PURPOSE
============================================================
Polls every open position and closes it when a threshold
is crossed.

CYCLE:
1. Load the store; empty or unreadable -> wait, retry
2. For each Bought position, in insertion order:
   - fetch price
   - persist lastObservedPrice
   - price >= entry x (1 + TP%)  -> sell all (TP)
   - price <= entry x (1 - SL%)  -> sell all (SL)
   - wait PRICE_CHECK_DELAY
3. Wait between cycles

request_stop() ends the loop after the asset in progress;
a threshold sell that has started always runs to its
recorded outcome. Waits between polls and cycles end early
on a stop request. A failure on one asset is logged and the
sweep continues with the next.

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import CorruptStoreError, InvalidTransitionError, PositionNotFoundError

from .config import EngineConfig
from .order_executor import OrderExecutor
from .position_store import PositionStore
from .price_oracle import PriceOracleClient
from .state_machine import record_price
from .types import Position, SellResult, TradeReason


logger = logging.getLogger(__name__)


_HUNDRED = Decimal("100")


# ============================================================
# THRESHOLDS
# ============================================================

def take_profit_price(entry_price: Decimal, take_profit_pct: Decimal) -> Decimal:
    return entry_price * (1 + take_profit_pct / _HUNDRED)


def stop_loss_price(entry_price: Decimal, stop_loss_pct: Decimal) -> Decimal:
    return entry_price * (1 - stop_loss_pct / _HUNDRED)


def evaluate_thresholds(
    entry_price: Decimal,
    price: Decimal,
    take_profit_pct: Decimal,
    stop_loss_pct: Decimal,
) -> Optional[TradeReason]:
    """
    Which threshold the price crosses, if any.

    Both bounds are inclusive.
    """
    if entry_price <= 0:
        return None
    if price >= take_profit_price(entry_price, take_profit_pct):
        return TradeReason.TAKE_PROFIT
    if price <= stop_loss_price(entry_price, stop_loss_pct):
        return TradeReason.STOP_LOSS
    return None


# ============================================================
# CYCLE REPORT
# ============================================================

@dataclass
class CycleReport:
    """Outcome of one monitor sweep."""

    idle: bool = False
    """Nothing to monitor: store empty or unreadable."""

    store_error: Optional[str] = None
    """Why the store could not be read."""

    checked: List[str] = field(default_factory=list)
    """Assets whose price was recorded."""

    sells: List[SellResult] = field(default_factory=list)
    """Threshold sells attempted."""

    price_failures: List[str] = field(default_factory=list)
    """Assets without a price this cycle."""

    errors: List[str] = field(default_factory=list)
    """Assets that raised unexpectedly."""


# ============================================================
# MONITOR LOOP
# ============================================================

class MonitorLoop:
    """Threshold monitor over the position store."""

    def __init__(
        self,
        store: PositionStore,
        oracle: PriceOracleClient,
        executor: OrderExecutor,
        config: EngineConfig,
        clock: Optional[ClockProtocol] = None,
    ):
        self._store = store
        self._oracle = oracle
        self._executor = executor
        self._config = config
        self._clock = clock or ClockFactory.get_clock()
        self._cycles = 0
        self._stop_requested = False
        self._wakeup: Optional[asyncio.Event] = None

    @property
    def cycles(self) -> int:
        """Completed sweeps."""
        return self._cycles

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        """Finish the asset in progress, then return from run_forever()."""
        self._stop_requested = True
        if self._wakeup is not None:
            self._wakeup.set()

    async def run_forever(self) -> None:
        """Run sweeps until request_stop() (or cancellation)."""
        logger.info(
            f"Monitor started | tp={self._config.take_profit_pct}% "
            f"sl={self._config.stop_loss_pct}%"
        )
        while not self._stop_requested:
            report = None
            try:
                report = await self.run_cycle()
            except Exception as e:
                logger.exception(f"Monitor cycle failed: {e}")

            if report is None or report.idle or not report.checked:
                await self._pause(self._config.poll_interval_seconds)
            else:
                await self._pause(self._config.cycle_delay_seconds)

        logger.info(f"Monitor stopped after {self._cycles} cycle(s)")

    async def run_cycle(self) -> CycleReport:
        """One sweep over the open positions."""
        report = CycleReport()

        try:
            snapshot = await self._store.load()
        except CorruptStoreError as e:
            logger.error(f"Cannot read positions, retrying later: {e.describe()}")
            report.idle = True
            report.store_error = e.message
            return report

        if not snapshot:
            logger.debug("No positions recorded, waiting")
            report.idle = True
            return report

        for position in snapshot.open_positions():
            if self._stop_requested:
                break

            try:
                await self.check_position(position, report)
            except Exception as e:
                logger.exception(f"Monitoring {position.asset} failed: {e}")
                report.errors.append(position.asset)

            await self._pause(self._config.price_check_delay_seconds)

        self._cycles += 1
        return report

    async def check_position(
        self,
        position: Position,
        report: Optional[CycleReport] = None,
    ) -> Optional[SellResult]:
        """
        Poll one position and sell it if a threshold is crossed.

        Returns the sell result, or None when nothing was sold.
        """
        report = report if report is not None else CycleReport()
        asset = position.asset

        price = await self._oracle.fetch_price(asset)
        if price is None:
            report.price_failures.append(asset)
            return None

        try:
            current = await self._store.update(asset, lambda cur: record_price(cur, price))
        except (InvalidTransitionError, PositionNotFoundError):
            logger.debug(f"{asset} closed while its price was fetched, skipping")
            return None

        report.checked.append(asset)
        reason = evaluate_thresholds(
            current.entry_price,
            price,
            self._config.take_profit_pct,
            self._config.stop_loss_pct,
        )

        logger.info(
            f"{asset} | price={price} entry={current.entry_price} "
            f"tp={take_profit_price(current.entry_price, self._config.take_profit_pct)} "
            f"sl={stop_loss_price(current.entry_price, self._config.stop_loss_pct)}"
        )

        if reason is None:
            return None

        label = "Take-profit" if reason is TradeReason.TAKE_PROFIT else "Stop-loss"
        logger.info(f"{label} hit for {asset} at {price}, selling {current.units_held}")

        result = await self._executor.sell(asset, None, reason)
        report.sells.append(result)
        return result

    async def _pause(self, seconds: float) -> None:
        """Sleep on the clock; request_stop() cuts the wait short."""
        if self._stop_requested:
            return

        self._wakeup = asyncio.Event()
        sleeper = asyncio.create_task(self._clock.sleep(seconds))
        waker = asyncio.create_task(self._wakeup.wait())
        try:
            await asyncio.wait({sleeper, waker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waker):
                task.cancel()
            await asyncio.gather(sleeper, waker, return_exceptions=True)
            self._wakeup = None


__all__ = [
    "CycleReport",
    "MonitorLoop",
    "evaluate_thresholds",
    "stop_loss_price",
    "take_profit_price",
]
