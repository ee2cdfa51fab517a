"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Wires the position engine into one controlled runtime.

- Builds adapter, store, oracle, executor, monitor, scheduler
- Controls startup and shutdown order
- Handles signals (SIGINT, SIGTERM)
- Logs unhandled task failures instead of crashing

============================================================
SHUTDOWN ORDER
============================================================
1. Ask the monitor to stop after the asset in progress
2. Stop scheduler timers, let running ticks finish
3. Wait for the monitor (shutdown timeout, then cancel)
4. Close the store (waits for the write in progress)
5. Close the adapter

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from core.clock import ClockFactory, ClockProtocol
from core.exceptions import CorruptStoreError, StartupError

from position_engine.adapters import ExecutionAdapter, create_adapter
from position_engine.config import EngineConfig
from position_engine.monitor import MonitorLoop
from position_engine.order_executor import OrderExecutor
from position_engine.position_store import PositionStore
from position_engine.price_oracle import PriceOracleClient
from position_engine.scheduler import Scheduler


# ============================================================
# LOGGING SETUP
# ============================================================

class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class SecretFilter(logging.Filter):
    """Replaces known secret values in every record."""

    def __init__(self, secrets: Iterable[str]):
        super().__init__()
        self._secrets = [s for s in secrets if s and len(s) >= 8]

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            message = record.getMessage()
            for secret in self._secrets:
                message = message.replace(secret, "***")
            record.msg = message
            record.args = None
        return True


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    secrets: Iterable[str] = (),
) -> logging.Logger:
    """
    Set up process-wide logging.

    Args:
        level: Log level
        log_format: Output format (json or text)
        secrets: Values that must never appear in output

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(SecretFilter(secrets))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    # aiohttp access noise
    logging.getLogger("aiohttp").setLevel(max(log_level, logging.WARNING))

    return logging.getLogger("orchestrator")


logger = logging.getLogger("orchestrator")


# ============================================================
# ORCHESTRATOR
# ============================================================

class Orchestrator:
    """
    Position engine runtime.

    One instance per process; start() once, stop() any number
    of times.
    """

    def __init__(
        self,
        config: EngineConfig,
        adapter: Optional[ExecutionAdapter] = None,
        clock: Optional[ClockProtocol] = None,
        install_signal_handlers: bool = True,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Engine configuration
            adapter: Execution adapter (default: built from config.adapter)
            clock: Clock for every delay (default: ClockFactory clock)
            install_signal_handlers: Stop on SIGINT/SIGTERM
        """
        self._config = config
        self._clock = clock or ClockFactory.get_clock()
        self._install_signals = install_signal_handlers

        self._adapter = adapter or create_adapter(config.adapter, config)
        self._store = PositionStore(config.records_file)
        self._oracle = PriceOracleClient(
            self._adapter,
            policy=config.retry.price_policy(),
            timeout_seconds=config.timeout.request_timeout_seconds,
            clock=self._clock,
        )
        self._executor = OrderExecutor(
            self._adapter, self._store, self._oracle, config, clock=self._clock,
        )
        self._monitor = MonitorLoop(
            self._store, self._oracle, self._executor, config, clock=self._clock,
        )
        self._scheduler = Scheduler(
            self._executor, self._adapter, config, clock=self._clock,
        )

        # Runtime state
        self._running = False
        self._monitor_task: Optional[asyncio.Task] = None
        self._stopped: Optional[asyncio.Event] = None
        self._signals_installed = False
        self._started_at: Optional[datetime] = None

        logger.info(
            f"Orchestrator initialized | adapter={self._adapter.adapter_id} "
            f"records={config.records_file}"
        )

    # --------------------------------------------------------
    # Properties
    # --------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def adapter(self) -> ExecutionAdapter:
        return self._adapter

    @property
    def store(self) -> PositionStore:
        return self._store

    @property
    def executor(self) -> OrderExecutor:
        return self._executor

    @property
    def monitor(self) -> MonitorLoop:
        return self._monitor

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    # --------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------

    async def start(self) -> None:
        """
        Start the monitor and the scheduler.

        Raises:
            StartupError: adapter could not be opened
        """
        if self._running:
            return

        logger.info("=== STARTUP ===")
        self._stopped = asyncio.Event()

        try:
            await self._adapter.connect()
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise StartupError(f"Adapter connect failed: {e}", stage="adapter", cause=e)

        try:
            snapshot = await self._store.load()
            logger.info(
                f"Loaded {len(snapshot)} positions, "
                f"{len(snapshot.open_positions())} open"
            )
        except CorruptStoreError as e:
            logger.error(f"Records file unreadable, monitor will retry: {e.describe()}")

        loop = asyncio.get_running_loop()
        loop.set_exception_handler(self._handle_loop_exception)
        if self._install_signals:
            self._install_signal_handlers()

        self._monitor_task = asyncio.create_task(self._monitor.run_forever(), name="monitor")
        self._scheduler.start()

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        logger.info(
            f"=== STARTUP COMPLETE === trading_enabled={self._config.trading_enabled}"
        )

    async def stop(self) -> None:
        """Stop gracefully; safe to call more than once."""
        if not self._running:
            return
        self._running = False

        logger.info("=== SHUTDOWN SEQUENCE ===")
        timeout = self._config.timeout.shutdown_timeout_seconds

        # The monitor finishes the asset in progress, including a started sell
        self._monitor.request_stop()
        await self._scheduler.stop(timeout=timeout)

        if self._monitor_task and not self._monitor_task.done():
            _, still_running = await asyncio.wait({self._monitor_task}, timeout=timeout)
            if still_running:
                logger.warning(f"Monitor did not finish within {timeout}s, cancelling")
                self._monitor_task.cancel()
                await asyncio.gather(self._monitor_task, return_exceptions=True)
        self._monitor_task = None

        await self._store.close()
        await self._adapter.disconnect()

        self._restore_signal_handlers()
        if self._stopped is not None:
            self._stopped.set()

        logger.info("=== SHUTDOWN COMPLETE ===")

    async def run_forever(self) -> None:
        """Start, then wait until stop() is called (signal or caller)."""
        await self.start()
        await self._stopped.wait()

    def get_status(self) -> Dict[str, Any]:
        """Runtime summary for the positions command and logs."""
        return {
            "running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "adapter": self._adapter.adapter_id,
            "trading_enabled": self._config.trading_enabled,
            "monitor_cycles": self._monitor.cycles,
            "scheduler_running": self._scheduler.is_running,
            "store_generation": self._store.generation,
        }

    # --------------------------------------------------------
    # Error handling
    # --------------------------------------------------------

    def _handle_loop_exception(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        message = context.get("message", "Unhandled exception in event loop")
        if exc is not None:
            logger.error(f"{message}: {exc}", exc_info=exc)
        else:
            logger.error(message)

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        if sys.platform == "win32":
            # KeyboardInterrupt reaches the CLI instead
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.create_task(self._async_signal_handler(s)),
            )
        self._signals_installed = True

    def _restore_signal_handlers(self) -> None:
        """Restore original signal handlers."""
        if not self._signals_installed:
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        self._signals_installed = False

    async def _async_signal_handler(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}")
        await self.stop()


__all__ = ["Orchestrator", "setup_logging", "JsonFormatter", "SecretFilter"]
