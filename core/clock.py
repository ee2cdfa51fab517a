"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Every wait in the engine (retry backoff, price check delay,
poll interval, scheduler timers) goes through clock.sleep().

- SystemClock: asyncio.sleep
- MockClock: records the delay and returns at once, so
  tests assert on the exact backoff schedule

============================================================
"""

from abc import ABC, abstractmethod
from typing import List, Optional
import asyncio
import threading


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the engine's waits."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for the given number of seconds."""
        pass


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Real waits on the event loop."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    sleep() records the requested delay and adds it to the
    virtual elapsed time, then yields to the event loop once so
    other tasks interleave as they would on a real wait.
    """

    def __init__(self):
        self.sleeps: List[float] = []
        self.elapsed = 0.0

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.elapsed += max(0.0, seconds)
        await asyncio.sleep(0)


# ============================================================
# CLOCK FACTORY
# ============================================================

class ClockFactory:
    """Process-wide default clock for components built without one."""

    _instance: Optional[ClockProtocol] = None
    _lock = threading.Lock()

    @classmethod
    def get_clock(cls) -> ClockProtocol:
        with cls._lock:
            if cls._instance is None:
                cls._instance = SystemClock()
            return cls._instance

    @classmethod
    def set_clock(cls, clock: ClockProtocol) -> None:
        with cls._lock:
            cls._instance = clock

    @classmethod
    def reset(cls) -> None:
        """Back to the system clock."""
        with cls._lock:
            cls._instance = SystemClock()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
]
