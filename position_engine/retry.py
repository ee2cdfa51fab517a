"""
Position Engine - Retry Policy.

============================================================
PURPOSE
============================================================
Bounded retry schedules for quotes and sells.

A policy is total: it always yields max_retries + 1
attempts and then stops. Delays are computed, never slept
here; callers sleep through their injected clock.

============================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional


class BackoffStrategy(Enum):
    """How the delay grows between attempts."""

    FIXED = "fixed"
    """Same delay every time."""

    LINEAR = "linear"
    """base x attempt number."""

    EXPONENTIAL = "exponential"
    """base x multiplier ** (attempt - 1)."""


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule.

    Attempt numbers are 1-based. delay_for(n) is the wait
    after failed attempt n, before attempt n + 1.
    """

    max_retries: int
    """Retries after the first attempt."""

    base_delay_seconds: float
    """Delay unit."""

    strategy: BackoffStrategy = BackoffStrategy.FIXED
    """Delay growth."""

    multiplier: float = 2.0
    """Growth factor for EXPONENTIAL."""

    max_delay_seconds: Optional[float] = None
    """Upper bound on a single delay."""

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def attempts(self) -> range:
        """Attempt numbers, 1..max_attempts."""
        return range(1, self.max_attempts + 1)

    def has_next(self, attempt: int) -> bool:
        """Whether another attempt follows attempt n."""
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")

        if self.strategy is BackoffStrategy.LINEAR:
            delay = self.base_delay_seconds * attempt
        elif self.strategy is BackoffStrategy.EXPONENTIAL:
            delay = self.base_delay_seconds * (self.multiplier ** (attempt - 1))
        else:
            delay = self.base_delay_seconds

        if self.max_delay_seconds is not None:
            delay = min(delay, self.max_delay_seconds)
        return delay

    def schedule(self) -> List[float]:
        """All delays the policy will ever request, in order."""
        return [self.delay_for(attempt) for attempt in range(1, self.max_attempts)]


__all__ = ["BackoffStrategy", "RetryPolicy"]
