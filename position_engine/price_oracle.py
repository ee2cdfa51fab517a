"""
Position Engine - Price Oracle Client.

============================================================
PURPOSE
============================================================
Latest quote for an asset, with bounded retry.

fetch_price() never raises: after the last attempt it logs
the failure and returns None.

DEFAULTS:
- 3 retries after the first attempt (4 calls)
- 2 seconds between attempts
- Every call bounded by the request timeout

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Optional

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import ExchangeError

from .adapters.base import ExecutionAdapter
from .retry import BackoffStrategy, RetryPolicy


logger = logging.getLogger(__name__)


DEFAULT_PRICE_POLICY = RetryPolicy(
    max_retries=3,
    base_delay_seconds=2.0,
    strategy=BackoffStrategy.FIXED,
)


class PriceOracleClient:
    """Fetches quotes through the execution adapter."""

    def __init__(
        self,
        adapter: ExecutionAdapter,
        policy: RetryPolicy = DEFAULT_PRICE_POLICY,
        timeout_seconds: float = 15.0,
        clock: Optional[ClockProtocol] = None,
    ):
        self._adapter = adapter
        self._policy = policy
        self._timeout_seconds = timeout_seconds
        self._clock = clock or ClockFactory.get_clock()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def fetch_price(self, asset: str) -> Optional[Decimal]:
        """
        Latest positive price for the asset, or None.

        Non-retryable adapter errors end the attempts early.
        """
        for attempt in self._policy.attempts():
            try:
                price = await asyncio.wait_for(
                    self._adapter.quote(asset),
                    timeout=self._timeout_seconds,
                )
                if price <= 0:
                    raise ExchangeError(
                        f"Non-positive price {price}",
                        error_code="EXC_BAD_RESPONSE",
                    )
                return price

            except asyncio.TimeoutError:
                logger.warning(
                    f"Price fetch timed out | asset={asset} "
                    f"attempt={attempt}/{self._policy.max_attempts}"
                )

            except ExchangeError as e:
                logger.warning(
                    f"Price fetch failed | asset={asset} "
                    f"attempt={attempt}/{self._policy.max_attempts} error={e.message}"
                )
                if not e.is_retryable:
                    break

            except Exception as e:
                logger.error(f"Unexpected price fetch error for {asset}: {e}", exc_info=True)
                break

            if self._policy.has_next(attempt):
                await self._clock.sleep(self._policy.delay_for(attempt))

        logger.error(f"No price for {asset} after {self._policy.max_attempts} attempts")
        return None


__all__ = ["PriceOracleClient", "DEFAULT_PRICE_POLICY"]
