"""
Position Engine - Order Executor.

============================================================
PURPOSE
============================================================
Submits buys and sells and reconciles fills into the
position store.

RESPONSIBILITIES:
- Per-asset mutual exclusion for buys and for sells
- Sell sizing from a base-currency amount or asset units
- Bounded sell retries; Failed after exhaustion
- Every store change through PositionStore.update()

SAFETY CONSTRAINTS:
- A second buy (or sell) for an asset already in flight is
  rejected, never queued
- Buys are submitted once; the next scheduler tick is the
  retry
- Every failed sell submission is retried up to the policy
  bound, whatever the error
- No failure escapes as an exception; callers get a result

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Optional, Tuple

from core.clock import ClockProtocol, ClockFactory
from core.exceptions import ExchangeError, InvalidTransitionError, StoreError

from .adapters.base import BuyFill, ExecutionAdapter, OrderRequest, SellFill
from .config import EngineConfig
from .errors import get_error_info, log_level
from .position_store import PositionStore
from .price_oracle import PriceOracleClient
from .state_machine import apply_buy_fill, apply_sell_fill, mark_failed
from .types import (
    BuyResult,
    ExecutionResultCode,
    PositionStatus,
    SellResult,
    SellSizing,
    TradeReason,
    ZERO,
    to_decimal,
)


logger = logging.getLogger(__name__)


class OrderExecutor:
    """
    Buy/sell execution against one adapter and one store.

    Locks are created per asset on first use and released on
    every exit path by `async with`.
    """

    def __init__(
        self,
        adapter: ExecutionAdapter,
        store: PositionStore,
        oracle: PriceOracleClient,
        config: EngineConfig,
        clock: Optional[ClockProtocol] = None,
    ):
        """
        Initialize order executor.

        Args:
            adapter: Execution adapter
            store: Position store
            oracle: Price oracle used for sell sizing
            config: Engine configuration
            clock: Clock used for retry delays
        """
        self._adapter = adapter
        self._store = store
        self._oracle = oracle
        self._config = config
        self._clock = clock or ClockFactory.get_clock()
        self._sell_policy = config.retry.sell_policy()

        self._buy_locks: Dict[str, asyncio.Lock] = {}
        self._sell_locks: Dict[str, asyncio.Lock] = {}

    @property
    def trading_enabled(self) -> bool:
        return self._config.trading_enabled

    def is_buy_in_flight(self, asset: str) -> bool:
        lock = self._buy_locks.get(asset)
        return lock is not None and lock.locked()

    def is_sell_in_flight(self, asset: str) -> bool:
        lock = self._sell_locks.get(asset)
        return lock is not None and lock.locked()

    # --------------------------------------------------------
    # BUY
    # --------------------------------------------------------

    async def buy(self, asset: str, amount) -> BuyResult:
        """
        Spend `amount` of base currency on `asset`.

        Opens, reopens or accumulates the position on success.
        """
        if not self._config.trading_enabled:
            return self._buy_rejected(
                asset, ExecutionResultCode.REJECTED_DISABLED,
                "VAL_TRADING_DISABLED", "Trading is disabled",
            )

        try:
            amount = to_decimal(amount)
        except ValueError as e:
            return self._buy_rejected(
                asset, ExecutionResultCode.REJECTED_INVALID_AMOUNT, "VAL_INVALID_AMOUNT", str(e),
            )
        if amount <= 0:
            return self._buy_rejected(
                asset, ExecutionResultCode.REJECTED_INVALID_AMOUNT,
                "VAL_INVALID_AMOUNT", f"Buy amount must be positive, got {amount}",
            )

        lock = self._buy_locks.setdefault(asset, asyncio.Lock())
        if lock.locked():
            return self._buy_rejected(
                asset, ExecutionResultCode.REJECTED_BUY_IN_FLIGHT,
                "VAL_BUY_IN_FLIGHT", f"Buy already in flight for {asset}",
            )

        async with lock:
            try:
                current = await self._store.get(asset)
            except StoreError as e:
                logger.error(f"Buy {asset} skipped, store unavailable: {e.describe()}")
                return BuyResult(
                    asset=asset,
                    result_code=ExecutionResultCode.FAILED_STORE,
                    amount=amount,
                    error_code="STO_UNREADABLE",
                    error_message=e.message,
                )

            if current is not None and current.status is PositionStatus.FAILED:
                return self._buy_rejected(
                    asset, ExecutionResultCode.REJECTED_POSITION_FAILED,
                    "VAL_POSITION_FAILED", f"Position {asset} is Failed; operator action required",
                )

            logger.info(f"Buying {asset} | amount={amount}")
            request = OrderRequest(
                asset=asset,
                amount=amount,
                fee_hint=self._config.fee_hint,
                slippage_bps=self._config.buy_slippage_bps,
            )

            fill, code, error = await self._submit_buy(request)
            if fill is None:
                logger.log(
                    log_level(code),
                    f"Buy {asset} failed [{code}]: {error} | action: {get_error_info(code).action}",
                )
                return BuyResult(
                    asset=asset,
                    result_code=(
                        ExecutionResultCode.FAILED_INTERNAL
                        if code == "INT_UNEXPECTED_ERROR"
                        else ExecutionResultCode.FAILED_EXCHANGE
                    ),
                    amount=amount,
                    error_code=code,
                    error_message=error,
                )

            if fill.tokens <= 0 or fill.execution_price <= 0:
                logger.critical(
                    f"Buy {asset} filled with unusable values "
                    f"tokens={fill.tokens} price={fill.execution_price} tx={fill.tx_ref}; not recorded"
                )
                return BuyResult(
                    asset=asset,
                    result_code=ExecutionResultCode.FAILED_EXCHANGE,
                    amount=amount,
                    tx_ref=fill.tx_ref,
                    error_code="EXC_BAD_RESPONSE",
                    error_message="Fill without tokens or price",
                )

            try:
                position = await self._store.update(
                    asset,
                    lambda cur: apply_buy_fill(cur, asset, amount, fill.tokens, fill.execution_price),
                    create=True,
                )
            except (StoreError, InvalidTransitionError) as e:
                logger.critical(
                    f"Bought {fill.tokens} {asset} (tx={fill.tx_ref}) but could not record it: {e.describe()}"
                )
                return BuyResult(
                    asset=asset,
                    result_code=ExecutionResultCode.FAILED_STORE,
                    amount=amount,
                    tokens_received=fill.tokens,
                    execution_price=fill.execution_price,
                    tx_ref=fill.tx_ref,
                    error_code="STO_WRITE_FAILED",
                    error_message=e.message,
                )

            logger.info(
                f"Bought {fill.tokens} {asset} at {fill.execution_price} | "
                f"units_held={position.units_held} tx={fill.tx_ref}"
            )
            return BuyResult(
                asset=asset,
                result_code=ExecutionResultCode.SUCCESS,
                amount=amount,
                tokens_received=fill.tokens,
                execution_price=fill.execution_price,
                tx_ref=fill.tx_ref,
                position=position,
            )

    async def _submit_buy(
        self,
        request: OrderRequest,
    ) -> Tuple[Optional[BuyFill], Optional[str], Optional[str]]:
        """Single buy submission. Returns (fill, error_code, error_message)."""
        try:
            fill = await asyncio.wait_for(
                self._adapter.buy(request),
                timeout=self._config.timeout.request_timeout_seconds,
            )
            return fill, None, None
        except ExchangeError as e:
            return None, e.code or "NET_TRANSIENT", e.message
        except asyncio.TimeoutError:
            return None, "NET_TIMEOUT", "Buy request timed out"
        except Exception as e:
            logger.exception(f"Unexpected error buying {request.asset}: {e}")
            return None, "INT_UNEXPECTED_ERROR", str(e)

    # --------------------------------------------------------
    # SELL
    # --------------------------------------------------------

    async def sell(
        self,
        asset: str,
        amount=None,
        reason: TradeReason = TradeReason.MANUAL,
    ) -> SellResult:
        """
        Sell from an open position.

        Args:
            asset: Asset to sell
            amount: None sells every held unit; otherwise base
                currency (quote sizing) or asset units (units sizing)
            reason: Trigger, for logs and the result

        After the last failed attempt the position is marked
        Failed, exactly once.
        """
        if not self._config.trading_enabled:
            return self._sell_rejected(
                asset, reason, ExecutionResultCode.REJECTED_DISABLED,
                "VAL_TRADING_DISABLED", "Trading is disabled",
            )

        if amount is not None:
            try:
                amount = to_decimal(amount)
            except ValueError as e:
                return self._sell_rejected(
                    asset, reason, ExecutionResultCode.REJECTED_INVALID_AMOUNT, "VAL_INVALID_AMOUNT", str(e),
                )
            if amount <= 0:
                return self._sell_rejected(
                    asset, reason, ExecutionResultCode.REJECTED_INVALID_AMOUNT,
                    "VAL_INVALID_AMOUNT", f"Sell amount must be positive, got {amount}",
                )

        lock = self._sell_locks.setdefault(asset, asyncio.Lock())
        if lock.locked():
            return self._sell_rejected(
                asset, reason, ExecutionResultCode.REJECTED_SELL_IN_FLIGHT,
                "VAL_SELL_IN_FLIGHT", f"Sell already in flight for {asset}",
            )

        async with lock:
            return await self._sell_locked(asset, amount, reason)

    async def _sell_locked(
        self,
        asset: str,
        amount: Optional[Decimal],
        reason: TradeReason,
    ) -> SellResult:
        try:
            position = await self._store.get(asset)
        except StoreError as e:
            logger.error(f"Sell {asset} skipped, store unavailable: {e.describe()}")
            return SellResult(
                asset=asset,
                result_code=ExecutionResultCode.FAILED_STORE,
                reason=reason,
                error_code="STO_UNREADABLE",
                error_message=e.message,
            )

        if position is None or position.status is PositionStatus.SOLD:
            return self._sell_rejected(
                asset, reason, ExecutionResultCode.REJECTED_NOT_OPEN,
                "VAL_POSITION_NOT_OPEN", f"No open position for {asset}",
            )
        if position.status is PositionStatus.FAILED:
            return self._sell_rejected(
                asset, reason, ExecutionResultCode.REJECTED_POSITION_FAILED,
                "VAL_POSITION_FAILED", f"Position {asset} is Failed; operator action required",
            )

        # 1. Size the order
        quote_price = None
        if amount is None:
            quantity = position.units_held
        elif self._config.sell_sizing is SellSizing.QUOTE:
            quote_price = await self._oracle.fetch_price(asset)
            if quote_price is None:
                return SellResult(
                    asset=asset,
                    result_code=ExecutionResultCode.FAILED_NO_PRICE,
                    reason=reason,
                    error_code="PRC_UNAVAILABLE",
                    error_message=f"No price to size sell of {asset}",
                )
            quantity = amount / quote_price
        else:
            quantity = amount

        if quantity > position.units_held:
            logger.warning(
                f"Sell {asset} skipped: {quantity} requested, {position.units_held} held"
            )
            return self._sell_rejected(
                asset, reason, ExecutionResultCode.REJECTED_INSUFFICIENT_BALANCE,
                "VAL_INSUFFICIENT_BALANCE",
                f"Requested {quantity}, held {position.units_held}",
            )

        # 2. Optional wallet check
        if self._config.verify_token_balance:
            rejection = await self._verify_wallet(asset, quantity, reason)
            if rejection is not None:
                return rejection

        # 3. Submit with bounded retries
        logger.info(f"Selling {asset} | quantity={quantity} reason={reason.value}")
        request = OrderRequest(
            asset=asset,
            amount=quantity,
            fee_hint=self._config.fee_hint,
            slippage_bps=self._config.sell_slippage_bps,
        )

        fill, attempts, code, error = await self._submit_sell_with_retries(request)

        if fill is None:
            return await self._fail_position(asset, reason, quantity, attempts, code, error)

        # 4. Record the close
        exit_price = (
            fill.execution_price
            or quote_price
            or position.last_observed_price
            or (fill.proceeds / quantity if quantity > 0 else ZERO)
        )
        try:
            updated = await self._store.update(
                asset,
                lambda cur: apply_sell_fill(cur, quantity, fill.proceeds, exit_price),
            )
        except (StoreError, InvalidTransitionError) as e:
            logger.critical(
                f"Sold {quantity} {asset} (tx={fill.tx_ref}) but could not record it: {e.describe()}"
            )
            return SellResult(
                asset=asset,
                result_code=ExecutionResultCode.FAILED_STORE,
                reason=reason,
                quantity=quantity,
                proceeds=fill.proceeds,
                exit_price=exit_price,
                attempts=attempts,
                tx_ref=fill.tx_ref,
                error_code="STO_WRITE_FAILED",
                error_message=e.message,
            )

        logger.info(
            f"Sold {quantity} {asset} for {fill.proceeds} | reason={reason.value} "
            f"exit_price={exit_price} attempts={attempts} tx={fill.tx_ref}"
        )
        return SellResult(
            asset=asset,
            result_code=ExecutionResultCode.SUCCESS,
            reason=reason,
            quantity=quantity,
            proceeds=fill.proceeds,
            exit_price=exit_price,
            attempts=attempts,
            tx_ref=fill.tx_ref,
            position=updated,
        )

    async def _submit_sell_with_retries(
        self,
        request: OrderRequest,
    ) -> Tuple[Optional[SellFill], int, Optional[str], Optional[str]]:
        """
        Submit a sell with retry logic.

        Every failure is retried until the policy runs out,
        including errors the adapter reports as non-retryable.

        Returns:
            (fill, attempts made, last error code, last error message)
        """
        policy = self._sell_policy
        code = error = None
        attempt = 0

        for attempt in policy.attempts():
            try:
                fill = await asyncio.wait_for(
                    self._adapter.sell(request),
                    timeout=self._config.timeout.request_timeout_seconds,
                )
                return fill, attempt, None, None

            except ExchangeError as e:
                code, error = e.code or "NET_TRANSIENT", e.message
                if not e.is_retryable:
                    logger.error(f"Sell {request.asset} rejected: {code} - {error}")

            except asyncio.TimeoutError:
                code, error = "NET_TIMEOUT", "Sell request timed out"

            except Exception as e:
                logger.exception(f"Unexpected error selling {request.asset}: {e}")
                code, error = "INT_UNEXPECTED_ERROR", str(e)

            if policy.has_next(attempt):
                delay = policy.delay_for(attempt)
                logger.warning(
                    f"Sell {request.asset} failed (attempt {attempt}/{policy.max_attempts}): "
                    f"{error}. Retrying in {delay:.1f}s..."
                )
                await self._clock.sleep(delay)

        return None, attempt, code, error

    async def _fail_position(
        self,
        asset: str,
        reason: TradeReason,
        quantity: Decimal,
        attempts: int,
        code: Optional[str],
        error: Optional[str],
    ) -> SellResult:
        logger.error(
            f"Sell {asset} gave up after {attempts} attempt(s) [{code}]: {error}. "
            f"Marking position Failed | action: {get_error_info(code).action}"
        )

        position = None
        try:
            position = await self._store.update(asset, mark_failed)
        except (StoreError, InvalidTransitionError) as e:
            logger.critical(f"Could not mark {asset} Failed: {e.describe()}")

        return SellResult(
            asset=asset,
            result_code=ExecutionResultCode.FAILED_RETRIES_EXHAUSTED,
            reason=reason,
            quantity=quantity,
            attempts=attempts,
            position=position,
            error_code=code,
            error_message=error,
        )

    async def _verify_wallet(
        self,
        asset: str,
        quantity: Decimal,
        reason: TradeReason,
    ) -> Optional[SellResult]:
        """Compare the wallet balance with the quantity; None means it covers it."""
        try:
            held = await asyncio.wait_for(
                self._adapter.balance(asset),
                timeout=self._config.timeout.request_timeout_seconds,
            )
        except (ExchangeError, asyncio.TimeoutError) as e:
            message = e.message if isinstance(e, ExchangeError) else "Balance request timed out"
            logger.warning(f"Sell {asset} skipped, balance unavailable: {message}")
            return SellResult(
                asset=asset,
                result_code=ExecutionResultCode.FAILED_EXCHANGE,
                reason=reason,
                quantity=quantity,
                error_code="NET_TRANSIENT",
                error_message=message,
            )

        if held < quantity:
            logger.warning(f"Sell {asset} skipped: wallet holds {held}, need {quantity}")
            return self._sell_rejected(
                asset, reason, ExecutionResultCode.REJECTED_INSUFFICIENT_BALANCE,
                "VAL_INSUFFICIENT_BALANCE", f"Wallet holds {held}, need {quantity}",
            )
        return None

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    @staticmethod
    def _buy_rejected(
        asset: str,
        result_code: ExecutionResultCode,
        error_code: str,
        message: str,
    ) -> BuyResult:
        logger.log(log_level(error_code), f"Buy {asset} rejected [{error_code}]: {message}")
        return BuyResult(
            asset=asset,
            result_code=result_code,
            error_code=error_code,
            error_message=message,
        )

    @staticmethod
    def _sell_rejected(
        asset: str,
        reason: TradeReason,
        result_code: ExecutionResultCode,
        error_code: str,
        message: str,
    ) -> SellResult:
        logger.log(
            log_level(error_code),
            f"Sell {asset} ({reason.value}) rejected [{error_code}]: {message}",
        )
        return SellResult(
            asset=asset,
            result_code=result_code,
            reason=reason,
            error_code=error_code,
            error_message=message,
        )


__all__ = ["OrderExecutor"]
