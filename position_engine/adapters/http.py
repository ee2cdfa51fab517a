"""
Position Engine - HTTP Execution Adapter.

============================================================
PURPOSE
============================================================
Production adapter for the hosted swap, price and balance
APIs.

ENDPOINTS:
- POST {execution}/buy    {private_key, mint, amount, microlamports, slippage}
                          -> {status, tokens, usd, txid}
- POST {execution}/sell   {private_key, mint, amount, microlamports, slippage}
                          -> {status, sol, txid}
- GET  {price}{mint}      -> {priceUsd}
- POST {balance}/sol      {wallet, mint} -> {status, balance}
- POST {balance}/token    {wallet, mint} -> {status, balance}

SAFETY FEATURES:
- Per-request timeout
- Error mapping to retryable / non-retryable codes
- Private key masked in every log line

============================================================
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp

from core.exceptions import ExchangeError

from ..config import ApiConfig, DEFAULT_SOL_ADDRESS
from ..errors import is_retryable, map_http_status
from ..types import to_decimal
from .base import BuyFill, ExecutionAdapter, OrderRequest, SellFill
from .logging_utils import mask_params


logger = logging.getLogger(__name__)


# ============================================================
# HTTP EXECUTION ADAPTER
# ============================================================

class HttpExecutionAdapter(ExecutionAdapter):
    """
    aiohttp-backed execution adapter.

    One ClientSession is shared by all calls and closed on
    disconnect().
    """

    def __init__(
        self,
        config: ApiConfig,
        timeout_seconds: float = 15.0,
        base_asset: str = DEFAULT_SOL_ADDRESS,
    ):
        """
        Initialize HTTP adapter.

        Args:
            config: Endpoints and credentials
            timeout_seconds: Total timeout per request
            base_asset: Identifier of the base currency (SOL)
        """
        self._config = config
        self._timeout_seconds = timeout_seconds
        self._base_asset = base_asset
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def adapter_id(self) -> str:
        return "http"

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """Open the HTTP session."""
        if self.is_connected:
            return

        timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
        self._session = aiohttp.ClientSession(timeout=timeout)
        logger.info(f"HTTP adapter ready | execution={self._config.execution_api_url}")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
            logger.info("HTTP adapter closed")

    # --------------------------------------------------------
    # ORDERS
    # --------------------------------------------------------

    async def buy(self, request: OrderRequest) -> BuyFill:
        data = await self._request(
            "POST",
            f"{self._config.execution_api_url.rstrip('/')}/buy",
            body=self._order_body(request),
        )
        self._require_success(data, "buy")

        return BuyFill(
            tokens=self._number(data, "tokens"),
            execution_price=self._number(data, "usd"),
            tx_ref=data.get("txid"),
            raw_response=data,
        )

    async def sell(self, request: OrderRequest) -> SellFill:
        data = await self._request(
            "POST",
            f"{self._config.execution_api_url.rstrip('/')}/sell",
            body=self._order_body(request),
        )
        self._require_success(data, "sell")

        price = data.get("usd")
        return SellFill(
            proceeds=self._number(data, "sol"),
            tx_ref=data.get("txid"),
            execution_price=to_decimal(price) if price not in (None, "") else None,
            raw_response=data,
        )

    # --------------------------------------------------------
    # MARKET DATA / ACCOUNT
    # --------------------------------------------------------

    async def quote(self, asset: str) -> Decimal:
        data = await self._request("GET", f"{self._config.price_api_url}{asset}")
        return self._number(data, "priceUsd")

    async def balance(self, asset: str) -> Decimal:
        if not self._config.wallet_address:
            raise ExchangeError(
                "WALLET_ADDRESS is not configured",
                error_code="EXC_BAD_REQUEST",
                is_retryable=False,
            )

        kind = "sol" if asset == self._base_asset else "token"
        data = await self._request(
            "POST",
            f"{self._config.balance_api_url.rstrip('/')}/{kind}",
            body={"wallet": self._config.wallet_address, "mint": asset},
        )
        self._require_success(data, "balance")
        return self._number(data, "balance")

    # --------------------------------------------------------
    # INTERNAL
    # --------------------------------------------------------

    def _order_body(self, request: OrderRequest) -> Dict[str, Any]:
        return {
            "private_key": self._config.private_key,
            "mint": request.asset,
            "amount": str(request.amount),
            "microlamports": request.fee_hint,
            "slippage": request.slippage_bps,
        }

    async def _request(
        self,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Make API request and return the decoded JSON object."""
        if not self.is_connected:
            raise ExchangeError("Not connected", error_code="NET_TRANSIENT")

        logger.debug(f"{method} {url} body={mask_params(body or {})}")

        try:
            async with self._session.request(method, url, json=body) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None

                if response.status != 200:
                    code = map_http_status(response.status)
                    message = data.get("message") if isinstance(data, dict) else None
                    raise ExchangeError(
                        f"HTTP {response.status} from {url}: {message or response.reason}",
                        error_code=code,
                        endpoint=url,
                        is_retryable=is_retryable(code),
                    )

        # aiohttp timeout errors are also ClientErrors
        except asyncio.TimeoutError:
            raise ExchangeError(
                "Request timeout",
                error_code="NET_TIMEOUT",
                endpoint=url,
                is_retryable=True,
            )
        except aiohttp.ClientError as e:
            raise ExchangeError(
                f"Network error: {e}",
                error_code="NET_TRANSIENT",
                endpoint=url,
                is_retryable=True,
                cause=e,
            )

        if not isinstance(data, dict):
            raise ExchangeError(
                f"Unexpected response from {url}",
                error_code="EXC_BAD_RESPONSE",
                endpoint=url,
            )
        return data

    @staticmethod
    def _require_success(data: Dict[str, Any], operation: str) -> None:
        status = data.get("status")
        if status != "success":
            reason = data.get("error") or data.get("message") or "unknown"
            raise ExchangeError(
                f"{operation} not filled: status={status}, error={reason}",
                error_code="EXC_NOT_FILLED",
                is_retryable=True,
            )

    @staticmethod
    def _number(data: Dict[str, Any], key: str) -> Decimal:
        try:
            return to_decimal(data[key])
        except (KeyError, ValueError):
            raise ExchangeError(
                f"Response field {key!r} missing or not numeric",
                error_code="EXC_BAD_RESPONSE",
            ) from None


__all__ = ["HttpExecutionAdapter"]
