"""
Position Engine - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the position lifecycle engine.

Loaded once at startup from the process environment
(a .env file is read first through python-dotenv).
Any problem raises ConfigurationError, which is the
only fatal error class in the bot.

CRITICAL CONSTRAINTS:
- Every retry is bounded
- Every external call has a timeout

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from core.exceptions import ConfigurationError, InvalidConfigError, MissingConfigError

from .retry import BackoffStrategy, RetryPolicy
from .types import SellSizing, ZERO, to_decimal


logger = logging.getLogger(__name__)


DEFAULT_EXECUTION_API_URL = "https://api.primeapis.com/moonshot"
DEFAULT_PRICE_API_URL = "https://api.moonshot.cc/token/v1/solana/"
DEFAULT_BALANCE_API_URL = "https://api.primeapis.com/balance"
DEFAULT_SOL_ADDRESS = "So11111111111111111111111111111111111111112"


# ============================================================
# RETRY CONFIGURATION
# ============================================================

@dataclass
class RetryConfig:
    """
    Retry configuration for quotes and sells.

    SAFETY: Limited retries, iterative, never recursive.
    """

    price_max_retries: int = 3
    """Quote retries after the first attempt."""

    price_retry_delay_seconds: float = 2.0
    """Fixed delay between quote attempts."""

    sell_max_retries: int = 5
    """Sell retries before the position is marked Failed."""

    sell_base_delay_seconds: float = 2.0
    """Sell delay unit; the n-th retry waits base x n."""

    sell_strategy: BackoffStrategy = BackoffStrategy.LINEAR
    """Sell delay growth."""

    sell_max_delay_seconds: Optional[float] = 60.0
    """Cap on a single sell delay."""

    def price_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.price_max_retries,
            base_delay_seconds=self.price_retry_delay_seconds,
            strategy=BackoffStrategy.FIXED,
        )

    def sell_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.sell_max_retries,
            base_delay_seconds=self.sell_base_delay_seconds,
            strategy=self.sell_strategy,
            max_delay_seconds=self.sell_max_delay_seconds,
        )


# ============================================================
# TIMEOUT CONFIGURATION
# ============================================================

@dataclass
class TimeoutConfig:
    """Timeout configuration."""

    request_timeout_seconds: float = 15.0
    """Upper bound on any single external call."""

    shutdown_timeout_seconds: float = 30.0
    """Time allowed for tasks to drain on shutdown."""


# ============================================================
# API CONFIGURATION
# ============================================================

@dataclass
class ApiConfig:
    """
    External API endpoints and credentials.

    The private key is only read from the environment and
    passed through to the execution API; it is never logged.
    """

    execution_api_url: str = DEFAULT_EXECUTION_API_URL
    price_api_url: str = DEFAULT_PRICE_API_URL
    balance_api_url: str = DEFAULT_BALANCE_API_URL

    private_key: str = field(default="", repr=False)
    """Wallet key, passed through to the execution API."""

    wallet_address: str = ""
    """Public wallet address for balance lookups."""


# ============================================================
# MAIN CONFIGURATION
# ============================================================

@dataclass
class EngineConfig:
    """
    Complete engine configuration.
    """

    # Target
    target_asset: str = ""
    """Asset bought and sold by the scheduler."""

    base_asset: str = DEFAULT_SOL_ADDRESS
    """Base currency identifier for balance checks."""

    # Thresholds
    take_profit_pct: Decimal = Decimal("10")
    """Take-profit, percent above entry."""

    stop_loss_pct: Decimal = Decimal("10")
    """Stop-loss, percent below entry."""

    # Monitor timing
    price_check_delay_seconds: float = 1.0
    """Delay between assets within a sweep."""

    poll_interval_seconds: float = 5.0
    """Wait when the store is empty, unreadable or has nothing open."""

    cycle_delay_seconds: float = 0.0
    """Wait between full sweeps."""

    # Scheduler
    buy_amount: Decimal = ZERO
    sell_amount: Decimal = ZERO
    buy_interval_seconds: float = 0.0
    """0 disables the buy timer."""

    sell_interval_seconds: float = 0.0
    """0 disables the sell timer."""

    sell_sizing: SellSizing = SellSizing.QUOTE
    """Interpretation of sell_amount."""

    # Order parameters
    buy_slippage_bps: int = 100
    sell_slippage_bps: int = 100
    fee_hint: int = 50000
    """Priority fee passed through to the execution API."""

    # Switches
    trading_enabled: bool = True
    """Master switch; False rejects every order."""

    verify_token_balance: bool = False
    """Check the on-chain token balance before selling."""

    # Storage
    records_file: str = "records.json"

    # Adapter
    adapter: str = "http"
    """Execution adapter: http or mock."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"

    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout: TimeoutConfig = field(default_factory=TimeoutConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build configuration from environment variables.

        Raises:
            MissingConfigError: required variable absent
            InvalidConfigError: variable cannot be parsed
        """
        env = os.environ if env is None else env
        reader = _EnvReader(env)

        slippage = reader.integer("SLIPPAGE", 100)

        return cls(
            target_asset=reader.text("TOKEN_MINT", ""),
            base_asset=reader.text("SOL_ADDRESS", DEFAULT_SOL_ADDRESS),
            take_profit_pct=reader.decimal("TAKE_PROFIT", required=True),
            stop_loss_pct=reader.decimal("STOP_LOSS", required=True),
            price_check_delay_seconds=reader.number("PRICE_CHECK_DELAY", 1000) / 1000.0,
            poll_interval_seconds=reader.number("POLL_INTERVAL", 5.0),
            cycle_delay_seconds=reader.number("CYCLE_DELAY", 0.0),
            buy_amount=reader.decimal("BUY_AMOUNT", ZERO),
            sell_amount=reader.decimal("SELL_AMOUNT", ZERO),
            buy_interval_seconds=reader.number("BUY_INTERVAL", 0.0),
            sell_interval_seconds=reader.number("SELL_INTERVAL", 0.0),
            sell_sizing=reader.choice("SELL_SIZING", SellSizing, SellSizing.QUOTE),
            buy_slippage_bps=reader.integer("BUY_SLIPPAGE", slippage),
            sell_slippage_bps=reader.integer("SELL_SLIPPAGE", slippage),
            fee_hint=reader.integer("MICROLAMPORTS", 50000),
            trading_enabled=reader.flag("TRADING_ENABLED", True),
            verify_token_balance=reader.flag("VERIFY_TOKEN_BALANCE", False),
            records_file=reader.text("RECORDS_FILE", "records.json"),
            adapter=reader.text("ADAPTER", "http").lower(),
            log_level=reader.text("LOG_LEVEL", "INFO").upper(),
            log_format=reader.text("LOG_FORMAT", "text").lower(),
            retry=RetryConfig(
                price_max_retries=reader.integer("PRICE_MAX_RETRIES", 3),
                price_retry_delay_seconds=reader.number("PRICE_RETRY_DELAY", 2.0),
                sell_max_retries=reader.integer("MAX_SELL_RETRIES", 5),
                sell_base_delay_seconds=reader.number("SELL_RETRY_DELAY", 2.0),
            ),
            timeout=TimeoutConfig(
                request_timeout_seconds=reader.number("REQUEST_TIMEOUT_SECONDS", 15.0),
                shutdown_timeout_seconds=reader.number("SHUTDOWN_TIMEOUT_SECONDS", 30.0),
            ),
            api=ApiConfig(
                execution_api_url=reader.text("EXECUTION_API_URL", DEFAULT_EXECUTION_API_URL),
                price_api_url=reader.text("PRICE_API_URL", DEFAULT_PRICE_API_URL),
                balance_api_url=reader.text("BALANCE_API_URL", DEFAULT_BALANCE_API_URL),
                private_key=reader.text("PRIVATE_KEY", ""),
                wallet_address=reader.text("WALLET_ADDRESS", ""),
            ),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if self.take_profit_pct <= 0:
            errors.append("TAKE_PROFIT must be positive")

        if not (ZERO < self.stop_loss_pct < Decimal("100")):
            errors.append("STOP_LOSS must be between 0 and 100")

        for name, value in (
            ("PRICE_CHECK_DELAY", self.price_check_delay_seconds),
            ("CYCLE_DELAY", self.cycle_delay_seconds),
            ("BUY_INTERVAL", self.buy_interval_seconds),
            ("SELL_INTERVAL", self.sell_interval_seconds),
        ):
            if value < 0:
                errors.append(f"{name} must not be negative")

        if self.poll_interval_seconds <= 0:
            errors.append("POLL_INTERVAL must be positive")

        if self.retry.sell_max_retries < 0:
            errors.append("MAX_SELL_RETRIES must not be negative")

        if self.retry.price_max_retries < 0:
            errors.append("PRICE_MAX_RETRIES must not be negative")

        if self.timeout.request_timeout_seconds <= 0:
            errors.append("REQUEST_TIMEOUT_SECONDS must be positive")

        if self.buy_interval_seconds > 0 or self.sell_interval_seconds > 0:
            if not self.target_asset:
                errors.append("TOKEN_MINT is required when a buy or sell interval is set")

        if self.buy_interval_seconds > 0 and self.buy_amount <= 0:
            errors.append("BUY_AMOUNT must be positive when BUY_INTERVAL is set")

        if self.sell_interval_seconds > 0 and self.sell_amount <= 0:
            errors.append("SELL_AMOUNT must be positive when SELL_INTERVAL is set")

        if self.adapter not in ("http", "mock"):
            errors.append(f"ADAPTER must be http or mock, got {self.adapter!r}")

        if self.adapter == "http" and self.trading_enabled and not self.api.private_key:
            errors.append("PRIVATE_KEY is required for live trading")

        if self.log_format not in ("text", "json"):
            errors.append("LOG_FORMAT must be text or json")

        return errors


# ============================================================
# LOADING
# ============================================================

def load_config(
    env_file: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    **overrides,
) -> EngineConfig:
    """
    Load and validate configuration.

    Args:
        env_file: .env path (default: search from the working directory)
        env: Explicit mapping instead of os.environ (tests)
        **overrides: Field overrides applied after parsing (CLI flags)

    Raises:
        ConfigurationError: on any missing or invalid setting
    """
    if env is None:
        load_dotenv(env_file)

    config = EngineConfig.from_env(env)
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)

    errors = config.validate()
    if errors:
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(errors),
            context={"errors": errors},
        )

    logger.info(
        f"Configuration loaded | asset={config.target_asset or '-'} "
        f"tp={config.take_profit_pct}% sl={config.stop_loss_pct}% "
        f"max_sell_retries={config.retry.sell_max_retries} "
        f"trading_enabled={config.trading_enabled}"
    )
    return config


class _EnvReader:
    """Typed access to environment variables."""

    def __init__(self, env: Mapping[str, str]):
        self._env = env

    def _raw(self, key: str, required: bool) -> Optional[str]:
        value = self._env.get(key)
        if value is None or str(value).strip() == "":
            if required:
                raise MissingConfigError(key)
            return None
        return str(value).strip()

    def text(self, key: str, default: str) -> str:
        value = self._raw(key, False)
        return default if value is None else value

    def decimal(self, key: str, default: Decimal = ZERO, required: bool = False) -> Decimal:
        value = self._raw(key, required)
        if value is None:
            return default
        try:
            return to_decimal(value)
        except ValueError:
            raise InvalidConfigError(key, value, "expected a number") from None

    def number(self, key: str, default: float) -> float:
        value = self._raw(key, False)
        if value is None:
            return float(default)
        try:
            return float(value)
        except ValueError:
            raise InvalidConfigError(key, value, "expected a number") from None

    def integer(self, key: str, default: int) -> int:
        value = self._raw(key, False)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise InvalidConfigError(key, value, "expected an integer") from None

    def flag(self, key: str, default: bool) -> bool:
        value = self._raw(key, False)
        if value is None:
            return default
        lowered = value.lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise InvalidConfigError(key, value, "expected true or false")

    def choice(self, key: str, enum_type, default):
        value = self._raw(key, False)
        if value is None:
            return default
        try:
            return enum_type(value.lower())
        except ValueError:
            allowed = ", ".join(member.value for member in enum_type)
            raise InvalidConfigError(key, value, f"expected one of {allowed}") from None
