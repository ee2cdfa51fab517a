"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the position engine.

- Provides argparse-based CLI
- Loads configuration from .env, environment and flags
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli                       # run monitor + scheduler
python -m orchestrator.cli run --dry-run         # run against the mock adapter
python -m orchestrator.cli buy --asset MINT --amount 0.1
python -m orchestrator.cli sell --asset MINT     # sell the whole position
python -m orchestrator.cli positions

EXIT CODES:
0   clean exit
1   fatal runtime error
2   invalid configuration or arguments
130 interrupted

============================================================
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal
from typing import List, Optional

from core.exceptions import ConfigurationError, StartupError, StoreError

from position_engine import __version__
from position_engine.config import EngineConfig, load_config
from position_engine.position_store import PositionStore
from position_engine.types import TradeReason, to_decimal

from .core import Orchestrator, setup_logging


logger = logging.getLogger("orchestrator")


EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="position-engine",
        description="Take-profit / stop-loss position engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run        - Monitor open positions and run the buy/sell timers (default)
  buy        - Buy once and record the position
  sell       - Sell once from an open position
  positions  - Print the records file

Examples:
  %(prog)s                                   # Run with settings from .env
  %(prog)s run --dry-run                     # Run without touching the chain
  %(prog)s buy --asset <mint> --amount 0.1   # Spend 0.1 SOL on <mint>
  %(prog)s sell --asset <mint>               # Close the whole position
        """
    )

    parser.add_argument(
        "command",
        nargs="?",
        choices=["run", "buy", "sell", "positions"],
        default="run",
        help="Command to run (default: run)",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    # --------------------------------------------------------
    # Configuration Options
    # --------------------------------------------------------
    config_group = parser.add_argument_group("Configuration Options")

    config_group.add_argument(
        "--env-file",
        type=str,
        metavar="PATH",
        help="Path to .env file (default: search from working directory)",
    )

    config_group.add_argument(
        "--records-file",
        type=str,
        metavar="PATH",
        help="Override RECORDS_FILE",
    )

    config_group.add_argument(
        "--dry-run",
        action="store_true",
        help="Use the in-memory mock adapter; no real orders",
    )

    # --------------------------------------------------------
    # Order Options
    # --------------------------------------------------------
    order_group = parser.add_argument_group("Order Options")

    order_group.add_argument(
        "--asset",
        type=str,
        help="Asset for buy/sell (default: TOKEN_MINT)",
    )

    order_group.add_argument(
        "--amount",
        type=str,
        help="Buy: base currency to spend. Sell: amount per SELL_SIZING (default: whole position)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["text", "json"],
        help="Log output format (default: LOG_FORMAT or text)",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []

    if args.amount is not None:
        try:
            amount = to_decimal(args.amount)
        except ValueError:
            errors.append(f"--amount must be a number, got {args.amount!r}")
        else:
            if amount <= 0:
                errors.append("--amount must be positive")

    if args.command == "buy" and args.amount is None:
        errors.append("--amount is required for buy")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace) -> EngineConfig:
    """
    Build engine configuration from .env, environment and flags.

    Raises:
        ConfigurationError: missing or invalid settings
    """
    return load_config(
        env_file=args.env_file,
        records_file=args.records_file,
        adapter="mock" if args.dry_run else None,
        log_level=args.log_level,
        log_format=args.log_format,
    )


# ============================================================
# COMMANDS
# ============================================================

async def run_engine(config: EngineConfig) -> int:
    orchestrator = Orchestrator(config)
    try:
        await orchestrator.run_forever()
        return EXIT_OK
    finally:
        await orchestrator.stop()


async def run_buy(config: EngineConfig, asset: str, amount: Decimal) -> int:
    orchestrator = Orchestrator(config, install_signal_handlers=False)
    await orchestrator.adapter.connect()
    try:
        result = await orchestrator.executor.buy(asset, amount)
    finally:
        await orchestrator.store.close()
        await orchestrator.adapter.disconnect()

    print(f"buy {asset}: {result.result_code.value}")
    if result.is_success:
        print(f"  tokens: {result.tokens_received}  price: {result.execution_price}  tx: {result.tx_ref}")
    elif result.error_message:
        print(f"  {result.error_message}")
    return EXIT_OK if result.is_success else EXIT_FATAL


async def run_sell(config: EngineConfig, asset: str, amount: Optional[Decimal]) -> int:
    orchestrator = Orchestrator(config, install_signal_handlers=False)
    await orchestrator.adapter.connect()
    try:
        result = await orchestrator.executor.sell(asset, amount, TradeReason.MANUAL)
    finally:
        await orchestrator.store.close()
        await orchestrator.adapter.disconnect()

    print(f"sell {asset}: {result.result_code.value}")
    if result.is_success:
        print(f"  quantity: {result.quantity}  proceeds: {result.proceeds}  tx: {result.tx_ref}")
    elif result.error_message:
        print(f"  {result.error_message}")
    return EXIT_OK if result.is_success else EXIT_FATAL


async def show_positions(config: EngineConfig) -> int:
    store = PositionStore(config.records_file)
    try:
        snapshot = await store.load()
    except StoreError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FATAL

    if not snapshot:
        print("No positions recorded.")
        return EXIT_OK

    print(f"{'ASSET':46s} {'STATUS':7s} {'INVESTED':>14s} {'UNITS':>18s} {'ENTRY':>16s} {'LAST':>16s}")
    for position in snapshot.values():
        print(
            f"{position.asset:46s} {position.status.value:7s} "
            f"{position.invested_amount:>14} {position.units_held:>18} "
            f"{position.entry_price:>16} {position.last_observed_price:>16}"
        )
    return EXIT_OK


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, config: EngineConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    asset = args.asset or config.target_asset
    amount = to_decimal(args.amount) if args.amount is not None else None

    if args.command in ("buy", "sell") and not asset:
        print("Error: --asset or TOKEN_MINT is required", file=sys.stderr)
        return EXIT_CONFIG

    if args.command == "buy":
        return await run_buy(config, asset, amount)
    if args.command == "sell":
        return await run_sell(config, asset, amount)
    if args.command == "positions":
        return await show_positions(config)
    return await run_engine(config)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(
        level=config.log_level,
        log_format=config.log_format,
        secrets=[config.api.private_key],
    )

    if args.command == "run":
        print_banner(config)

    try:
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except StartupError as e:
        logger.error(f"Startup failed: {e.describe()}")
        return EXIT_FATAL
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return EXIT_FATAL


def print_banner(config: EngineConfig) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  POSITION ENGINE")
    print("=" * 60)
    print(f"  Adapter:      {config.adapter}")
    print(f"  Trading:      {'enabled' if config.trading_enabled else 'DISABLED'}")
    print(f"  Asset:        {config.target_asset or '-'}")
    print(f"  Take-profit:  {config.take_profit_pct}%")
    print(f"  Stop-loss:    {config.stop_loss_pct}%")
    print(f"  Buy:          {config.buy_amount} every {config.buy_interval_seconds}s")
    print(f"  Sell:         {config.sell_amount} every {config.sell_interval_seconds}s")
    print(f"  Records:      {config.records_file}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
