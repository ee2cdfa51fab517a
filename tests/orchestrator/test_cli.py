"""
CLI Tests.

============================================================
PURPOSE
============================================================
Argument parsing, exit codes and the one-shot commands,
run against the mock adapter (--dry-run).

============================================================
"""

import asyncio
import json
from decimal import Decimal

import pytest

from orchestrator import cli
from orchestrator.cli import (
    EXIT_CONFIG,
    EXIT_FATAL,
    EXIT_OK,
    create_parser,
    main,
    validate_args,
)
from position_engine.position_store import PositionStore
from position_engine.state_machine import record_price
from tests.factories import ASSET, make_position, seed


CLI_MINT = "CliMint111111111111111111111111111111111111"


# ============================================================
# PARSING
# ============================================================

class TestParser:
    """Tests for create_parser() and validate_args()."""

    def test_default_command_is_run(self):
        args = create_parser().parse_args([])

        assert args.command == "run"
        assert not args.dry_run

    def test_buy_requires_amount(self):
        args = create_parser().parse_args(["buy"])

        assert "--amount is required for buy" in validate_args(args)

    @pytest.mark.parametrize("amount", ["-1", "0", "lots"])
    def test_bad_amount(self, amount):
        args = create_parser().parse_args(["sell", "--amount", amount])

        assert validate_args(args)

    def test_unknown_command_exits(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["hold"])


# ============================================================
# EXIT CODES
# ============================================================

class TestMain:
    """Tests for main()."""

    def test_invalid_arguments_exit_2(self, engine_env, capsys):
        code = main(["buy", "--env-file", str(engine_env)])

        assert code == EXIT_CONFIG
        assert "--amount" in capsys.readouterr().err

    def test_missing_threshold_exit_2(self, engine_env, monkeypatch, capsys):
        monkeypatch.delenv("TAKE_PROFIT")

        code = main(["positions", "--env-file", str(engine_env)])

        assert code == EXIT_CONFIG
        assert "TAKE_PROFIT" in capsys.readouterr().err

    def test_positions_when_empty(self, engine_env, capsys):
        code = main(["positions", "--env-file", str(engine_env)])

        assert code == EXIT_OK
        assert "No positions recorded." in capsys.readouterr().out

    def test_positions_with_corrupt_file(self, engine_env, tmp_path, capsys):
        (tmp_path / "records.json").write_text("{broken")

        code = main(["positions", "--env-file", str(engine_env)])

        assert code == EXIT_FATAL
        assert "Error:" in capsys.readouterr().err

    def test_dry_run_buy_records_position(self, engine_env, tmp_path, capsys):
        code = main(["buy", "--dry-run", "--amount", "0.5", "--env-file", str(engine_env)])

        assert code == EXIT_OK
        assert f"buy {CLI_MINT}: SUCCESS" in capsys.readouterr().out
        data = json.loads((tmp_path / "records.json").read_text())
        assert data[CLI_MINT]["status"] == "Bought"
        assert data[CLI_MINT]["investedAmount"] == "0.5"

        assert main(["positions", "--env-file", str(engine_env)]) == EXIT_OK
        assert CLI_MINT in capsys.readouterr().out

    def test_dry_run_sell_without_position_fails(self, engine_env, capsys):
        code = main(["sell", "--dry-run", "--env-file", str(engine_env)])

        assert code == EXIT_FATAL
        assert "REJECTED_NOT_OPEN" in capsys.readouterr().out

    def test_records_file_flag_overrides_env(self, engine_env, tmp_path):
        other = tmp_path / "other.json"

        code = main([
            "buy", "--dry-run", "--amount", "1",
            "--records-file", str(other),
            "--env-file", str(engine_env),
        ])

        assert code == EXIT_OK
        assert other.exists()
        assert not (tmp_path / "records.json").exists()

    def test_private_key_is_masked_in_logs(self, engine_env, capsys):
        main(["buy", "--dry-run", "--amount", "0.5", "--log-level", "DEBUG", "--env-file", str(engine_env)])

        captured = capsys.readouterr()
        assert "cli-private-key-value" not in captured.out + captured.err

    def test_positions_does_not_build_runtime(self, engine_env, monkeypatch, capsys):
        def no_runtime(*args, **kwargs):
            raise AssertionError("positions must only read the records file")

        monkeypatch.setattr(cli, "Orchestrator", no_runtime)

        assert main(["positions", "--env-file", str(engine_env)]) == EXIT_OK
        assert "No positions recorded." in capsys.readouterr().out


# ============================================================
# SHARED RECORDS FILE
# ============================================================

class TestAlongsideEngine:
    """A one-shot command while the engine holds the same records file."""

    @pytest.mark.asyncio
    async def test_cli_buy_survives_engine_write(self, engine_env, tmp_path):
        records_path = tmp_path / "records.json"
        engine_store = PositionStore(records_path)
        await seed(engine_store, make_position(ASSET))

        code = await asyncio.to_thread(
            main, ["buy", "--dry-run", "--amount", "0.5", "--env-file", str(engine_env)],
        )
        await engine_store.update(ASSET, lambda cur: record_price(cur, Decimal("101")))

        assert code == EXIT_OK
        data = json.loads(records_path.read_text())
        assert set(data) == {ASSET, CLI_MINT}
        assert data[CLI_MINT]["status"] == "Bought"
