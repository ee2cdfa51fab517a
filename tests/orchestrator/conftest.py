"""
Fixtures for runtime and CLI tests.
"""

import logging

import pytest


@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging() replaces the root handlers; put them back."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def engine_env(monkeypatch, tmp_path):
    """Minimal environment for main(); no .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    for key, value in {
        "TAKE_PROFIT": "10",
        "STOP_LOSS": "10",
        "TOKEN_MINT": "CliMint111111111111111111111111111111111111",
        "RECORDS_FILE": str(tmp_path / "records.json"),
        "PRIVATE_KEY": "cli-private-key-value",
    }.items():
        monkeypatch.setenv(key, value)
    env_file = tmp_path / "empty.env"
    env_file.write_text("")
    return env_file
