"""
Orchestrator Module.

============================================================
RESPONSIBILITY
============================================================
Process runtime for the position engine.

- Orchestrator: wiring, startup, shutdown, signals
- setup_logging: process-wide log configuration
- CLI: argparse entry point

============================================================
"""

from .core import Orchestrator, setup_logging
from .cli import main, create_parser


__all__ = [
    "Orchestrator",
    "setup_logging",
    "main",
    "create_parser",
]
