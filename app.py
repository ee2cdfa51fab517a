#!/usr/bin/env python3
"""
Position Engine - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
- Compatible with PM2 process management
- Can be started, stopped, and restarted safely
- Handles SIGINT / SIGTERM gracefully

============================================================
USAGE
============================================================
Direct execution:
    python app.py
    python app.py run --dry-run
    python app.py buy --asset <mint> --amount 0.1

With PM2:
    pm2 start app.py --interpreter python --name position-engine

Configuration comes from .env / environment; see .env.example.

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
