#!/usr/bin/env python3
"""
Parametric Cover Engine - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the engine.

- Compatible with PM2 process management
- Can be started, stopped, and restarted safely
- Handles SIGINT/SIGTERM gracefully

============================================================
USAGE
============================================================
Direct execution:
    python app.py --config engine.yaml

With PM2:
    pm2 start app.py --interpreter python --name cover-engine -- --config engine.yaml

Environment-based configuration (.env is read automatically):
    POLICIES_PATH=policies.yaml DATABASE_URL=sqlite+aiosqlite:///payouts.db python app.py

============================================================
"""

import sys

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
