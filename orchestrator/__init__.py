"""
Orchestrator Package - Sweep Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Runs the hourly sweep over the active policy book and the
shorter escalation tick between sweeps.

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                       Engine                        |
    |-----------------------------------------------------|
    |  SweepEngine    |  policy units, bounded parallel   |
    |  PayoutManager  |  polling and SLA checks           |
    |  Operator API   |  aiohttp, optional                |
    |  CLI            |  argparse entry point             |
    +-----------------------------------------------------+

    per policy unit:
        fetch snapshot -> score -> evaluate -> payout

============================================================
QUICK START
============================================================
Command line usage::

    python app.py --config engine.yaml
    python app.py --config engine.yaml --single-sweep
    python app.py --config engine.yaml --operator-api --port 8080

The engine, factory and CLI live in orchestrator.core and
orchestrator.cli; they import core.settings and are not
re-exported here.

============================================================
"""

from orchestrator.models import (
    LOG_FORMATS,
    EngineStatus,
    OrchestratorConfig,
    PolicyUnitResult,
    SweepResult,
)
from orchestrator.sweep import SweepEngine


__all__ = [
    "LOG_FORMATS",
    "EngineStatus",
    "OrchestratorConfig",
    "PolicyUnitResult",
    "SweepResult",
    "SweepEngine",
]
