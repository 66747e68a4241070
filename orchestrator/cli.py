"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the parametric cover engine.

- Provides argparse-based CLI
- Loads settings from YAML, .env and the command line
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli --config engine.yaml
python -m orchestrator.cli --config engine.yaml --single-sweep
python -m orchestrator.cli --config engine.yaml --operator-api --port 8080
python -m orchestrator.cli --config engine.yaml --show-config

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

from core.exceptions import ConfigurationError
from core.settings import EngineSettings
from orchestrator.core import build_engine, setup_logging
from orchestrator.models import LOG_FORMATS


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="parametric-cover-engine",
        description="Parametric insurance trigger and payout engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --config engine.yaml                     # Hourly sweeps until stopped
  %(prog)s --config engine.yaml --single-sweep      # One sweep and exit
  %(prog)s --config engine.yaml --operator-api      # Also serve the operator API
  %(prog)s --config engine.yaml --show-config       # Print effective settings
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        metavar="PATH",
        help="YAML settings file (defaults + environment when omitted)",
    )

    # --------------------------------------------------------
    # Execution Options
    # --------------------------------------------------------
    execution_group = parser.add_argument_group("Execution Options")

    execution_group.add_argument(
        "--single-sweep",
        action="store_true",
        help="Run a single sweep and exit (no loop)",
    )

    execution_group.add_argument(
        "--interval",
        type=int,
        metavar="SECONDS",
        help="Seconds between sweeps (default: 3600, aligned to the hour)",
    )

    execution_group.add_argument(
        "--max-concurrency",
        type=int,
        metavar="N",
        help="Policies processed in parallel",
    )

    # --------------------------------------------------------
    # Operator API
    # --------------------------------------------------------
    api_group = parser.add_argument_group("Operator API")

    api_group.add_argument(
        "--operator-api",
        action="store_true",
        help="Serve the operator HTTP API",
    )

    api_group.add_argument(
        "--port",
        type=int,
        help="Operator API port",
    )

    # --------------------------------------------------------
    # Logging
    # --------------------------------------------------------
    log_group = parser.add_argument_group("Logging")

    log_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level",
    )

    log_group.add_argument(
        "--log-format",
        type=str,
        choices=list(LOG_FORMATS),
        help="Log output format",
    )

    # --------------------------------------------------------
    # Information
    # --------------------------------------------------------
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Print the effective settings (secrets masked) and exit",
    )

    return parser


def apply_args(settings: EngineSettings, args: argparse.Namespace) -> EngineSettings:
    """Command-line flags override file and environment values."""
    orch = settings.orchestrator
    if args.interval is not None:
        orch.sweep_interval_seconds = args.interval
    if args.max_concurrency is not None:
        orch.max_concurrency = args.max_concurrency
    if args.operator_api:
        orch.operator_api_enabled = True
    if args.port is not None:
        orch.operator_api_port = args.port
    if args.log_level:
        orch.log_level = args.log_level
    if args.log_format:
        orch.log_format = args.log_format
    return settings


# ============================================================
# MAIN
# ============================================================

async def async_main(settings: EngineSettings, single_sweep: bool) -> int:
    """Build the engine and run it."""
    engine = await build_engine(settings)

    try:
        if single_sweep:
            result = await engine.run_single_sweep()
            print(json.dumps(result.to_dict(), indent=2))
            return 0 if result.success else 1
        await engine.run_forever()
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        await engine.stop()


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

    try:
        settings = apply_args(EngineSettings.load(args.config), args)
        settings.validate()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.show_config:
        print(json.dumps(settings.to_dict(), indent=2))
        return 0

    orch = settings.orchestrator
    correlation_id = f"{orch.correlation_id_prefix}_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}"
    setup_logging(level=orch.log_level, log_format=orch.log_format, correlation_id=correlation_id)

    print_banner(settings, args)

    try:
        return asyncio.run(async_main(settings, args.single_sweep))
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def print_banner(settings: EngineSettings, args: argparse.Namespace) -> None:
    """Print startup banner."""
    orch = settings.orchestrator
    print()
    print("=" * 60)
    print("  PARAMETRIC COVER ENGINE")
    print("=" * 60)
    print(f"  Config:       {args.config or '(defaults)'}")
    print(f"  Policies:     {orch.policies_path}")
    print(f"  Run:          {'single sweep' if args.single_sweep else 'loop'}")
    print(f"  Interval:     {orch.sweep_interval_seconds}s")
    print(f"  Concurrency:  {orch.max_concurrency}")
    print(f"  Log Level:    {orch.log_level}")
    if orch.operator_api_enabled:
        print(f"  Operator API: {orch.operator_api_host}:{orch.operator_api_port}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
