"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the indicator monitor.

- Provides argparse-based CLI
- Loads configuration from environment, then CLI overrides
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli --indicators-file indicators.json \\
    --collector mypackage.collectors:build_collector
python -m orchestrator.cli --single-tick --log-level DEBUG
python -m orchestrator.cli --use-database --database-url sqlite+aiosqlite:///monitor.db

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from core.config import MonitorConfig
from core.exceptions import MonitorException

from .core import create_service, setup_logging


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="indicator-monitor",
        description="Indicator scheduling, evaluation and alert-state engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --indicators-file indicators.json --collector app_collectors:collector
  %(prog)s --single-tick                      # Run due indicators once and exit
  %(prog)s --use-database --database-url sqlite+aiosqlite:///monitor.db
        """
    )

    # --------------------------------------------------------
    # Scheduling Options
    # --------------------------------------------------------
    scheduling_group = parser.add_argument_group("Scheduling Options")

    scheduling_group.add_argument(
        "--tick-interval",
        type=float,
        metavar="SECONDS",
        help="Scheduler tick interval in seconds (default: 60)",
    )

    scheduling_group.add_argument(
        "--max-concurrent",
        type=int,
        metavar="N",
        help="Maximum indicator runs in flight (default: 5)",
    )

    scheduling_group.add_argument(
        "--collection-timeout",
        type=float,
        metavar="SECONDS",
        help="Deadline for one metric collection (default: 60)",
    )

    scheduling_group.add_argument(
        "--single-tick",
        action="store_true",
        help="Run a single tick, wait for its runs, and exit",
    )

    # --------------------------------------------------------
    # Source Options
    # --------------------------------------------------------
    source_group = parser.add_argument_group("Source Options")

    source_group.add_argument(
        "--indicators-file",
        type=str,
        metavar="PATH",
        help="JSON list of indicator definitions to load at startup",
    )

    source_group.add_argument(
        "--collector",
        type=str,
        metavar="MODULE:ATTR",
        help="Metric collector instance, class or factory",
    )

    # --------------------------------------------------------
    # Storage Options
    # --------------------------------------------------------
    storage_group = parser.add_argument_group("Storage Options")

    storage_group.add_argument(
        "--use-database",
        action="store_true",
        help="Persist indicators, history and alert state with SQLAlchemy",
    )

    storage_group.add_argument(
        "--database-url",
        type=str,
        metavar="URL",
        help="SQLAlchemy async URL (implies --use-database)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: text)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version="%(prog)s 1.0.0",
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

    if args.tick_interval is not None and args.tick_interval <= 0:
        errors.append("--tick-interval must be positive")

    if args.max_concurrent is not None and args.max_concurrent < 1:
        errors.append("--max-concurrent must be at least 1")

    if args.collection_timeout is not None and args.collection_timeout <= 0:
        errors.append("--collection-timeout must be positive")

    if args.collector is not None and ":" not in args.collector:
        errors.append("--collector must be given as MODULE:ATTR")

    return errors


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(args: argparse.Namespace, base: Optional[MonitorConfig] = None) -> MonitorConfig:
    """
    Build monitor configuration: environment first, CLI overrides.
    """
    config = base or MonitorConfig.from_env()

    if args.tick_interval is not None:
        config.scheduler.tick_interval_seconds = args.tick_interval
    if args.max_concurrent is not None:
        config.scheduler.max_concurrent_executions = args.max_concurrent
    if args.collection_timeout is not None:
        config.executor.collection_timeout_seconds = args.collection_timeout
    if args.indicators_file:
        config.indicators_file = args.indicators_file
    if args.collector:
        config.collector = args.collector
    if args.use_database or args.database_url:
        config.database.enabled = True
    if args.database_url:
        config.database.url = args.database_url
    if args.log_level:
        config.logging.level = args.log_level
    if args.log_format:
        config.logging.format = args.log_format

    return config


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(config: MonitorConfig, single_tick: bool = False) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    try:
        service = await create_service(config)
    except MonitorException as e:
        logging.error(f"Cannot create monitor: {e.to_log_format()}")
        return 1

    try:
        if single_tick:
            result = await service.run_single_tick()
            print(json.dumps({
                "tick_time": result.tick_time.isoformat(),
                "due": result.due,
                "dispatched": result.dispatched,
                "skipped": result.skipped,
                "failed_runs": result.failed_runs,
            }))
            return 0

        await service.run_forever()
        return 1 if service.fatal_error else 0

    except MonitorException as e:
        logging.error(f"Fatal error: {e.to_log_format()}")
        return 1
    finally:
        await service.stop()


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
        return 1

    try:
        config = build_config(args)
    except MonitorException as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.logging.level, config.logging.format)
    print_banner(config, args.single_tick)

    try:
        return asyncio.run(async_main(config, single_tick=args.single_tick))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


def print_banner(config: MonitorConfig, single_tick: bool) -> None:
    """Print startup banner."""
    print()
    print("=" * 60)
    print("  INDICATOR MONITOR")
    print("=" * 60)
    print(f"  Mode:        {'single tick' if single_tick else 'continuous'}")
    print(f"  Interval:    {config.scheduler.tick_interval_seconds}s")
    print(f"  Workers:     {config.scheduler.max_concurrent_executions}")
    print(f"  Storage:     {'database' if config.database.enabled else 'memory'}")
    print(f"  Collector:   {config.collector or '-'}")
    print(f"  Indicators:  {config.indicators_file or '-'}")
    print(f"  Log Level:   {config.logging.level}")
    print("=" * 60)
    print()


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
