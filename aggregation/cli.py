"""
Aggregation - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line entry point for the holdings engine.

- run:      one aggregation run, RunSummary printed as JSON
- last-run: status of the most recent run
- init-db:  create the database schema

Logs go to stderr so stdout stays machine-readable.

============================================================
EXIT CODES
============================================================
0  run succeeded (at least one wallet processed)
1  run completed but no wallet was processed
2  fatal configuration error, run did not happen

============================================================
USAGE
============================================================
python -m aggregation.cli run --trigger scheduled
python -m aggregation.cli run --dry-run --config aggregator.yaml --wallets wallets.yaml
python -m aggregation.cli last-run

============================================================
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from core.exceptions import ConfigurationError
from core.logging_utils import setup_logging
from aggregation.config import AggregatorConfig
from aggregation.config_source import ConfigSource, DatabaseConfigSource, InMemoryConfigSource
from aggregation.models import TriggerType
from aggregation.orchestrator import build_orchestrator
from storage.database import create_database_engine, get_session_factory, init_schema


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_DEGRADED = 1
EXIT_FATAL = 2


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="holdings-aggregator",
        description="Crypto balance aggregation and price reconciliation engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run                              # Manual run with .env configuration
  %(prog)s run --trigger scheduled          # Run started by a scheduler
  %(prog)s run --dry-run --wallets w.yaml   # Log would-be records only
  %(prog)s last-run                         # Status of the most recent run
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        metavar="FILE",
        help="YAML configuration file (default: environment / .env)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: LOG_FORMAT or text)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run one aggregation pass")
    run_parser.add_argument(
        "--trigger",
        type=str,
        choices=[t.value for t in TriggerType],
        default=TriggerType.MANUAL.value,
        help="What started this run (default: manual)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log records instead of writing them",
    )
    run_parser.add_argument(
        "--wallets",
        type=str,
        metavar="FILE",
        help="YAML file with wallets and tokens (default: database tables)",
    )

    subparsers.add_parser("last-run", help="Show the most recent run")
    subparsers.add_parser("init-db", help="Create database tables")

    return parser


# ============================================================
# CONFIGURATION
# ============================================================

def load_config(args: argparse.Namespace) -> AggregatorConfig:
    """Build the run configuration; CLI flags override file/env values."""
    if args.config:
        config = AggregatorConfig.from_yaml(args.config)
    else:
        config = AggregatorConfig.from_env()

    if getattr(args, "dry_run", False):
        config.dry_run = True
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    return config


def _database_source(config: AggregatorConfig) -> DatabaseConfigSource:
    engine = create_database_engine(config.database_url)
    init_schema(engine)
    return DatabaseConfigSource(get_session_factory(engine))


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ============================================================
# COMMANDS
# ============================================================

async def run_command(config: AggregatorConfig, args: argparse.Namespace) -> int:
    config_source: Optional[ConfigSource] = None
    if args.wallets:
        config_source = InMemoryConfigSource.from_yaml(args.wallets)

    orchestrator = build_orchestrator(config, config_source=config_source)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        loop.add_signal_handler(signal.SIGTERM, orchestrator.cancel)
    except (NotImplementedError, RuntimeError):
        # Not available on this platform / loop
        pass

    try:
        summary = await orchestrator.run(TriggerType(args.trigger))
    finally:
        await orchestrator.close()

    _print_json(summary.to_dict())
    if summary.fatal:
        return EXIT_FATAL
    return EXIT_OK if summary.success else EXIT_DEGRADED


def last_run_command(config: AggregatorConfig) -> int:
    info = _database_source(config).get_last_run()
    if info is None:
        _print_json({"last_run": None})
    else:
        _print_json({"last_run": info.to_dict()})
    return EXIT_OK


def init_db_command(config: AggregatorConfig) -> int:
    engine = create_database_engine(config.database_url)
    init_schema(engine)
    engine.dispose()
    return EXIT_OK


# ============================================================
# MAIN ENTRY POINT
# ============================================================

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
        config = load_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FATAL

    setup_logging(config.log_level, config.log_format)

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return EXIT_FATAL

    if args.command == "init-db":
        return init_db_command(config)
    if args.command == "last-run":
        return last_run_command(config)

    try:
        return asyncio.run(run_command(config, args))
    except ConfigurationError as e:
        logger.error(e.to_log_format())
        return EXIT_FATAL


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
