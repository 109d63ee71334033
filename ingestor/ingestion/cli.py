"""
Ingestion CLI commands.

Entry point for the scheduler: runs one pass over all accounts and
prints a status line per account. `init-db` and `drop-db` manage the
ingestor's own tables.

Exit codes:
    0    the account loop completed (individual accounts may have failed)
    1    unexpected error escaped the orchestrator
    2    configuration error (missing DATABASE_URL, no credential relation)
    130  interrupted
"""

import asyncio
import sys
from typing import List, Optional

import structlog

from ingestor.core.config import get_settings
from ingestor.core.errors import ConfigurationError
from ingestor.core.logging import configure_logging
from ingestor.db.base import dispose_engine, get_engine
from ingestor.db.init import create_tables, drop_tables
from ingestor.ingestion.metrics import RunSummary
from ingestor.ingestion.poller import create_poller

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def print_summary(summary: RunSummary) -> None:
    """Pretty print one status line per account and the run totals."""
    print(f"\n=== Ingestion run {summary.run_id} ===\n")
    if not summary.accounts:
        print("No active accounts found.")
    for result in summary.accounts:
        print(result.status_line())
    print(f"\n{summary.totals_line()}")
    print(f"Duration: {summary.duration_seconds:.2f}s\n")


async def poll_command() -> int:
    """Run a single ingestion pass."""
    poller = create_poller(get_settings())
    try:
        summary = await poller.run_once()
    finally:
        await poller.client.aclose()
        await dispose_engine()

    print_summary(summary)
    return EXIT_OK


async def init_db_command() -> int:
    """Create the accounts and transactions tables."""
    try:
        await create_tables(get_engine(get_settings()))
    finally:
        await dispose_engine()
    print("Tables created.")
    return EXIT_OK


async def drop_db_command() -> int:
    """Drop the accounts and transactions tables."""
    try:
        await drop_tables(get_engine(get_settings()))
    finally:
        await dispose_engine()
    print("Tables dropped.")
    return EXIT_OK


COMMANDS = {
    "poll": poll_command,
    "init-db": init_db_command,
    "drop-db": drop_db_command,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = sys.argv[1:] if argv is None else argv
    command = args[0] if args else "poll"

    if command in ("-h", "--help", "help") or command not in COMMANDS:
        print("Usage: ingestor-poll [command]")
        print("\nCommands:")
        print("  poll      Run one ingestion pass over all accounts (default)")
        print("  init-db   Create the accounts and transactions tables")
        print("  drop-db   Drop the accounts and transactions tables")
        return EXIT_OK if command in ("-h", "--help", "help") else EXIT_ERROR

    settings = get_settings()
    configure_logging(settings.ENV, settings.LOG_LEVEL)

    try:
        return asyncio.run(COMMANDS[command]())
    except ConfigurationError as e:
        logger.error("cli.configuration_error", command=command, error=str(e))
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("cli.crashed", command=command)
        print(f"Poller crashed: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
