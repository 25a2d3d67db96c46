#!/usr/bin/env python3
"""CLI entry point for the leadflow backend.

Usage:
    leadflow api                 # serve the backend API
    leadflow worker              # run the scrape job worker
    leadflow worker --once       # process one batch of due jobs and exit
    leadflow sync-usage          # push pending usage events to Polar
    leadflow init-db             # create tables and seed usage rules
    leadflow check-env           # report which components are configured
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Callable

from .config import ConfigError, config
from .logging_utils import setup_logging

logger = logging.getLogger("leadflow")

# Components and the config check each one needs
ENV_CHECKS: dict[str, Callable[[], None]] = {
    "database": config.validate_for_database,
    "scraping": config.validate_for_scraping,
    "usage sync": config.validate_for_usage_sync,
}


def check_environment() -> dict[str, str]:
    """Run each component's config check.

    Returns:
        Component name mapped to "ok" or the validation error message.
    """
    status = {}
    for name, check in ENV_CHECKS.items():
        try:
            check()
            status[name] = "ok"
        except ConfigError as e:
            status[name] = str(e)
    return status


def print_env_status(status: dict[str, str]) -> bool:
    """Print the environment report. Returns True when every check passed."""
    print("\nEnvironment Status:")
    print("-" * 40)
    print(f"  APP_ENV: {config.APP_ENV}")
    for name, result in status.items():
        marker = "OK" if result == "ok" else "MISSING"
        line = f"  [{marker}] {name}"
        if result != "ok":
            line += f" - {result}"
        print(line)
    print("-" * 40)
    return all(result == "ok" for result in status.values())


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leadflow",
        description="Leadflow backend: API server, job worker and usage sync",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    api = subparsers.add_parser("api", help="Serve the backend API")
    api.add_argument("--host", default=config.API_HOST)
    api.add_argument("--port", type=int, default=config.API_PORT)
    api.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes (development only)",
    )

    worker = subparsers.add_parser("worker", help="Run the job worker")
    worker.add_argument(
        "--once",
        action="store_true",
        help="Process one batch of due jobs and exit",
    )
    worker.add_argument("--concurrency", type=int, default=config.JOB_CONCURRENCY)

    sync = subparsers.add_parser("sync-usage", help="Sync usage events to Polar")
    sync.add_argument("--batch-size", type=int, default=config.USAGE_SYNC_BATCH_SIZE)
    sync.add_argument(
        "--skip-cleanup",
        action="store_true",
        help="Keep synced events older than USAGE_RETENTION_DAYS",
    )

    subparsers.add_parser("init-db", help="Create database tables")
    subparsers.add_parser("check-env", help="Check configuration and exit")

    return parser


def run_api(args: argparse.Namespace) -> int:
    import uvicorn

    if args.reload and not config.is_development():
        logger.warning("--reload ignored outside development")
        args.reload = False

    logger.info("Starting leadflow API on %s:%d", args.host, args.port)
    uvicorn.run(
        "leadflow.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


async def run_worker(args: argparse.Namespace) -> int:
    from .models import close_database, init_database
    from .worker import JobWorker

    await init_database()
    worker = JobWorker(concurrency=args.concurrency)
    try:
        if args.once:
            processed = await worker.run_once()
            logger.info("Processed %d job(s)", processed)
            return 0

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, worker.stop)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass
        await worker.run_forever()
        return 0
    finally:
        await close_database()


async def run_usage_sync(args: argparse.Namespace) -> int:
    from .actions.usage_sync import PolarUsageSync
    from .models import close_database

    try:
        result = await PolarUsageSync().schedule_usage_sync(
            batch_size=args.batch_size, cleanup=not args.skip_cleanup
        )
    finally:
        await close_database()

    print(json.dumps(result, indent=2, default=str))
    return 0 if result["failed"] == 0 else 1


async def run_init_db() -> int:
    from .models import close_database, get_db_session, init_database
    from .services.usage_rules import seed_default_rules

    try:
        await init_database()
        async with get_db_session() as session:
            seeded = await seed_default_rules(session)
    finally:
        await close_database()
    print(f"Database tables created, {seeded} usage rules seeded.")
    return 0


def main() -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = create_parser()
    args = parser.parse_args()

    setup_logging("DEBUG" if args.debug else config.LOG_LEVEL)

    if args.command == "check-env":
        return 0 if print_env_status(check_environment()) else 1

    try:
        config.validate_for_database()
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    if args.command == "api":
        return run_api(args)

    try:
        if args.command == "worker":
            return asyncio.run(run_worker(args))
        if args.command == "sync-usage":
            return asyncio.run(run_usage_sync(args))
        if args.command == "init-db":
            return asyncio.run(run_init_db())
    except KeyboardInterrupt:
        print("\nCancelled by user.")
        return 130

    parser.error(f"unknown command {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
