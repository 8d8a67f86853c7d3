"""
Standalone entrypoint for running a deploy worker.

Usage:
    python -m deploy_worker [OPTIONS]
    deploy-worker [OPTIONS]  (after pip install)

Environment Variables:
    DEPLOY_DB_PATH: Database path (default: deploy_jobs.db)
    DEPLOY_STORAGE_ROOT: Object store root directory (default: deploy_storage)
    DEPLOY_QUEUE_KEY: Queue name shared with the intake (default: build-queue)
    DEPLOY_MAX_WORKERS: Concurrent builds (default: 3)
    DEPLOY_POLL_INTERVAL: Seconds between queue polls (default: 1.0)
    DEPLOY_TIMEOUT_SECONDS: Per-deployment deadline (default: 1200)
    DEPLOY_SITE_URL: Base URL of the live sites (default: http://localhost:8080)
    DEPLOY_TEMP_DIR: Parent of per-job working directories (default: system temp)
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from deploy_persistence.local_object_store import LocalObjectStore
from deploy_persistence.sqlite_queue import SQLiteJobQueue
from deploy_persistence.sqlite_repository import SQLiteJobRepository
from deploy_worker.executor import BuildExecutor
from deploy_worker.orchestrator import (
    DEFAULT_MAX_WORKERS,
    DEPLOYMENT_TIMEOUT_SECONDS,
    PipelineOrchestrator,
)
from deploy_worker.poller import JobPoller
from deploy_worker.transfer import TransferEngine

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 30.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Deploy Worker - claims queued deployments and builds them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  DEPLOY_DB_PATH          Database path (default: deploy_jobs.db)
  DEPLOY_STORAGE_ROOT     Object store root directory (default: deploy_storage)
  DEPLOY_QUEUE_KEY        Queue name (default: build-queue)
  DEPLOY_MAX_WORKERS      Concurrent builds (default: 3)
  DEPLOY_POLL_INTERVAL    Seconds between queue polls (default: 1.0)
  DEPLOY_TIMEOUT_SECONDS  Per-deployment deadline (default: 1200)
  DEPLOY_SITE_URL         Base URL of the live sites
  DEPLOY_TEMP_DIR         Parent of per-job working directories

Note: Command-line arguments override environment variables.

Examples:
  # Run with default settings
  deploy-worker

  # Two builds at a time, 10 minute deadline
  deploy-worker --max-workers 2 --timeout 600

  # Enable debug logging
  deploy-worker --log-level DEBUG
        """,
    )

    parser.add_argument("--db-path", type=str, default=None, help="Path to SQLite database file")
    parser.add_argument("--storage-root", type=str, default=None, help="Object store root directory")
    parser.add_argument("--queue-key", type=str, default=None, help="Queue name")
    parser.add_argument("--max-workers", type=int, default=None, help="Concurrent builds")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between queue polls")
    parser.add_argument("--timeout", type=float, default=None, help="Per-deployment deadline in seconds")
    parser.add_argument("--site-url", type=str, default=None, help="Base URL of the live sites")
    parser.add_argument("--temp-dir", type=str, default=None, help="Parent of per-job working directories")

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def get_database_path(args: argparse.Namespace) -> str:
    if args.db_path:
        return args.db_path
    return os.environ.get("DEPLOY_DB_PATH", "deploy_jobs.db")


def get_storage_root(args: argparse.Namespace) -> str:
    if args.storage_root:
        return args.storage_root
    return os.environ.get("DEPLOY_STORAGE_ROOT", "deploy_storage")


def get_queue_key(args: argparse.Namespace) -> str:
    if args.queue_key:
        return args.queue_key
    return os.environ.get("DEPLOY_QUEUE_KEY", "build-queue")


def get_site_url(args: argparse.Namespace) -> str:
    if args.site_url:
        return args.site_url
    return os.environ.get("DEPLOY_SITE_URL", "http://localhost:8080")


def get_temp_dir(args: argparse.Namespace) -> str | None:
    if args.temp_dir:
        return args.temp_dir
    return os.environ.get("DEPLOY_TEMP_DIR") or None


def _positive_number(
    cli_value: float | None, env_name: str, default: float, cast: type = float
) -> float:
    """
    Resolve a positive number from the CLI, then the environment, else default.
    """
    if cli_value is not None:
        if cli_value <= 0:
            logger.warning(f"Invalid value {cli_value} for {env_name}, using default {default}")
            return default
        return cli_value

    raw = os.environ.get(env_name)
    if raw is None:
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Invalid {env_name}={raw}, using default {default}")
        return default
    if value <= 0:
        logger.warning(f"Invalid {env_name}={value}, using default {default}")
        return default
    return value


def get_max_workers(args: argparse.Namespace) -> int:
    return int(_positive_number(args.max_workers, "DEPLOY_MAX_WORKERS", DEFAULT_MAX_WORKERS, int))


def get_poll_interval(args: argparse.Namespace) -> float:
    return _positive_number(args.interval, "DEPLOY_POLL_INTERVAL", 1.0)


def get_timeout(args: argparse.Namespace) -> float:
    return _positive_number(args.timeout, "DEPLOY_TIMEOUT_SECONDS", float(DEPLOYMENT_TIMEOUT_SECONDS))


async def run_worker(args: argparse.Namespace) -> None:
    """
    Initialize and run the worker until SIGINT or SIGTERM.
    """
    db_path = get_database_path(args)
    storage_root = get_storage_root(args)
    queue_key = get_queue_key(args)
    max_workers = get_max_workers(args)
    poll_interval = get_poll_interval(args)
    timeout = get_timeout(args)

    logger.info("Starting Deploy Worker")
    logger.info(f"  Database: {db_path}")
    logger.info(f"  Object store: {storage_root}")
    logger.info(f"  Queue: {queue_key}")
    logger.info(f"  Max workers: {max_workers}")
    logger.info(f"  Poll interval: {poll_interval}s")
    logger.info(f"  Deployment timeout: {timeout}s")

    repository = SQLiteJobRepository(db_path)
    await repository.initialize()
    queue = SQLiteJobQueue(db_path, queue_key=queue_key)
    await queue.initialize()
    logger.info("Database initialized")

    store = LocalObjectStore(storage_root)
    orchestrator = PipelineOrchestrator(
        repository=repository,
        transfer=TransferEngine(store),
        executor=BuildExecutor(),
        max_workers=max_workers,
        timeout=timeout,
        site_base_url=get_site_url(args),
        temp_root=get_temp_dir(args),
    )
    poller = JobPoller(queue, repository, orchestrator, poll_interval=poll_interval)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig.name}, initiating graceful shutdown...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        await poller.start()
        logger.info("Worker started successfully")
        await shutdown_event.wait()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Stopping poller...")
        await poller.stop(grace_period=SHUTDOWN_GRACE_SECONDS)
        logger.info("Closing database connections...")
        await queue.close()
        await repository.close()
        logger.info("Worker stopped cleanly")


def main(argv: list[str] | None = None) -> int:
    """
    Main entrypoint for the worker.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(run_worker(args))
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
