"""
Entry point for the submission tracker.

Usage:
    # Run the webhook / status HTTP server
    python -m carrier_automation serve
    python -m carrier_automation serve --port 9000 --store memory

    # Follow a submission's carrier tasks until they settle
    python -m carrier_automation poll SUBMISSION_ID --base-url http://localhost:8080
    python -m carrier_automation poll SUBMISSION_ID --timeout 600

    # Use a specific config file
    python -m carrier_automation --config /etc/tracker/config.yaml serve
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from carrier_automation.models import TaskMap, dump_task_map
from carrier_automation.poller import ClientPoller, HttpStatusSource, PollState
from carrier_automation.server import TrackerServer
from carrier_automation.store import create_task_store
from config.config import TrackerConfig, load_config
from core.logging.setup import get_logger, setup_logging

# __main__.py is at src/carrier_automation/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="carrier_automation",
        description="Carrier automation task tracker",
    )
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the webhook and status HTTP server")
    serve.add_argument("--host", help="Bind address")
    serve.add_argument("--port", type=int, help="Bind port")
    serve.add_argument("--store", choices=["memory", "sqlite"], help="Store backend")

    poll = sub.add_parser("poll", help="Poll a submission until its tasks settle")
    poll.add_argument("submission_id")
    poll.add_argument("--base-url", default="http://localhost:8080", help="Tracker server URL")
    poll.add_argument("--interval", type=float, help="Seconds between polls")
    poll.add_argument("--timeout", type=float, help="Give up after this many seconds")

    return parser.parse_args(argv)


def _apply_overrides(config: TrackerConfig, args: argparse.Namespace) -> TrackerConfig:
    if args.log_level:
        config.logging.level = args.log_level
    if args.command == "serve":
        if args.host:
            config.server.host = args.host
        if args.port:
            config.server.port = args.port
        if args.store:
            config.store.backend = args.store
    elif args.command == "poll":
        if args.interval:
            config.poller.interval_seconds = args.interval
            config.poller.max_backoff_seconds = max(
                config.poller.max_backoff_seconds, args.interval
            )
        if args.timeout:
            config.poller.timeout_seconds = args.timeout
    config.validate()
    return config


async def run_server(config: TrackerConfig) -> None:
    """Serve until SIGINT/SIGTERM."""
    store = create_task_store(config.store)
    server = TrackerServer(config, store)
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    await server.start()
    try:
        await shutdown.wait()
    finally:
        logger.info("Shutdown requested")
        await server.stop()


def _print_tasks(tasks: TaskMap) -> None:
    print(json.dumps(dump_task_map(tasks), indent=2, sort_keys=True), flush=True)


async def run_poller(config: TrackerConfig, submission_id: str, base_url: str) -> int:
    """Poll until settled. Returns a process exit code."""
    async with HttpStatusSource(base_url) as source:
        poller = ClientPoller(
            submission_id,
            source,
            interval_seconds=config.poller.interval_seconds,
            max_backoff_seconds=config.poller.max_backoff_seconds,
            timeout_seconds=config.poller.timeout_seconds,
            on_update=_print_tasks,
        )
        async with poller:
            await poller.wait()

    if poller.timed_out:
        logger.warning("Polling timed out", extra={"submission_id": submission_id})
        return 2
    if poller.state == PollState.SETTLED:
        return 0
    # Nothing was ever dispatched for this submission
    return 0 if not poller.tasks else 1


def main(argv: Optional[list] = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    try:
        config = _apply_overrides(load_config(args.config), args)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(
        name=f"tracker-{args.command}",
        log_dir=Path(config.logging.log_dir),
        json_format=config.logging.json_format,
        console_level=getattr(logging, config.logging.level, logging.INFO),
        log_to_stdout=config.logging.log_to_stdout,
    )
    log = get_logger(__name__)
    log.info(
        "Starting tracker",
        extra={"operation": args.command, "backend": config.store.backend},
    )

    try:
        if args.command == "serve":
            asyncio.run(run_server(config))
            return 0
        return asyncio.run(run_poller(config, args.submission_id, args.base_url))
    except KeyboardInterrupt:
        log.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
