"""
CLI runner for waiver-sync.

Usage:
    python -m waiver_sync.run [OPTIONS]

    # Sync waivers signed in the last window once
    python -m waiver_sync.run --poll

    # Pull one message from the Smartwaiver webhook queue
    python -m waiver_sync.run --queue

    # Sync a specific waiver
    python -m waiver_sync.run --waiver-id abc123

    # Poll on schedule
    python -m waiver_sync.run --daemon
"""

import argparse
import asyncio
import contextlib
import logging
import sys
import time
from pathlib import Path

from .config import SyncConfig
from .feeds import FeedReader, build_feed
from .models import FeedMode, MalformedPushError, SyncReport
from .pipeline import Pipeline, build_pipeline

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("waiver-sync")


async def run_once(
    config: SyncConfig,
    mode: FeedMode,
    waiver_id: str | None = None,
    pipeline: Pipeline | None = None,
) -> SyncReport:
    """Run one batch in the given mode and return its report."""
    pipeline = pipeline or build_pipeline(config)
    feed = build_feed(mode, pipeline.smartwaiver, config.sync, waiver_id=waiver_id)

    logger.info(f"Starting {mode.value} sync")
    report = await pipeline.run_feed(feed)
    logger.info(report.summary())
    return report


def schedule_interval_minutes(schedule: str, default: int = 5) -> int:
    """Interval from a "*/N * * * *" schedule; anything else gives the default."""
    interval = default
    if schedule.startswith("*/"):
        with contextlib.suppress(ValueError, IndexError):
            interval = int(schedule.split()[0][2:])
    return max(interval, 1)


async def run_daemon(
    config: SyncConfig,
    pipeline: Pipeline | None = None,
    feed: FeedReader | None = None,
) -> None:
    """
    Poll on schedule until interrupted.

    One poll feed is reused for every cycle, so each window starts where the
    last successful one ended. Sleep time is shortened by how long the cycle
    took, keeping ticks on the schedule.
    """
    interval_minutes = schedule_interval_minutes(config.sync.schedule)
    logger.info("Starting waiver-sync daemon")
    logger.info(f"Running every {interval_minutes} minutes")
    if interval_minutes > config.sync.window_minutes:
        logger.warning(
            f"Schedule interval ({interval_minutes}m) is longer than the poll window "
            f"({config.sync.window_minutes}m); the first window after a restart "
            f"will not reach back to the previous run"
        )

    pipeline = pipeline or build_pipeline(config)
    feed = feed or build_feed(FeedMode.POLL, pipeline.smartwaiver, config.sync)
    interval_seconds = interval_minutes * 60
    while True:
        started = time.monotonic()
        try:
            report = await pipeline.run_feed(feed)
            logger.info(report.summary())
        except Exception as e:
            logger.exception(f"Cycle failed: {e}")

        elapsed = time.monotonic() - started
        delay = max(0.0, interval_seconds - elapsed)
        logger.info(f"Sleeping for {delay:.0f} seconds...")
        await asyncio.sleep(delay)


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="waiver-sync: Sync Smartwaiver waivers into Shopify customers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Sync the last poll window once
    python -m waiver_sync.run --poll

    # Drain one queued webhook notification
    python -m waiver_sync.run --queue

    # Sync a specific waiver
    python -m waiver_sync.run --waiver-id abc123

    # Use a specific config file and show what would be written
    python -m waiver_sync.run --config datasette.yaml --poll --dry-run
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=Path("datasette.yaml"),
        help="Path to config file (default: datasette.yaml)",
    )
    parser.add_argument(
        "--poll",
        action="store_true",
        help="Sync waivers created in the last poll window and exit",
    )
    parser.add_argument(
        "--queue",
        action="store_true",
        help="Pull one message from the webhook queue and exit",
    )
    parser.add_argument(
        "--waiver-id",
        type=str,
        help="Sync a specific waiver by ID",
    )
    parser.add_argument(
        "--daemon",
        action="store_true",
        help="Run as a daemon, polling on schedule",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve customers and log payloads without writing to Shopify",
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load config
    config = SyncConfig.from_yaml(args.config)
    if args.dry_run:
        config.sync.dry_run = True

    logger.info(f"Config loaded from {args.config}")
    logger.info(f"Shop: {config.shopify.shop_domain or '(not set)'}")
    logger.info(f"Templates: {len(config.templates)} mapped")

    if not config.shopify.shop_domain:
        logger.error("No Shopify shop_domain configured.")
        return 1

    # Run mode selection
    if args.waiver_id is not None:
        try:
            report = asyncio.run(run_once(config, FeedMode.PUSH, waiver_id=args.waiver_id))
        except MalformedPushError as e:
            logger.error(str(e))
            return 1
        return 0 if report.ok and report.failed == 0 else 1

    if args.daemon:
        try:
            asyncio.run(run_daemon(config))
        except KeyboardInterrupt:
            logger.info("Daemon stopped by user")
        return 0

    if args.poll or args.queue:
        mode = FeedMode.QUEUE if args.queue else FeedMode.POLL
        report = asyncio.run(run_once(config, mode))
        return 0 if report.ok and report.failed == 0 else 1

    # Default: show help
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
