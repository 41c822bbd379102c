"""
Scheduler-only entry point.

Runs the polling scheduler without the HTTP API, or a single cycle with --once.
"""

import asyncio
import signal
import sys
from typing import List, Optional

import structlog

from api.main import build_scheduler_config
from notifications.discord import build_notifier
from pipeline.dispatcher import Dispatcher
from scheduler.scheduler_service import SchedulerService
from upstream.fetcher import StockFetcher
from utilities.config import config
from utilities.logger import setup_logging


def setup_signal_handlers(daemon: asyncio.Future) -> None:
    """Cancel the daemon on SIGINT/SIGTERM so the scheduler shuts down gracefully."""
    loop = asyncio.get_running_loop()
    logger = structlog.get_logger(__name__)

    def signal_handler(signum):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        daemon.cancel()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, signal_handler, signum)


async def main(argv: Optional[List[str]] = None) -> int:
    """Main function to start the scheduler service."""
    argv = sys.argv[1:] if argv is None else argv

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )
    logger = structlog.get_logger(__name__)

    dispatcher = Dispatcher(StockFetcher(config), build_notifier(config))
    scheduler_service = SchedulerService(build_scheduler_config(), dispatcher)
    scheduler_config = scheduler_service.config

    logger.info(
        "Scheduler configuration loaded",
        interval_minutes=scheduler_config.interval_minutes,
        alignment=scheduler_config.alignment.value,
        settle_seconds=scheduler_config.settle_seconds,
        timezone=scheduler_config.timezone
    )

    # Check command line arguments
    run_once = False

    if argv:
        if argv[0] == '--once':
            run_once = True
        else:
            print(f"Unknown argument: {argv[0]}")
            print("Usage: python scheduler_main.py [--once]")
            return 2

    if run_once:
        logger.info("Running in RUN ONCE MODE - Single cycle")
        print("\n" + "="*60)
        print("🔄 RUN ONCE MODE ENABLED")
        print("="*60)
        print("✅ Fetch, compare and notify: Single run")
        print("✅ Exit after completion")
        print("="*60)

        result = await scheduler_service.trigger_now(trigger="once")
        logger.info(
            "Run once mode completed",
            outcome=result.outcome.value,
            notified=result.notified,
            reason=result.reason
        )
        return 0 if result.success else 1

    logger.info("Running in DAEMON MODE")
    print("\n" + "="*60)
    print("🏭 DAEMON MODE ENABLED")
    print("="*60)
    print(f"✅ Stock cycle: Every {scheduler_config.interval_minutes} minutes ({scheduler_config.alignment.value})")
    print("✅ Scheduler runs continuously as daemon")
    print("="*60)

    daemon = asyncio.ensure_future(scheduler_service.run_forever())
    setup_signal_handlers(daemon)

    try:
        await daemon
    except asyncio.CancelledError:
        logger.info("Scheduler daemon stopped")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("Received keyboard interrupt, shutting down...")
