"""
Sync Scheduler - Cron and On-Demand Execution

Manages scheduled and manual sync job execution using APScheduler.

Features:
- Cron-based scheduling (configurable via SYNC_SCHEDULE_CRON, weekly by default)
- RUN_ONCE mode for immediate execution (how CI invokes it)
- Redis event publishing when the snapshot changed (PUBLISH_EVENTS=true)
- Graceful shutdown: SIGINT/SIGTERM stop the running sync at the next page boundary

Exit codes:
- 0 success
- 1 fetch exhaustion or other runtime failure
- 2 configuration error (missing API key)
- 130 interrupted by signal or by the SYNC_TIMEOUT_SECONDS budget

Usage:
    # Scheduled mode (default)
    python -m apps.syncer

    # Run once and exit
    RUN_ONCE=true python -m apps.syncer
"""

import asyncio
import logging
import os
import signal
import sys

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from apps.syncer.engine import SyncReport, run_sync
from apps.syncer.publisher import publish_sync_event
from utils.config import Settings, settings
from utils.errors import ConfigError, SyncInterrupted
from utils.logging import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


class SyncScheduler:
    """
    Scheduler for periodic or on-demand sync jobs.

    Handles:
    - APScheduler setup and management
    - Cron-based scheduling
    - RUN_ONCE immediate execution
    - Signal handling for graceful shutdown
    """

    def __init__(self, run_once: bool = False, config: Settings | None = None) -> None:
        """
        Initialize scheduler.

        Args:
            run_once: If True, run sync once and exit
            config: Settings to use, defaults to the global settings
        """
        self.run_once = run_once
        self.config = config or settings
        self.scheduler: AsyncIOScheduler | None = None
        self.shutdown_event = asyncio.Event()
        self.idle_event = asyncio.Event()
        self.idle_event.set()
        self.interrupted_page: int | None = None
        self._stop_event: asyncio.Event | None = None
        self._running = False

        logger.info(
            "SyncScheduler initialized",
            extra={
                "run_once": run_once,
                "cron_schedule": self.config.SYNC_SCHEDULE_CRON,
                "timeout_seconds": self.config.SYNC_TIMEOUT_SECONDS,
            },
        )

    def request_stop(self) -> None:
        """Stop the in-flight run at its next page boundary and shut down."""
        self.shutdown_event.set()
        if self._stop_event is not None:
            self._stop_event.set()

    def _expire(self, stop_event: asyncio.Event) -> None:
        logger.warning(
            "Sync exceeded time budget, stopping at next page boundary",
            extra={"timeout_seconds": self.config.SYNC_TIMEOUT_SECONDS},
        )
        stop_event.set()

    async def execute_sync(self) -> SyncReport | None:
        """
        Execute one sync and publish an event when the snapshot changed.

        The run gets its own stop event, set by a shutdown signal or when
        SYNC_TIMEOUT_SECONDS elapses.

        Returns:
            SyncReport, or None if a previous run is still in progress
        """
        if self._running:
            logger.warning("Previous sync still running, skipping this trigger")
            return None

        self._running = True
        self.idle_event.clear()
        self.interrupted_page = None
        stop_event = asyncio.Event()
        if self.shutdown_event.is_set():
            stop_event.set()
        self._stop_event = stop_event

        timer = None
        if self.config.SYNC_TIMEOUT_SECONDS:
            timer = asyncio.get_running_loop().call_later(
                self.config.SYNC_TIMEOUT_SECONDS, self._expire, stop_event
            )

        logger.info("Starting sync execution")

        try:
            report = await run_sync(config=self.config, stop_event=stop_event)

            if report.changed and self.config.PUBLISH_EVENTS:
                try:
                    await publish_sync_event(report)
                except Exception as e:
                    # snapshot is already on disk
                    logger.error("Sync event not delivered", extra={"error": str(e)})
            elif not report.changed:
                logger.info("No changes detected in snapshot")

            logger.info(
                "Sync execution completed successfully",
                extra={"output_file": str(report.snapshot_path), "changed": report.changed},
            )
            return report

        except SyncInterrupted as e:
            logger.warning("Sync interrupted", extra={"last_completed_page": e.last_completed_page})
            if self.shutdown_event.is_set():
                self.interrupted_page = e.last_completed_page
            raise

        except Exception as e:
            logger.error(
                "Sync execution failed",
                extra={"error": str(e)},
                exc_info=True,
            )
            raise

        finally:
            if timer is not None:
                timer.cancel()
            self._stop_event = None
            self._running = False
            self.idle_event.set()
            if self.run_once:
                logger.info("RUN_ONCE mode: signaling shutdown")
                self.shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Setup handlers for graceful shutdown on SIGINT/SIGTERM."""

        def signal_handler(signum: int, frame: object) -> None:
            logger.info(f"Received signal {signum}, initiating graceful shutdown")
            self.request_stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def start(self) -> None:
        """
        Start scheduler or execute once.

        In scheduled mode, runs continuously until shutdown signal.
        In RUN_ONCE mode, executes immediately and exits.
        """
        self.setup_signal_handlers()

        if self.run_once:
            logger.info("Running in RUN_ONCE mode")
            await self.execute_sync()
            return

        # the API key is checked up front so a misconfigured service fails at startup
        self.config.require_api_key()

        logger.info("Running in scheduled mode")

        self.scheduler = AsyncIOScheduler()

        trigger = CronTrigger.from_crontab(self.config.SYNC_SCHEDULE_CRON)
        self.scheduler.add_job(
            self.execute_sync,
            trigger=trigger,
            id="sync_job",
            name="Periodic Scorecard Sync",
            replace_existing=True,
            max_instances=1,
        )

        # Start scheduler first to get next_run_time
        self.scheduler.start()
        logger.info("Scheduler started")

        job = self.scheduler.get_job("sync_job")
        next_run = getattr(job, "next_run_time", None)
        next_run_str = str(next_run) if next_run is not None else None

        logger.info(
            "Scheduled sync job",
            extra={
                "schedule": self.config.SYNC_SCHEDULE_CRON,
                "next_run": next_run_str,
            },
        )
        logger.info("Waiting for jobs...")

        await self.shutdown_event.wait()

        logger.info("Shutting down scheduler")
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
        # an in-flight job flushes at its next page boundary
        await self.idle_event.wait()
        logger.info("Scheduler shutdown complete")

        if self.interrupted_page is not None:
            raise SyncInterrupted(self.interrupted_page)


async def main() -> int:
    """Main entry point for scheduler.

    Returns:
        Process exit code
    """
    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)
    run_once = os.getenv("RUN_ONCE", "false").lower() in ("true", "1", "yes")

    scheduler = SyncScheduler(run_once=run_once)

    try:
        await scheduler.start()
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG
    except SyncInterrupted:
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.error("Scheduler failed", extra={"error": str(e)}, exc_info=True)
        return EXIT_FAILURE

    return EXIT_OK


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
