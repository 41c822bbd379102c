"""
Scheduler service driving the dispatcher on a fixed cadence.

This module provides:
- Interval scheduling with APScheduler
- Free-running and wall-clock aligned placement of cycles
- An on-demand trigger sharing the same dispatcher
- Status reporting and graceful shutdown
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, Optional
from zoneinfo import ZoneInfo

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pipeline.dispatcher import Dispatcher
from pipeline.models import CycleResult
from scheduler.models import AlignmentPolicy, SchedulerConfig

logger = structlog.get_logger(__name__)

CYCLE_JOB_ID = "stock_cycle"
STARTUP_JOB_ID = "stock_cycle_startup"


def next_aligned_run(now: datetime, interval_seconds: int, settle_seconds: float = 0.0) -> datetime:
    """
    Next wall-clock boundary after ``now`` plus the settle buffer.

    Boundaries are multiples of the interval counted from midnight of
    ``now``'s day, so a 5 minute interval lands on minutes divisible by 5.

    Args:
        now: Current (timezone-aware) time
        interval_seconds: Cycle interval
        settle_seconds: Extra delay after the boundary

    Returns:
        Time of the first aligned run
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (now - midnight).total_seconds()
    boundaries_passed = int(elapsed // interval_seconds)
    next_boundary = midnight + timedelta(seconds=(boundaries_passed + 1) * interval_seconds)

    # Still inside the settle window of the boundary just passed
    previous_run = next_boundary - timedelta(seconds=interval_seconds - settle_seconds)
    if settle_seconds and previous_run > now:
        return previous_run

    return next_boundary + timedelta(seconds=settle_seconds)


class SchedulerService:
    """Scheduler service for polling cycles."""

    def __init__(self, config: SchedulerConfig, dispatcher: Dispatcher):
        """
        Initialize scheduler service.

        Args:
            config: Scheduler configuration
            dispatcher: Dispatcher whose cycles are scheduled
        """
        self.config = config
        self.dispatcher = dispatcher
        self.scheduler = AsyncIOScheduler(timezone=config.timezone)
        self.logger = logger.bind(component="scheduler_service")

        self._setup_scheduler_listeners()

    def _setup_scheduler_listeners(self) -> None:
        """Setup scheduler event listeners."""
        def job_executed_listener(event):
            retval = event.retval
            self.logger.debug(
                "Job executed",
                job_id=event.job_id,
                outcome=retval.outcome.value if isinstance(retval, CycleResult) else None
            )

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    def first_run_time(self, now: Optional[datetime] = None) -> datetime:
        """When the recurring job first fires under the configured policy."""
        now = now or datetime.now(ZoneInfo(self.config.timezone))

        if self.config.alignment == AlignmentPolicy.FREE_RUNNING:
            return now

        return next_aligned_run(now, self.config.interval_seconds, self.config.settle_seconds)

    def add_jobs(self, now: Optional[datetime] = None) -> None:
        """Add the recurring cycle job (and the optional startup cycle)."""
        first_run = self.first_run_time(now)

        self.scheduler.add_job(
            func=self._scheduled_cycle_job,
            trigger=IntervalTrigger(
                minutes=self.config.interval_minutes,
                start_date=first_run,
                timezone=self.config.timezone
            ),
            id=CYCLE_JOB_ID,
            name=f"Stock Cycle ({self.config.interval_minutes}min, {self.config.alignment.value})",
            next_run_time=first_run,
            # A late trigger waits behind the dispatcher lock instead of being dropped
            max_instances=2,
            coalesce=True,
            misfire_grace_time=self.config.misfire_grace_seconds,
            replace_existing=True
        )
        self.logger.info(
            "Added stock cycle job",
            interval_minutes=self.config.interval_minutes,
            alignment=self.config.alignment.value,
            settle_seconds=self.config.settle_seconds,
            first_run=first_run.isoformat()
        )

        if self.config.alignment == AlignmentPolicy.WALL_CLOCK and self.config.run_on_startup:
            self.scheduler.add_job(
                func=self._scheduled_cycle_job,
                id=STARTUP_JOB_ID,
                name="Stock Cycle (startup)",
                replace_existing=True
            )
            self.logger.info("Added startup cycle job")

    def start(self) -> None:
        """Start scheduling cycles on the running event loop."""
        self.add_jobs()
        self.scheduler.start()
        self.logger.info(
            "Scheduler service started",
            timezone=self.config.timezone,
            interval_minutes=self.config.interval_minutes
        )

    async def run_forever(self) -> None:
        """Start the scheduler and keep the service running until cancelled."""
        self.start()
        try:
            while True:
                await asyncio.sleep(1)
        finally:
            await self.stop()

    async def stop(self) -> None:
        """
        Stop the scheduler service.

        No new cycles are started once this is called; a cycle already in
        flight (and any queued behind it) runs to completion first.
        """
        try:
            self.logger.info("Stopping scheduler service")

            if self.scheduler.running:
                self.scheduler.pause()
                if self.dispatcher.busy:
                    self.logger.info("Waiting for in-flight cycle")
                await self.dispatcher.drain()
                # The asyncio executor cancels unfinished jobs on shutdown
                self.scheduler.shutdown(wait=False)

            self.logger.info("Scheduler service stopped")

        except Exception as e:
            self.logger.error(
                "Error stopping scheduler service",
                error=str(e)
            )

    async def _scheduled_cycle_job(self) -> CycleResult:
        """Scheduled cycle job."""
        return await self.dispatcher.run_cycle(trigger="scheduled")

    async def trigger_now(self, trigger: str = "manual") -> CycleResult:
        """Run a cycle immediately, outside the schedule."""
        self.logger.info("On-demand cycle requested", trigger=trigger)
        return await self.dispatcher.run_cycle(trigger=trigger)

    async def get_scheduler_status(self) -> Dict:
        """Get current scheduler status."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run_time = getattr(job, "next_run_time", None)
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run_time': next_run_time.isoformat() if next_run_time else None,
                'trigger': str(job.trigger)
            })

        return {
            'running': self.scheduler.running,
            'timezone': self.config.timezone,
            'alignment': self.config.alignment.value,
            'interval_minutes': self.config.interval_minutes,
            'cycle_in_flight': self.dispatcher.busy,
            'jobs': jobs,
            'job_count': len(jobs)
        }
