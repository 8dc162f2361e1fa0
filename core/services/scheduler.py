"""Periodic triggers for the plan advancement scheduler.

Three APScheduler cron jobs run in UTC:

* ``weekly-plan-scan`` - Monday 05:00, so users start the week with it ready.
* ``daily-week-check`` - every day at 06:00, catching mid-week catch-up.
* ``lease-sweep`` - hourly, reclaiming leases abandoned by stuck runs.

Each job is isolated: an exception is logged and the scheduler keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import Settings
from core.logging_config import log_context
from core.services.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

WEEKLY_SCAN = "weekly-plan-scan"
DAILY_SCAN = "daily-week-check"
LEASE_SWEEP = "lease-sweep"

SCHEDULE_TIMEZONE = "UTC"
MISFIRE_GRACE_SECONDS = 300


class SchedulerJobs:
    """Job bodies registered with the scheduler."""

    def __init__(self, orchestrator: GenerationOrchestrator):
        self.orchestrator = orchestrator
        self._scan_lock = asyncio.Lock()

    async def scan(self, job_name: str) -> bool:
        # Weekly and daily scans may be configured to coincide; the second one is dropped.
        if self._scan_lock.locked():
            logger.info("Skipping %s: a scan is already running", job_name)
            return False
        async with self._scan_lock:
            return await self._run(job_name, self.orchestrator.scan_and_dispatch)

    async def sweep(self) -> bool:
        return await self._run(LEASE_SWEEP, self.orchestrator.sweep_expired_leases)

    async def _run(self, job_name: str, handler: Callable[[], Awaitable[object]]) -> bool:
        with log_context(job=job_name):
            logger.info("Running scheduled job %s", job_name)
            try:
                result = await handler()
            except Exception:
                logger.exception("Scheduled job %s failed", job_name)
                return False
            logger.info("Scheduled job %s finished: %s", job_name, result)
            return True


def build_scheduler(orchestrator: GenerationOrchestrator, settings: Settings) -> AsyncIOScheduler:
    """Register the cron jobs on a new, not yet started, ``AsyncIOScheduler``."""
    jobs = SchedulerJobs(orchestrator)
    scheduler = AsyncIOScheduler(timezone=SCHEDULE_TIMEZONE)
    common = {
        "max_instances": 1,
        "coalesce": True,
        "replace_existing": True,
        "misfire_grace_time": MISFIRE_GRACE_SECONDS,
    }
    scheduler.add_job(
        jobs.scan,
        trigger=CronTrigger(
            day_of_week=settings.weekly_scan_weekday,
            hour=settings.weekly_scan_hour,
            minute=0,
            timezone=SCHEDULE_TIMEZONE,
        ),
        args=[WEEKLY_SCAN],
        id=WEEKLY_SCAN,
        name="Weekly plan scan",
        **common,
    )
    scheduler.add_job(
        jobs.scan,
        trigger=CronTrigger(hour=settings.daily_scan_hour, minute=0, timezone=SCHEDULE_TIMEZONE),
        args=[DAILY_SCAN],
        id=DAILY_SCAN,
        name="Daily week check",
        **common,
    )
    scheduler.add_job(
        jobs.sweep,
        trigger=CronTrigger(minute=settings.lease_sweep_minute, timezone=SCHEDULE_TIMEZONE),
        id=LEASE_SWEEP,
        name="Expired lease sweep",
        **common,
    )
    return scheduler
