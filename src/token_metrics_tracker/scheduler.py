"""Timed trigger for ingestion cycles."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from token_metrics_tracker.pipeline import TrackerService

logger = logging.getLogger(__name__)

CYCLE_JOB_ID = "token_metrics_cycle"


class TrackerScheduler:
    """Runs `TrackerService.run_cycle` every few minutes.

    At most one cycle runs at a time; missed runs are coalesced.
    """

    def __init__(self, service: TrackerService, *, interval_minutes: int = 5) -> None:
        self.service = service
        self.interval_minutes = interval_minutes
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False

    def _setup_jobs(self) -> None:
        self.scheduler.add_job(
            self._run_cycle,
            IntervalTrigger(minutes=self.interval_minutes),
            id=CYCLE_JOB_ID,
            name="Token metrics dispatch + processing cycle",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Scheduled ingestion cycle every %d minutes", self.interval_minutes)

    async def _run_cycle(self) -> None:
        try:
            await self.service.run_cycle()
        except Exception:
            logger.exception("Scheduled cycle failed")

    async def start(self) -> None:
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._setup_jobs()
        self.scheduler.start()
        self._running = True

        job = self.scheduler.get_job(CYCLE_JOB_ID)
        if job:
            logger.info("Scheduler started; next run at %s", job.next_run_time)

    async def stop(self) -> None:
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    async def run_now(self) -> None:
        """Trigger an immediate cycle."""
        logger.info("Triggering immediate ingestion cycle")
        await self._run_cycle()

    def get_status(self) -> dict[str, Any]:
        job = self.scheduler.get_job(CYCLE_JOB_ID) if self._running else None
        return {
            "running": self._running,
            "interval_minutes": self.interval_minutes,
            "next_run": str(job.next_run_time) if job else None,
        }
