"""Recurring trigger for bulk-status-check.

APScheduler fires the trigger on a fixed interval. The orchestrator coalesces
bulk checks, so a trigger that arrives while a previous run is waiting or
running returns that run. Cancelling removes the trigger only; a run already
published finishes.
"""

from datetime import UTC, datetime

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from delivery.jobs.job import SyncJob

logger = structlog.get_logger(__name__)

BULK_STATUS_TRIGGER = "bulk-status-check"


class StatusCheckScheduler:
    def __init__(self, orchestrator, interval: float, scheduler: AsyncIOScheduler | None = None):
        self.orchestrator = orchestrator
        self.interval = interval
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.last_job: SyncJob | None = None

    @property
    def scheduled(self) -> bool:
        return self.scheduler.get_job(BULK_STATUS_TRIGGER) is not None

    def start(self, run_immediately: bool = False) -> None:
        options = {"next_run_time": datetime.now(UTC)} if run_immediately else {}
        self.scheduler.add_job(
            self._fire,
            "interval",
            seconds=self.interval,
            id=BULK_STATUS_TRIGGER,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
            **options,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("status_check_scheduled", interval=self.interval)

    def trigger(self) -> SyncJob:
        job = self.orchestrator.trigger_bulk_status_check()
        if self.last_job is not None and job.id == self.last_job.id:
            logger.info("status_check_trigger_skipped", job_id=job.id, state=job.state.value)
        self.last_job = job
        return job

    async def _fire(self) -> None:
        self.trigger()

    def cancel(self) -> None:
        if self.scheduled:
            self.scheduler.remove_job(BULK_STATUS_TRIGGER)
            logger.info("status_check_unscheduled")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
