"""Recurring job registration on APScheduler."""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from gpuwatch import metrics
from gpuwatch.config import settings
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.jobs import JobDescriptor, compaction_job, ingest_job

logger = logging.getLogger(__name__)


class JobScheduler:
    """
    Enqueues descriptors on a schedule.

    The scheduler never runs pipeline work itself: each fire enqueues the
    descriptor, and the dedup key collapses a fire that lands while the
    previous job is still pending.
    """

    def __init__(self, queue: JobQueue, scheduler: Optional[AsyncIOScheduler] = None):
        self.queue = queue
        self.scheduler = scheduler or AsyncIOScheduler()

    async def fire(self, job_id: str, descriptor: JobDescriptor) -> None:
        metrics.record_scheduler_fire(job_id)
        job = await self.queue.enqueue(descriptor)
        if job is None:
            logger.info(f"Schedule {job_id}: previous job still pending, skipped")
        else:
            logger.info(f"Schedule {job_id}: enqueued {descriptor.name} ({job.id})")

    def register(self, job_id: str, descriptor: JobDescriptor) -> None:
        """Register a descriptor carrying `repeat_interval` or `cron`."""
        if descriptor.repeat_interval:
            trigger = IntervalTrigger(seconds=descriptor.repeat_interval)
        elif descriptor.cron:
            trigger = CronTrigger(**descriptor.cron)
        else:
            raise ValueError(f"Descriptor for {job_id} has no repeat_interval or cron")

        self.scheduler.add_job(
            self.fire,
            trigger,
            args=[job_id, descriptor],
            id=job_id,
            name=descriptor.name,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=600,
            replace_existing=True,
        )

    def register_pipeline(
        self,
        ingest_interval_hours: Optional[dict[str, int]] = None,
        compaction_hour: Optional[int] = None,
        compaction_minute: Optional[int] = None,
    ) -> None:
        """One interval schedule per retailer plus the nightly compaction."""
        intervals = ingest_interval_hours or settings.ingest_interval_hours
        for source, hours in intervals.items():
            descriptor = ingest_job(source)
            descriptor.repeat_interval = hours * 3600
            self.register(f"ingest-{source}", descriptor)

        hour = settings.compaction_hour if compaction_hour is None else compaction_hour
        minute = settings.compaction_minute if compaction_minute is None else compaction_minute
        compaction = compaction_job()
        compaction.cron = {"hour": hour, "minute": minute}
        self.register("compact-history", compaction)

        logger.info(
            "Scheduler configured: %s, compaction daily at %02d:%02d",
            ", ".join(f"{s} every {h}h" for s, h in intervals.items()),
            hour,
            minute,
        )

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
