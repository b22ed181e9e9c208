"""Queue job handlers and worker pool wiring for the pipeline."""

import logging
from typing import Optional

from gpuwatch.config import settings
from gpuwatch.db.session import Database
from gpuwatch.detect.deal_scorer import DealScoringEngine
from gpuwatch.notify.dispatcher import AlertDispatcher
from gpuwatch.notify.email import EmailSender
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.jobs import Job, QueueName
from gpuwatch.queue.scheduler import JobScheduler
from gpuwatch.queue.worker import WorkerPool
from gpuwatch.worker.compaction import RetentionCompactor
from gpuwatch.worker.ingestion import IngestionCoordinator

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runs the ingestion -> scoring -> alert pipeline on a job queue.

    Owns one worker pool per queue and the recurring scheduler. The
    database and queue handles are passed in by the process entry point
    and closed there.
    """

    def __init__(
        self,
        db: Database,
        queue: JobQueue,
        coordinator: Optional[IngestionCoordinator] = None,
        scorer: Optional[DealScoringEngine] = None,
        dispatcher: Optional[AlertDispatcher] = None,
        compactor: Optional[RetentionCompactor] = None,
        sender: Optional[EmailSender] = None,
    ):
        self.db = db
        self.queue = queue
        self.sender = sender or EmailSender()
        self.coordinator = coordinator or IngestionCoordinator(db, queue)
        self.scorer = scorer or DealScoringEngine(db)
        self.dispatcher = dispatcher or AlertDispatcher(db, queue, self.sender)
        self.compactor = compactor or RetentionCompactor(db)
        self.pools: dict[str, WorkerPool] = {}
        self.scheduler: Optional[JobScheduler] = None

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_ingest(self, job: Job):
        return await self.coordinator.run_ingestion(
            job.payload["source"], gpu_id=job.payload.get("gpu_id")
        )

    async def handle_score(self, job: Job):
        """Score a GPU, then evaluate alerts for each resulting deal."""
        gpu_id = job.payload["gpu_id"]
        scored = await self.scorer.score_gpu(gpu_id)
        enqueued = 0
        for result in scored:
            if result.is_deal:
                enqueued += await self.dispatcher.evaluate(result)
        return {"scored": len(scored), "alerts_enqueued": enqueued}

    async def handle_alert(self, job: Job):
        return await self.dispatcher.send_alerts(job.payload)

    async def handle_maintenance(self, job: Job):
        if job.name == "compact-history":
            return await self.compactor.run()
        raise ValueError(f"Unknown maintenance job: {job.name}")

    def handlers(self) -> dict:
        return {
            QueueName.INGEST.value: self.handle_ingest,
            QueueName.SCORE.value: self.handle_score,
            QueueName.ALERT.value: self.handle_alert,
            QueueName.MAINTENANCE.value: self.handle_maintenance,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_pools(
        self,
        concurrency: Optional[dict[str, int]] = None,
        poll_interval: Optional[float] = None,
    ) -> dict[str, WorkerPool]:
        concurrency = concurrency or settings.queue_concurrency
        for name, handler in self.handlers().items():
            self.pools[name] = WorkerPool(
                self.queue,
                name,
                handler,
                concurrency=concurrency.get(name, 1),
                poll_interval=poll_interval,
            )
        return self.pools

    def start(self, with_scheduler: bool = True) -> None:
        if not self.pools:
            self.build_pools()
        for pool in self.pools.values():
            pool.start()
        if with_scheduler:
            self.scheduler = JobScheduler(self.queue)
            self.scheduler.register_pipeline()
            self.scheduler.start()
            logger.info("Scheduler started")

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop scheduling and claiming, drain in-flight jobs, close clients."""
        if self.scheduler:
            self.scheduler.shutdown()
            self.scheduler = None
        for pool in self.pools.values():
            await pool.stop(grace_seconds)
        await self.sender.close()
        logger.info("Task runner stopped")
