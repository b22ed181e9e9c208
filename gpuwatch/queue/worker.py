"""Bounded-concurrency worker pool over one queue."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from gpuwatch import metrics
from gpuwatch.config import settings
from gpuwatch.observability import capture_exception
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.jobs import Job

logger = logging.getLogger(__name__)

Handler = Callable[[Job], Awaitable[Any]]


class WorkerPool:
    """
    Claims jobs from one queue and runs up to `concurrency` at a time.

    Handler exceptions trigger the job's retry policy; once attempts are
    exhausted the job moves to the failed set and is reported.
    """

    def __init__(
        self,
        queue: JobQueue,
        queue_name: str,
        handler: Handler,
        concurrency: int = 1,
        poll_interval: Optional[float] = None,
    ):
        self.queue = queue
        self.queue_name = queue_name
        self.handler = handler
        self.concurrency = max(1, concurrency)
        self.poll_interval = (
            settings.queue_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._in_flight: set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._loop_task = asyncio.create_task(
            self._claim_loop(), name=f"worker-pool-{self.queue_name}"
        )
        logger.info(f"Worker pool '{self.queue_name}' started (concurrency={self.concurrency})")

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """
        Stop claiming, then wait for in-flight jobs.

        Jobs still running after the grace period are cancelled; their
        leases expire and they are redelivered.
        """
        grace = settings.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        self._stopping = True
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        if self._in_flight:
            logger.info(
                f"Worker pool '{self.queue_name}' draining {len(self._in_flight)} job(s)"
            )
            done, pending = await asyncio.wait(self._in_flight, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(
                    f"Worker pool '{self.queue_name}' abandoned {len(pending)} job(s) "
                    "for redelivery"
                )
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info(f"Worker pool '{self.queue_name}' stopped")

    async def _claim_loop(self) -> None:
        while not self._stopping:
            await self._semaphore.acquire()
            try:
                job = await self.queue.claim(self.queue_name)
            except Exception as e:
                self._semaphore.release()
                capture_exception(e, component=f"queue.{self.queue_name}")
                await asyncio.sleep(self.poll_interval)
                continue

            if job is None:
                self._semaphore.release()
                await asyncio.sleep(self.poll_interval)
                continue

            task = asyncio.create_task(self._run_and_release(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _run_and_release(self, job: Job) -> None:
        try:
            await self.run_job(job)
        finally:
            self._semaphore.release()

    async def process_next(self) -> bool:
        """Claim and run one job inline. Returns False if none was due."""
        job = await self.queue.claim(self.queue_name)
        if job is None:
            return False
        await self.run_job(job)
        return True

    async def run_job(self, job: Job) -> None:
        """Run one claimed job and settle it (ack, retry or fail)."""
        started = time.monotonic()
        try:
            await self.handler(job)
        except Exception as e:
            job.attempts_made += 1
            job.last_error = str(e) or type(e).__name__
            duration = time.monotonic() - started

            if job.attempts_made < job.attempts:
                delay = job.backoff.delay_for(job.attempts_made)
                logger.warning(
                    f"Job {job.name} ({job.id}) failed attempt "
                    f"{job.attempts_made}/{job.attempts}: {job.last_error}; retrying in {delay:.1f}s"
                )
                await self.queue.retry(job, delay)
                metrics.record_job(self.queue_name, "retried", duration)
            else:
                await self.queue.fail(job)
                metrics.record_job(self.queue_name, "failed", duration)
                capture_exception(
                    e,
                    component=f"queue.{self.queue_name}",
                    job_id=job.id,
                    job_name=job.name,
                    attempts_made=job.attempts_made,
                )
            return

        await self.queue.ack(job)
        metrics.record_job(self.queue_name, "completed", time.monotonic() - started)
