"""Queue backend interface and the single-process implementation."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable, Optional

from gpuwatch import metrics
from gpuwatch.queue.jobs import Job, JobDescriptor

logger = logging.getLogger(__name__)


class JobQueue(ABC):
    """
    Durable job queue with at-least-once delivery.

    A claimed job holds a lease; if it is neither acked, retried nor failed
    before the lease expires, the next claim redelivers it.
    """

    @abstractmethod
    async def enqueue(self, descriptor: JobDescriptor) -> Optional[Job]:
        """Add a job. Returns None when an equal dedup key is already pending."""

    @abstractmethod
    async def claim(self, queue: str) -> Optional[Job]:
        """Lease the next due job, or None."""

    @abstractmethod
    async def ack(self, job: Job) -> None:
        """Mark a claimed job complete."""

    @abstractmethod
    async def retry(self, job: Job, delay: float) -> None:
        """Re-schedule a claimed job after `delay` seconds."""

    @abstractmethod
    async def fail(self, job: Job) -> None:
        """Move a claimed job to the failed set."""

    @abstractmethod
    async def failed_jobs(self, queue: str) -> list[Job]:
        ...

    @abstractmethod
    async def pending_count(self, queue: str) -> int:
        """Waiting plus delayed jobs."""

    async def close(self) -> None:
        return None


class _QueueState:
    def __init__(self, failed_retention: int):
        self.waiting: deque[str] = deque()
        self.delayed: dict[str, float] = {}
        self.active: dict[str, float] = {}
        self.jobs: dict[str, Job] = {}
        self.failed: deque[Job] = deque(maxlen=failed_retention)


class InMemoryJobQueue(JobQueue):
    """Same contract as the Redis queue, held in process memory."""

    def __init__(
        self,
        lease_seconds: float = 900.0,
        failed_retention: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self.lease_seconds = lease_seconds
        self.failed_retention = failed_retention
        self._clock = clock
        self._queues: dict[str, _QueueState] = {}
        self._dedup: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def _state(self, queue: str) -> _QueueState:
        if queue not in self._queues:
            self._queues[queue] = _QueueState(self.failed_retention)
        return self._queues[queue]

    async def enqueue(self, descriptor: JobDescriptor) -> Optional[Job]:
        async with self._lock:
            if descriptor.dedup_key and descriptor.dedup_key in self._dedup:
                logger.debug(f"Dedup hit for {descriptor.dedup_key}")
                metrics.record_job_deduplicated(descriptor.queue)
                return None

            job = descriptor.to_job()
            state = self._state(job.queue)
            state.jobs[job.id] = job
            if descriptor.delay > 0:
                state.delayed[job.id] = self._clock() + descriptor.delay
            else:
                state.waiting.append(job.id)
            if job.dedup_key:
                self._dedup[job.dedup_key] = job.id
            return job

    async def claim(self, queue: str) -> Optional[Job]:
        async with self._lock:
            state = self._state(queue)
            now = self._clock()

            for job_id, ready_at in sorted(state.delayed.items(), key=lambda kv: kv[1]):
                if ready_at <= now:
                    del state.delayed[job_id]
                    state.waiting.append(job_id)

            for job_id, expires_at in list(state.active.items()):
                if expires_at <= now:
                    logger.warning(f"Lease expired for job {job_id}; redelivering")
                    del state.active[job_id]
                    state.waiting.appendleft(job_id)

            while state.waiting:
                job_id = state.waiting.popleft()
                job = state.jobs.get(job_id)
                if job is None:
                    continue
                state.active[job_id] = now + self.lease_seconds
                if job.dedup_key and self._dedup.get(job.dedup_key) == job_id:
                    del self._dedup[job.dedup_key]
                return job
            return None

    async def ack(self, job: Job) -> None:
        async with self._lock:
            state = self._state(job.queue)
            state.active.pop(job.id, None)
            state.jobs.pop(job.id, None)

    async def retry(self, job: Job, delay: float) -> None:
        async with self._lock:
            state = self._state(job.queue)
            state.active.pop(job.id, None)
            state.jobs[job.id] = job
            state.delayed[job.id] = self._clock() + delay
            if job.dedup_key:
                self._dedup.setdefault(job.dedup_key, job.id)

    async def fail(self, job: Job) -> None:
        async with self._lock:
            state = self._state(job.queue)
            state.active.pop(job.id, None)
            state.jobs.pop(job.id, None)
            state.failed.appendleft(job)

    async def failed_jobs(self, queue: str) -> list[Job]:
        return list(self._state(queue).failed)

    async def pending_count(self, queue: str) -> int:
        state = self._state(queue)
        return len(state.waiting) + len(state.delayed)
