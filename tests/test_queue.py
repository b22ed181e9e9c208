"""Tests for the in-memory queue, retry policy, worker pool and scheduler."""

import asyncio

import pytest

from gpuwatch.queue.jobs import (
    QUEUE_POLICIES,
    BackoffPolicy,
    BackoffType,
    Job,
    JobDescriptor,
    compaction_job,
    ingest_job,
    score_job,
)
from gpuwatch.queue.scheduler import JobScheduler
from gpuwatch.queue.worker import WorkerPool


def test_backoff_delays():
    exponential = BackoffPolicy(BackoffType.EXPONENTIAL, 5.0)
    assert [exponential.delay_for(n) for n in (1, 2, 3)] == [5.0, 10.0, 20.0]

    fixed = BackoffPolicy(BackoffType.FIXED, 2.0)
    assert [fixed.delay_for(n) for n in (1, 2)] == [2.0, 2.0]


def test_queue_policies():
    assert QUEUE_POLICIES["ingest"].attempts == 3
    assert QUEUE_POLICIES["score"].backoff == BackoffPolicy(BackoffType.FIXED, 2.0)
    assert QUEUE_POLICIES["alert"].backoff.type == BackoffType.EXPONENTIAL
    assert QUEUE_POLICIES["maintenance"].attempts == 2


def test_job_descriptors():
    assert ingest_job("bestbuy").dedup_key == "ingest-bestbuy-all"
    assert ingest_job("newegg", gpu_id=7).dedup_key == "ingest-newegg-7"
    assert score_job(3).dedup_key == "deal-3"
    assert score_job(3).delay == 1.0
    assert compaction_job().dedup_key == "compact-history"


def test_job_json_round_trip():
    job = ingest_job("amazon", gpu_id=2).to_job()
    restored = Job.from_json(job.to_json())
    assert restored == job


@pytest.mark.asyncio
async def test_dedup_collapses_pending_jobs(queue, clock):
    first = await queue.enqueue(score_job(1))
    assert first is not None
    assert await queue.enqueue(score_job(1)) is None
    assert await queue.enqueue(score_job(2)) is not None
    assert await queue.pending_count("score") == 2


@pytest.mark.asyncio
async def test_dedup_key_released_on_claim(queue, clock):
    await queue.enqueue(score_job(1, delay=0))
    job = await queue.claim("score")
    assert job is not None
    assert await queue.enqueue(score_job(1, delay=0)) is not None


@pytest.mark.asyncio
async def test_retried_job_keeps_dedup_key(queue, clock):
    await queue.enqueue(score_job(1, delay=0))
    job = await queue.claim("score")

    await queue.retry(job, delay=2.0)

    assert await queue.enqueue(score_job(1)) is None
    assert await queue.pending_count("score") == 1
    clock.advance(2.0)
    again = await queue.claim("score")
    assert again.id == job.id
    assert await queue.enqueue(score_job(1)) is not None


@pytest.mark.asyncio
async def test_delayed_job_waits(queue, clock):
    await queue.enqueue(score_job(1, delay=1.0))
    assert await queue.claim("score") is None
    clock.advance(1.0)
    job = await queue.claim("score")
    assert job.payload == {"gpu_id": 1}


@pytest.mark.asyncio
async def test_expired_lease_is_redelivered(queue, clock):
    await queue.enqueue(ingest_job("bestbuy"))
    job = await queue.claim("ingest")
    assert await queue.claim("ingest") is None

    clock.advance(61)
    again = await queue.claim("ingest")
    assert again.id == job.id


@pytest.mark.asyncio
async def test_failed_job_retries_with_backoff_then_fails(queue, clock):
    calls = []

    async def handler(job):
        calls.append(job.attempts_made)
        raise RuntimeError("BESTBUY_API_KEY not set")

    pool = WorkerPool(queue, "ingest", handler)
    await queue.enqueue(ingest_job("bestbuy"))

    assert await pool.process_next() is True
    assert await pool.process_next() is False  # waiting out 5s backoff
    clock.advance(5)
    assert await pool.process_next() is True
    clock.advance(9)
    assert await pool.process_next() is False
    clock.advance(1)
    assert await pool.process_next() is True

    assert calls == [0, 1, 2]
    failed = await queue.failed_jobs("ingest")
    assert len(failed) == 1
    assert failed[0].attempts_made == 3
    assert failed[0].last_error == "BESTBUY_API_KEY not set"
    assert await queue.pending_count("ingest") == 0


@pytest.mark.asyncio
async def test_successful_job_is_acked(queue):
    seen = []

    async def handler(job):
        seen.append(job.name)

    pool = WorkerPool(queue, "maintenance", handler)
    await queue.enqueue(compaction_job())
    assert await pool.process_next() is True
    assert seen == ["compact-history"]
    assert await queue.pending_count("maintenance") == 0
    assert await queue.failed_jobs("maintenance") == []


@pytest.mark.asyncio
async def test_pool_runs_jobs_in_background_and_drains(queue):
    done = asyncio.Event()

    async def handler(job):
        await asyncio.sleep(0.01)
        done.set()

    pool = WorkerPool(queue, "alert", handler, concurrency=2, poll_interval=0.01)
    pool.start()
    await queue.enqueue(JobDescriptor(queue="alert", name="send-alert"))

    await asyncio.wait_for(done.wait(), timeout=2)
    await pool.stop(grace_seconds=1)
    assert not pool.running


@pytest.mark.asyncio
async def test_scheduler_fire_skips_while_pending(queue):
    scheduler = JobScheduler(queue)
    await scheduler.fire("ingest-bestbuy", ingest_job("bestbuy"))
    await scheduler.fire("ingest-bestbuy", ingest_job("bestbuy"))
    assert await queue.pending_count("ingest") == 1


@pytest.mark.asyncio
async def test_scheduler_registers_pipeline(queue):
    scheduler = JobScheduler(queue)
    scheduler.register_pipeline(
        ingest_interval_hours={"bestbuy": 4, "newegg": 8},
        compaction_hour=3,
        compaction_minute=30,
    )
    ids = {job.id for job in scheduler.scheduler.get_jobs()}
    assert ids == {"ingest-bestbuy", "ingest-newegg", "compact-history"}


def test_register_requires_schedule(queue):
    with pytest.raises(ValueError):
        JobScheduler(queue).register("oops", ingest_job("bestbuy"))
