"""End-to-end pipeline run through the queue handlers."""

import pytest

from gpuwatch.db.models import GPUWatch
from gpuwatch.queue.jobs import JobDescriptor, ingest_job
from gpuwatch.worker.ingestion import IngestionCoordinator
from gpuwatch.worker.tasks import TaskRunner
from tests.test_dispatcher import FakeSender
from tests.test_ingestion import FakeConnector


@pytest.mark.asyncio
async def test_ingest_score_alert_pipeline(db, queue, clock, gpu):
    async with db.session() as session:
        session.add(GPUWatch(email="buyer@example.com", gpu_id=gpu.id, notify_in_stock=True))
        await session.commit()

    sender = FakeSender()
    runner = TaskRunner(
        db,
        queue,
        coordinator=IngestionCoordinator(
            db, queue, connector_factory=lambda source: FakeConnector(price="899.99")
        ),
        sender=sender,
    )
    pools = runner.build_pools()

    await queue.enqueue(ingest_job("bestbuy"))
    assert await pools["ingest"].process_next() is True

    clock.advance(1)
    assert await pools["score"].process_next() is True
    assert await pools["alert"].process_next() is True

    assert len(sender.sent) == 1
    assert sender.sent[0][0] == "buyer@example.com"

    # cooldown holds on the next pass
    await queue.enqueue(ingest_job("bestbuy"))
    await pools["ingest"].process_next()
    clock.advance(1)
    await pools["score"].process_next()
    assert await pools["alert"].process_next() is False


@pytest.mark.asyncio
async def test_unknown_maintenance_job_fails(db, queue):
    runner = TaskRunner(db, queue, sender=FakeSender())
    pools = runner.build_pools()
    await queue.enqueue(JobDescriptor(queue="maintenance", name="vacuum", attempts=1))

    assert await pools["maintenance"].process_next() is True

    failed = await queue.failed_jobs("maintenance")
    assert failed[0].last_error == "Unknown maintenance job: vacuum"
