"""Tests for ingestion runs: partial failure, idempotent upserts, score fan-out."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from gpuwatch.db.models import (
    IngestionRun,
    PriceHistoryPoint,
    RetailerOffer,
    RetailerSource,
    StockStatus,
)
from gpuwatch.db.repository import Repository
from gpuwatch.errors import ConnectorConfigError, ConnectorError
from gpuwatch.ingest.base import CatalogEntry, NormalizedOffer, RetailerConnector
from gpuwatch.ingest.rate_limiter import NoDelay
from gpuwatch.worker.ingestion import IngestionCoordinator, run_status
from tests.conftest import create_gpu


class FakeConnector(RetailerConnector):
    """Returns a fixed price per slug; slugs in `failing` raise."""

    retailer = RetailerSource.BESTBUY
    label = "BestBuy"

    def __init__(self, failing=(), missing=(), price="899.99"):
        super().__init__(limiter=NoDelay(), timeout=1.0)
        self.failing = set(failing)
        self.missing = set(missing)
        self.price = Decimal(price)
        self.closed = False

    async def lookup(self, entry: CatalogEntry, key: str):
        if entry.slug in self.failing:
            raise ConnectorError("timeout")
        if entry.slug in self.missing:
            return None
        return self.make_offer(
            entry,
            sku=f"SKU-{entry.id}",
            price_usd=self.price,
            stock_status=StockStatus.IN_STOCK,
            direct_url=f"https://www.bestbuy.com/site/{entry.id}.p",
        )

    async def close(self):
        self.closed = True


async def _seed(db, count):
    slugs = ["rtx-5090", "rtx-5080", "rtx-5070-ti", "rtx-5070", "rtx-5060-ti"][:count]
    return [await create_gpu(db, slug=slug) for slug in slugs]


async def _count(db, model):
    async with db.session() as session:
        return await session.scalar(select(func.count()).select_from(model))


def test_run_status():
    assert run_status(3, []).value == "success"
    assert run_status(2, ["x"]).value == "partial"
    assert run_status(0, ["x"]).value == "error"


@pytest.mark.asyncio
async def test_partial_run_records_errors_and_keeps_successes(db, queue):
    await _seed(db, 5)
    connector = FakeConnector(failing={"rtx-5090", "rtx-5070"}, missing={"rtx-5060-ti"})
    coordinator = IngestionCoordinator(db, queue, connector_factory=lambda source: connector)

    result = await coordinator.run_ingestion("bestbuy")

    assert result.status == "partial"
    assert result.gpus_updated == 2
    assert len(result.errors) == 3
    assert "BestBuy error for rtx-5090: timeout" in result.errors
    assert "BestBuy: no results for rtx-5060-ti" in result.errors
    assert connector.closed is True

    async with db.session() as session:
        run = (await session.execute(select(IngestionRun))).scalar_one()
    assert run.source == "bestbuy"
    assert run.status == "partial"
    assert run.gpus_updated == 2
    assert len(run.errors) == 3
    assert await _count(db, RetailerOffer) == 2


@pytest.mark.asyncio
async def test_all_failed_is_error_status(db, queue):
    await _seed(db, 2)
    connector = FakeConnector(failing={"rtx-5090", "rtx-5080"})
    coordinator = IngestionCoordinator(db, queue, connector_factory=lambda source: connector)

    result = await coordinator.run_ingestion("bestbuy")

    assert result.status == "error"
    assert result.gpus_updated == 0
    assert await queue.pending_count("score") == 0


@pytest.mark.asyncio
async def test_repeated_runs_upsert_one_offer_and_append_history(db, queue):
    await _seed(db, 2)
    coordinator = IngestionCoordinator(
        db, queue, connector_factory=lambda source: FakeConnector()
    )

    await coordinator.run_ingestion("bestbuy")
    await coordinator.run_ingestion("bestbuy")

    assert await _count(db, RetailerOffer) == 2
    assert await _count(db, PriceHistoryPoint) == 4
    assert await _count(db, IngestionRun) == 2
    # the score job per GPU is still pending, so the second run collapses into it
    assert await queue.pending_count("score") == 2


@pytest.mark.asyncio
async def test_offer_overwrite_takes_latest_price(db, queue):
    gpu = (await _seed(db, 1))[0]
    await IngestionCoordinator(
        db, queue, connector_factory=lambda source: FakeConnector(price="999.99")
    ).run_ingestion("bestbuy")
    await IngestionCoordinator(
        db, queue, connector_factory=lambda source: FakeConnector(price="949.99")
    ).run_ingestion("bestbuy")

    async with db.session() as session:
        offer = (await session.execute(select(RetailerOffer))).scalar_one()
    assert offer.gpu_id == gpu.id
    assert offer.price_usd == Decimal("949.99")


@pytest.mark.asyncio
async def test_persistence_failure_is_recorded_and_run_continues(db, queue, monkeypatch):
    gpus = await _seed(db, 5)
    bad_ids = {gpus[1].id, gpus[3].id}
    original = Repository.upsert_offer

    async def flaky_upsert(self, offer):
        if offer.gpu_id in bad_ids:
            raise RuntimeError("deadlock detected")
        await original(self, offer)

    monkeypatch.setattr(Repository, "upsert_offer", flaky_upsert)
    coordinator = IngestionCoordinator(
        db, queue, connector_factory=lambda source: FakeConnector()
    )

    result = await coordinator.run_ingestion("bestbuy")

    assert result.status == "partial"
    assert result.gpus_updated == 3
    assert result.errors == [
        f"DB upsert error ({gpus[1].id}/bestbuy): deadlock detected",
        f"DB upsert error ({gpus[3].id}/bestbuy): deadlock detected",
    ]
    assert await _count(db, PriceHistoryPoint) == 3
    assert await queue.pending_count("score") == 3

    async with db.session() as session:
        run = (await session.execute(select(IngestionRun))).scalar_one()
    assert (run.status, run.gpus_updated, len(run.errors)) == ("partial", 3, 2)


@pytest.mark.asyncio
async def test_score_enqueue_failure_is_recorded_and_run_completes(db, queue, monkeypatch):
    gpus = await _seed(db, 2)

    async def broken_enqueue(descriptor):
        raise ConnectionError("redis down")

    monkeypatch.setattr(queue, "enqueue", broken_enqueue)
    coordinator = IngestionCoordinator(
        db, queue, connector_factory=lambda source: FakeConnector()
    )

    result = await coordinator.run_ingestion("bestbuy")

    assert result.status == "partial"
    assert result.gpus_updated == 2
    assert result.errors == [
        f"Score enqueue error ({gpu.id}/bestbuy): redis down" for gpu in gpus
    ]
    assert await _count(db, PriceHistoryPoint) == 2

    async with db.session() as session:
        run = (await session.execute(select(IngestionRun))).scalar_one()
    assert (run.status, run.gpus_updated, len(run.errors)) == ("partial", 2, 2)


@pytest.mark.asyncio
async def test_inactive_gpus_are_not_ingested(db, queue):
    gpus = await _seed(db, 2)
    async with db.session() as session:
        await Repository(session).deactivate_gpu(gpus[0].id)
        await session.commit()

    result = await IngestionCoordinator(
        db, queue, connector_factory=lambda source: FakeConnector()
    ).run_ingestion("bestbuy")

    assert result.gpus_updated == 1


@pytest.mark.asyncio
async def test_single_gpu_scope(db, queue):
    gpus = await _seed(db, 3)
    result = await IngestionCoordinator(
        db, queue, connector_factory=lambda source: FakeConnector()
    ).run_ingestion("bestbuy", gpu_id=gpus[2].id)

    assert result.gpus_updated == 1
    job = await queue.claim("score")
    assert job is None  # score jobs are delayed


@pytest.mark.asyncio
async def test_unknown_source_propagates(db, queue):
    coordinator = IngestionCoordinator(db, queue)
    with pytest.raises(ConnectorConfigError):
        await coordinator.run_ingestion("walmart")
    assert await _count(db, IngestionRun) == 0


@pytest.mark.asyncio
async def test_staleness_check_counts_old_offers(db, queue, now):
    gpus = await _seed(db, 2)
    async with db.session() as session:
        repo = Repository(session)
        for gpu, age in zip(gpus, (timedelta(hours=8), timedelta(hours=1))):
            await repo.upsert_offer(
                NormalizedOffer(
                    gpu_id=gpu.id,
                    retailer="newegg",
                    sku="N82E1",
                    price_usd=Decimal("999.99"),
                    stock_status=StockStatus.IN_STOCK,
                    affiliate_url=f"/out/{gpu.slug}/newegg",
                    direct_url="https://www.newegg.com/p/N82E1",
                    observed_at=now - age,
                )
            )
        await session.commit()

    coordinator = IngestionCoordinator(db, queue, stale_after_hours=6)
    assert await coordinator.check_staleness(now=now) == 1
