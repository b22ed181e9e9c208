"""Tests for weekly history compaction."""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from gpuwatch.db.models import PriceHistoryPoint, PriceHistoryWeekly
from gpuwatch.db.repository import Repository, bucket_history_by_week, week_start_of
from gpuwatch.worker.compaction import RetentionCompactor
from tests.conftest import add_history


def test_week_start_is_monday():
    # 2026-10-22 is a Thursday
    assert week_start_of(datetime(2026, 10, 22, 18, 30)).isoformat() == "2026-10-19"
    assert week_start_of(datetime(2026, 10, 19, 0, 0)).isoformat() == "2026-10-19"


def test_bucket_history_by_week():
    rows = [
        (datetime(2026, 3, 2, 10), "1000.00"),
        (datetime(2026, 3, 4, 10), "900.00"),
        (datetime(2026, 3, 9, 10), "950.00"),
    ]
    buckets = bucket_history_by_week(1, "bestbuy", rows)
    assert [b.week_start.isoformat() for b in buckets] == ["2026-03-02", "2026-03-09"]
    assert str(buckets[0].avg_price_usd) == "950.00"
    assert str(buckets[0].min_price_usd) == "900.00"
    assert buckets[0].sample_count == 2


def test_cutoff_is_a_monday_no_later_than_retention(now):
    compactor = RetentionCompactor(db=None, retention_days=180)
    cutoff = compactor.cutoff_for(now)
    assert cutoff.weekday() == 0
    assert cutoff <= now - timedelta(days=180)
    assert now - timedelta(days=180) - cutoff < timedelta(days=7)


async def _history_fixture(db, gpu, cutoff):
    await add_history(
        db,
        gpu.id,
        "bestbuy",
        [
            (cutoff - timedelta(days=10), "1000.00"),
            (cutoff - timedelta(days=10, hours=-3), "980.00"),
            (cutoff - timedelta(days=3), "950.00"),
            (cutoff + timedelta(days=1), "900.00"),
        ],
    )


async def _counts(db, gpu_id):
    async with db.session() as session:
        raw = await session.scalar(select(func.count()).select_from(PriceHistoryPoint))
        weekly = await session.scalar(select(func.count()).select_from(PriceHistoryWeekly))
        samples = await Repository(session).count_weekly_samples(gpu_id, "bestbuy")
    return raw, weekly, samples


@pytest.mark.asyncio
async def test_compaction_rolls_up_and_prunes(db, gpu, now):
    compactor = RetentionCompactor(db, retention_days=180)
    cutoff = compactor.cutoff_for(now)
    await _history_fixture(db, gpu, cutoff)

    stats = await compactor.run(now=now)

    assert stats["pairs"] == 1
    assert stats["buckets_written"] == 2
    assert stats["rows_pruned"] == 3
    assert await _counts(db, gpu.id) == (1, 2, 3)


@pytest.mark.asyncio
async def test_compaction_is_idempotent(db, gpu, now):
    compactor = RetentionCompactor(db, retention_days=180)
    await _history_fixture(db, gpu, compactor.cutoff_for(now))

    await compactor.run(now=now)
    stats = await compactor.run(now=now)

    assert stats["buckets_written"] == 0
    assert stats["rows_pruned"] == 0
    assert await _counts(db, gpu.id) == (1, 2, 3)


@pytest.mark.asyncio
async def test_rerun_after_interrupted_prune_does_not_double_count(db, gpu, now):
    compactor = RetentionCompactor(db, retention_days=180)
    cutoff = compactor.cutoff_for(now)
    await _history_fixture(db, gpu, cutoff)

    # aggregate committed, prune never happened
    async with db.session() as session:
        await Repository(session).aggregate_weekly_history(gpu.id, "bestbuy", cutoff)
        await session.commit()

    stats = await compactor.run(now=now)

    assert stats["buckets_written"] == 0
    assert stats["rows_pruned"] == 3
    assert await _counts(db, gpu.id) == (1, 2, 3)
