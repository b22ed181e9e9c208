"""Tests for daily-bucketed rolling statistics."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from gpuwatch.db.repository import Repository
from gpuwatch.detect.rolling_stats import compute_rolling_stats
from tests.conftest import add_history


def test_empty_history():
    stats = compute_rolling_stats([])
    assert stats.avg is None
    assert stats.stddev is None
    assert not stats.has_history


def test_daily_averages_weight_days_equally():
    day1 = datetime(2026, 10, 1, 9)
    day2 = datetime(2026, 10, 2, 9)
    points = [
        (day1, Decimal("900")),
        (day1 + timedelta(hours=4), Decimal("900")),
        (day1 + timedelta(hours=8), Decimal("900")),
        (day2, Decimal("1100")),
    ]
    stats = compute_rolling_stats(points)
    assert stats.avg == 1000.0
    assert stats.min == 900.0
    assert stats.max == 1100.0
    assert stats.day_count == 2
    assert stats.sample_count == 4
    assert stats.stddev == pytest.approx(141.42, abs=0.01)


def test_single_day_has_zero_stddev():
    stats = compute_rolling_stats([(datetime(2026, 10, 1), Decimal("799.99"))])
    assert stats.stddev == 0.0
    assert stats.avg == pytest.approx(799.99)


@pytest.mark.asyncio
async def test_read_rolling_stats_respects_window(db, gpu, now):
    await add_history(
        db,
        gpu.id,
        "newegg",
        [
            (now - timedelta(days=2), "1000.00"),
            (now - timedelta(days=1), "1000.00"),
            (now - timedelta(days=45), "500.00"),
        ],
    )
    await add_history(db, gpu.id, "bestbuy", [(now - timedelta(days=1), "700.00")])

    async with db.session() as session:
        stats = await Repository(session).read_rolling_stats(gpu.id, "newegg", 30, now=now)

    assert stats.avg == 1000.0
    assert stats.min == 1000.0
    assert stats.sample_count == 2
