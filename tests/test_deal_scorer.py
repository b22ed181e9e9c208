"""Tests for deal classification and the scoring engine."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from gpuwatch.db.models import DealScore, StockStatus
from gpuwatch.db.repository import Repository
from gpuwatch.detect.deal_scorer import (
    MSRP_REASON,
    DealScoringEngine,
    classify_offer,
    volatility_score,
)
from gpuwatch.detect.rolling_stats import RollingStats
from gpuwatch.ingest.base import NormalizedOffer
from tests.conftest import add_history


def _stats(avg=None, stddev=0.0):
    if avg is None:
        return RollingStats()
    return RollingStats(avg=avg, min=avg, max=avg, stddev=stddev, day_count=10, sample_count=10)


def test_below_average_is_deal():
    result = classify_offer(Decimal("900.00"), Decimal("999.00"), "out_of_stock", _stats(1000.0))
    assert result.is_deal is True
    assert result.pct_below_avg == 10.0
    assert result.deal_reason == "10.0% below 30-day average"


def test_below_average_reason_wins_over_msrp():
    result = classify_offer(Decimal("850.00"), Decimal("999.00"), "in_stock", _stats(1000.0))
    assert result.deal_reason.startswith("15.0% below")


def test_at_msrp_and_in_stock_is_deal():
    result = classify_offer(Decimal("999.00"), Decimal("999.00"), "in_stock", _stats())
    assert result.is_deal is True
    assert result.deal_reason == MSRP_REASON
    assert result.pct_below_avg is None
    assert result.msrp_delta_pct == 0.0


def test_limited_stock_at_msrp_without_history():
    result = classify_offer(Decimal("799.00"), Decimal("799.00"), StockStatus.LIMITED, _stats())
    assert result.is_deal is True
    assert result.deal_reason == MSRP_REASON


def test_below_msrp_but_out_of_stock_is_not_deal():
    result = classify_offer(Decimal("950.00"), Decimal("999.00"), "out_of_stock", _stats())
    assert result.is_deal is False
    assert result.deal_reason is None


def test_small_drop_above_msrp_is_not_deal():
    result = classify_offer(Decimal("950.00"), Decimal("900.00"), "in_stock", _stats(1000.0))
    assert result.is_deal is False
    assert result.pct_below_avg == 5.0
    assert result.msrp_delta_pct < 0


def test_threshold_is_inclusive():
    result = classify_offer(Decimal("920.00"), Decimal("899.00"), "in_stock", _stats(1000.0))
    assert result.is_deal is True


def test_just_under_threshold_is_not_rounded_up():
    result = classify_offer(Decimal("920.04"), Decimal("500.00"), "out_of_stock", _stats(1000.0))
    assert result.is_deal is False
    assert result.deal_reason is None
    assert result.pct_below_avg == 8.0


def test_non_positive_msrp_is_never_a_deal():
    result = classify_offer(Decimal("100.00"), Decimal("0"), "in_stock", _stats(1000.0))
    assert result.is_deal is False
    assert result.msrp_delta_pct is None


def test_volatility_score_bounds():
    assert volatility_score(0.0) == 0.0
    assert volatility_score(None) == 0.0
    assert volatility_score(100.0) == 50.0
    assert volatility_score(500.0) == 100.0


@pytest.mark.asyncio
async def test_score_gpu_writes_one_row_per_retailer(db, gpu, now):
    history = [(now - timedelta(days=d), "1000.00") for d in range(1, 11)]
    await add_history(db, gpu.id, "bestbuy", history)

    async with db.session() as session:
        await Repository(session).upsert_offer(
            NormalizedOffer(
                gpu_id=gpu.id,
                retailer="bestbuy",
                sku="6614151",
                price_usd=Decimal("900.00"),
                stock_status=StockStatus.IN_STOCK,
                affiliate_url=f"/out/{gpu.slug}/bestbuy",
                direct_url="https://www.bestbuy.com/site/6614151.p",
                observed_at=now,
            )
        )
        await session.commit()

    engine = DealScoringEngine(db)
    scored = await engine.score_gpu(gpu.id, now=now)
    assert len(scored) == 1
    assert scored[0].is_deal is True
    assert scored[0].stats.avg == 1000.0

    # rescoring replaces rather than appends
    await engine.score_gpu(gpu.id, now=now)
    async with db.session() as session:
        count = await session.scalar(select(func.count()).select_from(DealScore))
        row = (await session.execute(select(DealScore))).scalar_one()
    assert count == 1
    assert row.rolling_30d_avg == Decimal("1000.00")
    assert row.is_deal is True


@pytest.mark.asyncio
async def test_score_gpu_without_offers(db, gpu, now):
    assert await DealScoringEngine(db).score_gpu(gpu.id, now=now) == []
