"""Deal classification over rolling price statistics."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from gpuwatch import metrics
from gpuwatch.config import settings
from gpuwatch.db.models import StockStatus
from gpuwatch.db.repository import Repository
from gpuwatch.db.session import Database
from gpuwatch.detect.rolling_stats import RollingStats

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MSRP_REASON = "At or below MSRP and in stock"

# Stock states that count as purchasable for the MSRP rule
PURCHASABLE = {StockStatus.IN_STOCK.value, StockStatus.LIMITED.value}


@dataclass
class DealClassification:
    pct_below_avg: Optional[float]
    msrp_delta_pct: Optional[float]
    volatility_score: float
    is_deal: bool
    deal_reason: Optional[str]


@dataclass
class ScoredOffer:
    """One computed deal score, as written to storage."""

    gpu_id: int
    retailer: str
    current_price_usd: Decimal
    msrp_usd: Decimal
    stats: RollingStats
    classification: DealClassification
    computed_at: datetime

    @property
    def is_deal(self) -> bool:
        return self.classification.is_deal

    def to_row(self) -> dict:
        c = self.classification
        return {
            "gpu_id": self.gpu_id,
            "retailer": self.retailer,
            "current_price_usd": self.current_price_usd,
            "rolling_30d_avg": _money(self.stats.avg),
            "rolling_30d_min": _money(self.stats.min),
            "rolling_30d_max": _money(self.stats.max),
            "msrp_usd": self.msrp_usd,
            "pct_below_avg": c.pct_below_avg,
            "msrp_delta_pct": c.msrp_delta_pct,
            "volatility_score": c.volatility_score,
            "is_deal": c.is_deal,
            "deal_reason": c.deal_reason,
            "computed_at": self.computed_at,
        }


def _money(value: Optional[float]) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def volatility_score(stddev: Optional[float], scale_usd: float = 200.0) -> float:
    """Standard deviation mapped linearly onto 0..100; `scale_usd` or more is 100."""
    if not stddev or stddev <= 0:
        return 0.0
    return min(100.0, (stddev / scale_usd) * 100.0)


def classify_offer(
    price: Union[Decimal, float],
    msrp: Union[Decimal, float],
    stock_status: str,
    stats: RollingStats,
    threshold_pct: float = 8.0,
    volatility_scale_usd: float = 200.0,
    window_days: int = 30,
) -> DealClassification:
    """
    Classify one offer.

    A deal is either at least `threshold_pct` below the rolling average, or
    at/below MSRP while purchasable. The below-average rule wins the reason
    when both hold. A non-positive MSRP is never a deal.
    """
    price = float(price)
    msrp = float(msrp)
    stock_status = getattr(stock_status, "value", stock_status)

    raw_pct = None
    pct_below_avg = None
    if stats.avg is not None and stats.avg > 0:
        raw_pct = (stats.avg - price) * 100 / stats.avg
        pct_below_avg = round(raw_pct, 2)

    volatility = round(volatility_score(stats.stddev, volatility_scale_usd), 2)

    if msrp <= 0:
        logger.warning(f"Non-positive MSRP {msrp}; offer at {price} scored as non-deal")
        return DealClassification(pct_below_avg, None, volatility, False, None)

    msrp_delta_pct = round((msrp - price) / msrp * 100, 2)

    reason = None
    if raw_pct is not None and raw_pct >= threshold_pct:
        reason = f"{raw_pct:.1f}% below {window_days}-day average"
    elif price <= msrp and stock_status in PURCHASABLE:
        reason = MSRP_REASON

    return DealClassification(
        pct_below_avg=pct_below_avg,
        msrp_delta_pct=msrp_delta_pct,
        volatility_score=volatility,
        is_deal=reason is not None,
        deal_reason=reason,
    )


class DealScoringEngine:
    """Recompute and store the deal score of every live offer for a GPU."""

    def __init__(
        self,
        db: Database,
        window_days: Optional[int] = None,
        threshold_pct: Optional[float] = None,
        volatility_scale_usd: Optional[float] = None,
    ):
        self.db = db
        self.window_days = window_days or settings.rolling_window_days
        self.threshold_pct = threshold_pct or settings.deal_pct_below_avg_threshold
        self.volatility_scale_usd = volatility_scale_usd or settings.volatility_scale_usd

    async def score_gpu(self, gpu_id: int, now: Optional[datetime] = None) -> list[ScoredOffer]:
        """
        Score every retailer currently offering this GPU.

        All scores for the GPU are replaced in one transaction.

        Returns:
            One ScoredOffer per live (gpu, retailer) offer
        """
        now = now or datetime.utcnow()
        scored: list[ScoredOffer] = []

        async with self.db.session() as session:
            repo = Repository(session)
            offers = await repo.load_offers_for_scoring(gpu_id)
            if not offers:
                logger.info(f"No live offers for GPU {gpu_id}; nothing to score")
                return scored

            for offer, msrp in offers:
                stats = await repo.read_rolling_stats(
                    gpu_id, offer.retailer, self.window_days, now=now
                )
                classification = classify_offer(
                    offer.price_usd,
                    msrp,
                    offer.stock_status,
                    stats,
                    threshold_pct=self.threshold_pct,
                    volatility_scale_usd=self.volatility_scale_usd,
                    window_days=self.window_days,
                )
                result = ScoredOffer(
                    gpu_id=gpu_id,
                    retailer=offer.retailer,
                    current_price_usd=offer.price_usd,
                    msrp_usd=msrp,
                    stats=stats,
                    classification=classification,
                    computed_at=now,
                )
                await repo.upsert_deal_score(result.to_row())
                scored.append(result)

            await session.commit()

        for result in scored:
            metrics.record_deal_score(result.retailer, result.is_deal)
            if result.is_deal:
                logger.info(
                    f"Deal: GPU {gpu_id} at {result.retailer} "
                    f"${result.current_price_usd} ({result.classification.deal_reason})"
                )
        return scored
