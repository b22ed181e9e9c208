"""Persistence calls used by the pipeline and the HTTP surface.

A `Repository` wraps one `AsyncSession`. It never commits; the caller owns
the transaction boundary (one offer, one scoring pass, one compaction pair).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from gpuwatch.db.models import (
    GPU,
    DealScore,
    GPUWatch,
    IngestionRun,
    OutboundClick,
    PriceHistoryPoint,
    PriceHistoryWeekly,
    RetailerOffer,
    SKUMapping,
)
from gpuwatch.detect.rolling_stats import RollingStats, compute_rolling_stats
from gpuwatch.ingest.base import CatalogEntry, NormalizedOffer

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class WeeklyBucket:
    gpu_id: int
    retailer: str
    week_start: date
    avg_price_usd: Decimal
    min_price_usd: Decimal
    max_price_usd: Decimal
    sample_count: int


def week_start_of(moment: datetime) -> date:
    """Monday of the ISO week containing `moment`."""
    day = moment.date() if isinstance(moment, datetime) else moment
    return day - timedelta(days=day.weekday())


def bucket_history_by_week(
    gpu_id: int,
    retailer: str,
    rows: Sequence[tuple[datetime, Decimal]],
) -> list[WeeklyBucket]:
    """Group (recorded_at, price) rows into Monday-start weekly buckets."""
    weeks: dict[date, list[Decimal]] = defaultdict(list)
    for recorded_at, price in rows:
        weeks[week_start_of(recorded_at)].append(Decimal(price))

    buckets = []
    for week_start in sorted(weeks):
        prices = weeks[week_start]
        avg = (sum(prices) / len(prices)).quantize(CENTS, rounding=ROUND_HALF_UP)
        buckets.append(
            WeeklyBucket(
                gpu_id=gpu_id,
                retailer=retailer,
                week_start=week_start,
                avg_price_usd=avg,
                min_price_usd=min(prices),
                max_price_usd=max(prices),
                sample_count=len(prices),
            )
        )
    return buckets


class Repository:
    """Storage operations over one session."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _insert(self, model):
        """Dialect-specific INSERT supporting ON CONFLICT."""
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def load_active_catalog(
        self,
        retailer: Optional[str] = None,
        gpu_id: Optional[int] = None,
    ) -> list[CatalogEntry]:
        """
        Load active GPUs, with the retailer's SKU mapping when one exists.

        Args:
            retailer: Retailer whose sku_mappings override the search term
            gpu_id: Restrict to a single GPU

        Returns:
            Catalog entries ordered by id
        """
        query = select(GPU.id, GPU.slug, GPU.model).where(GPU.active.is_(True))
        if retailer:
            query = query.add_columns(SKUMapping.retailer_sku).outerjoin(
                SKUMapping,
                and_(
                    SKUMapping.gpu_id == GPU.id,
                    SKUMapping.retailer == retailer,
                    SKUMapping.active.is_(True),
                ),
            )
        if gpu_id is not None:
            query = query.where(GPU.id == gpu_id)
        query = query.order_by(GPU.id)

        result = await self.session.execute(query)
        entries = []
        for row in result.all():
            entries.append(
                CatalogEntry(
                    id=row.id,
                    slug=row.slug,
                    model=row.model,
                    retailer_sku=row.retailer_sku if retailer else None,
                )
            )
        return entries

    async def get_gpu(self, gpu_id: int) -> Optional[GPU]:
        return await self.session.get(GPU, gpu_id)

    async def get_gpu_by_slug(self, slug: str) -> Optional[GPU]:
        result = await self.session.execute(select(GPU).where(GPU.slug == slug))
        return result.scalar_one_or_none()

    async def create_gpu(self, data: dict[str, Any]) -> GPU:
        """Insert a validated catalog entry."""
        gpu = GPU(**data)
        self.session.add(gpu)
        await self.session.flush()
        return gpu

    async def upsert_gpu(self, data: dict[str, Any]) -> None:
        """Insert or update a catalog entry keyed by slug (seeding)."""
        stmt = self._insert(GPU).values(**data)
        updates = {k: stmt.excluded[k] for k in data if k != "slug"}
        updates["updated_at"] = datetime.utcnow()
        stmt = stmt.on_conflict_do_update(index_elements=["slug"], set_=updates)
        await self.session.execute(stmt)

    async def deactivate_gpu(self, gpu_id: int) -> bool:
        """Soft-delete a GPU. Returns False if it does not exist."""
        result = await self.session.execute(
            update(GPU)
            .where(GPU.id == gpu_id)
            .values(active=False, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def upsert_sku_mapping(
        self, gpu_id: int, retailer: str, retailer_sku: str, model_name: Optional[str] = None
    ) -> None:
        stmt = self._insert(SKUMapping).values(
            gpu_id=gpu_id,
            retailer=retailer,
            retailer_sku=retailer_sku,
            retailer_model_name=model_name,
            active=True,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["gpu_id", "retailer"],
            set_={
                "retailer_sku": stmt.excluded.retailer_sku,
                "retailer_model_name": stmt.excluded.retailer_model_name,
                "active": True,
            },
        )
        await self.session.execute(stmt)

    # ------------------------------------------------------------------
    # Offers & history
    # ------------------------------------------------------------------

    async def upsert_offer(self, offer: NormalizedOffer) -> None:
        """Insert or fully overwrite the live offer for (gpu, retailer)."""
        values = {
            "gpu_id": offer.gpu_id,
            "retailer": offer.retailer,
            "sku": offer.sku,
            "price_usd": offer.price_usd,
            "regular_price_usd": offer.regular_price_usd,
            "sale_price_usd": offer.sale_price_usd,
            "stock_status": offer.stock_status.value,
            "stock_quantity": offer.stock_quantity,
            "affiliate_url": offer.affiliate_url,
            "direct_url": offer.direct_url,
            "last_checked_at": offer.observed_at,
        }
        stmt = self._insert(RetailerOffer).values(**values)
        mutable = {
            k: stmt.excluded[k] for k in values if k not in ("gpu_id", "retailer")
        }
        stmt = stmt.on_conflict_do_update(
            index_elements=["gpu_id", "retailer"],
            set_=mutable,
        )
        await self.session.execute(stmt)

    async def append_history_point(self, offer: NormalizedOffer) -> None:
        self.session.add(
            PriceHistoryPoint(
                gpu_id=offer.gpu_id,
                retailer=offer.retailer,
                price_usd=offer.price_usd,
                stock_status=offer.stock_status.value,
                recorded_at=offer.observed_at,
            )
        )
        await self.session.flush()

    async def insert_ingestion_run(
        self,
        source: str,
        status: str,
        gpus_updated: int,
        errors: list[str],
        duration_ms: int,
    ) -> IngestionRun:
        run = IngestionRun(
            source=source,
            status=status,
            gpus_updated=gpus_updated,
            errors=list(errors),
            duration_ms=duration_ms,
        )
        self.session.add(run)
        await self.session.flush()
        return run

    async def find_stale_offers(self, cutoff: datetime, limit: int = 10) -> list[RetailerOffer]:
        """Offers whose last check is older than `cutoff`."""
        result = await self.session.execute(
            select(RetailerOffer)
            .where(RetailerOffer.last_checked_at < cutoff)
            .order_by(RetailerOffer.last_checked_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_active_offer_links(self) -> list[tuple[str, str, str]]:
        """(gpu slug, retailer, direct url) for every offer of an active GPU."""
        result = await self.session.execute(
            select(GPU.slug, RetailerOffer.retailer, RetailerOffer.direct_url)
            .join(GPU, GPU.id == RetailerOffer.gpu_id)
            .where(GPU.active.is_(True))
            .order_by(GPU.slug, RetailerOffer.retailer)
        )
        return [(row.slug, row.retailer, row.direct_url) for row in result.all()]

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def load_offers_for_scoring(self, gpu_id: int) -> list[tuple[RetailerOffer, Decimal]]:
        """Live offers for a GPU, each paired with the GPU's MSRP."""
        result = await self.session.execute(
            select(RetailerOffer, GPU.msrp_usd)
            .join(GPU, GPU.id == RetailerOffer.gpu_id)
            .where(RetailerOffer.gpu_id == gpu_id)
            .order_by(RetailerOffer.retailer)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def read_rolling_stats(
        self,
        gpu_id: int,
        retailer: str,
        window_days: int = 30,
        now: Optional[datetime] = None,
    ) -> RollingStats:
        """Daily-bucketed rolling statistics over the trailing window."""
        since = (now or datetime.utcnow()) - timedelta(days=window_days)
        result = await self.session.execute(
            select(PriceHistoryPoint.recorded_at, PriceHistoryPoint.price_usd).where(
                PriceHistoryPoint.gpu_id == gpu_id,
                PriceHistoryPoint.retailer == retailer,
                PriceHistoryPoint.recorded_at >= since,
            )
        )
        return compute_rolling_stats([(row[0], row[1]) for row in result.all()])

    async def upsert_deal_score(self, values: dict[str, Any]) -> None:
        """Replace the computed fields of the (gpu, retailer) deal score."""
        stmt = self._insert(DealScore).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["gpu_id", "retailer"],
            set_={k: stmt.excluded[k] for k in values if k not in ("gpu_id", "retailer")},
        )
        await self.session.execute(stmt)

    async def load_deal_context(
        self, gpu_id: int, retailer: str
    ) -> tuple[Optional[DealScore], Optional[RetailerOffer]]:
        """Deal score and live offer used to render an alert."""
        score = await self.session.execute(
            select(DealScore).where(
                DealScore.gpu_id == gpu_id, DealScore.retailer == retailer
            )
        )
        offer = await self.session.execute(
            select(RetailerOffer).where(
                RetailerOffer.gpu_id == gpu_id, RetailerOffer.retailer == retailer
            )
        )
        return score.scalar_one_or_none(), offer.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    async def find_qualifying_watches(
        self,
        gpu_id: int,
        price: Decimal,
        cooldown_cutoff: datetime,
    ) -> list[GPUWatch]:
        """
        Watches that should hear about `price` for this GPU.

        A watch qualifies when its target price is met, or it asked for
        in-stock notifications, and it was not notified after the cutoff.
        """
        wants = [
            and_(
                GPUWatch.target_price_usd.is_not(None),
                GPUWatch.target_price_usd >= price,
            )
        ]
        if price > 0:
            wants.append(GPUWatch.notify_in_stock.is_(True))

        result = await self.session.execute(
            select(GPUWatch)
            .where(
                GPUWatch.gpu_id == gpu_id,
                or_(*wants),
                or_(
                    GPUWatch.last_notified_at.is_(None),
                    GPUWatch.last_notified_at < cooldown_cutoff,
                ),
            )
            .order_by(GPUWatch.id)
        )
        return list(result.scalars().all())

    async def claim_watch_cooldown(
        self,
        watch_id: int,
        now: datetime,
        cooldown_cutoff: datetime,
    ) -> bool:
        """
        Atomically stamp `last_notified_at` if the cooldown has elapsed.

        Returns:
            True if this caller won the claim
        """
        result = await self.session.execute(
            update(GPUWatch)
            .where(
                GPUWatch.id == watch_id,
                or_(
                    GPUWatch.last_notified_at.is_(None),
                    GPUWatch.last_notified_at < cooldown_cutoff,
                ),
            )
            .values(last_notified_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def restore_watch_cooldown(
        self, watch_id: int, previous: Optional[datetime]
    ) -> None:
        """Undo a claim whose alert job could not be enqueued."""
        await self.session.execute(
            update(GPUWatch)
            .where(GPUWatch.id == watch_id)
            .values(last_notified_at=previous)
            .execution_options(synchronize_session=False)
        )

    async def stamp_watch(self, watch_id: int, now: datetime) -> None:
        await self.session.execute(
            update(GPUWatch)
            .where(GPUWatch.id == watch_id)
            .values(last_notified_at=now)
            .execution_options(synchronize_session=False)
        )

    async def load_watches_for_send(
        self, watch_ids: Sequence[int], price: Decimal
    ) -> list[GPUWatch]:
        """Re-read the claimed watches whose target still admits `price`."""
        if not watch_ids:
            return []
        result = await self.session.execute(
            select(GPUWatch)
            .where(
                GPUWatch.id.in_(list(watch_ids)),
                or_(
                    GPUWatch.target_price_usd.is_(None),
                    GPUWatch.target_price_usd >= price,
                ),
            )
            .order_by(GPUWatch.id)
        )
        return list(result.scalars().all())

    async def upsert_watch(
        self,
        email: str,
        gpu_id: int,
        target_price_usd: Optional[Decimal],
        notify_in_stock: bool,
    ) -> GPUWatch:
        """Create or update the (email, gpu) subscription."""
        stmt = self._insert(GPUWatch).values(
            email=email,
            gpu_id=gpu_id,
            target_price_usd=target_price_usd,
            notify_in_stock=notify_in_stock,
            created_at=datetime.utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["email", "gpu_id"],
            set_={
                "target_price_usd": stmt.excluded.target_price_usd,
                "notify_in_stock": stmt.excluded.notify_in_stock,
            },
        )
        await self.session.execute(stmt)
        result = await self.session.execute(
            select(GPUWatch)
            .where(GPUWatch.email == email, GPUWatch.gpu_id == gpu_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ------------------------------------------------------------------
    # Outbound clicks
    # ------------------------------------------------------------------

    async def resolve_outbound_url(
        self, slug: str, retailer: str
    ) -> tuple[Optional[GPU], Optional[str]]:
        """GPU and the live offer's direct URL (None if no offer)."""
        gpu = await self.get_gpu_by_slug(slug)
        if gpu is None:
            return None, None
        result = await self.session.execute(
            select(RetailerOffer.direct_url).where(
                RetailerOffer.gpu_id == gpu.id, RetailerOffer.retailer == retailer
            )
        )
        return gpu, result.scalar_one_or_none()

    async def record_outbound_click(
        self,
        gpu_id: int,
        retailer: str,
        ref_url: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        self.session.add(
            OutboundClick(
                gpu_id=gpu_id,
                retailer=retailer,
                ref_url=ref_url,
                user_agent=user_agent,
            )
        )
        await self.session.flush()

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def find_compactable_pairs(self, before: datetime) -> list[tuple[int, str]]:
        """(gpu, retailer) pairs with raw history older than `before`."""
        result = await self.session.execute(
            select(PriceHistoryPoint.gpu_id, PriceHistoryPoint.retailer)
            .where(PriceHistoryPoint.recorded_at < before)
            .distinct()
            .order_by(PriceHistoryPoint.gpu_id, PriceHistoryPoint.retailer)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def aggregate_weekly_history(
        self, gpu_id: int, retailer: str, before: datetime
    ) -> int:
        """
        Roll raw history older than `before` into weekly buckets.

        Buckets that already exist are left alone, so a re-run after an
        interrupted prune inserts nothing.

        Returns:
            Number of buckets inserted
        """
        result = await self.session.execute(
            select(PriceHistoryPoint.recorded_at, PriceHistoryPoint.price_usd).where(
                PriceHistoryPoint.gpu_id == gpu_id,
                PriceHistoryPoint.retailer == retailer,
                PriceHistoryPoint.recorded_at < before,
            )
        )
        buckets = bucket_history_by_week(gpu_id, retailer, result.all())

        inserted = 0
        for bucket in buckets:
            stmt = (
                self._insert(PriceHistoryWeekly)
                .values(
                    gpu_id=bucket.gpu_id,
                    retailer=bucket.retailer,
                    week_start=bucket.week_start,
                    avg_price_usd=bucket.avg_price_usd,
                    min_price_usd=bucket.min_price_usd,
                    max_price_usd=bucket.max_price_usd,
                    sample_count=bucket.sample_count,
                )
                .on_conflict_do_nothing(
                    index_elements=["gpu_id", "retailer", "week_start"]
                )
            )
            res = await self.session.execute(stmt)
            inserted += max(res.rowcount or 0, 0)
        return inserted

    async def prune_history(self, gpu_id: int, retailer: str, before: datetime) -> int:
        """Delete raw history older than `before`. Returns rows deleted."""
        result = await self.session.execute(
            delete(PriceHistoryPoint)
            .where(
                PriceHistoryPoint.gpu_id == gpu_id,
                PriceHistoryPoint.retailer == retailer,
                PriceHistoryPoint.recorded_at < before,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count_weekly_samples(self, gpu_id: int, retailer: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PriceHistoryWeekly.sample_count), 0)).where(
                PriceHistoryWeekly.gpu_id == gpu_id,
                PriceHistoryWeekly.retailer == retailer,
            )
        )
        return int(result.scalar_one())
