"""Nightly roll-up of old raw price history into weekly buckets.

Only complete weeks are compacted: the cutoff is moved back to the Monday
that starts the week containing `now - retention`, so a bucket is never
written from part of a week and later left incomplete.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from gpuwatch import metrics
from gpuwatch.config import settings
from gpuwatch.db.repository import Repository, week_start_of
from gpuwatch.db.session import Database

logger = logging.getLogger(__name__)


class RetentionCompactor:
    """
    Aggregates then prunes, one transaction per (gpu, retailer).

    Buckets are insert-if-absent, so re-running after an interruption
    between aggregate and prune writes nothing new and then prunes.
    """

    def __init__(self, db: Database, retention_days: Optional[int] = None):
        self.db = db
        self.retention_days = retention_days or settings.history_retention_days

    def cutoff_for(self, now: datetime) -> datetime:
        boundary = now - timedelta(days=self.retention_days)
        monday = week_start_of(boundary)
        return datetime(monday.year, monday.month, monday.day)

    async def run(self, now: Optional[datetime] = None) -> dict:
        """
        Run the compaction.

        Returns:
            Dict with job statistics
        """
        now = now or datetime.utcnow()
        cutoff = self.cutoff_for(now)
        logger.info(f"Starting history compaction for points before {cutoff.isoformat()}")

        stats = {"pairs": 0, "buckets_written": 0, "rows_pruned": 0, "cutoff": cutoff.isoformat()}

        async with self.db.session() as session:
            pairs = await Repository(session).find_compactable_pairs(cutoff)

        for gpu_id, retailer in pairs:
            async with self.db.session() as session:
                repo = Repository(session)
                written = await repo.aggregate_weekly_history(gpu_id, retailer, cutoff)
                pruned = await repo.prune_history(gpu_id, retailer, cutoff)
                await session.commit()

            stats["pairs"] += 1
            stats["buckets_written"] += written
            stats["rows_pruned"] += pruned

        metrics.record_compaction(stats["buckets_written"], stats["rows_pruned"])
        logger.info(
            f"Compaction complete: {stats['pairs']} pairs, "
            f"{stats['buckets_written']} buckets written, "
            f"{stats['rows_pruned']} raw rows pruned"
        )
        return stats
