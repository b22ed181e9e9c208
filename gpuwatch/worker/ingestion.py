"""One ingestion run: fetch offers for a source, persist them, queue scoring."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from gpuwatch import metrics
from gpuwatch.config import settings
from gpuwatch.db.models import IngestionStatus
from gpuwatch.db.repository import Repository
from gpuwatch.db.session import Database
from gpuwatch.errors import PersistenceError
from gpuwatch.ingest.base import RetailerConnector
from gpuwatch.ingest.registry import get_connector
from gpuwatch.logging_config import get_logger
from gpuwatch.observability import capture_exception, capture_message
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.jobs import score_job

logger = logging.getLogger(__name__)

ConnectorFactory = Callable[[str], RetailerConnector]


@dataclass
class IngestionResult:
    source: str
    status: str
    gpus_updated: int
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0
    stale_offers: int = 0


def run_status(succeeded: int, errors: list[str]) -> IngestionStatus:
    if not errors:
        return IngestionStatus.SUCCESS
    if succeeded > 0:
        return IngestionStatus.PARTIAL
    return IngestionStatus.ERROR


class IngestionCoordinator:
    """Drives a connector and writes its offers through the repository."""

    def __init__(
        self,
        db: Database,
        queue: JobQueue,
        connector_factory: Optional[ConnectorFactory] = None,
        score_delay: Optional[float] = None,
        stale_after_hours: Optional[int] = None,
    ):
        self.db = db
        self.queue = queue
        self.connector_factory = connector_factory or get_connector
        self.score_delay = settings.score_job_delay_seconds if score_delay is None else score_delay
        self.stale_after = timedelta(
            hours=stale_after_hours or settings.stale_offer_hours
        )

    async def run_ingestion(self, source: str, gpu_id: Optional[int] = None) -> IngestionResult:
        """
        Run one ingestion for `source`, for all active GPUs or just `gpu_id`.

        Connector construction errors (unknown source, missing credentials)
        propagate so the queue retries the job. Per-offer failures are
        recorded in the run and never abort it.

        Returns:
            IngestionResult matching the audit row written
        """
        connector = self.connector_factory(source)
        log = get_logger(__name__, source=source)

        try:
            async with self.db.session() as session:
                catalog = await Repository(session).load_active_catalog(
                    retailer=source, gpu_id=gpu_id
                )
            log.info(f"Ingesting {source}: {len(catalog)} catalog entries")

            started = time.monotonic()
            fetched = await connector.fetch_offers(catalog)
            duration_ms = int((time.monotonic() - started) * 1000)
        finally:
            await connector.close()

        errors = list(fetched.errors)
        if errors:
            metrics.record_ingestion_errors(source, "adapter", len(errors))

        succeeded = 0
        for offer in fetched.offers:
            try:
                await self._persist_offer(offer)
            except PersistenceError as e:
                errors.append(str(e))
                metrics.record_ingestion_errors(source, "persistence")
                capture_exception(e, component="ingestion", source=source, gpu_id=offer.gpu_id)
                continue

            succeeded += 1
            metrics.record_offer_persisted(source)

            try:
                await self.queue.enqueue(score_job(offer.gpu_id, delay=self.score_delay))
            except Exception as e:
                errors.append(f"Score enqueue error ({offer.gpu_id}/{offer.retailer}): {e}")
                metrics.record_ingestion_errors(source, "enqueue")
                capture_exception(e, component="ingestion", source=source, gpu_id=offer.gpu_id)

        status = run_status(succeeded, errors)
        async with self.db.session() as session:
            await Repository(session).insert_ingestion_run(
                source=source,
                status=status.value,
                gpus_updated=succeeded,
                errors=errors,
                duration_ms=duration_ms,
            )
            await session.commit()

        metrics.record_ingestion_run(source, status.value, duration_ms / 1000)
        log.info(
            f"Ingestion {source} finished: {status.value}, "
            f"{succeeded} updated, {len(errors)} errors, {duration_ms}ms"
        )

        stale = await self.check_staleness()
        return IngestionResult(
            source=source,
            status=status.value,
            gpus_updated=succeeded,
            errors=errors,
            duration_ms=duration_ms,
            stale_offers=stale,
        )

    async def _persist_offer(self, offer) -> None:
        """Upsert the snapshot and append history in one transaction."""
        try:
            async with self.db.session() as session:
                repo = Repository(session)
                await repo.upsert_offer(offer)
                await repo.append_history_point(offer)
                await session.commit()
        except Exception as e:
            raise PersistenceError(offer.gpu_id, offer.retailer, e) from e

    async def check_staleness(self, now: Optional[datetime] = None, limit: int = 10) -> int:
        """
        Warn when offers have not been refreshed within the stale window.

        Returns:
            Number of stale offers found (capped at `limit`)
        """
        cutoff = (now or datetime.utcnow()) - self.stale_after
        try:
            async with self.db.session() as session:
                stale = await Repository(session).find_stale_offers(cutoff, limit=limit)
        except Exception as e:
            capture_exception(e, component="staleness")
            return 0

        metrics.stale_offers.set(len(stale))
        if stale:
            hours = int(self.stale_after.total_seconds() // 3600)
            capture_message(
                f"{len(stale)} GPU offers not updated in {hours}h",
                level="warning",
                stale_count=len(stale),
            )
        return len(stale)
