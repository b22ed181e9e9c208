"""Alert fan-out: match watches against deals, enforce cooldown, send emails."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from gpuwatch import metrics
from gpuwatch.config import settings
from gpuwatch.db.repository import Repository
from gpuwatch.db.session import Database
from gpuwatch.detect.deal_scorer import ScoredOffer
from gpuwatch.notify.email import EmailSender
from gpuwatch.notify.formatters import format_price_alert
from gpuwatch.observability import capture_exception
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.jobs import alert_job

logger = logging.getLogger(__name__)

STAMP_ON_ENQUEUE = "on_enqueue"
STAMP_ON_SEND = "on_send"


class AlertDispatcher:
    """
    Two halves of alerting.

    `evaluate()` runs after scoring and enqueues one alert job per
    qualifying watch. `send_alerts()` is the alert job handler.

    With the `on_enqueue` stamp policy the cooldown is claimed before the
    job is enqueued, so a failed send is not retried inside the window.
    With `on_send` the claim happens right before sending and is released
    again if the send fails.
    """

    def __init__(
        self,
        db: Database,
        queue: JobQueue,
        sender: EmailSender,
        cooldown_hours: Optional[float] = None,
        stamp_policy: Optional[str] = None,
        app_url: Optional[str] = None,
    ):
        self.db = db
        self.queue = queue
        self.sender = sender
        self.cooldown = timedelta(
            hours=settings.alert_cooldown_hours if cooldown_hours is None else cooldown_hours
        )
        self.stamp_policy = stamp_policy or settings.alert_stamp_policy
        if self.stamp_policy not in (STAMP_ON_ENQUEUE, STAMP_ON_SEND):
            raise ValueError(f"Unknown alert stamp policy: {self.stamp_policy}")
        self.app_url = app_url or settings.app_url

    async def evaluate(self, deal: ScoredOffer, now: Optional[datetime] = None) -> int:
        """
        Enqueue alert jobs for the watches this deal satisfies.

        Returns:
            Number of alert jobs enqueued
        """
        if not deal.is_deal:
            return 0

        now = now or datetime.utcnow()
        cutoff = now - self.cooldown
        price = deal.current_price_usd

        async with self.db.session() as session:
            repo = Repository(session)
            gpu = await repo.get_gpu(deal.gpu_id)
            if gpu is None:
                return 0
            watches = await repo.find_qualifying_watches(deal.gpu_id, price, cutoff)
            if not watches:
                return 0

            if self.stamp_policy == STAMP_ON_ENQUEUE:
                claimed = []
                for watch in watches:
                    previous = watch.last_notified_at
                    if await repo.claim_watch_cooldown(watch.id, now, cutoff):
                        claimed.append((watch.id, previous))
                await session.commit()
            else:
                claimed = [(watch.id, watch.last_notified_at) for watch in watches]

        enqueued = 0
        for index, (watch_id, previous) in enumerate(claimed):
            payload = {
                "gpu_id": deal.gpu_id,
                "gpu_slug": gpu.slug,
                "gpu_model": gpu.model,
                "retailer": deal.retailer,
                "new_price": str(price),
                "watch_ids": [watch_id],
            }
            try:
                await self.queue.enqueue(alert_job(payload))
            except Exception:
                if self.stamp_policy == STAMP_ON_ENQUEUE:
                    # nothing from here on has a job behind its stamp
                    for pending_id, pending_previous in claimed[index:]:
                        await self._restore(pending_id, pending_previous)
                raise
            enqueued += 1
            metrics.record_alert_enqueued(deal.retailer)

        logger.info(
            f"Enqueued {enqueued} alert(s) for GPU {deal.gpu_id} at {deal.retailer} (${price})"
        )
        return enqueued

    async def send_alerts(self, payload: dict) -> dict:
        """
        Alert job handler: email every watch in the payload that still wants it.

        A failure for one recipient is reported and the loop continues.

        Returns:
            {"sent": n, "failed": n, "skipped": n}
        """
        gpu_id = payload["gpu_id"]
        retailer = payload["retailer"]
        slug = payload["gpu_slug"]
        price = Decimal(str(payload["new_price"]))
        watch_ids = payload.get("watch_ids") or []

        async with self.db.session() as session:
            repo = Repository(session)
            score, offer = await repo.load_deal_context(gpu_id, retailer)
            watches = await repo.load_watches_for_send(watch_ids, price)

        deal_reason = score.deal_reason if score else None
        affiliate_url = offer.affiliate_url if offer else f"/out/{slug}/{retailer}"

        stats = {"sent": 0, "failed": 0, "skipped": len(watch_ids) - len(watches)}
        for watch in watches:
            previous = watch.last_notified_at
            if self.stamp_policy == STAMP_ON_SEND and not await self._claim(watch.id):
                stats["skipped"] += 1
                continue

            rendered = format_price_alert(
                to_email=watch.email,
                gpu_model=payload["gpu_model"],
                gpu_slug=slug,
                new_price=price,
                retailer=retailer,
                affiliate_url=affiliate_url,
                app_url=self.app_url,
                target_price=watch.target_price_usd,
                deal_reason=deal_reason,
            )
            try:
                await self.sender.send(watch.email, rendered.subject, rendered.html, rendered.text)
            except Exception as e:
                stats["failed"] += 1
                metrics.record_alert_sent(retailer, success=False)
                capture_exception(e, component="alerts", watch_id=watch.id, gpu_id=gpu_id)
                if self.stamp_policy == STAMP_ON_SEND:
                    await self._restore(watch.id, previous)
                continue

            stats["sent"] += 1
            metrics.record_alert_sent(retailer, success=True)

        logger.info(
            f"Alert job for GPU {gpu_id} at {retailer}: "
            f"{stats['sent']} sent, {stats['failed']} failed, {stats['skipped']} skipped"
        )
        return stats

    async def _claim(self, watch_id: int) -> bool:
        now = datetime.utcnow()
        async with self.db.session() as session:
            claimed = await Repository(session).claim_watch_cooldown(
                watch_id, now, now - self.cooldown
            )
            await session.commit()
        return claimed

    async def _restore(self, watch_id: int, previous: Optional[datetime]) -> None:
        async with self.db.session() as session:
            await Repository(session).restore_watch_cooldown(watch_id, previous)
            await session.commit()
