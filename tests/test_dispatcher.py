"""Tests for alert matching, cooldown claims and per-recipient sending."""

from datetime import timedelta
from decimal import Decimal

import pytest

from gpuwatch.db.models import GPUWatch
from gpuwatch.db.repository import Repository
from gpuwatch.detect.deal_scorer import ScoredOffer, classify_offer
from gpuwatch.detect.rolling_stats import RollingStats
from gpuwatch.errors import NotificationError
from gpuwatch.notify.dispatcher import STAMP_ON_ENQUEUE, STAMP_ON_SEND, AlertDispatcher


class FakeSender:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []

    async def send(self, to_email, subject, html, text):
        if to_email in self.failing:
            raise NotificationError("Email provider HTTP 500: boom")
        self.sent.append((to_email, subject))
        return "msg-1"

    async def close(self):
        return None


def _deal(gpu, price="899.00", now=None):
    stats = RollingStats(avg=1000.0, min=990.0, max=1010.0, stddev=5.0, day_count=10, sample_count=10)
    classification = classify_offer(Decimal(price), gpu.msrp_usd, "in_stock", stats)
    return ScoredOffer(
        gpu_id=gpu.id,
        retailer="bestbuy",
        current_price_usd=Decimal(price),
        msrp_usd=gpu.msrp_usd,
        stats=stats,
        classification=classification,
        computed_at=now,
    )


async def _watch(db, gpu, email, target=None, notify_in_stock=False, last_notified_at=None):
    async with db.session() as session:
        watch = GPUWatch(
            email=email,
            gpu_id=gpu.id,
            target_price_usd=Decimal(target) if target else None,
            notify_in_stock=notify_in_stock,
            last_notified_at=last_notified_at,
        )
        session.add(watch)
        await session.commit()
        return watch


async def _last_notified(db, watch_id):
    async with db.session() as session:
        return (await session.get(GPUWatch, watch_id)).last_notified_at


@pytest.mark.asyncio
async def test_cooldown_blocks_recent_and_admits_old(db, queue, gpu, now):
    recent = await _watch(db, gpu, "recent@example.com", target="950.00",
                          last_notified_at=now - timedelta(hours=1))
    old = await _watch(db, gpu, "old@example.com", target="950.00",
                       last_notified_at=now - timedelta(hours=5))

    dispatcher = AlertDispatcher(db, queue, FakeSender(), cooldown_hours=4)
    enqueued = await dispatcher.evaluate(_deal(gpu, now=now), now=now)

    assert enqueued == 1
    job = await queue.claim("alert")
    assert job.payload["watch_ids"] == [old.id]
    assert job.payload["new_price"] == "899.00"
    assert job.payload["gpu_slug"] == gpu.slug
    assert await _last_notified(db, old.id) == now
    assert await _last_notified(db, recent.id) == now - timedelta(hours=1)


@pytest.mark.asyncio
async def test_target_and_in_stock_matching(db, queue, gpu, now):
    await _watch(db, gpu, "below@example.com", target="850.00")
    in_stock = await _watch(db, gpu, "stock@example.com", notify_in_stock=True)
    exact = await _watch(db, gpu, "exact@example.com", target="899.00")
    await _watch(db, gpu, "none@example.com")

    dispatcher = AlertDispatcher(db, queue, FakeSender())
    assert await dispatcher.evaluate(_deal(gpu, now=now), now=now) == 2

    claimed = set()
    while (job := await queue.claim("alert")) is not None:
        claimed.update(job.payload["watch_ids"])
    assert claimed == {in_stock.id, exact.id}


@pytest.mark.asyncio
async def test_repeat_evaluation_is_suppressed_by_cooldown(db, queue, gpu, now):
    await _watch(db, gpu, "a@example.com", target="950.00")
    dispatcher = AlertDispatcher(db, queue, FakeSender())

    assert await dispatcher.evaluate(_deal(gpu, now=now), now=now) == 1
    assert await dispatcher.evaluate(_deal(gpu, now=now), now=now + timedelta(minutes=5)) == 0


@pytest.mark.asyncio
async def test_non_deal_enqueues_nothing(db, queue, gpu, now):
    await _watch(db, gpu, "a@example.com", notify_in_stock=True)
    dispatcher = AlertDispatcher(db, queue, FakeSender())
    assert await dispatcher.evaluate(_deal(gpu, price="1200.00", now=now), now=now) == 0


@pytest.mark.asyncio
async def test_claim_is_won_once(db, gpu, now):
    watch = await _watch(db, gpu, "a@example.com", notify_in_stock=True)
    cutoff = now - timedelta(hours=4)

    async with db.session() as first, db.session() as second:
        won = await Repository(first).claim_watch_cooldown(watch.id, now, cutoff)
        await first.commit()
        lost = await Repository(second).claim_watch_cooldown(watch.id, now, cutoff)
        await second.commit()

    assert won is True
    assert lost is False


@pytest.mark.asyncio
async def test_enqueue_failure_restores_cooldown(db, queue, gpu, now, monkeypatch):
    watch = await _watch(db, gpu, "a@example.com", notify_in_stock=True)

    async def broken_enqueue(descriptor):
        raise ConnectionError("redis down")

    monkeypatch.setattr(queue, "enqueue", broken_enqueue)
    dispatcher = AlertDispatcher(db, queue, FakeSender(), stamp_policy=STAMP_ON_ENQUEUE)

    with pytest.raises(ConnectionError):
        await dispatcher.evaluate(_deal(gpu, now=now), now=now)
    assert await _last_notified(db, watch.id) is None


@pytest.mark.asyncio
async def test_enqueue_failure_restores_every_watch_without_a_job(db, queue, gpu, now, monkeypatch):
    watches = [
        await _watch(db, gpu, email, notify_in_stock=True)
        for email in ("a@example.com", "b@example.com", "c@example.com")
    ]
    original = queue.enqueue
    calls = []

    async def flaky_enqueue(descriptor):
        calls.append(descriptor)
        if len(calls) == 2:
            raise ConnectionError("redis down")
        return await original(descriptor)

    monkeypatch.setattr(queue, "enqueue", flaky_enqueue)
    dispatcher = AlertDispatcher(db, queue, FakeSender(), stamp_policy=STAMP_ON_ENQUEUE)

    with pytest.raises(ConnectionError):
        await dispatcher.evaluate(_deal(gpu, now=now), now=now)

    stamps = [await _last_notified(db, watch.id) for watch in watches]
    assert stamps[0] is not None
    assert stamps[1:] == [None, None]
    assert await queue.pending_count("alert") == 1


@pytest.mark.asyncio
async def test_send_continues_after_recipient_failure(db, queue, gpu, now):
    ok = await _watch(db, gpu, "ok@example.com", notify_in_stock=True)
    bad = await _watch(db, gpu, "bad@example.com", notify_in_stock=True)
    sender = FakeSender(failing={"bad@example.com"})
    dispatcher = AlertDispatcher(db, queue, sender)

    stats = await dispatcher.send_alerts(
        {
            "gpu_id": gpu.id,
            "gpu_slug": gpu.slug,
            "gpu_model": gpu.model,
            "retailer": "bestbuy",
            "new_price": "899.00",
            "watch_ids": [bad.id, ok.id],
        }
    )

    assert stats == {"sent": 1, "failed": 1, "skipped": 0}
    assert sender.sent[0][0] == "ok@example.com"
    assert "$899.00 at Best Buy" in sender.sent[0][1]


@pytest.mark.asyncio
async def test_send_skips_watch_whose_target_no_longer_matches(db, queue, gpu):
    watch = await _watch(db, gpu, "a@example.com", target="800.00")
    sender = FakeSender()
    stats = await AlertDispatcher(db, queue, sender).send_alerts(
        {
            "gpu_id": gpu.id,
            "gpu_slug": gpu.slug,
            "gpu_model": gpu.model,
            "retailer": "bestbuy",
            "new_price": "899.00",
            "watch_ids": [watch.id],
        }
    )
    assert stats == {"sent": 0, "failed": 0, "skipped": 1}
    assert sender.sent == []


@pytest.mark.asyncio
async def test_on_send_policy_stamps_on_success_and_restores_on_failure(db, queue, gpu, now):
    ok = await _watch(db, gpu, "ok@example.com", notify_in_stock=True)
    bad = await _watch(db, gpu, "bad@example.com", notify_in_stock=True)
    dispatcher = AlertDispatcher(
        db, queue, FakeSender(failing={"bad@example.com"}), stamp_policy=STAMP_ON_SEND
    )

    # evaluation leaves the watches untouched under this policy
    assert await dispatcher.evaluate(_deal(gpu, now=now), now=now) == 2
    assert await _last_notified(db, ok.id) is None

    payload = {
        "gpu_id": gpu.id,
        "gpu_slug": gpu.slug,
        "gpu_model": gpu.model,
        "retailer": "bestbuy",
        "new_price": "899.00",
        "watch_ids": [ok.id, bad.id],
    }
    stats = await dispatcher.send_alerts(payload)

    assert stats["sent"] == 1
    assert stats["failed"] == 1
    assert await _last_notified(db, ok.id) is not None
    assert await _last_notified(db, bad.id) is None


@pytest.mark.asyncio
async def test_unknown_stamp_policy_rejected(db, queue):
    with pytest.raises(ValueError):
        AlertDispatcher(db, queue, FakeSender(), stamp_policy="sometimes")
