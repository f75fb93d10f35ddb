"""Tests for the queue consumer contract: claim, complete, fail with backoff."""

from datetime import timedelta

from sqlalchemy import select

from src.database import async_session, utcnow
from src.handlers.event_store import insert_event
from src.handlers.queue import RetryPolicy, claim_batch, complete, enqueue, fail
from src.models.webhook_event import WebhookEvent
from src.models.webhook_queue import QueueItem, QueueStatus
from src.schemas.events import NormalizedEvent


async def _stored_item(event_id: str = "evt_1", now=None) -> int:
    async with async_session() as db:
        record = await insert_event(
            db, "stripe", NormalizedEvent(event_type="invoice.paid", event_id=event_id), {}
        )
        item = await enqueue(db, record.id, now=now)
        await db.commit()
        return item.id


async def _load(item_id: int) -> QueueItem:
    async with async_session() as db:
        return (await db.execute(select(QueueItem).where(QueueItem.id == item_id))).scalar_one()


def test_retry_policy_delays():
    policy = RetryPolicy()
    assert policy.delay_for(0) == timedelta(seconds=1)
    assert policy.delay_for(1) == timedelta(seconds=2)
    assert policy.delay_for(5) == timedelta(seconds=32)
    assert policy.delay_for(50) == timedelta(seconds=32)


async def test_claim_marks_in_progress_once():
    now = utcnow()
    item_id = await _stored_item(now=now)

    async with async_session() as db:
        claimed = await claim_batch(db, 10, now=now)
    async with async_session() as db:
        second = await claim_batch(db, 10, now=now)

    assert [item.id for item in claimed] == [item_id]
    assert claimed[0].event.event_id == "evt_1"
    assert second == []
    assert (await _load(item_id)).status == QueueStatus.in_progress.value


async def test_claim_respects_limit_and_due_time():
    now = utcnow()
    await _stored_item("evt_1", now=now)
    await _stored_item("evt_2", now=now)
    await _stored_item("evt_3", now=now + timedelta(minutes=5))

    async with async_session() as db:
        first = await claim_batch(db, 1, now=now)
    async with async_session() as db:
        rest = await claim_batch(db, 10, now=now)

    assert len(first) == 1
    assert [item.event.event_id for item in rest] == ["evt_2"]


async def test_complete_marks_event_processed():
    now = utcnow()
    item_id = await _stored_item(now=now)

    async with async_session() as db:
        (item,) = await claim_batch(db, 10, now=now)
        complete(item, now=now)
        await db.commit()

    async with async_session() as db:
        event = (await db.execute(select(WebhookEvent))).scalar_one()
    assert (await _load(item_id)).status == QueueStatus.completed.value
    assert event.processed is True
    assert event.processed_at is not None


async def test_fail_reschedules_with_backoff():
    now = utcnow()
    item_id = await _stored_item(now=now)

    async with async_session() as db:
        (item,) = await claim_batch(db, 10, now=now)
        next_retry = fail(item, "boom", RetryPolicy(), now=now)
        await db.commit()

    assert next_retry == now + timedelta(seconds=2)
    stored = await _load(item_id)
    assert stored.status == QueueStatus.pending.value
    assert stored.error_message == "boom"
    assert stored.event.retry_count == 1
    assert stored.event.last_error == "boom"

    async with async_session() as db:
        assert await claim_batch(db, 10, now=now + timedelta(seconds=1)) == []
    async with async_session() as db:
        assert len(await claim_batch(db, 10, now=now + timedelta(seconds=3))) == 1


async def test_fail_stops_at_retry_ceiling():
    now = utcnow()
    item_id = await _stored_item(now=now)
    policy = RetryPolicy(max_retries=2, delays=(1,))

    async with async_session() as db:
        (item,) = await claim_batch(db, 10, now=now)
        assert fail(item, "first", policy, now=now) is not None
        await db.commit()

    later = now + timedelta(seconds=5)
    async with async_session() as db:
        (item,) = await claim_batch(db, 10, now=later)
        assert fail(item, "second", policy, now=later) is None
        await db.commit()

    stored = await _load(item_id)
    assert stored.status == QueueStatus.failed.value
    assert stored.event.retry_count == 2
    async with async_session() as db:
        assert await claim_batch(db, 10, now=later + timedelta(hours=1)) == []


async def test_stale_claim_is_reclaimed():
    """An item abandoned in_progress by a crashed consumer becomes claimable."""
    now = utcnow()
    item_id = await _stored_item(now=now)

    async with async_session() as db:
        await claim_batch(db, 10, now=now, claim_timeout=60)
    async with async_session() as db:
        assert await claim_batch(db, 10, now=now + timedelta(seconds=30), claim_timeout=60) == []
    async with async_session() as db:
        reclaimed = await claim_batch(db, 10, now=now + timedelta(seconds=61), claim_timeout=60)

    assert [item.id for item in reclaimed] == [item_id]
