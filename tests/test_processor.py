"""Tests for the queue processor and its HTTP trigger."""

from datetime import timedelta
from unittest.mock import AsyncMock

from httpx import AsyncClient, ASGITransport
from sqlalchemy import select

from src.database import async_session, utcnow
from src.handlers.event_store import insert_event
from src.handlers.processor import PROCESSORS, process_pending
from src.handlers.queue import RetryPolicy, enqueue
from src.main import app
from src.models.webhook_event import WebhookEvent
from src.models.webhook_queue import QueueItem, QueueStatus
from src.schemas.events import NormalizedEvent


async def _stored(source: str, event_type: str, event_id: str, payload: dict | None = None, now=None) -> None:
    async with async_session() as db:
        record = await insert_event(
            db, source, NormalizedEvent(event_type=event_type, event_id=event_id), payload or {}
        )
        await enqueue(db, record.id, now=now)
        await db.commit()


async def _queue_statuses() -> dict[str, str]:
    async with async_session() as db:
        items = (await db.execute(select(QueueItem))).scalars().all()
        return {item.event.event_id: item.status for item in items}


async def test_known_and_unknown_sources_complete():
    now = utcnow()
    await _stored("stripe", "checkout.session.completed", "evt_1", now=now)
    await _stored("quickbooks", "Invoice", "realm_1", {
        "eventNotifications": [{"dataChangeEvent": {"entities": [{"name": "Invoice", "id": "1"}]}}]
    }, now=now)
    await _stored("plaid", "TRANSACTIONS", "DEFAULT_UPDATE_item", {"item_id": "item"}, now=now)
    await _stored("zapier", "zapier.action", "zap_1", now=now)
    await _stored("mystery", "unknown", "m_1", now=now)

    async with async_session() as db:
        results = await process_pending(db, now=now)

    assert sorted(r.status for r in results) == ["completed"] * 5
    assert set((await _queue_statuses()).values()) == {QueueStatus.completed.value}
    async with async_session() as db:
        events = (await db.execute(select(WebhookEvent))).scalars().all()
    assert all(event.processed for event in events)


async def test_processor_failure_schedules_retry():
    now = utcnow()
    await _stored("stripe", "invoice.paid", "evt_ok", now=now)
    await _stored("zapier", "zapier.action", "zap_bad", now=now)

    failing = AsyncMock(side_effect=RuntimeError("downstream unavailable"))
    processors = {**PROCESSORS, "zapier": failing}

    async with async_session() as db:
        results = await process_pending(db, now=now, processors=processors)

    by_id = {r.event_id: r for r in results}
    assert by_id["evt_ok"].status == "completed"
    assert by_id["zap_bad"].status == "retrying"
    assert by_id["zap_bad"].retry_count == 1
    assert by_id["zap_bad"].error == "downstream unavailable"
    assert by_id["zap_bad"].next_retry == (now + timedelta(seconds=2)).isoformat()

    statuses = await _queue_statuses()
    assert statuses == {"evt_ok": "completed", "zap_bad": "pending"}


async def test_processor_gives_up_after_max_retries():
    now = utcnow()
    await _stored("zapier", "zapier.action", "zap_bad", now=now)
    failing = AsyncMock(side_effect=RuntimeError("still down"))

    async with async_session() as db:
        results = await process_pending(
            db,
            now=now,
            processors={"zapier": failing},
            policy=RetryPolicy(max_retries=1),
        )

    assert results[0].status == "failed"
    assert results[0].next_retry is None
    assert await _queue_statuses() == {"zap_bad": "failed"}


async def test_process_endpoint_reports_results():
    await _stored("stripe", "invoice.paid", "evt_1", now=utcnow() - timedelta(seconds=1))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        first = await client.post("/api/v1/webhooks/process")
        second = await client.post("/api/v1/webhooks/process")

    assert first.status_code == 200
    assert first.json()["processed"] == 1
    assert first.json()["results"][0] == {
        "event_id": "evt_1",
        "status": "completed",
        "retry_count": None,
        "next_retry": None,
        "error": None,
    }
    assert second.json()["processed"] == 0
    assert second.json()["message"] == "No pending webhooks to process"
