"""Drains the webhook queue and routes each event to its source processor.

Source processors acknowledge and log the events they recognize; the business
effect of each event belongs to the services that consume these records.
Unknown sources are acknowledged without retry.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database import utcnow
from src.handlers.queue import RetryPolicy, claim_batch, complete, fail
from src.models.webhook_event import WebhookEvent
from src.schemas.events import ProcessResult

logger = logging.getLogger(__name__)

SourceProcessor = Callable[[AsyncSession, WebhookEvent], Awaitable[None]]

_STRIPE_EVENTS = {
    "invoice.paid": "invoice paid",
    "invoice.payment_succeeded": "invoice paid",
    "invoice.payment_failed": "payment failed",
    "customer.subscription.deleted": "subscription cancelled",
    "checkout.session.completed": "checkout completed",
}

_PLAID_EVENTS = {
    "TRANSACTIONS": "transactions available",
    "ITEM_LOGIN_REQUIRED": "re-auth required",
    "ERROR": "error reported",
}


async def process_stripe(db: AsyncSession, event: WebhookEvent) -> None:
    label = _STRIPE_EVENTS.get(event.event_type)
    if label is None:
        logger.info("Unhandled Stripe event: %s", event.event_type)
        return
    logger.info("Stripe %s: %s", label, event.event_id)


async def process_quickbooks(db: AsyncSession, event: WebhookEvent) -> None:
    payload = event.payload if isinstance(event.payload, dict) else {}
    for notification in payload.get("eventNotifications") or []:
        if not isinstance(notification, dict):
            continue
        change_event = notification.get("dataChangeEvent")
        if not isinstance(change_event, dict):
            continue
        for entity in change_event.get("entities") or []:
            if not isinstance(entity, dict):
                continue
            logger.info("QuickBooks %s changed: %s", entity.get("name"), entity.get("id"))


async def process_plaid(db: AsyncSession, event: WebhookEvent) -> None:
    payload = event.payload if isinstance(event.payload, dict) else {}
    label = _PLAID_EVENTS.get(event.event_type)
    if label is None:
        logger.info("Unhandled Plaid event: %s", event.event_type)
        return
    logger.info("Plaid %s for item: %s", label, payload.get("item_id"))


async def process_zapier(db: AsyncSession, event: WebhookEvent) -> None:
    logger.info("Zapier webhook: %s", event.event_type)


PROCESSORS: dict[str, SourceProcessor] = {
    "stripe": process_stripe,
    "quickbooks": process_quickbooks,
    "plaid": process_plaid,
    "zapier": process_zapier,
}


async def process_pending(
    db: AsyncSession,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
    processors: Optional[dict[str, SourceProcessor]] = None,
    policy: Optional[RetryPolicy] = None,
) -> list[ProcessResult]:
    """Claim due queue items and process them one at a time.

    Each item is committed individually so one failure never rolls back
    another item's acknowledgement.
    """
    now = now or utcnow()
    processors = PROCESSORS if processors is None else processors
    policy = policy or RetryPolicy.from_settings()
    items = await claim_batch(db, limit or settings.queue_batch_size, now=now)

    results: list[ProcessResult] = []
    for item in items:
        event = item.event
        processor = processors.get(event.source)
        try:
            if processor is None:
                logger.info("Unknown webhook source: %s", event.source)
            else:
                logger.info("Processing %s webhook: %s", event.source, event.event_type)
                await processor(db, event)
        except Exception as exc:
            logger.error("Error processing webhook %s: %s", event.event_id, exc)
            next_retry = fail(item, str(exc), policy, now=now)
            await db.commit()
            results.append(ProcessResult(
                event_id=event.event_id,
                status="retrying" if next_retry else "failed",
                retry_count=event.retry_count,
                next_retry=next_retry.isoformat() if next_retry else None,
                error=str(exc),
            ))
            continue

        complete(item, now=now)
        await db.commit()
        logger.info("Successfully processed: %s", event.event_id)
        results.append(ProcessResult(event_id=event.event_id, status="completed"))

    return results
