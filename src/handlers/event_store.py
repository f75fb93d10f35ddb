"""Insert-and-deduplicate access to the webhook event table.

Duplicates are detected by the (source, event_id) unique constraint at insert
time, never by a prior lookup, so concurrent deliveries of the same event
cannot both be accepted.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.webhook_event import SOURCE_EVENT_UNIQUE, WebhookEvent
from src.schemas.events import NormalizedEvent

logger = logging.getLogger(__name__)

# SQLite reports the violated columns instead of the constraint name.
_SQLITE_DUPLICATE_MARKER = "webhook_events.source, webhook_events.event_id"


class DuplicateEventError(Exception):
    """Raised when (source, event_id) has already been stored."""

    def __init__(self, source: str, event_id: str) -> None:
        super().__init__(f"duplicate webhook event {source}:{event_id}")
        self.source = source
        self.event_id = event_id


def is_duplicate_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig) if exc.orig is not None else str(exc)
    return SOURCE_EVENT_UNIQUE in message or _SQLITE_DUPLICATE_MARKER in message


async def insert_event(
    db: AsyncSession,
    source: str,
    normalized: NormalizedEvent,
    payload: Any,
    signature: Optional[str] = None,
) -> WebhookEvent:
    """Add a new event row and flush it so it receives its id.

    Raises DuplicateEventError on a (source, event_id) conflict. The caller
    owns the transaction and must roll back after any error.
    """
    record = WebhookEvent(
        source=source,
        event_type=normalized.event_type,
        event_id=normalized.event_id,
        payload=payload,
        signature=signature,
        processed=False,
        retry_count=0,
    )
    db.add(record)
    try:
        await db.flush()
    except IntegrityError as exc:
        if is_duplicate_violation(exc):
            raise DuplicateEventError(source, normalized.event_id) from exc
        raise
    logger.debug("Stored webhook event %d (%s:%s)", record.id, source, normalized.event_id)
    return record


async def find_event(db: AsyncSession, source: str, event_id: str) -> Optional[WebhookEvent]:
    """Look up a stored event by its natural key (duplicate path only)."""
    result = await db.execute(
        select(WebhookEvent).where(
            WebhookEvent.source == source,
            WebhookEvent.event_id == event_id,
        )
    )
    return result.scalar_one_or_none()
