"""Processing queue: enqueue for ingestion, claim/complete/fail for consumers.

Consumers follow a pull contract:

1. ``claim_batch`` moves due items to ``in_progress`` (row locks with
   SKIP LOCKED where the database supports them).
2. ``complete`` acknowledges an item and marks its event processed.
3. ``fail`` records the error and reschedules with backoff, or marks the
   item ``failed`` once the retry ceiling is reached.

``complete`` and ``fail`` do not commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database import utcnow
from src.models.webhook_queue import QueueItem, QueueStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 6
    delays: tuple[int, ...] = field(default=(1, 2, 4, 8, 16, 32))

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.queue_max_retries,
            delays=tuple(settings.queue_retry_delays),
        )

    def delay_for(self, retry_count: int) -> timedelta:
        index = min(max(retry_count, 0), len(self.delays) - 1)
        return timedelta(seconds=self.delays[index])


async def enqueue(
    db: AsyncSession,
    webhook_event_id: int,
    now: Optional[datetime] = None,
) -> QueueItem:
    """Add a pending queue item for the event, due immediately."""
    item = QueueItem(
        webhook_event_id=webhook_event_id,
        status=QueueStatus.pending.value,
        next_retry_at=now or utcnow(),
    )
    db.add(item)
    await db.flush()
    return item


async def ensure_enqueued(db: AsyncSession, webhook_event_id: int) -> Optional[QueueItem]:
    """Create the queue item for an already stored event if it has none.

    Returns the new item, or None when one already exists. A concurrent
    creator surfaces as an IntegrityError on the webhook_event_id constraint.
    """
    result = await db.execute(
        select(QueueItem.id).where(QueueItem.webhook_event_id == webhook_event_id)
    )
    if result.scalar_one_or_none() is not None:
        return None
    logger.warning("Stored webhook event %d had no queue item; re-enqueueing", webhook_event_id)
    return await enqueue(db, webhook_event_id)


async def claim_batch(
    db: AsyncSession,
    limit: int,
    now: Optional[datetime] = None,
    claim_timeout: Optional[int] = None,
) -> list[QueueItem]:
    """Claim up to ``limit`` due items and commit the claim.

    Items left ``in_progress`` longer than ``claim_timeout`` seconds (a crashed
    consumer) are claimable again.
    """
    now = now or utcnow()
    if claim_timeout is None:
        claim_timeout = settings.queue_claim_timeout_seconds
    stale_before = now - timedelta(seconds=claim_timeout)

    stmt = (
        select(QueueItem)
        .where(
            or_(
                and_(
                    QueueItem.status == QueueStatus.pending.value,
                    QueueItem.next_retry_at <= now,
                ),
                and_(
                    QueueItem.status == QueueStatus.in_progress.value,
                    QueueItem.claimed_at <= stale_before,
                ),
            )
        )
        .order_by(QueueItem.next_retry_at, QueueItem.id)
        .limit(limit)
        .with_for_update(skip_locked=True, of=QueueItem)
    )
    items = list((await db.execute(stmt)).unique().scalars().all())
    for item in items:
        item.status = QueueStatus.in_progress.value
        item.claimed_at = now
    await db.commit()
    if items:
        logger.info("Claimed %d webhook queue item(s)", len(items))
    return items


def complete(item: QueueItem, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    item.status = QueueStatus.completed.value
    item.error_message = None
    item.event.processed = True
    item.event.processed_at = now


def fail(
    item: QueueItem,
    error: str,
    policy: RetryPolicy,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """Record a failed attempt.

    Returns the next retry time, or None if the item is now permanently failed.
    """
    now = now or utcnow()
    event = item.event
    event.retry_count = (event.retry_count or 0) + 1
    event.last_error = error
    item.claimed_at = None

    if event.retry_count >= policy.max_retries:
        item.status = QueueStatus.failed.value
        item.error_message = error or "Max retries exceeded"
        logger.error(
            "Webhook event %s failed after %d retries: %s",
            event.event_id,
            event.retry_count,
            error,
        )
        return None

    next_retry = now + policy.delay_for(event.retry_count)
    item.status = QueueStatus.pending.value
    item.next_retry_at = next_retry
    item.error_message = error
    logger.info(
        "Scheduled retry %d/%d for webhook event %s at %s",
        event.retry_count,
        policy.max_retries,
        event.event_id,
        next_retry.isoformat(),
    )
    return next_retry
