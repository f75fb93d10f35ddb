"""Durable work list of stored webhook events awaiting processing."""

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from src.database import Base, utcnow
from src.models.webhook_event import WebhookEvent


class QueueStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class QueueItem(Base):
    __tablename__ = "webhook_queue"
    __table_args__ = (
        Index("ix_webhook_queue_status_next_retry", "status", "next_retry_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    # One queue item per event; the item never outlives its event.
    webhook_event_id = Column(
        Integer,
        ForeignKey("webhook_events.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    status = Column(String(20), default=QueueStatus.pending.value, nullable=False)
    next_retry_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    event = relationship(WebhookEvent, lazy="joined", innerjoin=True)

    def __repr__(self) -> str:
        return f"<QueueItem(id={self.id}, event={self.webhook_event_id}, status='{self.status}')>"
