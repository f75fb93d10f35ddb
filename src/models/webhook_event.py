"""Append-only record of every accepted webhook delivery."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    Text,
    UniqueConstraint,
)

from src.database import Base, utcnow

SOURCE_EVENT_UNIQUE = "uq_webhook_events_source_event_id"


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("source", "event_id", name=SOURCE_EVENT_UNIQUE),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(Text, nullable=False, index=True)
    event_type = Column(Text, nullable=False)
    event_id = Column(Text, nullable=False)
    payload = Column(JSON, nullable=False)
    signature = Column(Text, nullable=True)

    # Owned by the queue consumer.
    processed = Column(Boolean, default=False, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<WebhookEvent(id={self.id}, source='{self.source}', event_id='{self.event_id}')>"
