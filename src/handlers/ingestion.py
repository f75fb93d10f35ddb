"""Orchestrates webhook ingestion: verify, normalize, store, enqueue.

The endpoint acknowledges only once the event and its queue item are
committed together. Duplicate deliveries are acknowledged with success so the
provider stops retrying; persistence failures return 500 so it retries.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.handlers.event_store import DuplicateEventError, find_event, insert_event
from src.handlers.normalizer import normalize_event
from src.handlers.queue import enqueue, ensure_enqueued
from src.handlers.signatures import has_verifier, verify_signature
from src.schemas.events import ErrorResponse, NormalizedEvent, WebhookAck

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("stripe-signature", "x-quickbooks-signature", "plaid-verification")
UNKNOWN_SOURCE = "unknown"


@dataclass
class IngestionResult:
    status_code: int
    body: dict


def resolve_source(query_source: Optional[str], header_source: Optional[str]) -> str:
    for candidate in (query_source, header_source):
        if candidate and candidate.strip():
            return candidate.strip()
    return UNKNOWN_SOURCE


def decode_payload(raw_body: bytes) -> Any:
    """Decode the body as JSON, keeping undecodable bodies as raw text."""
    text = raw_body.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        logger.warning("Webhook body is not valid JSON; storing raw text")
        return {"raw_body": text}


def _error(status_code: int, error: str, message: Optional[str] = None) -> IngestionResult:
    return IngestionResult(
        status_code=status_code,
        body=ErrorResponse(error=error, message=message).model_dump(exclude_none=True),
    )


class WebhookIngestor:
    """Ingestion pipeline bound to a fixed set of provider secrets."""

    def __init__(self, secrets: Mapping[str, str]) -> None:
        self._secrets = dict(secrets)

    @staticmethod
    def signature_header(headers: Mapping[str, str]) -> Optional[str]:
        lowered = {key.lower(): value for key, value in headers.items()}
        for name in SIGNATURE_HEADERS:
            if lowered.get(name):
                return lowered[name]
        return None

    def check_signature(self, source: str, raw_body: bytes, signature: Optional[str]) -> bool:
        """Return False only when a configured verification rejects the body."""
        if not signature or not has_verifier(source):
            return True
        secret = self._secrets.get(source)
        if not secret:
            logger.warning(
                "No secret configured for source '%s' - accepting webhook without "
                "signature verification",
                source,
            )
            return True
        return bool(verify_signature(source, raw_body, signature, secret))

    async def ingest(
        self,
        db: AsyncSession,
        source: str,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> IngestionResult:
        logger.info("Received webhook from source: %s", source)
        payload = decode_payload(raw_body)
        signature = self.signature_header(headers)

        if not self.check_signature(source, raw_body, signature):
            logger.error("Invalid %s signature", source)
            return _error(401, "Invalid signature")

        normalized = normalize_event(source, payload)
        logger.info("Processing event: %s (%s)", normalized.event_type, normalized.event_id)

        try:
            try:
                record = await insert_event(db, source, normalized, payload, signature)
            except DuplicateEventError:
                await db.rollback()
                return await self._acknowledge_duplicate(db, source, normalized)

            await enqueue(db, record.id)
            await db.commit()
        except Exception as exc:
            await db.rollback()
            logger.exception("Error storing webhook %s:%s", source, normalized.event_id)
            return _error(500, "Internal server error", str(exc))

        logger.info("Webhook event stored and queued: %d", record.id)
        ack = WebhookAck(
            event_id=normalized.event_id,
            webhook_event_id=record.id,
            message="Webhook received and queued for processing",
        )
        return IngestionResult(status_code=200, body=ack.model_dump())

    async def _acknowledge_duplicate(
        self,
        db: AsyncSession,
        source: str,
        normalized: NormalizedEvent,
    ) -> IngestionResult:
        """Acknowledge a redelivery, repairing a missing queue item if needed."""
        logger.info("Duplicate event ignored: %s:%s", source, normalized.event_id)
        existing = await find_event(db, source, normalized.event_id)
        existing_id = existing.id if existing is not None else None
        if existing_id is not None:
            try:
                await ensure_enqueued(db, existing_id)
                await db.commit()
            except IntegrityError:
                # Another delivery created the queue item first.
                await db.rollback()

        ack = WebhookAck(
            event_id=normalized.event_id,
            webhook_event_id=existing_id,
            message="Event already processed",
        )
        return IngestionResult(status_code=200, body=ack.model_dump())
