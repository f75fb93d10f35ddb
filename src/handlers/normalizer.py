"""Map provider payloads to a canonical (event_type, event_id) identity.

Normalization is total: every payload, however malformed, yields an identity
so the delivery can be stored for audit. When a provider omits its own id the
id is synthesized from the current time, which gives up deduplication for
that delivery; a random suffix keeps distinct deliveries from colliding.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Optional

from src.schemas.events import NormalizedEvent


def _now_ms() -> int:
    return int(time.time() * 1000)


def _synthesized(prefix: str, now: int) -> str:
    """Time-ordered id with a random suffix so distinct id-less events never collide."""
    return f"{prefix}_{now}_{uuid.uuid4().hex[:8]}"


def _text(value: Any) -> Optional[str]:
    """Return a non-empty string for scalar ids, else None."""
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def _first(items: Any) -> dict:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def _normalize_stripe(payload: dict, source: str, now: int) -> NormalizedEvent:
    return NormalizedEvent(
        event_type=_text(payload.get("type")) or "unknown",
        event_id=_text(payload.get("id")) or _synthesized("stripe", now),
    )


def _normalize_quickbooks(payload: dict, source: str, now: int) -> NormalizedEvent:
    # Intuit notifications carry no delivery id, so redeliveries are not deduplicated.
    notification = _first(payload.get("eventNotifications"))
    change_event = notification.get("dataChangeEvent")
    entities = change_event.get("entities") if isinstance(change_event, dict) else None
    realm_id = _text(notification.get("realmId")) or "quickbooks"
    return NormalizedEvent(
        event_type=_text(_first(entities).get("name")) or "unknown",
        event_id=_synthesized(realm_id, now),
    )


def _normalize_plaid(payload: dict, source: str, now: int) -> NormalizedEvent:
    webhook_code = _text(payload.get("webhook_code")) or "plaid"
    item_id = _text(payload.get("item_id"))
    return NormalizedEvent(
        event_type=_text(payload.get("webhook_type")) or "unknown",
        event_id=f"{webhook_code}_{item_id}" if item_id else _synthesized(webhook_code, now),
    )


def _normalize_zapier(payload: dict, source: str, now: int) -> NormalizedEvent:
    return NormalizedEvent(
        event_type=_text(payload.get("event_type")) or "zapier.action",
        event_id=_text(payload.get("id")) or _synthesized("zapier", now),
    )


def _normalize_generic(payload: dict, source: str, now: int) -> NormalizedEvent:
    return NormalizedEvent(
        event_type=_text(payload.get("type")) or _text(payload.get("event")) or "unknown",
        event_id=_text(payload.get("id")) or _synthesized(source, now),
    )


_NORMALIZERS: dict[str, Callable[[dict, str, int], NormalizedEvent]] = {
    "stripe": _normalize_stripe,
    "quickbooks": _normalize_quickbooks,
    "plaid": _normalize_plaid,
    "zapier": _normalize_zapier,
}


def normalize_event(source: str, payload: Any, now: Optional[int] = None) -> NormalizedEvent:
    """Compute the event identity for ``payload`` delivered by ``source``.

    ``now`` is the epoch time in milliseconds used for synthesized ids.
    Non-object payloads are treated as empty objects.
    """
    if now is None:
        now = _now_ms()
    body = payload if isinstance(payload, dict) else {}
    normalizer = _NORMALIZERS.get(source, _normalize_generic)
    return normalizer(body, source, now)
