"""
Webhook signature verification.

Supported providers:
- Stripe: timestamped HMAC-SHA256 via Stripe-Signature ("t=...,v1=..."),
  checked by the stripe library
- QuickBooks: base64 HMAC-SHA256 via X-QuickBooks-Signature

Every routine works on the raw request bytes and returns False rather than
raising on malformed input.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Callable, Optional

import stripe

logger = logging.getLogger(__name__)


def verify_stripe_signature(raw_body: bytes, header: str, secret: str) -> bool:
    """
    Validate a Stripe-Signature header against the raw body.
    Timestamp age is not enforced; any v1 candidate may match.
    """
    try:
        return stripe.WebhookSignature.verify_header(
            raw_body.decode("utf-8"),
            header,
            secret,
            tolerance=None,
        )
    except stripe.SignatureVerificationError:
        return False
    except Exception as e:
        logger.error("Stripe signature verification error: %s", str(e))
        return False


def verify_quickbooks_signature(raw_body: bytes, header: str, verifier_token: str) -> bool:
    """Validate an Intuit webhook signature (base64 HMAC-SHA256 of the body)."""
    try:
        digest = hmac.new(
            verifier_token.encode("utf-8"),
            raw_body,
            hashlib.sha256,
        ).digest()
        expected = base64.b64encode(digest).decode("ascii")
        return hmac.compare_digest(expected, header)
    except Exception as e:
        logger.error("QuickBooks signature verification error: %s", str(e))
        return False


_VERIFIERS: dict[str, Callable[[bytes, str, str], bool]] = {
    "stripe": verify_stripe_signature,
    "quickbooks": verify_quickbooks_signature,
}


def has_verifier(source: str) -> bool:
    return source in _VERIFIERS


def verify_signature(source: str, raw_body: bytes, signature: str, secret: str) -> Optional[bool]:
    """
    Run the verification routine registered for ``source``.
    Returns None when the source has no routine.
    """
    verifier = _VERIFIERS.get(source)
    if verifier is None:
        return None
    return verifier(raw_body, signature, secret)
