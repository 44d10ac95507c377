"""
Stripe webhook signature check.

Header: Stripe-Signature: t=<unix ts>,v1=<hex hmac>[,v1=...]
Signed payload: "<t>.<raw body>", HMAC-SHA256 with the endpoint secret.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import time


class WebhookSignatureError(Exception):
    pass


def _parse_header(header: str) -> tuple[int, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for part in (header or "").split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("invalid timestamp") from None
        elif key == "v1" and value:
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookSignatureError("malformed signature header")
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_event(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now: int | None = None,
) -> dict:
    """Return the decoded event, or raise WebhookSignatureError."""
    if not secret:
        raise WebhookSignatureError("webhook secret is not configured")
    if not header:
        raise WebhookSignatureError("missing Stripe-Signature header")

    timestamp, signatures = _parse_header(header)
    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("signature mismatch")

    current = int(now if now is not None else time.time())
    if tolerance and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("timestamp outside tolerance")

    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise WebhookSignatureError("payload is not valid JSON") from None
    if not isinstance(event, dict):
        raise WebhookSignatureError("payload is not an event object")
    return event
