"""
HMAC-SHA256 primitives for webhook verification and OAuth state tokens.

Webhook senders sign the raw request body with a shared secret stored in the
integration credential (``webhook_secret``). The signature is hex encoded and
may carry a ``sha256=`` prefix (GitHub style).

OAuth state tokens bind an authorization redirect to the integration and
scope that started it:
    base64url(canonical JSON payload) + "." + hex HMAC-SHA256 over that segment

All comparisons use constant-time equality.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Dict, Optional

SIGNATURE_PREFIX = "sha256="


def compute_body_signature(body: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 of a raw request body."""
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_body_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """
    Verify a webhook signature header against the raw body.

    Accepts both ``<hex>`` and ``sha256=<hex>``. Returns False for a missing
    signature or secret instead of raising.
    """
    if not signature or not secret:
        return False
    provided = signature.strip()
    if provided.lower().startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_body_signature(body, secret)
    return hmac.compare_digest(expected.encode('utf-8'), provided.lower().encode('utf-8'))


def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode('utf-8'), b.encode('utf-8'))


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')


def _b64decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def sign_state(payload: Dict[str, Any], secret: str, now: Optional[float] = None) -> str:
    """
    Produce a signed, timestamped OAuth state token.

    Raises:
        ValueError: If payload contains non-JSON-serializable values
    """
    body = dict(payload)
    body["ts"] = int(now if now is not None else time.time())
    try:
        canonical = json.dumps(body, sort_keys=True, separators=(',', ':'))
    except (TypeError, ValueError) as e:
        raise ValueError(f"state payload contains non-JSON-serializable value: {str(e)}") from e

    segment = _b64encode(canonical.encode('utf-8'))
    signature = hmac.new(secret.encode('utf-8'), segment.encode('ascii'), hashlib.sha256).hexdigest()
    return f"{segment}.{signature}"


def verify_state(token: str, secret: str, max_age_seconds: int, now: Optional[float] = None) -> Dict[str, Any]:
    """
    Verify a state token produced by sign_state and return its payload.

    Raises:
        ValueError: If the token is malformed, tampered with, or expired
    """
    if not token or '.' not in token:
        raise ValueError("Malformed state token")

    segment, signature = token.rsplit('.', 1)
    expected = hmac.new(secret.encode('utf-8'), segment.encode('ascii'), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise ValueError("Invalid state signature")

    try:
        payload = json.loads(_b64decode(segment))
    except (ValueError, TypeError) as e:
        raise ValueError("Malformed state payload") from e

    issued_at = payload.pop("ts", None)
    current = now if now is not None else time.time()
    if not isinstance(issued_at, int) or current - issued_at > max_age_seconds:
        raise ValueError("State token expired")

    return payload
