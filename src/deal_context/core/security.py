"""Slack request signature verification.

Slack signs every webhook with HMAC-SHA256 over ``v0:{timestamp}:{body}``
using the app's signing secret and sends the result as
``X-Slack-Signature: v0=<hex>``. Requests whose timestamp is more than five
minutes away from the local clock are rejected to stop replays.
"""

from __future__ import annotations

import hashlib
import hmac
import time

import structlog

logger = structlog.get_logger(__name__)

SIGNATURE_VERSION = "v0"
MAX_REQUEST_AGE_SECONDS = 60 * 5


def compute_slack_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    """Return the ``v0=<hex>`` signature Slack would send for ``body``."""
    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode() + body
    digest = hmac.new(signing_secret.encode(), base, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_slack_signature(
    signing_secret: str,
    timestamp: str | None,
    signature: str | None,
    body: bytes,
    now: float | None = None,
) -> bool:
    """Check a request's signature headers against its raw body.

    Args:
        signing_secret: The Slack app signing secret.
        timestamp: ``X-Slack-Request-Timestamp`` header value.
        signature: ``X-Slack-Signature`` header value.
        body: Raw request body, exactly as received.
        now: Current epoch seconds (defaults to ``time.time()``).

    Returns:
        True only for a fresh request with a matching signature.
    """
    if not signing_secret or not timestamp or not signature:
        return False

    try:
        request_time = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - request_time) > MAX_REQUEST_AGE_SECONDS:
        logger.warning("security.stale_slack_request", timestamp=timestamp)
        return False

    expected = compute_slack_signature(signing_secret, timestamp, body)
    return hmac.compare_digest(expected, signature)
