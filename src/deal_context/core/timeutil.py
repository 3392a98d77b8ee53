"""Timestamp helpers for CRM and Slack values.

HubSpot returns timestamps either as ISO-8601 strings or as epoch
milliseconds encoded as strings; Slack uses ``"seconds.micros"`` strings.
Everything is normalized to integer epoch milliseconds, with 0 meaning
"unknown" (sorts as the oldest possible instant).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


# Latest instant ``datetime`` can represent (9999-12-31T23:59:59.999Z).
MAX_TIMESTAMP_MS = 253_402_300_799_999


def _in_range(timestamp_ms: int) -> int:
    return timestamp_ms if 0 < timestamp_ms <= MAX_TIMESTAMP_MS else 0


def parse_timestamp_ms(value: Any) -> int:
    """Parse an ISO-8601 or epoch-millisecond value.

    Missing, invalid or out-of-range values -> 0.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        try:
            return _in_range(int(value))
        except (OverflowError, ValueError):
            return 0

    text = str(value).strip()
    if text.isdigit():
        return _in_range(int(text))
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return _in_range(int(parsed.timestamp() * 1000))


def slack_ts_to_ms(ts: str | None) -> int:
    """Convert a Slack message ts (``"1712345678.000200"``) to epoch ms."""
    if not ts:
        return 0
    try:
        return _in_range(int(float(ts) * 1000))
    except (OverflowError, ValueError):
        return 0


def format_date(timestamp_ms: int) -> str:
    """Render epoch ms as a UTC ``YYYY-MM-DD`` date, or ``unknown date``."""
    if timestamp_ms <= 0:
        return "unknown date"
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date().isoformat()
    except (OverflowError, ValueError, OSError):
        return "unknown date"


def days_between(start: Any, end: Any) -> int | None:
    """Whole days from ``start`` to ``end``, or None if either is unknown."""
    start_ms = parse_timestamp_ms(start)
    end_ms = parse_timestamp_ms(end)
    if not start_ms or not end_ms:
        return None
    return round((end_ms - start_ms) / (1000 * 60 * 60 * 24))
