"""Unified activity timeline for the synthesis prompt.

Each activity kind has a formatter registered under its tag. ``merge``
projects every activity to an ``ActivityRecord``, sorts the union most
recent first (unknown timestamps last), keeps the newest entries and joins
them into prompt text.

Every rendered line is plain text: HTML is stripped and the line is clipped
to ``MAX_LINE_CHARS`` so the prompt size stays bounded.
"""

from __future__ import annotations

import html
import re
from collections.abc import Callable, Iterable
from typing import Any

from src.deal_context.core.timeutil import format_date
from src.deal_context.timeline.activities import (
    Activity,
    ActivityKind,
    ActivityRecord,
    CallActivity,
    EmailActivity,
    MeetingActivity,
    NoteActivity,
)

NO_ACTIVITY = "No activity found in the CRM."
MAX_TIMELINE_ITEMS = 25
MAX_LINE_CHARS = 400
SNIPPET_CHARS = 200
NOTE_CHARS = 300

_TAG_RE = re.compile(r"<[^>]*>")
_ANGLE_RE = re.compile(r"[<>]")
_SPACE_RE = re.compile(r"\s+")


def strip_html(raw: str | None) -> str:
    """Remove tags and entities, collapse whitespace.

    Entities are decoded before a second tag pass so escaped markup
    (``&lt;b&gt;``) cannot reappear as a tag; stray angle brackets are dropped.
    """
    if not raw:
        return ""
    text = _TAG_RE.sub(" ", raw)
    text = html.unescape(text)
    text = _TAG_RE.sub(" ", text)
    text = _ANGLE_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip()


def _snippet(raw: str | None, limit: int = SNIPPET_CHARS) -> str:
    body = strip_html(raw)[:limit]
    return f": {body}" if body else ""


def _clip(line: str) -> str:
    if len(line) <= MAX_LINE_CHARS:
        return line
    return line[: MAX_LINE_CHARS - 3] + "..."


# ── Formatters ──────────────────────────────────────────────────────────────

_FORMATTERS: dict[ActivityKind, Callable[[Any], str]] = {}


def formatter(kind: ActivityKind) -> Callable[[Callable[[Any], str]], Callable[[Any], str]]:
    """Register the line formatter for one activity kind."""

    def register(fn: Callable[[Any], str]) -> Callable[[Any], str]:
        _FORMATTERS[kind] = fn
        return fn

    return register


@formatter(ActivityKind.EMAIL)
def format_email(email: EmailActivity) -> str:
    direction = "Received" if email.direction == "INCOMING_EMAIL" else "Sent"
    subject = strip_html(email.subject) or "No subject"
    line = f'- EMAIL ({direction}) on {format_date(email.timestamp_ms)} | Subject: "{subject}"'
    if email.sender:
        line += f" from {strip_html(email.sender)}"
    if email.recipient:
        line += f" to {strip_html(email.recipient)}"
    return line + _snippet(email.text or email.html)


@formatter(ActivityKind.CALL)
def format_call(call: CallActivity) -> str:
    direction = "Inbound" if call.direction == "INBOUND" else "Outbound"
    title = strip_html(call.title) or "Call"
    line = f"- CALL ({direction}) on {format_date(call.timestamp_ms)} | {title}"
    try:
        minutes = round(float(call.duration_ms) / 1000 / 60) if call.duration_ms else None
    except (OverflowError, ValueError):
        minutes = None
    if minutes is not None:
        line += f", {minutes}min"
    if call.disposition:
        line += f" [{strip_html(call.disposition)}]"
    return line + _snippet(call.body)


@formatter(ActivityKind.MEETING)
def format_meeting(meeting: MeetingActivity) -> str:
    title = strip_html(meeting.title) or "Meeting"
    line = f"- MEETING on {format_date(meeting.timestamp_ms)} | {title}"
    if meeting.outcome:
        line += f" [{strip_html(meeting.outcome)}]"
    return line + _snippet(meeting.body)


@formatter(ActivityKind.NOTE)
def format_note(note: NoteActivity) -> str:
    return f"- NOTE on {format_date(note.timestamp_ms)}: {strip_html(note.body)[:NOTE_CHARS]}"


# ── Merge ───────────────────────────────────────────────────────────────────


def project(activity: Activity) -> ActivityRecord:
    """Project a typed activity onto the kind-independent record."""
    render = _FORMATTERS[activity.kind]
    return ActivityRecord(
        kind=activity.kind,
        timestamp_ms=activity.timestamp_ms,
        render_line=_clip(render(activity)),
    )


def build_timeline(
    *collections: Iterable[Activity] | None,
    limit: int = MAX_TIMELINE_ITEMS,
) -> list[ActivityRecord]:
    """Union, sort most-recent-first and truncate."""
    records = [project(activity) for collection in collections for activity in (collection or [])]
    records.sort(key=lambda record: record.timestamp_ms, reverse=True)
    return records[:limit]


def merge(
    emails: Iterable[EmailActivity] | None,
    calls: Iterable[CallActivity] | None,
    meetings: Iterable[MeetingActivity] | None,
    notes: Iterable[NoteActivity] | None,
) -> str:
    """Render the merged timeline, or ``NO_ACTIVITY`` when there is nothing."""
    records = build_timeline(emails, calls, meetings, notes)
    if not records:
        return NO_ACTIVITY
    return "\n".join(record.render_line for record in records)
