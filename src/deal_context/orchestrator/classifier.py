"""Keyword classifier deciding which activity kinds a question needs.

Emails and notes are asked about most and are always fetched. Calls and
meetings cost two extra round trips each, so they are only fetched when the
question mentions activity, recency or status.
"""

from __future__ import annotations

from src.deal_context.orchestrator.schemas import RequiredData

ACTIVITY_TRIGGERS: tuple[str, ...] = (
    "call",
    "phone",
    "spoke",
    "spoken",
    "conversation",
    "meet",
    "demo",
    "schedule",
    "calendar",
    "activity",
    "timeline",
    "history",
    "recent",
    "latest",
    "update",
    "status",
    "happen",
    "touch",
    "communicat",
    "engag",
    "interact",
    "outreach",
    "last",
    "summary",
    "overview",
    "what's going on",
    "whats going on",
)


def determine_required_data(question: str) -> RequiredData:
    q = question.lower()
    wants_activity = any(trigger in q for trigger in ACTIVITY_TRIGGERS)
    return RequiredData(calls=wants_activity, meetings=wants_activity)
