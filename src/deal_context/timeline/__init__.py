"""Deal activity timeline: typed activity kinds and the merged prompt view."""

from src.deal_context.timeline.activities import (
    ACTIVITY_TYPES,
    Activity,
    ActivityKind,
    ActivityRecord,
    CallActivity,
    EmailActivity,
    MeetingActivity,
    NoteActivity,
    parse_activity,
)
from src.deal_context.timeline.merger import NO_ACTIVITY, build_timeline, merge, strip_html

__all__ = [
    "ACTIVITY_TYPES",
    "Activity",
    "ActivityKind",
    "ActivityRecord",
    "CallActivity",
    "EmailActivity",
    "MeetingActivity",
    "NO_ACTIVITY",
    "NoteActivity",
    "build_timeline",
    "merge",
    "parse_activity",
    "strip_html",
]
