"""Activity records linked to a deal, as a tagged union.

Each kind (email, call, meeting, note) is its own model with a ``kind``
discriminator, the HubSpot object type it is read from, and the property set
to request. ``parse_activity`` builds the right model from a raw CRM record;
adding a kind means adding a model here and a formatter in ``merger``.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, Field

from src.deal_context.core.timeutil import parse_timestamp_ms


class ActivityKind(str, Enum):
    EMAIL = "email"
    CALL = "call"
    MEETING = "meeting"
    NOTE = "note"


class _ActivityBase(BaseModel):
    object_type: ClassVar[str]
    crm_properties: ClassVar[list[str]]
    timestamp_property: ClassVar[str] = "hs_timestamp"

    id: str = ""
    timestamp: str | None = None

    @property
    def timestamp_ms(self) -> int:
        return parse_timestamp_ms(self.timestamp)

    @classmethod
    def from_crm(cls, record: dict) -> _ActivityBase:
        props = record.get("properties") or {}
        fields = {
            name: props.get(source)
            for name, source in cls._property_map().items()
        }
        return cls(
            id=str(record.get("id", "")),
            timestamp=props.get(cls.timestamp_property),
            **fields,
        )

    @classmethod
    def _property_map(cls) -> dict[str, str]:
        return {}


class EmailActivity(_ActivityBase):
    kind: Literal[ActivityKind.EMAIL] = ActivityKind.EMAIL
    object_type: ClassVar[str] = "emails"
    crm_properties: ClassVar[list[str]] = [
        "hs_email_subject",
        "hs_email_direction",
        "hs_email_status",
        "hs_email_text",
        "hs_email_html",
        "hs_timestamp",
        "hs_email_sender_email",
        "hs_email_to_email",
    ]

    subject: str | None = None
    direction: str | None = None
    sender: str | None = None
    recipient: str | None = None
    text: str | None = None
    html: str | None = None

    @classmethod
    def _property_map(cls) -> dict[str, str]:
        return {
            "subject": "hs_email_subject",
            "direction": "hs_email_direction",
            "sender": "hs_email_sender_email",
            "recipient": "hs_email_to_email",
            "text": "hs_email_text",
            "html": "hs_email_html",
        }


class CallActivity(_ActivityBase):
    kind: Literal[ActivityKind.CALL] = ActivityKind.CALL
    object_type: ClassVar[str] = "calls"
    crm_properties: ClassVar[list[str]] = [
        "hs_call_title",
        "hs_call_body",
        "hs_call_direction",
        "hs_call_duration",
        "hs_call_disposition",
        "hs_call_status",
        "hs_timestamp",
    ]

    title: str | None = None
    body: str | None = None
    direction: str | None = None
    duration_ms: str | None = None
    disposition: str | None = None

    @classmethod
    def _property_map(cls) -> dict[str, str]:
        return {
            "title": "hs_call_title",
            "body": "hs_call_body",
            "direction": "hs_call_direction",
            "duration_ms": "hs_call_duration",
            "disposition": "hs_call_disposition",
        }


class MeetingActivity(_ActivityBase):
    kind: Literal[ActivityKind.MEETING] = ActivityKind.MEETING
    object_type: ClassVar[str] = "meetings"
    crm_properties: ClassVar[list[str]] = [
        "hs_meeting_title",
        "hs_meeting_body",
        "hs_meeting_start_time",
        "hs_meeting_end_time",
        "hs_meeting_outcome",
        "hs_timestamp",
    ]

    title: str | None = None
    body: str | None = None
    outcome: str | None = None

    @classmethod
    def _property_map(cls) -> dict[str, str]:
        return {
            "title": "hs_meeting_title",
            "body": "hs_meeting_body",
            "outcome": "hs_meeting_outcome",
        }


class NoteActivity(_ActivityBase):
    kind: Literal[ActivityKind.NOTE] = ActivityKind.NOTE
    object_type: ClassVar[str] = "notes"
    crm_properties: ClassVar[list[str]] = ["hs_note_body", "hs_createdate", "hubspot_owner_id"]
    timestamp_property: ClassVar[str] = "hs_createdate"

    body: str | None = None

    @classmethod
    def _property_map(cls) -> dict[str, str]:
        return {"body": "hs_note_body"}


Activity = Annotated[
    Union[EmailActivity, CallActivity, MeetingActivity, NoteActivity],
    Field(discriminator="kind"),
]

ACTIVITY_TYPES: dict[ActivityKind, type[_ActivityBase]] = {
    ActivityKind.EMAIL: EmailActivity,
    ActivityKind.CALL: CallActivity,
    ActivityKind.MEETING: MeetingActivity,
    ActivityKind.NOTE: NoteActivity,
}


def parse_activity(kind: ActivityKind, record: dict) -> Activity:
    """Build the typed activity for ``kind`` from a raw CRM record."""
    return ACTIVITY_TYPES[kind].from_crm(record)  # type: ignore[return-value]


class ActivityRecord(BaseModel):
    """Kind-independent projection used for merging."""

    kind: ActivityKind
    timestamp_ms: int
    render_line: str
