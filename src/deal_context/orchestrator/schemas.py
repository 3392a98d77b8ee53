"""Pydantic schemas for orchestrator inputs, intermediate bundle and outcomes."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from src.deal_context.chat.context import ThreadContext
from src.deal_context.chat.slack import SlackMessage
from src.deal_context.crm.schemas import Deal


class MentionEvent(BaseModel):
    """A parsed, already-verified inbound trigger.

    ``question`` is set for slash-command triggers, whose text needs no
    mention stripping.
    """

    channel_id: str
    user_id: str | None = None
    text: str = ""
    ts: str | None = None
    thread_ts: str | None = None
    question: str | None = None


class RequiredData(BaseModel):
    """Which CRM collections the question warrants fetching."""

    emails: bool = True
    notes: bool = True
    calls: bool = False
    meetings: bool = False
    contacts: bool = True
    companies: bool = True


class DealBundle(BaseModel):
    """Everything synthesis needs for one answer."""

    question: str
    deal: Deal
    deal_url: str
    owner_line: str
    contacts_line: str
    company_line: str
    csm_line: str | None = None
    cycle_days: int | None = None
    timeline: str
    channel_history: list[SlackMessage] = Field(default_factory=list)
    thread_context: ThreadContext | None = None


class RunOutcome(str, Enum):
    ANSWERED = "answered"
    GREETED = "greeted"
    NO_MATCH = "no_match"
    FAILED = "failed"
