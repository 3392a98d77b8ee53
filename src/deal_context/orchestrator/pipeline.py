"""Deal context orchestrator -- answers a Slack question about the channel's deal.

Four ordered phases; calls within a phase run concurrently and a phase only
starts once every call of the previous one has settled:

1. Setup: bot identity, channel metadata, CRM access token.
2. Deal resolution: deal search from the channel name, plus channel history
   for public channels.
3. Data fetch: owner, associations, activities (gated by the keyword
   classifier), line items and thread context; then contacts and companies
   keyed off the associations.
4. Synthesis: language model answer, posted to Slack, turn written back to
   the thread context cache.

``run`` is the single catch boundary: whatever escapes the phases is logged
and turned into one plain-language Slack message. Nothing propagates to the
webhook handler that scheduled the run.

The deployment plan command reuses the same phases with a wider read: up to
200 channel messages, every activity kind, and the CSM named on the first
associated company. ``run_plan`` is its boundary and reports through the
command's ``response_url``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from src.deal_context.auth.credentials import CredentialCache
from src.deal_context.chat.context import ThreadContext, ThreadContextCache, ThreadMessage
from src.deal_context.chat.slack import (
    MAX_EXTENDED_HISTORY,
    PostedMessage,
    SlackClient,
    SlackMessage,
    channel_name_to_deal_query,
    extract_question,
    filter_channel_history,
    is_public_channel,
)
from src.deal_context.config import Settings
from src.deal_context.core.errors import CacheUnavailable, DealContextError
from src.deal_context.core.monitoring import pipeline_runs_total, track_phase
from src.deal_context.core.timeutil import days_between, slack_ts_to_ms
from src.deal_context.crm.associations import AssociationResolver
from src.deal_context.crm.batch import BatchReader
from src.deal_context.crm.client import HubSpotClient
from src.deal_context.crm.deals import (
    fetch_activities,
    fetch_line_items,
    find_best_deal,
    resolve_owner_name,
)
from src.deal_context.crm.schemas import (
    COMPANY_PROPERTIES,
    CONTACT_PROPERTIES,
    Company,
    Contact,
    Deal,
    LineItem,
    NoMatch,
)
from src.deal_context.orchestrator.classifier import determine_required_data
from src.deal_context.orchestrator.notifier import race_with_notice
from src.deal_context.orchestrator.schemas import (
    DealBundle,
    MentionEvent,
    RequiredData,
    RunOutcome,
)
from src.deal_context.services.llm import CompletionService
from src.deal_context.services.prompts import build_plan_prompt, build_qa_prompt
from src.deal_context.timeline.activities import (
    ActivityKind,
    CallActivity,
    EmailActivity,
    MeetingActivity,
    NoteActivity,
)
from src.deal_context.timeline.merger import merge

logger = structlog.get_logger(__name__)

GREETING = "I'm here! Ask me a question about this deal."
TIMEOUT_NOTICE = (
    "Still working on your request, it's taking longer than expected. "
    "I'll post the answer here as soon as it's ready."
)
HANDOFF_QUESTION = (
    "Give a post-sales hand-off summary of this deal in 3 to 5 bullets: what was sold, "
    "who the key contacts are, how the deal progressed and any open risks."
)
PLAN_QUESTION = "Deployment plan"
PLAN_TIMEOUT_NOTICE = (
    "Still generating the deployment plan, it's taking longer than expected. "
    "It will be posted to the channel as soon as it's ready."
)
PLAN_REQUIRED_DATA = RequiredData(calls=True, meetings=True)
NOT_OBSERVED = "Not observed in CRM history"
MAX_CONTACTS_SHOWN = 6
MAX_COMPANIES_SHOWN = 2


async def _resolved(value: Any = None) -> Any:
    return value


def _user_message(exc: Exception) -> str:
    return exc.user_message if isinstance(exc, DealContextError) else DealContextError.user_message


@dataclass
class _DealData:
    """CRM reads for one deal, already projected onto models."""

    owner_name: str | None
    contacts: list[Contact]
    companies: list[Company]
    emails: list[EmailActivity]
    notes: list[NoteActivity]
    calls: list[CallActivity]
    meetings: list[MeetingActivity]
    line_items: list[LineItem]

    def log_counts(self, log: Any, **extra: Any) -> None:
        log.info(
            "orchestrator.data_fetched",
            emails=len(self.emails),
            notes=len(self.notes),
            calls=len(self.calls),
            meetings=len(self.meetings),
            contacts=len(self.contacts),
            companies=len(self.companies),
            **extra,
        )


class DealContextOrchestrator:
    """Fans out CRM and Slack reads for one question and posts the answer.

    Args:
        slack: Slack Web API client.
        crm_credentials: CredentialCache for the CRM.
        crm_factory: Builds a CRM client from an access token.
        thread_cache: Per-thread conversation memory.
        llm: Completion collaborator.
        settings: Application settings (deal links, notice ceiling).
    """

    def __init__(
        self,
        *,
        slack: SlackClient,
        crm_credentials: CredentialCache,
        crm_factory: Callable[[str], HubSpotClient],
        thread_cache: ThreadContextCache,
        llm: CompletionService,
        settings: Settings,
    ) -> None:
        self._slack = slack
        self._crm_credentials = crm_credentials
        self._crm_factory = crm_factory
        self._thread_cache = thread_cache
        self._llm = llm
        self._settings = settings

    async def handle(self, event: MentionEvent) -> RunOutcome:
        """Run the pipeline, posting a progress notice past the soft deadline."""
        return await race_with_notice(
            self.run(event),
            on_timeout=lambda: self._post_safely(event.channel_id, TIMEOUT_NOTICE, event.thread_ts),
            ceiling_seconds=self._settings.TIMEOUT_NOTICE_SECONDS,
        )

    async def handle_command(self, event: MentionEvent, response_url: str | None = None) -> RunOutcome:
        """Answer a slash command and update its ephemeral acknowledgement.

        A command without text asks for the hand-off summary.
        """
        if not event.question:
            event = event.model_copy(update={"question": HANDOFF_QUESTION})
        outcome = await self.handle(event)
        if response_url:
            text = (
                "Posted deal summary to this channel."
                if outcome == RunOutcome.ANSWERED
                else "Summary could not be generated; see the channel for details."
            )
            await self._slack.respond(response_url, text, replace_original=True)
        return outcome

    async def handle_plan(self, event: MentionEvent, response_url: str | None = None) -> RunOutcome:
        """Build a deployment plan, posting a progress notice past the soft deadline."""
        return await race_with_notice(
            self.run_plan(event, response_url),
            on_timeout=lambda: self._reply(event.channel_id, response_url, PLAN_TIMEOUT_NOTICE),
            ceiling_seconds=self._settings.TIMEOUT_NOTICE_SECONDS,
        )

    async def run_plan(self, event: MentionEvent, response_url: str | None = None) -> RunOutcome:
        """Deployment plan phases behind their own error boundary.

        The plan goes to the channel; status and failures go to the command's
        ``response_url`` when there is one, else to the channel.
        """
        log = logger.bind(channel_id=event.channel_id, command="plan")
        try:
            outcome = await self._plan(event, response_url, log)
        except Exception as exc:
            log.error(
                "orchestrator.plan_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            await self._reply(
                event.channel_id,
                response_url,
                f"Deployment plan failed: {_user_message(exc)}",
                replace_original=True,
            )
            outcome = RunOutcome.FAILED

        pipeline_runs_total.labels(outcome=outcome.value).inc()
        log.info("orchestrator.plan_finished", outcome=outcome.value)
        return outcome

    async def run(self, event: MentionEvent) -> RunOutcome:
        """Execute all phases behind the single error boundary."""
        log = logger.bind(channel_id=event.channel_id, thread_ts=event.thread_ts)
        try:
            outcome = await self._run(event, log)
        except Exception as exc:
            log.error(
                "orchestrator.run_failed",
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
            )
            await self._post_safely(event.channel_id, _user_message(exc), event.thread_ts)
            outcome = RunOutcome.FAILED

        pipeline_runs_total.labels(outcome=outcome.value).inc()
        log.info("orchestrator.run_finished", outcome=outcome.value)
        return outcome

    # ── Phases ──────────────────────────────────────────────────────────

    async def _run(self, event: MentionEvent, log: Any) -> RunOutcome:
        with track_phase("setup"):
            bot_user_id, channel, access_token = await asyncio.gather(
                self._slack.auth_test(),
                self._slack.channel_info(event.channel_id),
                self._crm_credentials.get_token(),
            )

        question = event.question or extract_question(event.text, bot_user_id)
        if not question:
            await self._slack.post_message(event.channel_id, GREETING, event.thread_ts)
            return RunOutcome.GREETED

        deal_query = channel_name_to_deal_query(channel.name)
        crm = self._crm_factory(access_token)

        with track_phase("deal_resolution"):
            history_call = (
                self._channel_history(event.channel_id, log)
                if is_public_channel(channel)
                else _resolved([])
            )
            deal, channel_history = await asyncio.gather(
                find_best_deal(crm, deal_query),
                history_call,
            )

        if isinstance(deal, NoMatch):
            await self._slack.post_message(
                event.channel_id, f'No deal found matching "{deal.query}".', event.thread_ts
            )
            return RunOutcome.NO_MATCH

        log = log.bind(deal_id=deal.id)
        required = determine_required_data(question)

        with track_phase("data_fetch"):
            data, (thread_context, context_cached) = await asyncio.gather(
                self._fetch_deal_data(crm, deal, required),
                self._thread_context(event, log),
            )
        data.log_counts(log, thread_context_cached=context_cached)

        deal = deal.model_copy(update={"line_items": data.line_items})
        bundle = DealBundle(
            question=question,
            deal=deal,
            deal_url=self._settings.hubspot_deal_url(deal.id),
            owner_line=_owner_line(data.owner_name, deal),
            contacts_line=_contacts_line(data.contacts),
            company_line=_company_line(data.companies),
            cycle_days=days_between(deal.created_at, deal.closed_at),
            timeline=merge(data.emails, data.calls, data.meetings, data.notes),
            channel_history=channel_history,
            thread_context=thread_context,
        )

        with track_phase("synthesis"):
            answer = await self._llm.complete(build_qa_prompt(bundle))
            posted = await self._slack.post_message(event.channel_id, answer, event.thread_ts)

        await self._remember_turn(
            event,
            question=question,
            answer=answer,
            posted=posted,
            bot_user_id=bot_user_id,
            deal_id=deal.id,
            cached=context_cached,
            log=log,
        )
        return RunOutcome.ANSWERED

    async def _plan(self, event: MentionEvent, response_url: str | None, log: Any) -> RunOutcome:
        with track_phase("setup"):
            channel, access_token, channel_history = await asyncio.gather(
                self._slack.channel_info(event.channel_id),
                self._crm_credentials.get_token(),
                self._extended_history(event.channel_id, log),
            )

        deal_query = channel_name_to_deal_query(channel.name)
        crm = self._crm_factory(access_token)

        with track_phase("deal_resolution"):
            deal = await find_best_deal(crm, deal_query)

        if isinstance(deal, NoMatch):
            await self._reply(
                event.channel_id,
                response_url,
                f'No deal found matching "{deal.query}".',
                replace_original=True,
            )
            return RunOutcome.NO_MATCH

        log = log.bind(deal_id=deal.id)

        with track_phase("data_fetch"):
            data = await self._fetch_deal_data(crm, deal, PLAN_REQUIRED_DATA)
            csm_owner_id = data.companies[0].csm_owner_id if data.companies else None
            csm_name = await resolve_owner_name(crm, csm_owner_id)
        data.log_counts(log, history=len(channel_history), csm_found=csm_name is not None)

        deal = deal.model_copy(update={"line_items": data.line_items})
        bundle = DealBundle(
            question=PLAN_QUESTION,
            deal=deal,
            deal_url=self._settings.hubspot_deal_url(deal.id),
            owner_line=_owner_line(data.owner_name, deal),
            contacts_line=_contacts_line(data.contacts),
            company_line=_company_line(data.companies),
            csm_line=f"{csm_name} (from company record)" if csm_name else "Not assigned in CRM",
            cycle_days=days_between(deal.created_at, deal.closed_at),
            timeline=merge(data.emails, data.calls, data.meetings, data.notes),
            channel_history=channel_history,
        )

        with track_phase("synthesis"):
            plan = await self._llm.complete(build_plan_prompt(bundle))
            await self._slack.post_message(event.channel_id, plan)

        if response_url:
            await self._slack.respond(
                response_url, f"Posted deployment plan to #{channel.name}.", replace_original=True
            )
        return RunOutcome.ANSWERED

    # ── Phase helpers ───────────────────────────────────────────────────

    async def _fetch_deal_data(
        self, crm: HubSpotClient, deal: Deal, required: RequiredData
    ) -> _DealData:
        """Owner, associations, activities and line items, then the associated records."""
        reader = BatchReader(crm)
        owner_name, associations, emails, notes, calls, meetings, line_items = await asyncio.gather(
            resolve_owner_name(crm, deal.owner_id),
            AssociationResolver(crm).resolve(deal.id),
            self._activities(crm, reader, deal.id, ActivityKind.EMAIL, required.emails),
            self._activities(crm, reader, deal.id, ActivityKind.NOTE, required.notes),
            self._activities(crm, reader, deal.id, ActivityKind.CALL, required.calls),
            self._activities(crm, reader, deal.id, ActivityKind.MEETING, required.meetings),
            fetch_line_items(crm, reader, deal.id),
        )
        contact_records, company_records = await asyncio.gather(
            reader.read("contacts", associations.contact_ids, CONTACT_PROPERTIES)
            if required.contacts
            else _resolved([]),
            reader.read("companies", associations.company_ids, COMPANY_PROPERTIES)
            if required.companies
            else _resolved([]),
        )
        return _DealData(
            owner_name=owner_name,
            contacts=[Contact.from_crm(r) for r in contact_records],
            companies=[Company.from_crm(r) for r in company_records],
            emails=emails,
            notes=notes,
            calls=calls,
            meetings=meetings,
            line_items=line_items,
        )

    async def _extended_history(self, channel_id: str, log: Any) -> list[SlackMessage]:
        try:
            messages = await self._slack.extended_channel_history(
                channel_id, max_messages=MAX_EXTENDED_HISTORY
            )
        except DealContextError as exc:
            log.warning("orchestrator.channel_history_failed", error=str(exc))
            return []
        return filter_channel_history(messages, limit=MAX_EXTENDED_HISTORY)

    async def _channel_history(self, channel_id: str, log: Any) -> list[SlackMessage]:
        try:
            messages = await self._slack.channel_history(channel_id, limit=100)
        except DealContextError as exc:
            log.warning("orchestrator.channel_history_failed", error=str(exc))
            return []
        return filter_channel_history(messages)

    async def _activities(
        self,
        crm: HubSpotClient,
        reader: BatchReader,
        deal_id: str,
        kind: ActivityKind,
        wanted: bool,
    ) -> list:
        if not wanted:
            return []
        return await fetch_activities(crm, reader, deal_id, kind)

    async def _thread_context(
        self, event: MentionEvent, log: Any
    ) -> tuple[ThreadContext | None, bool]:
        """Cached thread context, else the live thread replies (not persisted).

        Returns the context and whether it came from the cache.
        """
        if not event.thread_ts:
            return None, False

        try:
            cached = await self._thread_cache.get(event.channel_id, event.thread_ts)
        except CacheUnavailable as exc:
            log.warning("orchestrator.thread_cache_unavailable", error=str(exc))
            cached = None
        if cached is not None:
            return cached, True

        try:
            replies = await self._slack.thread_replies(event.channel_id, event.thread_ts)
        except DealContextError as exc:
            log.warning("orchestrator.thread_history_failed", error=str(exc))
            return None, False
        if not replies:
            return None, False
        return (
            ThreadContext(
                messages=[
                    ThreadMessage(
                        speaker=m.user or m.bot_id or "unknown",
                        text=m.text,
                        timestamp_ms=slack_ts_to_ms(m.ts),
                    )
                    for m in replies
                ]
            ),
            False,
        )

    async def _remember_turn(
        self,
        event: MentionEvent,
        *,
        question: str,
        answer: str,
        posted: PostedMessage,
        bot_user_id: str,
        deal_id: str,
        cached: bool,
        log: Any,
    ) -> None:
        """Write the question/answer turn back to the thread context cache.

        The answer is already visible in Slack at this point, so a cache
        failure is logged rather than reported to the user.
        """
        thread_id = event.thread_ts or posted.ts
        if not thread_id:
            return

        turn = [
            ThreadMessage(
                speaker=event.user_id or "unknown",
                text=question,
                timestamp_ms=slack_ts_to_ms(event.ts),
            ),
            ThreadMessage(speaker=bot_user_id, text=answer, timestamp_ms=slack_ts_to_ms(posted.ts)),
        ]
        try:
            if cached:
                context = None
                for message in turn:
                    context = await self._thread_cache.append(event.channel_id, thread_id, message)
                    if context is None:
                        break
                if context is not None:
                    return
            await self._thread_cache.put(
                event.channel_id, thread_id, ThreadContext(messages=turn, deal_id=deal_id)
            )
        except CacheUnavailable as exc:
            log.warning("orchestrator.thread_context_write_failed", error=str(exc))

    async def _post_safely(self, channel_id: str, text: str, thread_ts: str | None) -> None:
        """Post a status message; failures are logged, never raised."""
        try:
            await self._slack.post_message(channel_id, text, thread_ts)
        except Exception:
            logger.error("orchestrator.status_post_failed", channel_id=channel_id, exc_info=True)

    async def _reply(
        self,
        channel_id: str,
        response_url: str | None,
        text: str,
        replace_original: bool = False,
    ) -> None:
        """Answer through the command's ``response_url``, else post to the channel."""
        if response_url:
            await self._slack.respond(response_url, text, replace_original=replace_original)
        else:
            await self._post_safely(channel_id, text, None)


# ── Bundle formatting ───────────────────────────────────────────────────────


def _owner_line(owner_name: str | None, deal: Deal) -> str:
    if owner_name:
        return f"{owner_name} (Sales)"
    if deal.owner_id:
        return f"{deal.owner_id} (name not found in CRM)"
    return NOT_OBSERVED


def _contacts_line(contacts: list[Contact]) -> str:
    if not contacts:
        return NOT_OBSERVED
    return "; ".join(contact.render() for contact in contacts[:MAX_CONTACTS_SHOWN])


def _company_line(companies: list[Company]) -> str:
    names = [company.name for company in companies[:MAX_COMPANIES_SHOWN] if company.name]
    return "; ".join(names) if names else NOT_OBSERVED
