"""Slack webhook endpoints.

POST /slack/events    -- Events API: url_verification and app_mention
POST /slack/commands  -- slash command asking for a deal hand-off summary
POST /slack/plan      -- slash command asking for a deployment plan

Every endpoint verifies the Slack signature against the raw body and then
acknowledges immediately; the orchestrator runs as a background task after
the response is sent, since Slack expects an answer within three seconds.
"""

from __future__ import annotations

import json
from urllib.parse import parse_qs

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from src.deal_context.api.deps import get_app_settings, get_orchestrator
from src.deal_context.config import Settings
from src.deal_context.core.security import verify_slack_signature
from src.deal_context.orchestrator.pipeline import DealContextOrchestrator
from src.deal_context.orchestrator.schemas import MentionEvent

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/slack", tags=["slack"])

COMMAND_ACK = "Generating deal summary... (this may take a moment)"
PLAN_ACK = "Generating deployment plan... (this may take a moment)"


async def _verified_body(request: Request, settings: Settings) -> bytes:
    """Read the raw body and reject it unless the Slack signature matches.

    Raises:
        HTTPException(500): If no signing secret is configured.
        HTTPException(401): If the signature is missing, stale or wrong.
    """
    if not settings.SLACK_SIGNING_SECRET:
        logger.error("slack.signing_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Missing SLACK_SIGNING_SECRET",
        )

    body = await request.body()
    if not verify_slack_signature(
        settings.SLACK_SIGNING_SECRET,
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
        body,
    ):
        logger.warning("slack.invalid_signature", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    return body


@router.get("/events")
async def events_liveness():
    """Liveness check Slack hits while the app is being installed."""
    return {"status": "ok", "endpoint": "slack-events"}


@router.post("/events")
async def slack_events(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_app_settings),
    orchestrator: DealContextOrchestrator = Depends(get_orchestrator),
):
    """Receive an Events API callback.

    ``url_verification`` echoes the challenge. ``app_mention`` schedules the
    orchestrator and acknowledges. Every other event is acknowledged and
    ignored; plain thread messages are answered only when they mention the
    bot, which Slack delivers separately as ``app_mention``.
    """
    body = await _verified_body(request, settings)
    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    if payload.get("type") != "event_callback":
        return PlainTextResponse("OK")

    event = payload.get("event") or {}
    logger.info(
        "slack.event_received",
        event_type=event.get("type"),
        channel_id=event.get("channel"),
        thread_ts=event.get("thread_ts"),
    )
    if event.get("type") == "app_mention" and event.get("channel"):
        mention = MentionEvent(
            channel_id=event["channel"],
            user_id=event.get("user"),
            text=event.get("text") or "",
            ts=event.get("ts"),
            thread_ts=event.get("thread_ts"),
        )
        background_tasks.add_task(orchestrator.handle, mention)

    return PlainTextResponse("OK")


async def _command_form(request: Request, settings: Settings) -> dict[str, str]:
    """Verified slash command form fields; 400 without a channel."""
    body = await _verified_body(request, settings)
    form = {key: values[0] for key, values in parse_qs(body.decode()).items()}
    if not form.get("channel_id"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing channel_id")
    logger.info("slack.command_received", command=form.get("command"), channel_id=form["channel_id"])
    return form


@router.post("/commands")
async def slack_command(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_app_settings),
    orchestrator: DealContextOrchestrator = Depends(get_orchestrator),
):
    """Receive a slash command and reply with an ephemeral acknowledgement."""
    form = await _command_form(request, settings)
    event = MentionEvent(
        channel_id=form["channel_id"],
        user_id=form.get("user_id"),
        question=(form.get("text") or "").strip() or None,
    )
    background_tasks.add_task(orchestrator.handle_command, event, form.get("response_url"))

    return {"response_type": "ephemeral", "text": COMMAND_ACK}


@router.post("/plan")
async def slack_plan(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_app_settings),
    orchestrator: DealContextOrchestrator = Depends(get_orchestrator),
):
    """Receive the deployment plan command; the plan is posted to the channel."""
    form = await _command_form(request, settings)
    event = MentionEvent(channel_id=form["channel_id"], user_id=form.get("user_id"))
    background_tasks.add_task(orchestrator.handle_plan, event, form.get("response_url"))

    return {"response_type": "ephemeral", "text": PLAN_ACK}
