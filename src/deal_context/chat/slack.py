"""Async Slack Web API client and message helpers.

Every call fetches a bot token from the token provider (the Slack
CredentialCache), carries a short timeout, and turns ``ok: false`` responses
and transport failures into ``UpstreamUnavailable``.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict

from src.deal_context.core.errors import UpstreamUnavailable

logger = structlog.get_logger(__name__)

MAX_CHANNEL_HISTORY = 50
MAX_EXTENDED_HISTORY = 200
HISTORY_PAGE_SIZE = 100


class SlackMessage(BaseModel):
    """A channel or thread message as returned by Slack."""

    model_config = ConfigDict(extra="ignore")

    ts: str | None = None
    user: str | None = None
    bot_id: str | None = None
    subtype: str | None = None
    text: str = ""
    thread_ts: str | None = None


class ChannelInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    is_channel: bool = False
    is_private: bool = True


class PostedMessage(BaseModel):
    channel: str
    ts: str


class SlackClient:
    """Async client for the Slack Web API methods the pipeline uses.

    Args:
        token_provider: Coroutine function returning a bot token.
        base_url: Web API root (default: https://slack.com/api).
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        token_provider: Callable[[], Awaitable[str]],
        base_url: str = "https://slack.com/api",
        timeout: float = 2.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    async def _call(
        self,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> dict:
        token = await self._token_provider()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                if payload is not None:
                    response = await client.post(
                        f"{self._base_url}/{method}", json=payload, headers=headers
                    )
                else:
                    response = await client.get(
                        f"{self._base_url}/{method}", params=params, headers=headers
                    )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("slack.request_error", method=method, error=repr(exc))
            raise UpstreamUnavailable("slack", f"{method}: {exc!r}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning("slack.invalid_body", method=method, body=response.text[:200])
            raise UpstreamUnavailable("slack", f"{method}: invalid JSON body") from exc

        if not isinstance(data, dict):
            raise UpstreamUnavailable("slack", f"{method}: unexpected body type")
        if not data.get("ok"):
            error = data.get("error") or "unknown_error"
            logger.warning("slack.api_error", method=method, error=error)
            raise UpstreamUnavailable("slack", f"{method} error: {error}")
        return data

    async def auth_test(self) -> str:
        """Return the bot's own user ID."""
        data = await self._call("auth.test")
        return data["user_id"]

    async def channel_info(self, channel_id: str) -> ChannelInfo:
        data = await self._call("conversations.info", params={"channel": channel_id})
        return ChannelInfo.model_validate(data.get("channel") or {"id": channel_id})

    async def channel_history(self, channel_id: str, limit: int = 100) -> list[SlackMessage]:
        data = await self._call(
            "conversations.history", params={"channel": channel_id, "limit": limit}
        )
        return [SlackMessage.model_validate(m) for m in data.get("messages") or []]

    async def extended_channel_history(
        self, channel_id: str, max_messages: int = MAX_EXTENDED_HISTORY
    ) -> list[SlackMessage]:
        """Page through channel history, newest first, up to ``max_messages``."""
        messages: list[SlackMessage] = []
        cursor: str | None = None
        while len(messages) < max_messages:
            params: dict[str, Any] = {
                "channel": channel_id,
                "limit": min(HISTORY_PAGE_SIZE, max_messages - len(messages)),
            }
            if cursor:
                params["cursor"] = cursor
            data = await self._call("conversations.history", params=params)
            page = data.get("messages") or []
            messages.extend(SlackMessage.model_validate(m) for m in page)
            cursor = (data.get("response_metadata") or {}).get("next_cursor")
            if not page or not cursor:
                break
        return messages[:max_messages]

    async def thread_replies(self, channel_id: str, thread_ts: str) -> list[SlackMessage]:
        data = await self._call(
            "conversations.replies", params={"channel": channel_id, "ts": thread_ts}
        )
        return [SlackMessage.model_validate(m) for m in data.get("messages") or []]

    async def post_message(
        self, channel_id: str, text: str, thread_ts: str | None = None
    ) -> PostedMessage:
        """Post a message, threaded when ``thread_ts`` is given."""
        payload: dict[str, Any] = {"channel": channel_id, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        data = await self._call("chat.postMessage", payload=payload)
        logger.info("slack.message_posted", channel_id=channel_id, thread_ts=thread_ts)
        return PostedMessage(channel=data.get("channel") or channel_id, ts=data.get("ts") or "")

    async def respond(self, response_url: str, text: str, replace_original: bool = False) -> None:
        """Reply through a slash command ``response_url``. Failures are logged only."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    response_url, json={"text": text, "replace_original": replace_original}
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("slack.response_url_failed", error=repr(exc))


# ── Message helpers ─────────────────────────────────────────────────────────


def is_public_channel(channel: ChannelInfo) -> bool:
    return channel.is_channel and not channel.is_private


def is_bot_message(message: SlackMessage) -> bool:
    return message.subtype == "bot_message" or message.subtype == "bot" or message.bot_id is not None


def filter_channel_history(
    messages: list[SlackMessage], limit: int = MAX_CHANNEL_HISTORY
) -> list[SlackMessage]:
    """Drop bot, system and empty messages, then keep the newest ``limit``.

    Slack returns history newest first, so the cap keeps the most recent
    human messages.
    """
    human = [m for m in messages if not is_bot_message(m) and not m.subtype and m.text]
    return human[:limit]


def extract_question(text: str, bot_user_id: str) -> str:
    """Strip the bot mention and surrounding quotes from a mention event."""
    question = re.sub(f"<@{re.escape(bot_user_id)}>", "", text or "").strip()
    return re.sub(r"^[\"']|[\"']$", "", question).strip()


def channel_name_to_deal_query(channel_name: str | None) -> str:
    """Reverse a channel slug into a search phrase: ``acme-corp-renewal`` -> ``acme corp renewal``."""
    return (channel_name or "").replace("-", " ").strip()
