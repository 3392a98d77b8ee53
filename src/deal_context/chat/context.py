"""Per-thread conversation memory with a rolling TTL.

Prior question/answer turns for a Slack thread are stored as JSON under
``thread:{channel_id}:{thread_id}``. Every write resets the TTL (24 hours by
default), so an active conversation stays warm and an idle one expires on
its own.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from src.deal_context.core.cache import CacheStore

logger = structlog.get_logger(__name__)

THREAD_CONTEXT_TTL_SECONDS = 86400


def _now_ms() -> int:
    return int(time.time() * 1000)


class ThreadMessage(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    speaker: str
    text: str
    timestamp_ms: int = 0


class ThreadContext(BaseModel):
    """Stored turns for one thread, serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    messages: list[ThreadMessage] = Field(default_factory=list)
    deal_id: str | None = None
    last_updated_ms: int = 0


class ThreadContextCache:
    """TTL-bounded store of thread context keyed by (channel, thread).

    Args:
        store: Cache store the context is persisted in.
        ttl_seconds: Expiry applied on every write.
        now_ms: Clock in epoch milliseconds.
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = THREAD_CONTEXT_TTL_SECONDS,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._now_ms = now_ms

    @staticmethod
    def key(channel_id: str, thread_id: str) -> str:
        return f"thread:{channel_id}:{thread_id}"

    async def get(self, channel_id: str, thread_id: str) -> ThreadContext | None:
        raw = await self._store.get(self.key(channel_id, thread_id))
        if not raw:
            return None
        try:
            return ThreadContext.model_validate_json(raw)
        except ValidationError:
            logger.warning(
                "thread_context.corrupt_entry",
                channel_id=channel_id,
                thread_id=thread_id,
            )
            return None

    async def put(self, channel_id: str, thread_id: str, context: ThreadContext) -> ThreadContext:
        """Store ``context``, stamping it and resetting the TTL."""
        stamped = context.model_copy(update={"last_updated_ms": self._now_ms()})
        await self._store.set(
            self.key(channel_id, thread_id),
            stamped.model_dump_json(by_alias=True),
            ex=self._ttl_seconds,
        )
        return stamped

    async def append(
        self, channel_id: str, thread_id: str, message: ThreadMessage
    ) -> ThreadContext | None:
        """Add one message to an existing context.

        Returns None without writing when the thread has no context yet;
        the first turn must be stored with ``put``.
        """
        context = await self.get(channel_id, thread_id)
        if context is None:
            return None
        updated = context.model_copy(update={"messages": [*context.messages, message]})
        return await self.put(channel_id, thread_id, updated)

    async def delete(self, channel_id: str, thread_id: str) -> None:
        await self._store.delete(self.key(channel_id, thread_id))
        logger.info("thread_context.deleted", channel_id=channel_id, thread_id=thread_id)
