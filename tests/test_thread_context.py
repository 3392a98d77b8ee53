"""Thread context cache tests: TTL resets, append semantics, camelCase JSON."""

from __future__ import annotations

import json

import pytest

from src.deal_context.chat.context import (
    THREAD_CONTEXT_TTL_SECONDS,
    ThreadContext,
    ThreadContextCache,
    ThreadMessage,
)


@pytest.fixture
def threads(cache, clock) -> ThreadContextCache:
    return ThreadContextCache(cache, now_ms=clock)


class TestThreadContextCache:
    @pytest.mark.asyncio
    async def test_get_missing_is_none(self, threads):
        assert await threads.get("C1", "111.222") is None

    @pytest.mark.asyncio
    async def test_put_stores_camel_case_json_with_ttl(self, threads, cache, clock):
        context = ThreadContext(
            messages=[ThreadMessage(speaker="U1", text="who owns this?", timestamp_ms=5)],
            deal_id="42",
        )
        await threads.put("C1", "111.222", context)

        key = "thread:C1:111.222"
        stored = json.loads(cache.data[key])
        assert stored == {
            "messages": [{"speaker": "U1", "text": "who owns this?", "timestampMs": 5}],
            "dealId": "42",
            "lastUpdatedMs": clock.now,
        }
        assert cache.ttls[key] == THREAD_CONTEXT_TTL_SECONDS

    @pytest.mark.asyncio
    async def test_append_on_missing_key_returns_none_and_writes_nothing(self, threads, cache):
        result = await threads.append("C1", "111.222", ThreadMessage(speaker="U1", text="hi"))

        assert result is None
        assert cache.set_calls == 0
        assert cache.data == {}

    @pytest.mark.asyncio
    async def test_put_then_append_adds_one_message_and_refreshes_ttl(self, threads, cache, clock):
        await threads.put(
            "C1", "111.222", ThreadContext(messages=[ThreadMessage(speaker="U1", text="q1")])
        )
        cache.ttls.clear()
        clock.now += 60_000

        updated = await threads.append("C1", "111.222", ThreadMessage(speaker="B1", text="a1"))

        assert updated is not None
        assert [m.text for m in updated.messages] == ["q1", "a1"]
        assert updated.last_updated_ms == clock.now
        assert cache.ttls["thread:C1:111.222"] == THREAD_CONTEXT_TTL_SECONDS
        reloaded = await threads.get("C1", "111.222")
        assert len(reloaded.messages) == 2

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss(self, threads, cache):
        cache.data["thread:C1:111.222"] = "{not json"
        assert await threads.get("C1", "111.222") is None

    @pytest.mark.asyncio
    async def test_delete(self, threads, cache):
        await threads.put("C1", "111.222", ThreadContext())
        await threads.delete("C1", "111.222")
        assert "thread:C1:111.222" not in cache.data

    @pytest.mark.asyncio
    async def test_custom_ttl(self, cache, clock):
        threads = ThreadContextCache(cache, ttl_seconds=60, now_ms=clock)
        await threads.put("C1", "1.0", ThreadContext())
        assert cache.ttls["thread:C1:1.0"] == 60
