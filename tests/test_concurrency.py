"""Single-flight and timeout notifier tests."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.deal_context.core.singleflight import SingleFlight
from src.deal_context.orchestrator.notifier import race_with_notice


# ── SingleFlight ────────────────────────────────────────────────────────────


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_execution(self):
        flight = SingleFlight()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.01)
            return "done"

        results = await asyncio.gather(*(flight.do("k", work) for _ in range(5)))

        assert results == ["done"] * 5
        assert calls == 1
        assert not flight.in_flight("k")

    @pytest.mark.asyncio
    async def test_sequential_calls_run_again(self):
        flight = SingleFlight()
        work = AsyncMock(side_effect=["first", "second"])

        assert await flight.do("k", work) == "first"
        assert await flight.do("k", work) == "second"
        assert work.await_count == 2

    @pytest.mark.asyncio
    async def test_different_keys_do_not_coalesce(self):
        flight = SingleFlight()
        work = AsyncMock(return_value="x")

        await asyncio.gather(flight.do("a", work), flight.do("b", work))
        assert work.await_count == 2

    @pytest.mark.asyncio
    async def test_error_reaches_every_waiter(self):
        flight = SingleFlight()

        async def fail():
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            flight.do("k", fail), flight.do("k", fail), return_exceptions=True
        )
        assert all(isinstance(result, RuntimeError) for result in results)
        assert not flight.in_flight("k")

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_call(self):
        flight = SingleFlight()
        finished = asyncio.Event()

        async def work():
            await asyncio.sleep(0.02)
            finished.set()
            return "ok"

        first = asyncio.ensure_future(flight.do("k", work))
        second = asyncio.ensure_future(flight.do("k", work))
        await asyncio.sleep(0)
        first.cancel()

        assert await second == "ok"
        assert finished.is_set()


# ── race_with_notice ────────────────────────────────────────────────────────


class TestRaceWithNotice:
    @pytest.mark.asyncio
    async def test_fast_work_sends_no_notice(self):
        on_timeout = AsyncMock()

        async def work():
            return 42

        assert await race_with_notice(work(), on_timeout, ceiling_seconds=0.5) == 42
        on_timeout.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_slow_work_gets_exactly_one_notice_and_still_completes(self):
        events: list[str] = []

        async def on_timeout():
            events.append("notice")

        async def work():
            await asyncio.sleep(0.1)
            events.append("answer")
            return "answer"

        result = await race_with_notice(work(), on_timeout, ceiling_seconds=0.02)

        assert result == "answer"
        assert events == ["notice", "answer"]

    @pytest.mark.asyncio
    async def test_notice_failure_is_swallowed(self):
        on_timeout = AsyncMock(side_effect=RuntimeError("slack down"))

        async def work():
            await asyncio.sleep(0.05)
            return "ok"

        assert await race_with_notice(work(), on_timeout, ceiling_seconds=0.01) == "ok"
        on_timeout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_work_error_propagates(self):
        async def work():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await race_with_notice(work(), AsyncMock(), ceiling_seconds=0.5)

    @pytest.mark.asyncio
    async def test_cancelling_caller_does_not_cancel_work(self):
        finished = asyncio.Event()

        async def work():
            await asyncio.sleep(0.05)
            finished.set()

        caller = asyncio.ensure_future(race_with_notice(work(), AsyncMock(), ceiling_seconds=0.01))
        await asyncio.sleep(0.02)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        await asyncio.wait_for(finished.wait(), timeout=1)
