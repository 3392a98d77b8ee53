"""Single-flight call coalescing.

Concurrent callers asking for the same key share one in-flight execution:
the first caller starts the coroutine, later callers await the same task
and receive its result (or its exception).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any


class SingleFlight:
    """Group of keyed in-flight calls, one task per key at a time."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``fn`` for ``key`` unless a call for ``key`` is already running.

        The shared task is shielded: cancelling one waiter does not cancel
        the execution other waiters depend on.
        """
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._forget(k, _t))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception as retrieved when every waiter was cancelled.
        if not task.cancelled():
            task.exception()
