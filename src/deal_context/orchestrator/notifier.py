"""Soft-deadline progress notice that never cancels the work it watches.

The work and a timer run as two independent tasks joined with
``asyncio.wait(FIRST_COMPLETED)``. If the work settles first the timer is
cancelled and nothing is sent. If the timer fires first the notice callback
runs once and the work is then awaited to completion. When both settle in
the same loop iteration the work wins, so the notice never fires for work
that already finished.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from src.deal_context.core.monitoring import timeout_notices_total

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def race_with_notice(
    work: Awaitable[T],
    on_timeout: Callable[[], Awaitable[None]],
    ceiling_seconds: float,
) -> T:
    """Await ``work``; call ``on_timeout`` once if it outlives ``ceiling_seconds``.

    ``work`` is shielded: neither the timer nor cancellation of this
    coroutine interrupts it. Errors raised by ``on_timeout`` are logged and
    dropped; errors raised by ``work`` propagate.
    """
    work_task = asyncio.ensure_future(work)
    timer = asyncio.ensure_future(asyncio.sleep(ceiling_seconds))

    done, _ = await asyncio.wait({work_task, timer}, return_when=asyncio.FIRST_COMPLETED)
    if work_task in done:
        timer.cancel()
        return work_task.result()

    logger.warning("notifier.deadline_exceeded", ceiling_seconds=ceiling_seconds)
    timeout_notices_total.inc()
    try:
        await on_timeout()
    except Exception:
        logger.error("notifier.notice_failed", exc_info=True)

    return await asyncio.shield(work_task)
