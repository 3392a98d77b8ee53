"""Shared test fixtures.

Provides:
- FakeCacheStore: in-memory CacheStore recording TTLs, with a switch that
  makes every command raise CacheUnavailable (Redis down)
- settings: Settings with test credentials and a short notice ceiling
- Fixed clock helpers for credential and thread-context tests
"""

from __future__ import annotations

import pytest

from src.deal_context.config import Settings
from src.deal_context.core.errors import CacheUnavailable

NOW_MS = 1_750_000_000_000


class FakeCacheStore:
    """In-memory CacheStore double."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})
        self.ttls: dict[str, int | None] = {}
        self.available = True
        self.get_calls = 0
        self.set_calls = 0

    def _check(self) -> None:
        if not self.available:
            raise CacheUnavailable("redis unreachable")

    async def get(self, key: str) -> str | None:
        self._check()
        self.get_calls += 1
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._check()
        self.set_calls += 1
        self.data[key] = value
        self.ttls[key] = ex

    async def delete(self, key: str) -> int:
        self._check()
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    async def ping(self) -> bool:
        self._check()
        return True

    async def close(self) -> None:
        pass


@pytest.fixture
def cache() -> FakeCacheStore:
    return FakeCacheStore()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        REDIS_URL="redis://localhost:6379/15",
        HUBSPOT_CLIENT_ID="hs-client",
        HUBSPOT_CLIENT_SECRET="hs-secret",
        HUBSPOT_PORTAL_ID="12345",
        SLACK_CLIENT_ID="slack-client",
        SLACK_CLIENT_SECRET="slack-secret",
        SLACK_SIGNING_SECRET="signing-secret",
        TIMEOUT_NOTICE_SECONDS=0.05,
    )


@pytest.fixture
def clock():
    """Mutable clock: ``clock.now`` is returned by ``clock()``."""

    class _Clock:
        now = NOW_MS

        def __call__(self) -> int:
            return self.now

    return _Clock()
