"""Key-value cache store handle backed by Redis.

The store is the single authority for shared mutable state (OAuth
credentials and thread context). Components receive a ``CacheStore`` in
their constructor; nothing reaches for a module-level client. Tests pass an
in-memory implementation of the same protocol.

Lifecycle:
    store = init_cache(settings)
    ...
    await close_cache(store)
"""

from __future__ import annotations

from typing import Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from src.deal_context.config import Settings
from src.deal_context.core.errors import CacheUnavailable

logger = structlog.get_logger(__name__)


class CacheStore(Protocol):
    """String get/set store with TTL-on-write (``EX`` semantics)."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ex: int | None = None) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCacheStore:
    """CacheStore over a redis.asyncio client.

    Every Redis failure (connection refused, socket timeout, protocol
    error) surfaces as ``CacheUnavailable`` so callers can apply their
    fallback policy without importing redis.
    """

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            logger.warning("cache.get_failed", key=key, error=str(exc))
            raise CacheUnavailable(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        """Set a value with optional TTL (seconds)."""
        try:
            await self._redis.set(key, value, ex=ex)
        except RedisError as exc:
            logger.warning("cache.set_failed", key=key, error=str(exc))
            raise CacheUnavailable(f"SET {key} failed: {exc}") from exc

    async def delete(self, key: str) -> int:
        try:
            return await self._redis.delete(key)
        except RedisError as exc:
            raise CacheUnavailable(f"DEL {key} failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as exc:
            raise CacheUnavailable(f"PING failed: {exc}") from exc

    async def close(self) -> None:
        await self._redis.aclose()


def init_cache(settings: Settings) -> RedisCacheStore:
    """Create a Redis-backed cache store from settings.

    Connection and socket timeouts are kept well under the platform
    execution ceiling; a single retry-free attempt is made per command.
    """
    client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )
    logger.info("cache.initialized", url=_redact(settings.REDIS_URL))
    return RedisCacheStore(client)


async def close_cache(store: CacheStore) -> None:
    """Close the store's connection pool."""
    await store.close()
    logger.info("cache.closed")


def _redact(url: str) -> str:
    # redis://:password@host -> redis://***@host
    if "@" not in url:
        return url
    scheme, _, rest = url.partition("://")
    return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
