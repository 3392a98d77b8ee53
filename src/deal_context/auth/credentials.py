"""OAuth credential cache with ahead-of-expiry refresh.

The cache store is the authority for credentials. Three keys are kept per
service::

    {service}:access_token
    {service}:refresh_token
    {service}:expires_at_ms

A credential is usable while ``now < expires_at_ms - refresh_buffer_ms``.
The buffer covers the latency of the refresh call itself so a new token is
in place before the old one dies.

Refreshes for one service run under a single-flight guard: concurrent
callers that all observe an expired token share one exchange against the
upstream token endpoint. The refresh re-reads the store before exchanging,
so a caller that arrives just after another process refreshed reuses the
stored token instead of issuing a duplicate call.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import structlog
from pydantic import BaseModel

from src.deal_context.auth.exchange import TokenExchanger, TokenGrant
from src.deal_context.core.cache import CacheStore
from src.deal_context.core.errors import CacheUnavailable, NotConnected, RefreshFailed
from src.deal_context.core.monitoring import token_refreshes_total
from src.deal_context.core.singleflight import SingleFlight

logger = structlog.get_logger(__name__)

HUBSPOT_REFRESH_BUFFER_MS = 60 * 1000
SLACK_REFRESH_BUFFER_MS = 60 * 60 * 1000


def _now_ms() -> int:
    return int(time.time() * 1000)


class Credential(BaseModel):
    """Snapshot of a service credential as read from the store."""

    access_token: str | None = None
    refresh_token: str | None = None
    expires_at_ms: int = 0

    def is_usable(self, now_ms: int, buffer_ms: int) -> bool:
        return bool(self.access_token) and now_ms < self.expires_at_ms - buffer_ms


class CredentialCache:
    """Hands out a valid access token for one external service.

    Args:
        store: Cache store holding the credential keys.
        exchanger: Performs the refresh-token grant for the service.
        refresh_buffer_ms: Safety margin before expiry at which to refresh.
        static_token: Optional environment-provided token used when the store
            is unreachable or no OAuth credential has been stored.
        singleflight: Shared coalescing group; defaults to a private one.
        now_ms: Clock in epoch milliseconds.
    """

    def __init__(
        self,
        store: CacheStore,
        exchanger: TokenExchanger,
        *,
        refresh_buffer_ms: int,
        static_token: str | None = None,
        singleflight: SingleFlight | None = None,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._exchanger = exchanger
        self._buffer_ms = refresh_buffer_ms
        self._static_token = static_token or None
        self._flight = singleflight or SingleFlight()
        self._now_ms = now_ms
        self.service = exchanger.service

    # ── Store keys ──────────────────────────────────────────────────────

    @property
    def _access_key(self) -> str:
        return f"{self.service}:access_token"

    @property
    def _refresh_key(self) -> str:
        return f"{self.service}:refresh_token"

    @property
    def _expires_key(self) -> str:
        return f"{self.service}:expires_at_ms"

    # ── Public API ──────────────────────────────────────────────────────

    async def get_token(self) -> str:
        """Return a usable access token, refreshing it if needed.

        Raises:
            NotConnected: No refresh token stored and no static token configured.
            RefreshFailed: The upstream rejected the refresh exchange.
            CacheUnavailable: The store is down and no static token is configured.
        """
        try:
            return await self._get_token()
        except CacheUnavailable as exc:
            if self._static_token:
                logger.warning(
                    "credentials.cache_unavailable_static_fallback",
                    service=self.service,
                    error=str(exc),
                )
                return self._static_token
            raise
        except NotConnected:
            if self._static_token:
                logger.info("credentials.using_static_token", service=self.service)
                return self._static_token
            raise

    async def load(self) -> Credential:
        """Read the stored credential (missing keys yield empty fields)."""
        access, refresh, expires = await asyncio.gather(
            self._store.get(self._access_key),
            self._store.get(self._refresh_key),
            self._store.get(self._expires_key),
        )
        try:
            expires_at_ms = int(expires) if expires else 0
        except ValueError:
            logger.warning("credentials.bad_expiry", service=self.service, value=expires)
            expires_at_ms = 0
        return Credential(
            access_token=access or None,
            refresh_token=refresh or None,
            expires_at_ms=expires_at_ms,
        )

    async def store(self, grant: TokenGrant) -> Credential:
        """Persist a grant, superseding the previous credential.

        The refresh token is only overwritten when the grant rotates it.
        """
        expires_at_ms = self._now_ms() + grant.expires_in * 1000
        await self._store.set(self._access_key, grant.access_token)
        await self._store.set(self._expires_key, str(expires_at_ms))
        if grant.refresh_token:
            await self._store.set(self._refresh_key, grant.refresh_token)
        return Credential(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at_ms=expires_at_ms,
        )

    # ── Internals ───────────────────────────────────────────────────────

    async def _get_token(self) -> str:
        credential = await self.load()
        if credential.is_usable(self._now_ms(), self._buffer_ms):
            return credential.access_token  # type: ignore[return-value]
        if not credential.refresh_token:
            raise NotConnected(self.service)
        return await self._flight.do(self.service, self._refresh)

    async def _refresh(self) -> str:
        credential = await self.load()
        if credential.is_usable(self._now_ms(), self._buffer_ms):
            logger.debug("credentials.refreshed_elsewhere", service=self.service)
            return credential.access_token  # type: ignore[return-value]
        if not credential.refresh_token:
            raise NotConnected(self.service)

        try:
            grant = await self._exchanger.refresh(credential.refresh_token)
        except RefreshFailed:
            token_refreshes_total.labels(service=self.service, status="rejected").inc()
            logger.error("credentials.refresh_rejected", service=self.service)
            raise
        except Exception:
            token_refreshes_total.labels(service=self.service, status="error").inc()
            raise

        refreshed = await self.store(grant)
        token_refreshes_total.labels(service=self.service, status="success").inc()
        logger.info(
            "credentials.refreshed",
            service=self.service,
            expires_at_ms=refreshed.expires_at_ms,
            rotated=grant.refresh_token is not None,
        )

        if not refreshed.is_usable(self._now_ms(), self._buffer_ms):
            raise RefreshFailed(self.service, "refreshed token expires within the refresh buffer")
        return grant.access_token
