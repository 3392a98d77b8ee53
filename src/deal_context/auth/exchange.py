"""OAuth refresh-token exchanges for HubSpot and Slack.

Each exchanger performs exactly one POST against its service's token
endpoint. Refresh is deliberately not retried: a rejected refresh is
surfaced as ``RefreshFailed`` and a network failure as
``UpstreamUnavailable``.
"""

from __future__ import annotations

from typing import Protocol

import httpx
import structlog
from pydantic import BaseModel

from src.deal_context.core.errors import RefreshFailed, UpstreamUnavailable

logger = structlog.get_logger(__name__)


class TokenGrant(BaseModel):
    """Tokens returned by a successful authorization or refresh exchange."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int


class TokenExchanger(Protocol):
    service: str

    async def refresh(self, refresh_token: str) -> TokenGrant: ...


class _FormTokenExchanger:
    """Shared form-encoded POST for token endpoints."""

    service = ""
    DEFAULT_EXPIRES_IN = 0

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._timeout = timeout
        self._transport = transport

    async def _post(self, form: dict[str, str]) -> dict:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(self._token_url, data=form)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(self.service, f"token endpoint: {exc!r}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code >= 400:
            reason = data.get("message") or data.get("error") or f"HTTP {response.status_code}"
            if response.status_code >= 500:
                raise UpstreamUnavailable(
                    self.service, f"token endpoint: {reason}", response.status_code
                )
            raise RefreshFailed(self.service, str(reason))
        return data

    def _grant(self, data: dict) -> TokenGrant:
        access = data.get("access_token")
        if not access:
            raise RefreshFailed(self.service, "response missing access_token")
        return TokenGrant(
            access_token=access,
            refresh_token=data.get("refresh_token"),
            expires_in=int(data.get("expires_in") or self.DEFAULT_EXPIRES_IN),
        )


class HubSpotTokenExchanger(_FormTokenExchanger):
    """Refresh-token grant against ``POST /oauth/v1/token``."""

    service = "hubspot"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            client_id, client_secret, f"{base_url}/oauth/v1/token", timeout, transport
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        data = await self._post({
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
        })
        logger.info("hubspot.token_refreshed", expires_in=data.get("expires_in"))
        return self._grant(data)


class SlackTokenExchanger(_FormTokenExchanger):
    """Token rotation against ``oauth.v2.access``.

    Slack answers HTTP 200 for rejected refreshes and signals failure with
    ``ok: false``. Tokens default to a 12 hour lifetime when ``expires_in``
    is omitted.
    """

    service = "slack"
    DEFAULT_EXPIRES_IN = 43200

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://slack.com/api",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            client_id, client_secret, f"{base_url}/oauth.v2.access", timeout, transport
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        data = await self._post({
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
        })
        if not data.get("ok"):
            raise RefreshFailed(self.service, data.get("error") or "unknown_error")
        logger.info("slack.token_refreshed", expires_in=data.get("expires_in"))
        return self._grant(data)
