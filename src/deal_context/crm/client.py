"""Async HTTP client for the HubSpot CRM REST API (read-only).

One client is built per request from a bearer token handed out by the
CredentialCache. Every call carries an explicit timeout and is retried once
with exponential backoff on rate limiting, 5xx responses and connection
errors. Anything still failing surfaces as ``UpstreamUnavailable``.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.deal_context.core.errors import UpstreamUnavailable

logger = structlog.get_logger(__name__)

_TRANSIENT_STATUS = {429, 500, 502, 503, 504}


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _TRANSIENT_STATUS
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException))


_hubspot_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)


class HubSpotClient:
    """Thin async wrapper over the HubSpot endpoints the pipeline reads.

    Args:
        access_token: OAuth bearer token.
        base_url: API root (default: https://api.hubapi.com).
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.hubapi.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    @_hubspot_retry
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            return response

    async def request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Issue a request and return the decoded JSON body."""
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning(
                "hubspot.request_failed",
                method=method,
                path=path,
                status_code=status,
                body=exc.response.text[:500],
            )
            raise UpstreamUnavailable("hubspot", f"{method} {path} -> HTTP {status}", status) from exc
        except httpx.HTTPError as exc:
            logger.warning("hubspot.request_error", method=method, path=path, error=repr(exc))
            raise UpstreamUnavailable("hubspot", f"{method} {path}: {exc!r}") from exc

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            logger.warning(
                "hubspot.invalid_body",
                method=method,
                path=path,
                body=response.text[:200],
            )
            raise UpstreamUnavailable("hubspot", f"{method} {path}: invalid JSON body") from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailable("hubspot", f"{method} {path}: unexpected body type")
        return data

    async def get(self, path: str, params: dict | None = None) -> dict:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: dict) -> dict:
        return await self.request("POST", path, json=json)

    # ── Endpoint helpers ────────────────────────────────────────────────

    async def search_deals(self, query: str, properties: list[str], limit: int = 10) -> list[dict]:
        """Token search on deal name, projecting ``properties``."""
        body = {
            "filterGroups": [
                {
                    "filters": [
                        {"propertyName": "dealname", "operator": "CONTAINS_TOKEN", "value": query}
                    ]
                }
            ],
            "properties": properties,
            "limit": limit,
        }
        data = await self.post("/crm/v3/objects/deals/search", json=body)
        return data.get("results") or []

    async def list_associations(self, from_kind: str, object_id: str, to_kind: str) -> list[str]:
        """IDs of ``to_kind`` objects associated with one ``from_kind`` object."""
        data = await self.get(f"/crm/v4/objects/{from_kind}/{object_id}/associations/{to_kind}")
        return [
            str(result["toObjectId"])
            for result in data.get("results") or []
            if result.get("toObjectId")
        ]

    async def get_owner(self, owner_id: str) -> dict:
        return await self.get(f"/crm/v3/owners/{owner_id}")
