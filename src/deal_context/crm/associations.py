"""Deal -> contact/company association resolution."""

from __future__ import annotations

import asyncio

import structlog

from src.deal_context.core.errors import UpstreamUnavailable
from src.deal_context.crm.client import HubSpotClient
from src.deal_context.crm.schemas import AssociationSet

logger = structlog.get_logger(__name__)


class AssociationResolver:
    """Resolves the contacts and companies linked to a deal.

    Both relationship lookups run concurrently and fail independently: a
    relation that cannot be read comes back empty so the other one still
    surfaces.
    """

    def __init__(self, client: HubSpotClient) -> None:
        self._client = client

    async def resolve(self, deal_id: str) -> AssociationSet:
        contact_ids, company_ids = await asyncio.gather(
            self._relation(deal_id, "contacts"),
            self._relation(deal_id, "companies"),
        )
        return AssociationSet(contact_ids=contact_ids, company_ids=company_ids)

    async def _relation(self, deal_id: str, to_kind: str) -> list[str]:
        try:
            return await self._client.list_associations("deals", deal_id, to_kind)
        except UpstreamUnavailable as exc:
            logger.warning(
                "crm.association_lookup_failed",
                deal_id=deal_id,
                relation=to_kind,
                error=str(exc),
            )
            return []
