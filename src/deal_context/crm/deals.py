"""Deal-level CRM lookups used by the orchestrator.

Deal search and owner resolution, plus per-kind activity and line item
fetches. Activity fetches follow the associations -> batch read pattern and
degrade to an empty list on upstream failure, so one unreadable activity
kind never sinks the whole answer.
"""

from __future__ import annotations

import structlog

from src.deal_context.core.errors import UpstreamUnavailable
from src.deal_context.core.timeutil import parse_timestamp_ms
from src.deal_context.crm.batch import BatchReader
from src.deal_context.crm.client import HubSpotClient
from src.deal_context.crm.schemas import DEAL_PROPERTIES, LINE_ITEM_PROPERTIES, Deal, LineItem, NoMatch
from src.deal_context.timeline.activities import ACTIVITY_TYPES, Activity, ActivityKind, parse_activity

logger = structlog.get_logger(__name__)

DEAL_SEARCH_LIMIT = 10
MAX_ACTIVITIES_PER_KIND = 20
MAX_LINE_ITEMS = 50


async def find_best_deal(client: HubSpotClient, query: str) -> Deal | NoMatch:
    """Search deals by name token and pick the most recently closed one.

    Candidates without a close date rank behind every dated candidate. An
    empty result is a ``NoMatch`` outcome, not an error.
    """
    if not query:
        return NoMatch(query=query)

    results = await client.search_deals(query, DEAL_PROPERTIES, limit=DEAL_SEARCH_LIMIT)
    if not results:
        logger.info("crm.deal_not_found", query=query)
        return NoMatch(query=query)

    best = max(
        results,
        key=lambda record: parse_timestamp_ms((record.get("properties") or {}).get("closedate")),
    )
    deal = Deal.from_crm(best, fallback_name=query)
    logger.info("crm.deal_resolved", query=query, deal_id=deal.id, candidates=len(results))
    return deal


async def resolve_owner_name(client: HubSpotClient, owner_id: str | None) -> str | None:
    """Full name of a CRM owner, or None if unknown or unreadable."""
    if not owner_id:
        return None
    try:
        owner = await client.get_owner(owner_id)
    except UpstreamUnavailable as exc:
        logger.warning("crm.owner_lookup_failed", owner_id=owner_id, error=str(exc))
        return None
    name = " ".join(part for part in (owner.get("firstName"), owner.get("lastName")) if part)
    return name.strip() or None


async def fetch_activities(
    client: HubSpotClient,
    reader: BatchReader,
    deal_id: str,
    kind: ActivityKind,
) -> list[Activity]:
    """Most recent activities of one kind linked to a deal (at most 20)."""
    activity_type = ACTIVITY_TYPES[kind]
    try:
        ids = await client.list_associations("deals", deal_id, activity_type.object_type)
        ids = ids[:MAX_ACTIVITIES_PER_KIND]
        if not ids:
            return []
        records = await reader.read(
            activity_type.object_type, ids, list(activity_type.crm_properties)
        )
    except UpstreamUnavailable as exc:
        logger.warning(
            "crm.activity_fetch_failed",
            deal_id=deal_id,
            kind=kind.value,
            error=str(exc),
        )
        return []

    activities = [parse_activity(kind, record) for record in records]
    activities.sort(key=lambda activity: activity.timestamp_ms, reverse=True)
    logger.debug("crm.activities_fetched", deal_id=deal_id, kind=kind.value, count=len(activities))
    return activities


async def fetch_line_items(client: HubSpotClient, reader: BatchReader, deal_id: str) -> list[LineItem]:
    """Products sold on a deal; empty if none or unreadable."""
    try:
        ids = await client.list_associations("deals", deal_id, "line_items")
        records = await reader.read("line_items", ids[:MAX_LINE_ITEMS], LINE_ITEM_PROPERTIES)
    except UpstreamUnavailable as exc:
        logger.warning("crm.line_items_fetch_failed", deal_id=deal_id, error=str(exc))
        return []
    return [LineItem.from_crm(record) for record in records]
