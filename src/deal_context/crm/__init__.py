"""Read-only HubSpot CRM access.

- HubSpotClient: bearer-token REST client with timeouts and retry
- BatchReader: chunked batch reads
- AssociationResolver: deal -> contacts/companies, partial-failure tolerant
- find_best_deal / resolve_owner_name / fetch_activities / fetch_line_items
"""

from src.deal_context.crm.associations import AssociationResolver
from src.deal_context.crm.batch import MAX_BATCH_SIZE, BatchReader
from src.deal_context.crm.client import HubSpotClient
from src.deal_context.crm.deals import (
    fetch_activities,
    fetch_line_items,
    find_best_deal,
    resolve_owner_name,
)
from src.deal_context.crm.schemas import AssociationSet, Company, Contact, Deal, LineItem, NoMatch

__all__ = [
    "AssociationResolver",
    "AssociationSet",
    "BatchReader",
    "Company",
    "Contact",
    "Deal",
    "HubSpotClient",
    "LineItem",
    "MAX_BATCH_SIZE",
    "NoMatch",
    "fetch_activities",
    "fetch_line_items",
    "find_best_deal",
    "resolve_owner_name",
]
