"""Pydantic models for CRM records read by the pipeline.

HubSpot returns every object as ``{"id": ..., "properties": {...}}`` with
string-valued properties; the ``from_crm`` constructors project those
payloads onto typed snapshots.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, Field

DEAL_PROPERTIES = [
    "dealname",
    "createdate",
    "closedate",
    "dealstage",
    "pipeline",
    "hubspot_owner_id",
    "amount",
    "dealtype",
    "description",
    "deal_currency_code",
]

CONTACT_PROPERTIES = ["firstname", "lastname", "jobtitle", "email"]
COMPANY_PROPERTIES = ["name", "domain", "csm"]
LINE_ITEM_PROPERTIES = ["name", "quantity", "price", "amount", "hs_sku"]


class LineItem(BaseModel):
    """A product line on a deal."""

    id: str
    name: str = ""
    quantity: str | None = None
    price: str | None = None
    amount: str | None = None
    sku: str | None = None

    @classmethod
    def from_crm(cls, record: dict) -> LineItem:
        props = record.get("properties") or {}
        return cls(
            id=str(record.get("id", "")),
            name=props.get("name") or "",
            quantity=props.get("quantity"),
            price=props.get("price"),
            amount=props.get("amount"),
            sku=props.get("hs_sku"),
        )

    def render(self) -> str:
        parts = [self.name or "Unnamed item"]
        if self.quantity:
            parts.append(f"qty {self.quantity}")
        if self.amount:
            parts.append(f"amount {self.amount}")
        elif self.price:
            parts.append(f"price {self.price}")
        if self.sku:
            parts.append(f"SKU {self.sku}")
        return "  - " + ", ".join(parts)


class Deal(BaseModel):
    """Immutable snapshot of a CRM deal, fetched fresh per request."""

    model_config = {"frozen": True}

    id: str
    name: str
    created_at: str | None = None
    closed_at: str | None = None
    owner_id: str | None = None
    stage: str | None = None
    pipeline: str | None = None
    amount: str | None = None
    deal_type: str | None = None
    description: str | None = None
    currency_code: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)

    def display_amount(self) -> str | None:
        """Amount with thousands separators and currency (``USD 48,000``).

        Falls back to ``$`` without a currency code, and to the raw value when
        it is not a finite number.
        """
        if not self.amount:
            return None
        try:
            value = float(self.amount)
        except ValueError:
            return self.amount
        if not math.isfinite(value):
            return self.amount
        number = f"{value:,.0f}" if value.is_integer() else f"{value:,.2f}"
        return f"{self.currency_code} {number}" if self.currency_code else f"${number}"

    @classmethod
    def from_crm(cls, record: dict, fallback_name: str = "") -> Deal:
        props = record.get("properties") or {}
        return cls(
            id=str(record["id"]),
            name=props.get("dealname") or fallback_name,
            created_at=props.get("createdate") or None,
            closed_at=props.get("closedate") or None,
            owner_id=props.get("hubspot_owner_id") or None,
            stage=props.get("dealstage") or None,
            pipeline=props.get("pipeline") or None,
            amount=props.get("amount") or None,
            deal_type=props.get("dealtype") or None,
            description=props.get("description") or None,
            currency_code=props.get("deal_currency_code") or None,
        )


class NoMatch(BaseModel):
    """Typed outcome for a deal search that found nothing."""

    query: str


class AssociationSet(BaseModel):
    """IDs linked to a deal; lookup keys only."""

    contact_ids: list[str] = Field(default_factory=list)
    company_ids: list[str] = Field(default_factory=list)


class Contact(BaseModel):
    id: str
    first_name: str | None = None
    last_name: str | None = None
    job_title: str | None = None
    email: str | None = None

    @classmethod
    def from_crm(cls, record: dict) -> Contact:
        props = record.get("properties") or {}
        return cls(
            id=str(record.get("id", "")),
            first_name=props.get("firstname"),
            last_name=props.get("lastname"),
            job_title=props.get("jobtitle"),
            email=props.get("email"),
        )

    def render(self) -> str:
        name = " ".join(p for p in (self.first_name, self.last_name) if p).strip()
        line = name or "Name not observed"
        if self.job_title:
            line += f", {self.job_title}"
        if self.email:
            line += f" ({self.email})"
        return line


class Company(BaseModel):
    id: str
    name: str | None = None
    domain: str | None = None
    csm_owner_id: str | None = None

    @classmethod
    def from_crm(cls, record: dict) -> Company:
        props = record.get("properties") or {}
        return cls(
            id=str(record.get("id", "")),
            name=props.get("name"),
            domain=props.get("domain"),
            csm_owner_id=props.get("csm") or None,
        )
