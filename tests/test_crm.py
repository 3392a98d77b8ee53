"""CRM layer tests: HubSpot client, batch reader, associations, deal lookups.

All HTTP goes through httpx.MockTransport; no real HubSpot calls.
"""

from __future__ import annotations

import json

import httpx
import pytest

from src.deal_context.core.errors import UpstreamUnavailable
from src.deal_context.crm.associations import AssociationResolver
from src.deal_context.crm.batch import BatchReader
from src.deal_context.crm.client import HubSpotClient
from src.deal_context.crm.deals import (
    fetch_activities,
    fetch_line_items,
    find_best_deal,
    resolve_owner_name,
)
from src.deal_context.crm.schemas import CONTACT_PROPERTIES, Company, Deal, NoMatch
from src.deal_context.timeline.activities import ActivityKind, EmailActivity


class Recorder:
    """MockTransport handler that records requests and routes by path."""

    def __init__(self, routes: dict | None = None, default=None) -> None:
        self.routes = routes or {}
        self.default = default
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path), self.default)
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(route):
            return route(request)
        return route

    def client(self) -> HubSpotClient:
        return HubSpotClient("token-1", transport=httpx.MockTransport(self))


def _batch_echo(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(
        200,
        json={"results": [{"id": item["id"], "properties": {}} for item in body["inputs"]]},
    )


# ── HubSpotClient ───────────────────────────────────────────────────────────


class TestHubSpotClient:
    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        recorder = Recorder(default=httpx.Response(200, json={"firstName": "Dana"}))
        owner = await recorder.client().get_owner("7")

        assert owner == {"firstName": "Dana"}
        request = recorder.requests[0]
        assert request.headers["Authorization"] == "Bearer token-1"
        assert request.url.path == "/crm/v3/owners/7"

    @pytest.mark.asyncio
    async def test_4xx_is_not_retried(self):
        recorder = Recorder(default=httpx.Response(403, json={"message": "MISSING_SCOPES"}))

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await recorder.client().get_owner("7")
        assert exc_info.value.status_code == 403
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_5xx_retried_once_then_succeeds(self):
        responses = [httpx.Response(503), httpx.Response(200, json={"id": "7"})]
        recorder = Recorder(default=lambda request: responses.pop(0))

        assert await recorder.client().get_owner("7") == {"id": "7"}
        assert len(recorder.requests) == 2

    @pytest.mark.asyncio
    async def test_network_error_maps_to_upstream_unavailable(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = HubSpotClient("token-1", transport=httpx.MockTransport(refuse))
        with pytest.raises(UpstreamUnavailable):
            await client.get_owner("7")

    @pytest.mark.asyncio
    async def test_non_json_body_maps_to_upstream_unavailable(self):
        recorder = Recorder(default=httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(UpstreamUnavailable, match="invalid JSON body"):
            await recorder.client().get_owner("7")
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_non_object_body_maps_to_upstream_unavailable(self):
        recorder = Recorder(default=httpx.Response(200, json=["unexpected"]))

        with pytest.raises(UpstreamUnavailable):
            await recorder.client().list_associations("deals", "42", "contacts")

    @pytest.mark.asyncio
    async def test_search_deals_uses_token_filter(self):
        recorder = Recorder(
            {("POST", "/crm/v3/objects/deals/search"): httpx.Response(200, json={"results": []})}
        )
        await recorder.client().search_deals("acme corp", ["dealname"], limit=10)

        body = json.loads(recorder.requests[0].content)
        deal_filter = body["filterGroups"][0]["filters"][0]
        assert deal_filter == {
            "propertyName": "dealname",
            "operator": "CONTAINS_TOKEN",
            "value": "acme corp",
        }
        assert body["limit"] == 10

    @pytest.mark.asyncio
    async def test_list_associations_returns_string_ids(self):
        recorder = Recorder(
            {
                ("GET", "/crm/v4/objects/deals/42/associations/contacts"): httpx.Response(
                    200, json={"results": [{"toObjectId": 101}, {"toObjectId": 102}]}
                )
            }
        )
        ids = await recorder.client().list_associations("deals", "42", "contacts")
        assert ids == ["101", "102"]


# ── BatchReader ─────────────────────────────────────────────────────────────


class TestBatchReader:
    @pytest.mark.asyncio
    async def test_empty_ids_make_no_calls(self):
        recorder = Recorder(default=_batch_echo)
        assert await BatchReader(recorder.client()).read("contacts", [], CONTACT_PROPERTIES) == []
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_120_ids_issue_three_chunked_calls(self):
        recorder = Recorder(default=_batch_echo)
        ids = [str(i) for i in range(120)]

        records = await BatchReader(recorder.client()).read("contacts", ids, CONTACT_PROPERTIES)

        assert len(recorder.requests) == 3
        sizes = sorted(len(json.loads(r.content)["inputs"]) for r in recorder.requests)
        assert sizes == [20, 50, 50]
        assert all(r.url.path == "/crm/v3/objects/contacts/batch/read" for r in recorder.requests)
        assert [record["id"] for record in records] == ids

    @pytest.mark.asyncio
    async def test_unknown_ids_are_absent(self):
        recorder = Recorder(
            default=httpx.Response(200, json={"results": [{"id": "1", "properties": {}}]})
        )
        records = await BatchReader(recorder.client()).read("contacts", ["1", "2"], CONTACT_PROPERTIES)
        assert [r["id"] for r in records] == ["1"]

    @pytest.mark.asyncio
    async def test_failing_chunk_fails_whole_read(self):
        def flaky(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["inputs"][0]["id"] == "50":
                return httpx.Response(400, json={"message": "bad"})
            return _batch_echo(request)

        recorder = Recorder(default=flaky)
        with pytest.raises(UpstreamUnavailable):
            await BatchReader(recorder.client()).read(
                "contacts", [str(i) for i in range(60)], CONTACT_PROPERTIES
            )


# ── AssociationResolver ─────────────────────────────────────────────────────


class TestAssociationResolver:
    @pytest.mark.asyncio
    async def test_resolves_both_relations(self):
        recorder = Recorder(
            {
                ("GET", "/crm/v4/objects/deals/42/associations/contacts"): httpx.Response(
                    200, json={"results": [{"toObjectId": 1}]}
                ),
                ("GET", "/crm/v4/objects/deals/42/associations/companies"): httpx.Response(
                    200, json={"results": [{"toObjectId": 9}]}
                ),
            }
        )
        associations = await AssociationResolver(recorder.client()).resolve("42")
        assert associations.contact_ids == ["1"]
        assert associations.company_ids == ["9"]

    @pytest.mark.asyncio
    async def test_failing_relation_is_empty(self):
        recorder = Recorder(
            {
                ("GET", "/crm/v4/objects/deals/42/associations/contacts"): httpx.Response(
                    200, json={"results": [{"toObjectId": 1}]}
                ),
                ("GET", "/crm/v4/objects/deals/42/associations/companies"): httpx.Response(
                    403, json={"message": "MISSING_SCOPES"}
                ),
            }
        )
        associations = await AssociationResolver(recorder.client()).resolve("42")
        assert associations.contact_ids == ["1"]
        assert associations.company_ids == []

    @pytest.mark.asyncio
    async def test_garbled_relation_body_is_empty(self):
        recorder = Recorder(
            {
                ("GET", "/crm/v4/objects/deals/42/associations/contacts"): httpx.Response(
                    200, json={"results": [{"toObjectId": 11}]}
                ),
                ("GET", "/crm/v4/objects/deals/42/associations/companies"): httpx.Response(
                    200, text="<html>gateway</html>"
                ),
            }
        )
        associations = await AssociationResolver(recorder.client()).resolve("42")
        assert associations.contact_ids == ["11"]
        assert associations.company_ids == []


# ── Deal lookups ────────────────────────────────────────────────────────────


def _search_results(*deals: dict) -> httpx.Response:
    return httpx.Response(200, json={"results": list(deals)})


class TestFindBestDeal:
    @pytest.mark.asyncio
    async def test_most_recent_close_date_wins(self):
        recorder = Recorder(
            {
                ("POST", "/crm/v3/objects/deals/search"): _search_results(
                    {"id": "1", "properties": {"dealname": "Acme Jan", "closedate": "2024-01-01T00:00:00Z"}},
                    {"id": "2", "properties": {"dealname": "Acme Mar", "closedate": "2024-03-15T00:00:00Z"}},
                )
            }
        )
        deal = await find_best_deal(recorder.client(), "acme")

        assert isinstance(deal, Deal)
        assert deal.id == "2"

    @pytest.mark.asyncio
    async def test_missing_close_date_sorts_last(self):
        recorder = Recorder(
            {
                ("POST", "/crm/v3/objects/deals/search"): _search_results(
                    {"id": "1", "properties": {"dealname": "Open deal"}},
                    {"id": "2", "properties": {"dealname": "Old deal", "closedate": "1577836800000"}},
                )
            }
        )
        deal = await find_best_deal(recorder.client(), "deal")
        assert deal.id == "2"

    @pytest.mark.asyncio
    async def test_no_results_is_no_match(self):
        recorder = Recorder({("POST", "/crm/v3/objects/deals/search"): _search_results()})
        outcome = await find_best_deal(recorder.client(), "ghost")
        assert outcome == NoMatch(query="ghost")

    @pytest.mark.asyncio
    async def test_empty_query_is_no_match_without_call(self):
        recorder = Recorder()
        assert isinstance(await find_best_deal(recorder.client(), ""), NoMatch)
        assert recorder.requests == []


class TestDealLookups:
    @pytest.mark.asyncio
    async def test_owner_name(self):
        recorder = Recorder(
            default=httpx.Response(200, json={"firstName": "Dana", "lastName": "Reyes"})
        )
        assert await resolve_owner_name(recorder.client(), "7") == "Dana Reyes"

    @pytest.mark.asyncio
    async def test_owner_lookup_failure_is_none(self):
        recorder = Recorder(default=httpx.Response(404, json={"message": "not found"}))
        assert await resolve_owner_name(recorder.client(), "7") is None

    @pytest.mark.asyncio
    async def test_activities_capped_and_sorted(self):
        def batch(request: httpx.Request) -> httpx.Response:
            inputs = json.loads(request.content)["inputs"]
            return httpx.Response(
                200,
                json={
                    "results": [
                        {
                            "id": item["id"],
                            "properties": {"hs_timestamp": str(1_700_000_000_000 + int(item["id"]))},
                        }
                        for item in inputs
                    ]
                },
            )

        recorder = Recorder(
            {
                ("GET", "/crm/v4/objects/deals/42/associations/emails"): httpx.Response(
                    200, json={"results": [{"toObjectId": i} for i in range(1, 31)]}
                ),
                ("POST", "/crm/v3/objects/emails/batch/read"): batch,
            }
        )
        client = recorder.client()
        emails = await fetch_activities(client, BatchReader(client), "42", ActivityKind.EMAIL)

        assert len(emails) == 20
        assert all(isinstance(email, EmailActivity) for email in emails)
        stamps = [email.timestamp_ms for email in emails]
        assert stamps == sorted(stamps, reverse=True)

    @pytest.mark.asyncio
    async def test_activity_failure_degrades_to_empty(self):
        recorder = Recorder(default=httpx.Response(403, json={"message": "MISSING_SCOPES"}))
        client = recorder.client()
        assert await fetch_activities(client, BatchReader(client), "42", ActivityKind.CALL) == []

    @pytest.mark.asyncio
    async def test_line_items(self):
        recorder = Recorder(
            {
                ("GET", "/crm/v4/objects/deals/42/associations/line_items"): httpx.Response(
                    200, json={"results": [{"toObjectId": 5}]}
                ),
                ("POST", "/crm/v3/objects/line_items/batch/read"): httpx.Response(
                    200,
                    json={"results": [{"id": "5", "properties": {"name": "Platform", "quantity": "3"}}]},
                ),
            }
        )
        client = recorder.client()
        items = await fetch_line_items(client, BatchReader(client), "42")
        assert [item.name for item in items] == ["Platform"]
        assert items[0].render() == "  - Platform, qty 3"


# ── Record models ───────────────────────────────────────────────────────────


class TestRecordModels:
    def test_company_csm_owner(self):
        company = Company.from_crm({"id": 21, "properties": {"name": "Acme Corp", "csm": "8"}})
        assert company.id == "21"
        assert company.csm_owner_id == "8"

    def test_company_blank_csm_is_none(self):
        assert Company.from_crm({"id": "21", "properties": {"csm": ""}}).csm_owner_id is None

    def test_display_amount_with_currency(self):
        deal = Deal.from_crm(
            {"id": "2", "properties": {"amount": "48000", "deal_currency_code": "EUR"}}
        )
        assert deal.display_amount() == "EUR 48,000"

    def test_display_amount_defaults_to_dollars(self):
        assert Deal(id="2", name="Acme", amount="1234.5").display_amount() == "$1,234.50"

    def test_display_amount_keeps_unparseable_values(self):
        assert Deal(id="2", name="Acme", amount="TBD").display_amount() == "TBD"
        assert Deal(id="2", name="Acme", amount="inf").display_amount() == "inf"
        assert Deal(id="2", name="Acme").display_amount() is None
