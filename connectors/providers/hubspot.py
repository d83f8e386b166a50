"""HubSpotConnector — CRM pipeline from HubSpot (major units)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from connectors.base import SEARCH_LIMIT, BaseConnector, gather_sections
from connectors.normalize import crm_snapshot, to_float
from connectors.schemas import Contact, Deal, ProviderSummary, SearchKind, SearchResult

logger = logging.getLogger(__name__)

_API_BASE = "https://api.hubapi.com/crm/v3/objects"
_CLOSED_STAGES = {"closedwon", "closedlost"}
_DEAL_PROPERTIES = ["dealname", "amount", "dealstage", "closedate"]
_CONTACT_PROPERTIES = ["firstname", "lastname", "email", "phone", "company", "jobtitle"]


def _deal(record: Dict[str, Any]) -> Deal:
    props = record.get("properties") or {}
    return Deal(
        id=str(record.get("id")),
        name=props.get("dealname") or "Untitled deal",
        value=to_float(props.get("amount")),
        stage=props.get("dealstage"),
        expected_close_date=props.get("closedate"),
    )


def _contact(record: Dict[str, Any]) -> Contact:
    props = record.get("properties") or {}
    name = " ".join(p for p in (props.get("firstname"), props.get("lastname")) if p)
    return Contact(
        id=str(record.get("id")),
        name=name or props.get("email") or "Unnamed contact",
        email=props.get("email"),
        phone=props.get("phone"),
        company=props.get("company"),
        title=props.get("jobtitle"),
    )


class HubSpotConnector(BaseConnector):
    category = "crm"

    @property
    def provider_name(self) -> str:
        return "hubspot"

    @property
    def display_name(self) -> str:
        return "HubSpot"

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        # The search endpoint is the only one that reports a total.
        contacts, deal_data = await gather_sections(
            self.request_json(
                client, "POST", f"{_API_BASE}/contacts/search", access_token,
                json_body={"limit": 1, "properties": ["email"]},
            ),
            self.get_json(
                client, f"{_API_BASE}/deals", access_token,
                params={"limit": 10, "properties": ",".join(_DEAL_PROPERTIES)},
            ),
        )

        deals = [_deal(d) for d in (deal_data or {}).get("results") or []]

        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=self.display_name,
            crm=crm_snapshot(
                (contacts or {}).get("total") or 0,
                deals,
                lambda deal: deal.stage not in _CLOSED_STAGES,
            ),
        )

    async def search(
        self,
        access_token: str,
        scoped_id: Optional[str],
        kind: SearchKind,
        query: str,
        client: httpx.AsyncClient,
    ) -> SearchResult:
        if kind == "deal":
            obj, prop, properties = "deals", "dealname", _DEAL_PROPERTIES
        else:
            obj, prop, properties = "contacts", "firstname", _CONTACT_PROPERTIES

        payload = await self.request_json(
            client, "POST", f"{_API_BASE}/{obj}/search", access_token,
            json_body={
                "filterGroups": [
                    {"filters": [{"propertyName": prop, "operator": "CONTAINS_TOKEN", "value": query}]}
                ],
                "properties": properties,
                "limit": SEARCH_LIMIT,
            },
        )
        records = (payload or {}).get("results") or []

        if kind == "deal":
            return SearchResult(provider=self.provider_name, kind=kind, deals=[_deal(r) for r in records])
        return SearchResult(provider=self.provider_name, kind=kind, contacts=[_contact(r) for r in records])
