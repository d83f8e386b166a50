"""PipedriveConnector — CRM pipeline from Pipedrive (major units)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from connectors.base import SEARCH_LIMIT, BaseConnector, TokenGrant, gather_sections
from connectors.normalize import crm_snapshot, to_float
from connectors.schemas import Contact, Deal, ProviderSummary, SearchKind, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_API_DOMAIN = "https://api.pipedrive.com"


def _total(payload) -> Optional[int]:
    pagination = ((payload or {}).get("additional_data") or {}).get("pagination") or {}
    return pagination.get("total_count")


def _api_base(scoped_id: Optional[str]) -> str:
    domain = scoped_id if scoped_id and scoped_id.startswith("https://") else DEFAULT_API_DOMAIN
    return f"{domain.rstrip('/')}/v1"


def _name_of(value: Any) -> Optional[str]:
    return value.get("name") if isinstance(value, dict) else None


def _found_deal(item: Dict[str, Any]) -> Deal:
    return Deal(
        id=str(item.get("id")),
        name=item.get("title") or "Untitled deal",
        value=to_float(item.get("value")),
        stage=_name_of(item.get("stage")),
        expected_close_date=item.get("expected_close_date"),
    )


def _found_person(item: Dict[str, Any]) -> Contact:
    # Search items carry the first address and number as plain strings.
    emails = item.get("emails") or []
    phones = item.get("phones") or []
    return Contact(
        id=str(item.get("id")),
        name=item.get("name") or "Unnamed contact",
        email=item.get("primary_email") or (emails[0] if emails else None),
        phone=item.get("primary_phone") or (phones[0] if phones else None),
        company=_name_of(item.get("organization")),
    )


class PipedriveConnector(BaseConnector):
    category = "crm"

    @property
    def provider_name(self) -> str:
        return "pipedrive"

    @property
    def display_name(self) -> str:
        return "Pipedrive"

    async def scoped_id_from_grant(self, grant: TokenGrant, callback_params, client) -> Optional[str]:
        return grant.raw.get("api_domain") or None

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        base = _api_base(scoped_id)

        persons, deal_data = await gather_sections(
            self.get_json(client, f"{base}/persons", access_token, params={"start": 0, "limit": 1}),
            self.get_json(
                client, f"{base}/deals", access_token,
                params={"start": 0, "limit": 10, "status": "open"},
            ),
        )

        deals = [
            Deal(
                id=str(d.get("id")),
                name=d.get("title") or "Untitled deal",
                value=to_float(d.get("value")),
                stage=str(d["stage_id"]) if d.get("stage_id") is not None else None,
                expected_close_date=d.get("expected_close_date"),
            )
            for d in (deal_data or {}).get("data") or []
        ]

        # Only open deals are requested.
        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=self.display_name,
            crm=crm_snapshot(
                _total(persons) or 0,
                deals,
                lambda deal: True,
                total_deals=_total(deal_data),
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
        path = "deals" if kind == "deal" else "persons"
        payload = await self.get_json(
            client, f"{_api_base(scoped_id)}/{path}/search", access_token,
            params={"term": query, "limit": SEARCH_LIMIT},
        )
        items = [
            entry.get("item") or {}
            for entry in ((payload or {}).get("data") or {}).get("items") or []
        ]

        if kind == "deal":
            return SearchResult(provider=self.provider_name, kind=kind, deals=[_found_deal(i) for i in items])
        return SearchResult(provider=self.provider_name, kind=kind, contacts=[_found_person(i) for i in items])
