"""
ZohoConnector — CRM pipeline from Zoho CRM (major units).

Zoho does not accept ``Bearer``; it expects ``Zoho-oauthtoken <token>``.
The token response names the data-centre host in ``api_domain``, which is
stored as the scoped id when present.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from connectors.base import SEARCH_LIMIT, BaseConnector, TokenGrant, gather_sections
from connectors.normalize import crm_snapshot, to_float
from connectors.schemas import Contact, Deal, ProviderSummary, SearchKind, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_API_DOMAIN = "https://www.zohoapis.com"
_CLOSED_STAGES = {"Closed Won", "Closed Lost"}


def _api_base(scoped_id: Optional[str]) -> str:
    domain = scoped_id if scoped_id and scoped_id.startswith("https://") else DEFAULT_API_DOMAIN
    return f"{domain.rstrip('/')}/crm/v3"


def _criteria_value(query: str) -> str:
    """Escape the characters that delimit Zoho search criteria."""
    for ch in ("\\", "(", ")", ","):
        query = query.replace(ch, "\\" + ch)
    return query


def _deal(record: Dict[str, Any]) -> Deal:
    return Deal(
        id=str(record.get("id")),
        name=record.get("Deal_Name") or "Untitled deal",
        value=to_float(record.get("Amount")),
        stage=record.get("Stage"),
        expected_close_date=record.get("Closing_Date"),
    )


def _contact(record: Dict[str, Any]) -> Contact:
    account = record.get("Account_Name") if isinstance(record.get("Account_Name"), dict) else {}
    return Contact(
        id=str(record.get("id")),
        name=record.get("Full_Name") or record.get("Email") or "Unnamed contact",
        email=record.get("Email"),
        phone=record.get("Phone"),
        company=account.get("name"),
        title=record.get("Title"),
    )


class ZohoConnector(BaseConnector):
    category = "crm"

    @property
    def provider_name(self) -> str:
        return "zoho"

    @property
    def display_name(self) -> str:
        return "Zoho CRM"

    def auth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Zoho-oauthtoken {access_token}", "Accept": "application/json"}

    async def scoped_id_from_grant(self, grant: TokenGrant, callback_params, client) -> Optional[str]:
        return grant.raw.get("api_domain") or None

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        base = _api_base(scoped_id)

        count, deal_data = await gather_sections(
            self.get_json(client, f"{base}/Contacts/actions/count", access_token),
            self.get_json(
                client, f"{base}/Deals", access_token,
                params={"per_page": 10, "fields": "Deal_Name,Amount,Stage,Closing_Date"},
            ),
        )

        deals = [_deal(d) for d in (deal_data or {}).get("data") or []]

        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=self.display_name,
            crm=crm_snapshot(
                (count or {}).get("count") or 0,
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
        module, field = ("Deals", "Deal_Name") if kind == "deal" else ("Contacts", "Full_Name")
        # An empty result is a 204, which request_json reports as None.
        payload = await self.get_json(
            client, f"{_api_base(scoped_id)}/{module}/search", access_token,
            params={"criteria": f"({field}:contains:{_criteria_value(query)})", "per_page": SEARCH_LIMIT},
        )
        records = (payload or {}).get("data") or []

        if kind == "deal":
            return SearchResult(provider=self.provider_name, kind=kind, deals=[_deal(r) for r in records])
        return SearchResult(provider=self.provider_name, kind=kind, contacts=[_contact(r) for r in records])
