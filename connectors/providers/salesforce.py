"""
SalesforceConnector — CRM pipeline from Salesforce.

Units: major units.  Scoped id: the org's ``instance_url`` from the token
response.  Salesforce only serves the REST API from that host, so a
connection stored without it must be reconnected.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from connectors.base import SEARCH_LIMIT, BaseConnector, TokenGrant, gather_sections
from connectors.errors import ReconnectRequired
from connectors.normalize import crm_snapshot, to_float
from connectors.schemas import Contact, Deal, ProviderSummary, SearchKind, SearchResult

logger = logging.getLogger(__name__)

_API_VERSION = "v58.0"
_CONTACT_COUNT = "SELECT COUNT() FROM Contact"
_OPPORTUNITIES = (
    "SELECT Id, Name, Amount, StageName, CloseDate, IsClosed "
    "FROM Opportunity ORDER BY CloseDate DESC LIMIT 10"
)


def _soql_like(query: str) -> str:
    """``query`` as the body of a quoted SOQL LIKE pattern."""
    escaped = query.replace("\\", "\\\\").replace("'", "\\'")
    return escaped.replace("%", "\\%").replace("_", "\\_")


def _opportunity(opp: Dict[str, Any]) -> Deal:
    return Deal(
        id=str(opp.get("Id")),
        name=opp.get("Name") or "Untitled opportunity",
        value=to_float(opp.get("Amount")),
        stage=opp.get("StageName"),
        expected_close_date=opp.get("CloseDate"),
    )


def _contact(record: Dict[str, Any]) -> Contact:
    account = record.get("Account") if isinstance(record.get("Account"), dict) else {}
    return Contact(
        id=str(record.get("Id")),
        name=record.get("Name") or "Unnamed contact",
        email=record.get("Email"),
        phone=record.get("Phone"),
        company=account.get("Name"),
        title=record.get("Title"),
    )


class SalesforceConnector(BaseConnector):
    category = "crm"
    requires_scoped_id = True

    @property
    def provider_name(self) -> str:
        return "salesforce"

    @property
    def display_name(self) -> str:
        return "Salesforce"

    async def scoped_id_from_grant(self, grant: TokenGrant, callback_params, client) -> Optional[str]:
        return grant.raw.get("instance_url") or callback_params.get("instance_url") or None

    def _instance_url(self, scoped_id: Optional[str]) -> str:
        instance_url = (scoped_id or "").strip().rstrip("/")
        if not instance_url.startswith("https://"):
            raise ReconnectRequired(
                "Salesforce instance URL missing, reconnect Salesforce", provider=self.provider_name
            )
        return instance_url

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        instance_url = self._instance_url(scoped_id)

        query_url = f"{instance_url}/services/data/{_API_VERSION}/query"
        contacts, opportunities = await gather_sections(
            self.get_json(client, query_url, access_token, params={"q": _CONTACT_COUNT}),
            self.get_json(client, query_url, access_token, params={"q": _OPPORTUNITIES}),
        )

        deals = []
        closed = set()
        for opp in (opportunities or {}).get("records") or []:
            deal = _opportunity(opp)
            if opp.get("IsClosed") or "Closed" in (deal.stage or ""):
                closed.add(deal.id)
            deals.append(deal)

        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=instance_url.removeprefix("https://"),
            crm=crm_snapshot(
                (contacts or {}).get("totalSize") or 0,
                deals,
                lambda deal: deal.id not in closed,
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
        instance_url = self._instance_url(scoped_id)
        pattern = _soql_like(query)
        if kind == "deal":
            soql = (
                "SELECT Id, Name, Amount, StageName, CloseDate FROM Opportunity "
                f"WHERE Name LIKE '%{pattern}%' LIMIT {SEARCH_LIMIT}"
            )
        else:
            soql = (
                "SELECT Id, Name, Email, Phone, Title, Account.Name FROM Contact "
                f"WHERE Name LIKE '%{pattern}%' LIMIT {SEARCH_LIMIT}"
            )

        payload = await self.get_json(
            client, f"{instance_url}/services/data/{_API_VERSION}/query", access_token,
            params={"q": soql},
        )
        records = (payload or {}).get("records") or []

        if kind == "deal":
            return SearchResult(
                provider=self.provider_name, kind=kind, deals=[_opportunity(r) for r in records]
            )
        return SearchResult(provider=self.provider_name, kind=kind, contacts=[_contact(r) for r in records])
