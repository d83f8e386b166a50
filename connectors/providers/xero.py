"""
XeroConnector — accounting data from Xero.

Units: major units.  Scoped id: the tenant id, looked up once from
``/connections`` right after the code exchange and stored in
``integrations.scopes``; every API call must name it in the
``Xero-tenant-id`` header.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from connectors.base import BaseConnector, TokenGrant, gather_sections
from connectors.errors import ReconnectRequired
from connectors.normalize import invoice_status, summarize_metrics, to_float, utcnow
from connectors.schemas import Invoice, ProviderSummary

logger = logging.getLogger(__name__)

_API_BASE = "https://api.xero.com/api.xro/2.0"
_CONNECTIONS_URL = "https://api.xero.com/connections"

_SKIPPED_STATUSES = {"VOIDED", "DELETED"}
_DRAFT_STATUSES = {"DRAFT", "SUBMITTED"}


class XeroConnector(BaseConnector):
    category = "accounting"
    requires_scoped_id = True
    access_token_ttl = 1800

    @property
    def provider_name(self) -> str:
        return "xero"

    @property
    def display_name(self) -> str:
        return "Xero"

    async def scoped_id_from_grant(self, grant: TokenGrant, callback_params, client) -> Optional[str]:
        connections = await self.get_json(client, _CONNECTIONS_URL, grant.access_token)
        if not connections:
            return None
        return connections[0].get("tenantId")

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        tenant_id = (scoped_id or "").strip()
        if not tenant_id:
            raise ReconnectRequired("Xero tenant id missing, reconnect Xero", provider=self.provider_name)

        headers: Dict[str, str] = {"Xero-tenant-id": tenant_id}
        now = utcnow()

        invoice_data, org_data = await gather_sections(
            self.get_json(
                client, f"{_API_BASE}/Invoices", access_token,
                params={"order": "DueDate DESC", "page": "1"}, headers=headers,
            ),
            self.get_json(client, f"{_API_BASE}/Organisation", access_token, headers=headers),
        )
        raw_invoices = (invoice_data or {}).get("Invoices") or []

        invoices = []
        total_payable = 0.0
        for inv in raw_invoices:
            status = (inv.get("Status") or "").upper()
            if status in _SKIPPED_STATUSES:
                continue
            due = (inv.get("DueDateString") or "")[:10] or None
            if inv.get("Type") == "ACCPAY":
                if status != "PAID" and status not in _DRAFT_STATUSES:
                    total_payable += to_float(inv.get("AmountDue"))
                continue
            if len(invoices) >= 20:
                continue
            invoices.append(
                Invoice(
                    id=str(inv.get("InvoiceID")),
                    number=inv.get("InvoiceNumber") or str(inv.get("InvoiceID")),
                    customer_name=(inv.get("Contact") or {}).get("Name") or "Unknown",
                    amount=to_float(inv.get("Total")),
                    currency=inv.get("CurrencyCode") or "USD",
                    status=invoice_status(
                        paid=status == "PAID",
                        draft=status in _DRAFT_STATUSES,
                        due=due,
                        now=now,
                    ),
                    due_date=due,
                    created_date=(inv.get("DateString") or "")[:10] or None,
                )
            )

        organisations = (org_data or {}).get("Organisations") or [{}]
        org_name = organisations[0].get("Name") or "Xero"

        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=org_name,
            invoices=invoices,
            metrics=summarize_metrics(invoices, now, total_payable=total_payable),
        )
