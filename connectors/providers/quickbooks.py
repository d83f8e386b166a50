"""
QuickBooksConnector — accounting data from QuickBooks Online.

Strict OAuth: credentials come only from the ``quickbooks`` row in
``integration_configs``; each customer brings their own app registration.

Units: the QuickBooks API reports amounts in major units (dollars).
Scoped id: the company ``realmId`` is passed on the OAuth redirect, never
in the token response, so it is captured at connect time and stored in
``integrations.scopes``.  Access tokens live one hour and the refresh token
rotates on every refresh.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from connectors.base import BaseConnector, TokenGrant, gather_sections
from connectors.errors import ReconnectRequired
from connectors.normalize import (
    invoice_status,
    iso,
    signed_amount,
    summarize_metrics,
    to_float,
    utcnow,
)
from connectors.schemas import Invoice, ProviderSummary, Transaction

logger = logging.getLogger(__name__)

_API_BASE = "https://quickbooks.api.intuit.com/v3/company"
_SANDBOX_API_BASE = "https://sandbox-quickbooks.api.intuit.com/v3/company"
_MINOR_VERSION = "65"

_INVOICE_QUERY = "SELECT * FROM Invoice ORDERBY DueDate DESC MAXRESULTS 20"
_PURCHASE_QUERY = "SELECT * FROM Purchase ORDERBY TxnDate DESC MAXRESULTS 10"
_BILL_QUERY = "SELECT * FROM Bill WHERE Balance > '0' MAXRESULTS 100"


class QuickBooksConnector(BaseConnector):
    """OAuth2 connector and data adapter for QuickBooks Online."""

    category = "accounting"
    strict_credentials = True
    requires_scoped_id = True
    access_token_ttl = 3600

    def __init__(self, sandbox: bool = False) -> None:
        self._api_base = _SANDBOX_API_BASE if sandbox else _API_BASE

    @property
    def provider_name(self) -> str:
        return "quickbooks"

    @property
    def display_name(self) -> str:
        return "QuickBooks"

    async def scoped_id_from_grant(self, grant: TokenGrant, callback_params, client) -> Optional[str]:
        return callback_params.get("realm_id") or None

    async def _query(self, client, base: str, token: str, query: str, entity: str) -> List[Dict[str, Any]]:
        data = await self.get_json(
            client,
            f"{base}/query",
            token,
            params={"query": query, "minorversion": _MINOR_VERSION},
        )
        if not data:
            return []
        return (data.get("QueryResponse") or {}).get(entity) or []

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        realm_id = (scoped_id or "").split(",")[0].strip()
        if not realm_id:
            raise ReconnectRequired(
                "QuickBooks company id missing, reconnect QuickBooks", provider=self.provider_name
            )

        base = f"{self._api_base}/{realm_id}"
        now = utcnow()

        raw_invoices, company, purchases, bills = await gather_sections(
            self._query(client, base, access_token, _INVOICE_QUERY, "Invoice"),
            self.get_json(client, f"{base}/companyinfo/{realm_id}", access_token,
                          params={"minorversion": _MINOR_VERSION}),
            self._query(client, base, access_token, _PURCHASE_QUERY, "Purchase"),
            self._query(client, base, access_token, _BILL_QUERY, "Bill"),
        )
        logger.info("QuickBooks invoices received: %d", len(raw_invoices))

        invoices = [
            Invoice(
                id=str(inv.get("Id")),
                number=inv.get("DocNumber") or str(inv.get("Id")),
                customer_name=(inv.get("CustomerRef") or {}).get("name") or "Unknown",
                amount=to_float(inv.get("TotalAmt")),
                currency=(inv.get("CurrencyRef") or {}).get("value") or "USD",
                status=invoice_status(
                    paid=inv.get("Balance") is not None and to_float(inv.get("Balance")) == 0,
                    due=inv.get("DueDate"),
                    now=now,
                ),
                due_date=inv.get("DueDate"),
                created_date=inv.get("TxnDate"),
            )
            for inv in raw_invoices
        ]

        transactions = []
        for p in purchases:
            lines = p.get("Line") or [{}]
            transactions.append(
                Transaction(
                    id=str(p.get("Id")),
                    date=iso(p.get("TxnDate")),
                    description=p.get("PrivateNote") or lines[0].get("Description") or "Purchase",
                    amount=signed_amount(to_float(p.get("TotalAmt")), "expense"),
                    type="expense",
                )
            )

        company_name = ((company or {}).get("CompanyInfo") or {}).get("CompanyName") or "QuickBooks"
        total_payable = sum(to_float(b.get("Balance")) for b in bills)

        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=company_name,
            invoices=invoices,
            transactions=transactions,
            metrics=summarize_metrics(invoices, now, total_payable=total_payable),
        )
