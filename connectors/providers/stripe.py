"""
StripeConnector — payments data from Stripe.

Units: **minor units** (cents); every amount goes through ``minor_to_major``
(zero-decimal currencies such as JPY are left as-is).

Two entry points:
  • ``fetch``          — customer-scoped view using the user's own Stripe
                         Connect token.  When the stored scoped id is a
                         customer id (``cus_…``) invoices and charges are
                         filtered to that customer.  The customer id is
                         the ``customer_id`` passed to the OAuth callback.
  • ``fetch_platform`` — platform-wide view using the platform secret key.
                         Only the aggregator calls it, and only for elevated
                         callers.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from connectors.base import BaseConnector, TokenGrant, gather_sections
from connectors.errors import NotConfigured
from connectors.normalize import (
    invoice_status,
    iso,
    minor_to_major,
    summarize_metrics,
    utcnow,
)
from connectors.schemas import CashFlow, Invoice, ProviderSummary, Transaction

logger = logging.getLogger(__name__)

_API_BASE = "https://api.stripe.com/v1"
CUSTOMER_PREFIX = "cus_"


class StripeConnector(BaseConnector):
    category = "payments"
    minor_units = True

    @property
    def provider_name(self) -> str:
        return "stripe"

    @property
    def display_name(self) -> str:
        return "Stripe"

    def account_label(self, grant: TokenGrant) -> str:
        return grant.raw.get("stripe_user_id") or self.display_name

    async def scoped_id_from_grant(self, grant: TokenGrant, callback_params, client) -> Optional[str]:
        customer_id = (callback_params.get("customer_id") or "").strip()
        return customer_id if customer_id.startswith(CUSTOMER_PREFIX) else None

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        customer_id = scoped_id if scoped_id and scoped_id.startswith(CUSTOMER_PREFIX) else None
        return await self._summarize(access_token, client, customer_id=customer_id)

    async def fetch_platform(self, secret_key: Optional[str], client: httpx.AsyncClient) -> ProviderSummary:
        """Platform-wide view; the caller is responsible for the privilege check."""
        if not secret_key:
            raise NotConfigured("Stripe platform key not configured", provider=self.provider_name)
        summary = await self._summarize(secret_key, client, customer_id=None)
        summary.provider = "Stripe (platform)"
        return summary

    async def _summarize(
        self,
        token: str,
        client: httpx.AsyncClient,
        *,
        customer_id: Optional[str],
    ) -> ProviderSummary:
        filters: Dict[str, Any] = {"customer": customer_id} if customer_id else {}
        now = utcnow()

        balance, invoice_data, charge_data, account = await gather_sections(
            self.get_json(client, f"{_API_BASE}/balance", token),
            self.get_json(client, f"{_API_BASE}/invoices", token, params={"limit": 20, **filters}),
            self.get_json(client, f"{_API_BASE}/charges", token, params={"limit": 10, **filters}),
            self.get_json(client, f"{_API_BASE}/account", token),
        )

        available = ((balance or {}).get("available") or [{}])[0]
        currency = (available.get("currency") or "usd").lower()
        balance_amount = minor_to_major(available.get("amount"), currency)

        invoices = []
        for inv in (invoice_data or {}).get("data") or []:
            status = inv.get("status")
            if status == "void":
                continue
            inv_currency = inv.get("currency") or currency
            due = iso(inv.get("due_date"))
            invoices.append(
                Invoice(
                    id=inv.get("id"),
                    number=inv.get("number") or inv.get("id"),
                    customer_name=inv.get("customer_name") or inv.get("customer_email") or "Customer",
                    amount=minor_to_major(inv.get("total"), inv_currency),
                    currency=inv_currency.upper(),
                    status=invoice_status(
                        paid=status == "paid",
                        draft=status == "draft",
                        due=due,
                        now=now,
                    ),
                    due_date=due,
                    created_date=iso(inv.get("created")),
                )
            )

        transactions = [
            Transaction(
                id=charge.get("id"),
                date=iso(charge.get("created")),
                description=charge.get("description") or "Payment received",
                amount=minor_to_major(charge.get("amount"), charge.get("currency") or currency),
                type="income",
            )
            for charge in (charge_data or {}).get("data") or []
            if charge.get("status") == "succeeded"
        ]

        account = account or {}
        account_name = (account.get("business_profile") or {}).get("name") or account.get("email") or "Stripe"

        return ProviderSummary(
            provider=self.display_name,
            category=self.category,
            connected_account=account_name,
            cash_flow=CashFlow(
                balance=balance_amount,
                income=round(sum(t.amount for t in transactions), 2),
                expenses=0.0,
                currency=currency.upper(),
            ),
            invoices=invoices,
            transactions=transactions,
            metrics=summarize_metrics(invoices, now),
        )
