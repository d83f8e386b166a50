"""
Pydantic schemas for the provider-agnostic summary returned by the
aggregator, plus the request / response bodies of the connector routes.
"""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

InvoiceStatus = Literal["paid", "unpaid", "overdue", "draft"]
TransactionType = Literal["income", "expense"]
SearchKind = Literal["contact", "deal"]


# ═══════════════════════════════════════════════════════════════════════════════
# Unified summary
# ═══════════════════════════════════════════════════════════════════════════════


class CashFlow(BaseModel):
    balance: float = 0.0
    income: float = 0.0
    expenses: float = 0.0
    currency: str = "USD"
    period: str = "last 30 days"


class Invoice(BaseModel):
    id: str
    number: str
    customer_name: str
    amount: float
    currency: str
    status: InvoiceStatus
    due_date: Optional[str] = None
    created_date: Optional[str] = None


class Transaction(BaseModel):
    id: str
    date: Optional[str] = None
    description: str
    amount: float  # signed: income > 0, expense < 0
    type: TransactionType


class Metrics(BaseModel):
    total_receivable: float = 0.0
    total_payable: float = 0.0
    overdue_count: int = 0
    upcoming_payments: int = 0


class Deal(BaseModel):
    id: str
    name: str
    value: float = 0.0
    stage: Optional[str] = None
    expected_close_date: Optional[str] = None


class CrmSnapshot(BaseModel):
    total_contacts: int = 0
    total_deals: int = 0
    open_deals: int = 0
    pipeline_value: float = 0.0
    hot_deals: List[Deal] = Field(default_factory=list)


class DriveFile(BaseModel):
    id: str
    name: str
    mime_type: Optional[str] = None
    web_view_link: Optional[str] = None
    icon_link: Optional[str] = None
    modified_time: Optional[str] = None
    size: Optional[int] = None


class ProviderSummary(BaseModel):
    """One provider's data in the shared internal shape."""

    provider: str
    category: str
    connected_account: str = ""
    last_sync: Optional[str] = None
    cash_flow: Optional[CashFlow] = None
    invoices: List[Invoice] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    metrics: Metrics = Field(default_factory=Metrics)
    crm: Optional[CrmSnapshot] = None
    files: List[DriveFile] = Field(default_factory=list)


class ProviderIssue(BaseModel):
    """Why a provider was left out of an aggregate result."""

    provider: str
    code: str


class AggregateResult(BaseModel):
    connected: bool
    data: List[ProviderSummary] = Field(default_factory=list)
    issues: List[ProviderIssue] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# CRM search
# ═══════════════════════════════════════════════════════════════════════════════


class Contact(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    title: Optional[str] = None


class SearchResult(BaseModel):
    provider: str
    kind: SearchKind
    contacts: List[Contact] = Field(default_factory=list)
    deals: List[Deal] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# Routes
# ═══════════════════════════════════════════════════════════════════════════════


class StartAuthorizationRequest(BaseModel):
    provider: str


class StartAuthorizationResponse(BaseModel):
    url: str
    provider: str
    warning: Optional[str] = None


class CallbackRequest(BaseModel):
    code: str
    provider: str
    state: Optional[str] = None
    realm_id: Optional[str] = Field(default=None, alias="realmId")
    instance_url: Optional[str] = None
    customer_id: Optional[str] = Field(default=None, alias="customerId")

    model_config = {"populate_by_name": True}


class MigrationCounts(BaseModel):
    migrated: int = 0
    skipped: int = 0
    errors: int = 0


class MigrationReport(BaseModel):
    integrations: MigrationCounts = Field(default_factory=MigrationCounts)
    provider_configs: MigrationCounts = Field(default_factory=MigrationCounts)


class SearchRequest(BaseModel):
    kind: SearchKind
    query: str = Field(min_length=1, max_length=200)
    provider: Optional[str] = None
