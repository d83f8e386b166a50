"""
Normalisation shared by every provider adapter.

All adapters classify invoices, convert amounts and derive metrics
through these helpers so the rules are applied identically:

* overdue  — native status is open/unpaid AND the due date is strictly in
  the past at call time.  Date-only due dates compare by calendar day
  (UTC): an invoice due today is not overdue until tomorrow.
* units    — minor-unit amounts (cents) are divided by 100, except for
  zero-decimal currencies; major-unit amounts pass through.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Union

from connectors.schemas import CrmSnapshot, Deal, Invoice, InvoiceStatus, Metrics, TransactionType

DateLike = Union[date, datetime]

UPCOMING_WINDOW = timedelta(days=7)

# Currencies Stripe bills in whole units.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Amounts ─────────────────────────────────────────────────────────────


def minor_to_major(amount: Optional[Union[int, float]], currency: Optional[str] = None) -> float:
    """Convert a minor-unit amount (e.g. cents) to major units."""
    if amount is None:
        return 0.0
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return float(amount)
    return round(float(amount) / 100, 2)


def to_float(value) -> float:
    """Major-unit amount from a provider field that may be a string or null."""
    if value in (None, ""):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def signed_amount(amount: float, kind: TransactionType) -> float:
    magnitude = abs(amount)
    return -magnitude if kind == "expense" else magnitude


# ── Dates ───────────────────────────────────────────────────────────────


def parse_date(value) -> Optional[DateLike]:
    """
    Parse a provider date.

    Accepts unix timestamps (seconds), ``YYYY-MM-DD`` strings (returned as
    ``date``) and ISO-8601 datetimes (returned as aware ``datetime``).
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def iso(value) -> Optional[str]:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed is not None else None


def is_past_due(due: Optional[DateLike], now: datetime) -> bool:
    if due is None:
        return False
    if isinstance(due, datetime):
        return due < now
    return due < now.astimezone(timezone.utc).date()


def _due_within(due: Optional[DateLike], now: datetime, window: timedelta) -> bool:
    if due is None:
        return False
    if isinstance(due, datetime):
        return now <= due <= now + window
    today = now.astimezone(timezone.utc).date()
    return today <= due <= (now + window).astimezone(timezone.utc).date()


# ── Invoices ────────────────────────────────────────────────────────────


def invoice_status(*, paid: bool, draft: bool = False, due, now: datetime) -> InvoiceStatus:
    """Map a provider's paid/draft flags and due date to the shared status."""
    if paid:
        return "paid"
    if draft:
        return "draft"
    if is_past_due(parse_date(due), now):
        return "overdue"
    return "unpaid"


def summarize_metrics(
    invoices: Iterable[Invoice],
    now: datetime,
    *,
    total_payable: float = 0.0,
) -> Metrics:
    invoices = list(invoices)
    open_invoices = [i for i in invoices if i.status in ("unpaid", "overdue")]
    upcoming = [
        i for i in invoices
        if i.status == "unpaid" and _due_within(parse_date(i.due_date), now, UPCOMING_WINDOW)
    ]
    return Metrics(
        total_receivable=round(sum(i.amount for i in open_invoices), 2),
        total_payable=round(total_payable, 2),
        overdue_count=sum(1 for i in invoices if i.status == "overdue"),
        upcoming_payments=len(upcoming),
    )


# ── CRM ─────────────────────────────────────────────────────────────────


def crm_snapshot(
    total_contacts: int,
    deals: Iterable[Deal],
    is_open: Callable[[Deal], bool],
    *,
    total_deals: Optional[int] = None,
    hot_limit: int = 5,
) -> CrmSnapshot:
    """Pipeline view over a provider's most recent deals."""
    deals = list(deals)
    open_deals = [d for d in deals if is_open(d)]
    return CrmSnapshot(
        total_contacts=int(total_contacts or 0),
        total_deals=total_deals if total_deals is not None else len(deals),
        open_deals=len(open_deals),
        pipeline_value=round(sum(d.value for d in open_deals), 2),
        hot_deals=open_deals[:hot_limit],
    )
