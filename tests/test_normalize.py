"""
Tests for the shared normalisation rules (status, units, metrics).
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from connectors.normalize import (
    crm_snapshot,
    invoice_status,
    minor_to_major,
    parse_date,
    signed_amount,
    summarize_metrics,
    to_float,
)
from connectors.schemas import Deal, Invoice

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _invoice(status, amount=100.0, due=None):
    return Invoice(
        id="i", number="1", customer_name="c", amount=amount, currency="USD", status=status, due_date=due
    )


class TestInvoiceStatus:
    def test_unpaid_due_yesterday_is_overdue(self):
        assert invoice_status(paid=False, due="2026-03-14", now=NOW) == "overdue"

    def test_unpaid_due_tomorrow_is_unpaid(self):
        assert invoice_status(paid=False, due="2026-03-16", now=NOW) == "unpaid"

    def test_due_today_is_not_yet_overdue(self):
        assert invoice_status(paid=False, due="2026-03-15", now=NOW) == "unpaid"

    def test_unix_timestamp_due_date(self):
        earlier = int((NOW - timedelta(hours=1)).timestamp())
        assert invoice_status(paid=False, due=earlier, now=NOW) == "overdue"

    def test_paid_wins_over_due_date(self):
        assert invoice_status(paid=True, due="2020-01-01", now=NOW) == "paid"

    def test_draft_is_never_overdue(self):
        assert invoice_status(paid=False, draft=True, due="2020-01-01", now=NOW) == "draft"

    def test_no_due_date(self):
        assert invoice_status(paid=False, due=None, now=NOW) == "unpaid"


class TestUnits:
    def test_minor_units_divided(self):
        assert minor_to_major(2550, "usd") == 25.50

    def test_zero_decimal_currency_untouched(self):
        assert minor_to_major(5000, "jpy") == 5000.0

    def test_missing_amount(self):
        assert minor_to_major(None) == 0.0

    @pytest.mark.parametrize("value,expected", [("25.50", 25.5), (25.5, 25.5), (None, 0.0), ("n/a", 0.0)])
    def test_major_units_pass_through(self, value, expected):
        assert to_float(value) == expected

    def test_signed_amount(self):
        assert signed_amount(40.0, "expense") == -40.0
        assert signed_amount(-40.0, "income") == 40.0


class TestParseDate:
    def test_date_only(self):
        assert parse_date("2026-03-01") == date(2026, 3, 1)

    def test_iso_with_z(self):
        assert parse_date("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, tzinfo=timezone.utc)

    def test_garbage(self):
        assert parse_date("next tuesday") is None


class TestMetrics:
    def test_receivable_overdue_and_upcoming(self):
        invoices = [
            _invoice("paid", 500),
            _invoice("draft", 50),
            _invoice("overdue", 100, "2026-03-01"),
            _invoice("unpaid", 200, "2026-03-18"),
            _invoice("unpaid", 300, "2026-04-30"),
        ]
        metrics = summarize_metrics(invoices, NOW, total_payable=75.456)
        assert metrics.total_receivable == 600.0
        assert metrics.overdue_count == 1
        assert metrics.upcoming_payments == 1
        assert metrics.total_payable == 75.46


class TestCrmSnapshot:
    def test_open_deals_and_hot_list(self):
        deals = [Deal(id=str(i), name=f"d{i}", value=10.0 * i, stage="open") for i in range(1, 8)]
        deals.append(Deal(id="won", name="won", value=999.0, stage="closedwon"))
        snap = crm_snapshot(42, deals, lambda d: d.stage != "closedwon")
        assert snap.total_contacts == 42
        assert snap.total_deals == 8
        assert snap.open_deals == 7
        assert snap.pipeline_value == 280.0
        assert len(snap.hot_deals) == 5
