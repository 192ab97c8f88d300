"""
Reports count SUBMITTED and PAID invoices only.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from tradebooks.errors import ValidationError
from tradebooks.reports import ReportService


class TestProfitLoss:
    def test_only_committed_invoices_count(self, session, service, sale_payload, purchase_payload):
        sale = service.create(sale_payload())
        service.submit(sale.id)
        purchase = service.create(purchase_payload())
        service.submit(purchase.id)
        service.create(sale_payload())  # draft
        cancelled = service.create(sale_payload())
        service.cancel(cancelled.id)

        summary = ReportService(session).profit_loss()

        assert summary["total_sales"] == Decimal("12980.00")
        assert summary["total_purchases"] == Decimal("44840.00")
        assert summary["profit_loss"] == Decimal("-31860.00")
        assert summary["profit_margin"] == Decimal("-245.45")

    def test_date_window(self, session, service, sale_payload):
        early = service.create(sale_payload(date="2025-10-01"))
        late = service.create(sale_payload(date="2025-11-20"))
        service.submit(early.id)
        service.submit(late.id)

        summary = ReportService(session).profit_loss(
            date_from=datetime(2025, 11, 1), date_to=datetime(2025, 11, 30, 23, 59)
        )
        assert summary["total_sales"] == Decimal("12980.00")

    def test_empty(self, session):
        summary = ReportService(session).profit_loss()
        assert summary["total_sales"] == Decimal("0.00")
        assert summary["profit_margin"] == Decimal("0.00")


class TestWeeklySales:
    def test_buckets_by_monday(self, session, service, sale_payload):
        # 2025-11-05 is a Wednesday, 2025-11-10 a Monday
        for day in ("2025-11-05", "2025-11-09", "2025-11-10"):
            invoice = service.create(sale_payload(date=day))
            service.submit(invoice.id)
        draft = service.create(sale_payload(date="2025-11-11"))

        buckets = ReportService(session).weekly_sales(weeks=3, end=date(2025, 11, 12))

        assert [b["week_start"] for b in buckets] == [date(2025, 10, 27), date(2025, 11, 3), date(2025, 11, 10)]
        assert [b["count"] for b in buckets] == [0, 2, 1]
        assert buckets[1]["total"] == Decimal("25960.00")
        assert draft.status == "DRAFT"

    def test_weeks_floor_is_one(self, session):
        assert len(ReportService(session).weekly_sales(weeks=0, end=date(2025, 11, 12))) == 1


class TestDashboard:
    def test_counts_and_totals(self, session, service, sale_payload, purchase_payload, air_filter, supplier):
        purchase = service.create(purchase_payload())
        service.submit(purchase.id)
        sale = service.create(sale_payload())
        service.submit(sale.id)
        service.create(sale_payload())  # draft

        summary = ReportService(session).dashboard(low_stock_threshold=5)

        assert summary["total_parts"] == 2
        assert summary["total_suppliers"] == 1
        assert summary["total_customers"] == 1
        assert summary["purchases"] == {"count": 1, "total": Decimal("44840.00")}
        assert summary["sales"] == {"count": 1, "total": Decimal("12980.00")}
        # hydraulic filter: +20 -5 -5 = 10, air filter: 0
        assert [row["part"].part_number for row in summary["low_stock"]] == ["JCB-AF-002"]

    def test_empty(self, session):
        summary = ReportService(session).dashboard()
        assert summary["sales"] == {"count": 0, "total": Decimal("0.00")}
        assert summary["low_stock"] == []


class TestMonthly:
    def test_twelve_buckets(self, session, service, sale_payload, purchase_payload):
        for payload in (sale_payload(date="2025-03-10"), sale_payload(date="2025-03-28"), purchase_payload()):
            invoice = service.create(payload)
            service.submit(invoice.id)
        service.create(sale_payload(date="2025-04-01"))  # draft
        other_year = service.create(sale_payload(date="2024-03-10"))
        service.submit(other_year.id)

        buckets = ReportService(session).monthly(2025)

        assert [b["month"] for b in buckets] == list(range(1, 13))
        assert buckets[2] == {"month": 3, "purchase": Decimal("0.00"), "sale": Decimal("25960.00")}
        assert buckets[3]["sale"] == Decimal("0.00")
        assert buckets[10]["purchase"] == Decimal("44840.00")

    def test_type_filter(self, session, service, sale_payload, purchase_payload):
        for payload in (sale_payload(), purchase_payload()):
            invoice = service.create(payload)
            service.submit(invoice.id)

        buckets = ReportService(session).monthly(2025, invoice_type="sale")
        assert buckets[10] == {"month": 11, "purchase": Decimal("0.00"), "sale": Decimal("12980.00")}

    @pytest.mark.parametrize("year,invoice_type", [(0, None), (2025, "RETURN")])
    def test_invalid_arguments(self, session, year, invoice_type):
        with pytest.raises(ValidationError):
            ReportService(session).monthly(year, invoice_type=invoice_type)


class TestTopParts:
    def test_ranked_by_amount(self, session, service, sale_payload, air_filter):
        big = sale_payload(quantity="1", rate="2200")
        big["items"].append({"partId": air_filter.id, "quantity": "5", "rate": "1600"})
        for payload in (big, sale_payload(quantity="2", rate="2200")):
            invoice = service.create(payload)
            service.submit(invoice.id)
        service.create(sale_payload(quantity="100"))  # draft

        rows = ReportService(session).top_parts()

        assert [r["part"].part_number for r in rows] == ["JCB-AF-002", "JCB-HF-001"]
        assert rows[0]["total_amount"] == Decimal("8000.00")
        assert rows[1]["total_quantity"] == Decimal("3")
        assert rows[1]["total_amount"] == Decimal("6600.00")

    def test_limit_and_type(self, session, service, sale_payload, purchase_payload):
        for payload in (sale_payload(), purchase_payload()):
            invoice = service.create(payload)
            service.submit(invoice.id)

        assert len(ReportService(session).top_parts(limit=1)) == 1
        rows = ReportService(session).top_parts(invoice_type="PURCHASE")
        assert rows[0]["total_amount"] == Decimal("40000.00")
        with pytest.raises(ValidationError):
            ReportService(session).top_parts(invoice_type="RETURN")
