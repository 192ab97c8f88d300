"""
tradebooks/reports.py

Read-only summaries over committed invoices.

Only SUBMITTED and PAID invoices count: drafts are not yet business events and
cancelled invoices never happened.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func

from .errors import ValidationError
from .models import (
    Customer,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    InvoiceType,
    Part,
    Supplier,
    _money,
    _to_decimal,
)
from .stock import StockQueryService

COUNTED_STATUSES = (InvoiceStatus.SUBMITTED.value, InvoiceStatus.PAID.value)


class ReportService:
    def __init__(self, session):
        self.session = session

    def _counted(self):
        return self.session.query(Invoice).filter(Invoice.status.in_(COUNTED_STATUSES))

    def profit_loss(self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> dict:
        q = (
            self.session.query(Invoice.type, func.coalesce(func.sum(Invoice.total), 0))
            .filter(Invoice.status.in_(COUNTED_STATUSES))
        )
        if date_from:
            q = q.filter(Invoice.date >= date_from)
        if date_to:
            q = q.filter(Invoice.date <= date_to)
        sums = {invoice_type: _to_decimal(total) for invoice_type, total in q.group_by(Invoice.type).all()}

        sales = _money(sums.get(InvoiceType.SALE.value, Decimal("0")))
        purchases = _money(sums.get(InvoiceType.PURCHASE.value, Decimal("0")))
        profit = sales - purchases
        margin = _money(profit / sales * 100) if sales > 0 else Decimal("0.00")

        return {
            "total_sales": sales,
            "total_purchases": purchases,
            "profit_loss": profit,
            "profit_margin": margin,
        }

    def weekly_sales(self, weeks: int = 8, end: Optional[date] = None) -> List[dict]:
        """Sale totals for `weeks` consecutive Monday-start weeks ending with the week of `end`."""
        if weeks < 1:
            weeks = 1
        end = end or date.today()
        last_monday = end - timedelta(days=end.weekday())
        first_monday = last_monday - timedelta(weeks=weeks - 1)

        buckets = [
            {"week_start": first_monday + timedelta(weeks=i), "total": Decimal("0.00"), "count": 0}
            for i in range(weeks)
        ]

        invoices = (
            self._counted()
            .filter(
                Invoice.type == InvoiceType.SALE.value,
                Invoice.date >= datetime.combine(first_monday, time.min),
                Invoice.date < datetime.combine(last_monday + timedelta(weeks=1), time.min),
            )
            .all()
        )
        for invoice in invoices:
            index = (invoice.date.date() - first_monday).days // 7
            buckets[index]["total"] = _money(buckets[index]["total"] + _to_decimal(invoice.total))
            buckets[index]["count"] += 1

        return buckets

    def dashboard(self, low_stock_threshold=5, low_stock_limit: int = 10) -> dict:
        """Catalog counts, invoice count and total per type, and the lowest-stock parts."""
        per_type = {
            invoice_type: (count, _to_decimal(total))
            for invoice_type, count, total in (
                self.session.query(Invoice.type, func.count(Invoice.id), func.coalesce(func.sum(Invoice.total), 0))
                .filter(Invoice.status.in_(COUNTED_STATUSES))
                .group_by(Invoice.type)
                .all()
            )
        }

        def _summary(invoice_type: InvoiceType) -> dict:
            count, total = per_type.get(invoice_type.value, (0, Decimal("0")))
            return {"count": count, "total": _money(total)}

        return {
            "total_parts": self.session.query(Part).filter(Part.is_deleted.is_(False)).count(),
            "total_suppliers": self.session.query(Supplier).count(),
            "total_customers": self.session.query(Customer).count(),
            "purchases": _summary(InvoiceType.PURCHASE),
            "sales": _summary(InvoiceType.SALE),
            "low_stock": StockQueryService(self.session).low_stock(low_stock_threshold, limit=low_stock_limit),
        }

    def monthly(self, year: int, invoice_type: Optional[str] = None) -> List[dict]:
        """Twelve buckets (January..December) of purchase and sale totals for `year`."""
        if not 1900 <= year <= 9998:
            raise ValidationError("year is out of range.", field="year")
        buckets = [{"month": m, "purchase": Decimal("0.00"), "sale": Decimal("0.00")} for m in range(1, 13)]

        q = self._counted().filter(
            Invoice.date >= datetime(year, 1, 1),
            Invoice.date < datetime(year + 1, 1, 1),
        )
        if invoice_type:
            q = q.filter(Invoice.type == _parse_type(invoice_type).value)

        for invoice in q.all():
            key = "purchase" if invoice.type == InvoiceType.PURCHASE.value else "sale"
            bucket = buckets[invoice.date.month - 1]
            bucket[key] = _money(bucket[key] + _to_decimal(invoice.total))

        return buckets

    def top_parts(self, limit: int = 10, invoice_type: str = "SALE") -> List[dict]:
        """Parts ranked by summed line amount on committed invoices of one type."""
        invoice_type = _parse_type(invoice_type)
        total_amount = func.sum(InvoiceItem.amount)
        rows = (
            self.session.query(Part, func.sum(InvoiceItem.quantity), total_amount)
            .join(InvoiceItem, InvoiceItem.part_id == Part.id)
            .join(Invoice, Invoice.id == InvoiceItem.invoice_id)
            .filter(Invoice.status.in_(COUNTED_STATUSES), Invoice.type == invoice_type.value)
            .group_by(Part.id)
            .order_by(total_amount.desc(), Part.id.asc())
            .limit(max(limit, 1))
            .all()
        )
        return [
            {"part": part, "total_quantity": _to_decimal(qty), "total_amount": _money(_to_decimal(amount))}
            for part, qty, amount in rows
        ]


def _parse_type(value) -> InvoiceType:
    try:
        return InvoiceType(str(value).upper())
    except ValueError:
        raise ValidationError("type must be PURCHASE or SALE.", field="type") from None
