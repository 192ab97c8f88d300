"""
Stock queries and manual adjustment.
"""

from decimal import Decimal

import pytest

from tradebooks.errors import NotFoundError, ValidationError
from tradebooks.ledger import InventoryLedger
from tradebooks.models import AuditLog, EntryKind, InventoryTransaction
from tradebooks.stock import StockQueryService, adjust_stock


@pytest.fixture
def stock(session):
    return StockQueryService(session)


class TestStockQueries:
    def test_stock_follows_invoices(self, stock, service, purchase_payload, sale_payload, hydraulic_filter):
        service.create(purchase_payload())
        service.create(sale_payload())

        assert stock.stock_for(hydraulic_filter.id) == Decimal("15")

        detail = stock.stock_detail(hydraulic_filter.id)
        assert detail["incoming"] == Decimal("20")
        assert detail["outgoing"] == Decimal("5")
        assert detail["stock"] == Decimal("15")

    def test_part_without_entries(self, stock, air_filter):
        assert stock.stock_for(air_filter.id) == Decimal("0")
        detail = stock.stock_detail(air_filter.id)
        assert detail["incoming"] == Decimal("0")
        assert detail["outgoing"] == Decimal("0")

    def test_unknown_or_deleted_part(self, session, stock, hydraulic_filter):
        with pytest.raises(NotFoundError):
            stock.stock_for(999)

        hydraulic_filter.is_deleted = True
        session.commit()
        with pytest.raises(NotFoundError):
            stock.stock_for(hydraulic_filter.id)

    def test_report_orders_by_part_number(self, stock, service, purchase_payload, hydraulic_filter, air_filter):
        service.create(purchase_payload())

        rows = stock.stock_report()
        assert [r["part"].part_number for r in rows] == ["JCB-AF-002", "JCB-HF-001"]
        assert [r["stock"] for r in rows] == [Decimal("0"), Decimal("20")]

    def test_only_purchased(self, stock, service, purchase_payload, hydraulic_filter, air_filter):
        service.create(purchase_payload())

        rows = stock.stock_report(only_purchased=True)
        assert [r["part"].id for r in rows] == [hydraulic_filter.id]
        assert stock.stock_for_all(only_purchased=True) == {hydraulic_filter.id: Decimal("20")}
        assert stock.stock_for_all() == {hydraulic_filter.id: Decimal("20"), air_filter.id: Decimal("0")}

    def test_cancelled_purchase_still_counts_as_purchased(self, stock, service, purchase_payload, hydraulic_filter):
        invoice = service.create(purchase_payload())
        service.cancel(invoice.id)

        rows = stock.stock_report(only_purchased=True)
        assert [(r["part"].id, r["stock"]) for r in rows] == [(hydraulic_filter.id, Decimal("0"))]

    def test_low_stock(self, stock, service, purchase_payload, hydraulic_filter, air_filter):
        service.create(purchase_payload())

        rows = stock.low_stock(5)
        assert [r["part"].id for r in rows] == [air_filter.id]
        assert stock.low_stock(21, limit=1)[0]["part"].id == air_filter.id


class TestAdjustStock:
    def test_adjust_up_and_down(self, session, hydraulic_filter):
        result = adjust_stock(session, hydraulic_filter.id, "12", reference="count 2025-11")
        assert result["previous_stock"] == Decimal("0")
        assert result["new_stock"] == Decimal("12")
        assert result["adjustment"] == Decimal("12")

        result = adjust_stock(session, hydraulic_filter.id, 10)
        assert result["adjustment"] == Decimal("-2")

        entries = InventoryLedger(session).entries_for_part(hydraulic_filter.id)
        assert [(e.kind, e.direction, e.quantity) for e in entries] == [
            (EntryKind.ADJUSTMENT, "IN", Decimal("12")),
            (EntryKind.ADJUSTMENT, "OUT", Decimal("2")),
        ]
        assert InventoryLedger(session).current_stock(hydraulic_filter.id) == Decimal("10")
        assert session.query(AuditLog).filter_by(action="ADJUST").count() == 2

    def test_no_change_appends_nothing(self, session, hydraulic_filter):
        result = adjust_stock(session, hydraulic_filter.id, 0)

        assert result["adjustment"] == Decimal("0")
        assert session.query(InventoryTransaction).count() == 0

    @pytest.mark.parametrize("target", [-1, "abc", None, "1.2345", "1,5", "1e12"])
    def test_invalid_target(self, session, hydraulic_filter, target):
        with pytest.raises(ValidationError) as exc:
            adjust_stock(session, hydraulic_filter.id, target)
        assert exc.value.field == "quantity"

    def test_deleted_part(self, session, hydraulic_filter):
        hydraulic_filter.is_deleted = True
        session.commit()
        with pytest.raises(ValidationError):
            adjust_stock(session, hydraulic_filter.id, 5)

    def test_unknown_part(self, session):
        with pytest.raises(NotFoundError):
            adjust_stock(session, 404, 5)
