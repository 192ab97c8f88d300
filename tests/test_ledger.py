"""
Inventory ledger: idempotency keys, reversals, adjustments and conservation
of the running stock total against the raw ledger sum.
"""

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from tradebooks.errors import DuplicateLedgerEntryError, NotFoundError, ValidationError
from tradebooks.ledger import InventoryLedger, movement_key, reversal_key
from tradebooks.models import Direction, EntryKind, InventoryTransaction, StockLevel


@pytest.fixture
def ledger(session):
    return InventoryLedger(session)


class TestMovements:
    def test_movement_updates_running_total(self, session, ledger, hydraulic_filter):
        ledger.record_movement(hydraulic_filter.id, 101, Direction.IN, Decimal("20"), reference="PUR-1")
        ledger.record_movement(hydraulic_filter.id, 102, Direction.OUT, Decimal("5"), reference="SAL-1")
        session.commit()

        assert ledger.current_stock(hydraulic_filter.id) == Decimal("15")
        assert ledger.ledger_stock(hydraulic_filter.id) == Decimal("15")

    def test_movement_carries_idempotency_key(self, session, ledger, hydraulic_filter):
        entry = ledger.record_movement(hydraulic_filter.id, 7, "IN", 3)
        session.commit()

        assert entry.idempotency_key == movement_key(7) == "item:7"
        assert entry.kind == EntryKind.MOVEMENT

    def test_second_movement_for_same_item_is_rejected(self, session, ledger, hydraulic_filter):
        ledger.record_movement(hydraulic_filter.id, 101, Direction.IN, 20)
        session.commit()

        with pytest.raises(DuplicateLedgerEntryError) as exc:
            ledger.record_movement(hydraulic_filter.id, 101, Direction.IN, 20)
        session.rollback()

        assert exc.value.details["invoice_item_id"] == 101
        assert ledger.current_stock(hydraulic_filter.id) == Decimal("20")
        assert session.query(InventoryTransaction).count() == 1

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity_is_rejected(self, ledger, hydraulic_filter, quantity):
        with pytest.raises(ValidationError):
            ledger.record_movement(hydraulic_filter.id, 1, Direction.IN, quantity)

    def test_unknown_part_has_zero_stock(self, ledger):
        assert ledger.current_stock(999) == Decimal("0")
        assert ledger.ledger_stock(999) == Decimal("0")


class TestReversals:
    def test_reversal_appends_opposite_entry(self, session, ledger, hydraulic_filter):
        original = ledger.record_movement(hydraulic_filter.id, 5, Direction.OUT, 5, invoice_id=1)
        reversal = ledger.reverse_movement(5)
        session.commit()

        assert reversal.direction == Direction.IN
        assert reversal.quantity == original.quantity
        assert reversal.reverses_id == original.id
        assert reversal.idempotency_key == reversal_key(5)
        assert reversal.invoice_id == 1
        # original is untouched
        assert session.get(InventoryTransaction, original.id).direction == Direction.OUT
        assert ledger.current_stock(hydraulic_filter.id) == Decimal("0")
        assert ledger.is_reversed(5)
        assert ledger.active_movements(1) == []

    def test_reverse_twice_is_rejected(self, session, ledger, hydraulic_filter):
        ledger.record_movement(hydraulic_filter.id, 5, Direction.OUT, 5)
        ledger.reverse_movement(5)
        session.commit()

        with pytest.raises(DuplicateLedgerEntryError):
            ledger.reverse_movement(5)

    def test_reverse_without_movement(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.reverse_movement(404)


class TestAdjustments:
    def test_adjustment_has_no_invoice_link(self, session, ledger, hydraulic_filter):
        entry = ledger.record_adjustment(hydraulic_filter.id, Direction.IN, Decimal("2.5"), reference="count")
        session.commit()

        assert entry.kind == EntryKind.ADJUSTMENT
        assert entry.invoice_item_id is None
        assert entry.idempotency_key is None
        assert ledger.current_stock(hydraulic_filter.id) == Decimal("2.5")

    def test_adjustments_do_not_collide(self, session, ledger, hydraulic_filter):
        ledger.record_adjustment(hydraulic_filter.id, Direction.IN, 1)
        ledger.record_adjustment(hydraulic_filter.id, Direction.IN, 1)
        session.commit()

        assert ledger.current_stock(hydraulic_filter.id) == Decimal("2")


class TestConservation:
    def test_no_drift_after_mixed_activity(self, session, ledger, hydraulic_filter, air_filter):
        ledger.record_movement(hydraulic_filter.id, 1, Direction.IN, 20)
        ledger.record_movement(air_filter.id, 2, Direction.IN, 4)
        ledger.record_movement(hydraulic_filter.id, 3, Direction.OUT, 25)
        ledger.reverse_movement(2)
        ledger.record_adjustment(air_filter.id, Direction.OUT, 1)
        session.commit()

        assert ledger.stock_drift() == {}
        assert ledger.ledger_stock_all() == {hydraulic_filter.id: Decimal("-5"), air_filter.id: Decimal("-1")}

    def test_drift_is_reported(self, session, ledger, hydraulic_filter):
        ledger.record_movement(hydraulic_filter.id, 1, Direction.IN, 10)
        session.commit()

        session.get(StockLevel, hydraulic_filter.id).quantity = Decimal("9")
        session.commit()

        assert ledger.stock_drift() == {hydraulic_filter.id: (Decimal("9"), Decimal("10"))}

    @settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        ops=st.lists(
            st.tuples(
                st.sampled_from([Direction.IN, Direction.OUT]),
                st.decimals(min_value=Decimal("0.001"), max_value=Decimal("500"), places=3),
                st.booleans(),
            ),
            min_size=1,
            max_size=15,
        )
    )
    def test_running_total_matches_ledger_sum(self, session, hydraulic_filter, ops):
        ledger = InventoryLedger(session)
        session.query(InventoryTransaction).delete()
        session.query(StockLevel).delete()
        session.commit()

        expected = Decimal("0")
        for item_id, (direction, quantity, reverse) in enumerate(ops, start=1):
            ledger.record_movement(hydraulic_filter.id, item_id, direction, quantity)
            expected += quantity if direction == Direction.IN else -quantity
            if reverse:
                ledger.reverse_movement(item_id)
                expected -= quantity if direction == Direction.IN else -quantity
        session.commit()

        assert ledger.current_stock(hydraulic_filter.id) == expected
        assert ledger.ledger_stock(hydraulic_filter.id) == expected
        assert ledger.stock_drift() == {}
