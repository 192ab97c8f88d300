"""
tradebooks/ledger.py

Append-only inventory ledger.

Rules:
- Entries are never updated or deleted. Edits and cancellations append
  compensating REVERSAL entries.
- One MOVEMENT per invoice item (idempotency key "item:<id>"), one REVERSAL
  per movement ("reversal:<id>").
- Every append updates StockLevel for exactly one part inside the caller's
  transaction. The caller owns commit/rollback.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import case, func

from .errors import DuplicateLedgerEntryError, NotFoundError, ValidationError
from .models import (
    Direction,
    EntryKind,
    InventoryTransaction,
    StockLevel,
    _to_decimal,
)

logger = logging.getLogger(__name__)


def movement_key(invoice_item_id: int) -> str:
    return f"item:{invoice_item_id}"


def reversal_key(invoice_item_id: int) -> str:
    return f"reversal:{invoice_item_id}"


def signed_quantity_expr():
    """SQL expression: +quantity for IN, -quantity for OUT."""
    return case(
        (InventoryTransaction.direction == Direction.IN.value, InventoryTransaction.quantity),
        else_=-InventoryTransaction.quantity,
    )


class InventoryLedger:
    """Ledger writes and raw reads. Bound to one SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    # -----------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------
    def record_movement(
        self,
        part_id: int,
        invoice_item_id: int,
        direction,
        quantity,
        *,
        invoice_id: Optional[int] = None,
        reference: Optional[str] = None,
    ) -> InventoryTransaction:
        """Append the movement for an invoice item. A second call for the same item fails."""
        direction = Direction(direction)
        quantity = self._positive(quantity)

        key = movement_key(invoice_item_id)
        if self._find_by_key(key) is not None:
            raise DuplicateLedgerEntryError(
                "A ledger entry already exists for this invoice item.",
                invoice_item_id=invoice_item_id,
            )

        entry = InventoryTransaction(
            part_id=part_id,
            invoice_item_id=invoice_item_id,
            invoice_id=invoice_id,
            reference=reference,
            direction=direction.value,
            kind=EntryKind.MOVEMENT.value,
            quantity=quantity,
            idempotency_key=key,
        )
        return self._append(entry)

    def reverse_movement(self, invoice_item_id: int, reference: Optional[str] = None) -> InventoryTransaction:
        """Append the opposite entry for an item's movement. The original stays."""
        original = self._find_by_key(movement_key(invoice_item_id))
        if original is None:
            raise NotFoundError(
                "No ledger movement exists for this invoice item.",
                invoice_item_id=invoice_item_id,
            )

        key = reversal_key(invoice_item_id)
        if self._find_by_key(key) is not None:
            raise DuplicateLedgerEntryError(
                "The ledger movement for this invoice item is already reversed.",
                invoice_item_id=invoice_item_id,
            )

        entry = InventoryTransaction(
            part_id=original.part_id,
            invoice_item_id=invoice_item_id,
            invoice_id=original.invoice_id,
            reference=reference or original.reference,
            direction=Direction(original.direction).opposite.value,
            kind=EntryKind.REVERSAL.value,
            quantity=original.quantity,
            idempotency_key=key,
            reverses_id=original.id,
        )
        return self._append(entry)

    def record_adjustment(self, part_id: int, direction, quantity, reference: Optional[str] = None) -> InventoryTransaction:
        """Manual stock correction, not tied to any invoice."""
        entry = InventoryTransaction(
            part_id=part_id,
            direction=Direction(direction).value,
            kind=EntryKind.ADJUSTMENT.value,
            quantity=self._positive(quantity),
            reference=reference,
        )
        return self._append(entry)

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------
    def is_reversed(self, invoice_item_id: int) -> bool:
        return self._find_by_key(reversal_key(invoice_item_id)) is not None

    def active_movements(self, invoice_id: int) -> List[InventoryTransaction]:
        """Movements of an invoice that have no reversal yet."""
        movements = (
            self.session.query(InventoryTransaction)
            .filter_by(invoice_id=invoice_id, kind=EntryKind.MOVEMENT.value)
            .order_by(InventoryTransaction.id.asc())
            .all()
        )
        return [m for m in movements if not self.is_reversed(m.invoice_item_id)]

    def entries_for_part(self, part_id: int) -> List[InventoryTransaction]:
        return (
            self.session.query(InventoryTransaction)
            .filter_by(part_id=part_id)
            .order_by(InventoryTransaction.id.asc())
            .all()
        )

    def current_stock(self, part_id: int) -> Decimal:
        """Running total (O(1))."""
        level = self.session.get(StockLevel, part_id)
        if level is None:
            return Decimal("0")
        return _to_decimal(level.quantity)

    def ledger_stock(self, part_id: int) -> Decimal:
        """Signed sum over the part's entries, ignoring the running total."""
        value = (
            self.session.query(func.coalesce(func.sum(signed_quantity_expr()), 0))
            .filter(InventoryTransaction.part_id == part_id)
            .scalar()
        )
        return _to_decimal(value)

    def ledger_stock_all(self) -> Dict[int, Decimal]:
        rows = (
            self.session.query(InventoryTransaction.part_id, func.sum(signed_quantity_expr()))
            .group_by(InventoryTransaction.part_id)
            .all()
        )
        return {part_id: _to_decimal(total) for part_id, total in rows}

    def stock_drift(self) -> Dict[int, tuple]:
        """Parts whose running total disagrees with the ledger: {part_id: (running, ledger)}."""
        ledger = self.ledger_stock_all()
        running = {
            level.part_id: _to_decimal(level.quantity)
            for level in self.session.query(StockLevel).all()
        }
        drift = {}
        for part_id in set(ledger) | set(running):
            a = running.get(part_id, Decimal("0"))
            b = ledger.get(part_id, Decimal("0"))
            if a != b:
                drift[part_id] = (a, b)
        return drift

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------
    def _find_by_key(self, key: str) -> Optional[InventoryTransaction]:
        return self.session.query(InventoryTransaction).filter_by(idempotency_key=key).first()

    @staticmethod
    def _positive(quantity) -> Decimal:
        qty = _to_decimal(quantity)
        if qty <= 0:
            raise ValidationError("Ledger quantity must be greater than zero.", field="quantity")
        return qty

    def _append(self, entry: InventoryTransaction) -> InventoryTransaction:
        self.session.add(entry)

        level = (
            self.session.query(StockLevel)
            .filter_by(part_id=entry.part_id)
            .with_for_update()
            .one_or_none()
        )
        if level is None:
            level = StockLevel(part_id=entry.part_id, quantity=Decimal("0"))
            self.session.add(level)
        level.quantity = _to_decimal(level.quantity) + entry.signed_quantity

        self.session.flush()
        logger.debug(
            "ledger %s part=%s %s %s key=%s",
            entry.kind, entry.part_id, entry.direction, entry.quantity, entry.idempotency_key,
        )
        return entry
