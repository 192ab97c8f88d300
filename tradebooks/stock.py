"""
tradebooks/stock.py

Stock queries over the inventory ledger, plus manual stock adjustment.

StockQueryService never writes. Reads see committed ledger state only: the
running totals in stock_levels are written in the same transaction as the
ledger rows they summarise.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import case, func

from .audit import log_action
from .errors import NotFoundError, ValidationError
from .ledger import InventoryLedger
from .models import Direction, InventoryTransaction, Part, StockLevel, _to_decimal
from .tax import QUANTITY_PLACES, to_decimal
from .transactions import atomic

logger = logging.getLogger(__name__)


def _in_out_columns():
    incoming = func.coalesce(
        func.sum(
            case((InventoryTransaction.direction == Direction.IN.value, InventoryTransaction.quantity), else_=0)
        ),
        0,
    )
    outgoing = func.coalesce(
        func.sum(
            case((InventoryTransaction.direction == Direction.OUT.value, InventoryTransaction.quantity), else_=0)
        ),
        0,
    )
    return incoming, outgoing


class StockQueryService:
    """Read side of the inventory ledger."""

    def __init__(self, session):
        self.session = session
        self.ledger = InventoryLedger(session)

    def _active_part(self, part_id: int) -> Part:
        part = self.session.get(Part, part_id)
        if part is None or part.is_deleted:
            raise NotFoundError("Part not found.", part_id=part_id)
        return part

    def stock_for(self, part_id: int) -> Decimal:
        self._active_part(part_id)
        return self.ledger.current_stock(part_id)

    def stock_detail(self, part_id: int) -> dict:
        """Stock with incoming/outgoing sums (the per-part stock card)."""
        part = self._active_part(part_id)
        incoming, outgoing = _in_out_columns()
        row = (
            self.session.query(incoming, outgoing)
            .filter(InventoryTransaction.part_id == part_id)
            .one()
        )
        return {
            "part": part,
            "stock": self.ledger.current_stock(part_id),
            "incoming": _to_decimal(row[0]),
            "outgoing": _to_decimal(row[1]),
        }

    def _purchased_part_ids(self):
        return (
            self.session.query(InventoryTransaction.part_id)
            .filter(InventoryTransaction.direction == Direction.IN.value)
            .distinct()
        )

    def stock_for_all(self, only_purchased: bool = False) -> Dict[int, Decimal]:
        """{part_id: stock} for every active part (or those with at least one IN entry)."""
        q = (
            self.session.query(Part.id, StockLevel.quantity)
            .outerjoin(StockLevel, StockLevel.part_id == Part.id)
            .filter(Part.is_deleted.is_(False))
        )
        if only_purchased:
            q = q.filter(Part.id.in_(self._purchased_part_ids()))
        return {part_id: _to_decimal(qty) if qty is not None else Decimal("0") for part_id, qty in q.all()}

    def stock_report(self, only_purchased: bool = False) -> List[dict]:
        """Parts ordered by part number, each with its stock."""
        q = (
            self.session.query(Part, StockLevel.quantity)
            .outerjoin(StockLevel, StockLevel.part_id == Part.id)
            .filter(Part.is_deleted.is_(False))
        )
        if only_purchased:
            q = q.filter(Part.id.in_(self._purchased_part_ids()))
        rows = q.order_by(Part.part_number.asc()).all()
        return [
            {"part": part, "stock": _to_decimal(qty) if qty is not None else Decimal("0")}
            for part, qty in rows
        ]

    def low_stock(self, threshold, limit: int = 10) -> List[dict]:
        threshold = _to_decimal(threshold)
        report = [row for row in self.stock_report() if row["stock"] < threshold]
        report.sort(key=lambda row: (row["stock"], row["part"].part_number))
        return report[:limit]


def adjust_stock(session, part_id: int, target, reference: Optional[str] = None) -> dict:
    """
    Set a part's stock to a counted quantity.

    Appends one ADJUSTMENT entry for the difference; no entry when the count
    already matches.
    """
    target = to_decimal(target, "quantity", places=QUANTITY_PLACES)
    if target < 0:
        raise ValidationError("Quantity cannot be negative.", field="quantity")

    ledger = InventoryLedger(session)
    with atomic(session, "stock.adjust"):
        part = session.get(Part, part_id)
        if part is None:
            raise NotFoundError("Part not found.", part_id=part_id)
        if part.is_deleted:
            raise ValidationError("Cannot adjust stock for a deleted part.", field="partId")

        previous = ledger.current_stock(part_id)
        difference = target - previous
        entry = None
        if difference != 0:
            direction = Direction.IN if difference > 0 else Direction.OUT
            entry = ledger.record_adjustment(part_id, direction, abs(difference), reference=reference)
            log_action(
                entry,
                "ADJUST",
                after={"part_id": part_id, "previous": str(previous), "new": str(target)},
                session=session,
            )

    if entry is not None:
        logger.info("stock of %s adjusted %s -> %s", part.part_number, previous, target)

    return {
        "part": part,
        "previous_stock": previous,
        "new_stock": target,
        "adjustment": difference,
    }
