"""
tradebooks/invoicing.py

Invoice lifecycle: create / update / submit / mark paid / cancel / delete,
payments, and invoice numbering.

Every mutation is one transaction (tradebooks.transactions.atomic):
invoice header, lines, ledger entries, stock levels and audit rows commit
together or not at all.

Rules enforced here:
- Totals are always recomputed server-side (tradebooks.tax). Client totals are
  checked against them and rejected beyond MONEY_TOLERANCE.
- PURCHASE ↔ Supplier, SALE ↔ Customer, never both.
- Lines are editable while DRAFT, or while SUBMITTED when the per-type
  ALLOW_EDIT_SUBMITTED_* override is on. PAID and CANCELLED never change.
- An edit reverses every active ledger movement of the invoice and posts
  fresh ones for the new lines.
- Optimistic locking: a caller-sent ``version`` must match the stored one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .audit import log_action, serialize_model
from .errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from .ledger import InventoryLedger
from .models import (
    Customer,
    Invoice,
    InvoiceItem,
    InvoiceSequence,
    InvoiceStatus,
    InvoiceType,
    Part,
    Payment,
    PaymentStatus,
    Supplier,
    Unit,
    _money,
    _to_decimal,
    _utcnow,
)
from .tax import (
    MONEY_PLACES,
    QUANTITY_PLACES,
    check_client_totals,
    compute_totals,
    line_amount,
    to_decimal,
)
from .transactions import atomic

logger = logging.getLogger(__name__)

NUMBER_PREFIX = {
    InvoiceType.SALE: "SAL",
    InvoiceType.PURCHASE: "PUR",
}

# camelCase request key -> totals key
CLIENT_TOTAL_KEYS = {
    "subtotal": "subtotal",
    "discountAmount": "discount_amount",
    "taxableValue": "taxable_value",
    "cgstAmount": "cgst_amount",
    "sgstAmount": "sgst_amount",
    "roundOff": "round_off",
    "total": "total",
}

# camelCase request key -> Invoice attribute
METADATA_KEYS = {
    "deliveryNote": "delivery_note",
    "deliveryNoteDate": "delivery_note_date",
    "buyerOrderNo": "buyer_order_no",
    "dispatchDocNo": "dispatch_doc_no",
    "dispatchedThrough": "dispatched_through",
    "termsOfDelivery": "terms_of_delivery",
    "notes": "notes",
}

FINANCIAL_KEYS = {
    "items",
    "discountPercent",
    "cgstPercent",
    "sgstPercent",
    "type",
    "supplierId",
    "customerId",
    "date",
    "invoiceNumber",
    *CLIENT_TOTAL_KEYS,
}


# ---------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------
@dataclass
class LineInput:
    part_id: int
    quantity: Decimal
    rate: Decimal
    unit: Optional[str] = None
    amount: Optional[Decimal] = None


@dataclass
class InvoiceInput:
    type: InvoiceType
    date: datetime
    items: List[LineInput]
    invoice_number: Optional[str] = None
    supplier_id: Optional[int] = None
    customer_id: Optional[int] = None
    discount_percent: Any = Decimal("0")
    cgst_percent: Any = Decimal("0")
    sgst_percent: Any = Decimal("0")
    client_totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    version: Optional[int] = None


def parse_datetime(value, field_name: str = "date") -> datetime:
    """ISO date or datetime; aware values are converted to naive UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO date.", field=field_name) from None
    else:
        raise ValidationError(f"{field_name} is required.", field=field_name)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value, field_name: str) -> Optional[date]:
    if value is None or value == "":
        return None
    return parse_datetime(value, field_name).date()


def _optional_id(value, field_name: str) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer id.", field=field_name)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer id.", field=field_name) from None
    if parsed <= 0:
        raise ValidationError(f"{field_name} must be a positive id.", field=field_name)
    return parsed


def parse_ids(value, field_name: str = "ids") -> List[int]:
    """A non-empty list of invoice ids; duplicates collapse, order is kept."""
    if not isinstance(value, list) or not value:
        raise ValidationError("ids array is required.", field=field_name)
    ids: List[int] = []
    for idx, raw in enumerate(value):
        parsed = _optional_id(raw, f"{field_name}[{idx}]")
        if parsed is None:
            raise ValidationError("Invoice id is required.", field=f"{field_name}[{idx}]")
        if parsed not in ids:
            ids.append(parsed)
    return ids


def _optional_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_invoice_type(value) -> InvoiceType:
    try:
        return InvoiceType(str(value).upper())
    except ValueError:
        raise ValidationError("type must be PURCHASE or SALE.", field="type") from None


def parse_metadata(payload: Mapping) -> Dict[str, Any]:
    data = {}
    for key, attr in METADATA_KEYS.items():
        if key not in payload:
            continue
        if attr == "delivery_note_date":
            data[attr] = parse_date(payload[key], key)
        else:
            data[attr] = _optional_text(payload[key])
    return data


def parse_version(payload: Mapping) -> Optional[int]:
    if payload.get("version") is None:
        return None
    try:
        return int(payload["version"])
    except (TypeError, ValueError):
        raise ValidationError("version must be an integer.", field="version") from None


def parse_invoice_payload(payload: Mapping) -> InvoiceInput:
    """Validate a POST/PUT body. Quantity/rate bounds are checked by compute_totals."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object.")

    if not payload.get("type"):
        raise ValidationError("type is required.", field="type")
    invoice_type = parse_invoice_type(payload["type"])
    when = parse_datetime(payload.get("date"))

    supplier_id = _optional_id(payload.get("supplierId"), "supplierId")
    customer_id = _optional_id(payload.get("customerId"), "customerId")

    if invoice_type == InvoiceType.PURCHASE:
        if customer_id is not None:
            raise ValidationError("A purchase invoice cannot reference a customer.", field="customerId")
        if supplier_id is None:
            raise ValidationError("supplierId is required for a purchase invoice.", field="supplierId")
    else:
        if supplier_id is not None:
            raise ValidationError("A sales invoice cannot reference a supplier.", field="supplierId")
        if customer_id is None:
            raise ValidationError("customerId is required for a sales invoice.", field="customerId")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("At least one line item is required.", field="items")

    items = []
    for idx, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            raise ValidationError("Line item must be an object.", field=f"items[{idx}]")
        part_id = _optional_id(raw.get("partId"), f"items[{idx}].partId")
        if part_id is None:
            raise ValidationError("partId is required.", field=f"items[{idx}].partId")

        unit = _optional_text(raw.get("unit"))
        if unit is not None:
            unit = unit.upper()
            if unit not in Unit.__members__:
                raise ValidationError(
                    f"unit must be one of {', '.join(Unit.__members__)}.", field=f"items[{idx}].unit"
                )

        amount = raw.get("amount")
        items.append(
            LineInput(
                part_id=part_id,
                quantity=to_decimal(raw.get("quantity"), f"items[{idx}].quantity", places=QUANTITY_PLACES),
                rate=to_decimal(raw.get("rate"), f"items[{idx}].rate", places=MONEY_PLACES),
                unit=unit,
                amount=to_decimal(amount, f"items[{idx}].amount") if amount is not None else None,
            )
        )

    return InvoiceInput(
        type=invoice_type,
        date=when,
        items=items,
        invoice_number=_optional_text(payload.get("invoiceNumber")),
        supplier_id=supplier_id,
        customer_id=customer_id,
        discount_percent=payload.get("discountPercent") or Decimal("0"),
        cgst_percent=payload.get("cgstPercent") or Decimal("0"),
        sgst_percent=payload.get("sgstPercent") or Decimal("0"),
        client_totals={
            attr: payload[key] for key, attr in CLIENT_TOTAL_KEYS.items() if payload.get(key) is not None
        },
        metadata=parse_metadata(payload),
        version=parse_version(payload),
    )


# ---------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------
class InvoiceService:
    """
    Orchestrates the invoice aggregate.

    session: SQLAlchemy session (the unit of work); settings: mapping with the
    policy keys from config.Config.
    """

    def __init__(self, session, settings: Mapping):
        self.session = session
        self.ledger = InventoryLedger(session)
        self.allow_edit_submitted = {
            InvoiceType.SALE: bool(settings.get("ALLOW_EDIT_SUBMITTED_SALES", False)),
            InvoiceType.PURCHASE: bool(settings.get("ALLOW_EDIT_SUBMITTED_PURCHASES", False)),
        }
        self.allow_negative_stock = bool(settings.get("ALLOW_NEGATIVE_STOCK", True))
        self.tolerance = Decimal(str(settings.get("MONEY_TOLERANCE", "0.01")))

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------
    def get(self, invoice_id: int) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice not found.", invoice_id=invoice_id)
        return invoice

    def list(
        self,
        invoice_type: Optional[str] = None,
        status: Optional[str] = None,
        supplier_id: Optional[int] = None,
        customer_id: Optional[int] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[Invoice]:
        q = self.session.query(Invoice)
        if invoice_type:
            q = q.filter(Invoice.type == parse_invoice_type(invoice_type).value)
        if status:
            try:
                q = q.filter(Invoice.status == InvoiceStatus(str(status).upper()).value)
            except ValueError:
                raise ValidationError("Unknown invoice status.", field="status") from None
        if supplier_id:
            q = q.filter(Invoice.supplier_id == supplier_id)
        if customer_id:
            q = q.filter(Invoice.customer_id == customer_id)
        if date_from:
            q = q.filter(Invoice.date >= date_from)
        if date_to:
            q = q.filter(Invoice.date <= date_to)
        return q.order_by(Invoice.date.asc(), Invoice.id.asc()).all()

    def next_invoice_number(self, invoice_type, when: Optional[datetime] = None) -> str:
        """Preview the next number for (type, year) without consuming it."""
        return self._next_number(parse_invoice_type(invoice_type), when or _utcnow(), consume=False)

    # -----------------------------------------------------------------
    # Create / update
    # -----------------------------------------------------------------
    def create(self, payload: Mapping) -> Invoice:
        data = parse_invoice_payload(payload)
        totals = self._compute(data)

        with atomic(self.session, "invoice.create"):
            self._check_counterparty(data)
            parts = self._resolve_parts(data.items)

            if data.invoice_number:
                self._ensure_number_free(data.type, data.invoice_number)
                number = data.invoice_number
            else:
                number = self._next_number(data.type, data.date)

            invoice = Invoice(
                invoice_number=number,
                type=data.type.value,
                date=data.date,
                status=InvoiceStatus.DRAFT.value,
                supplier_id=data.supplier_id,
                customer_id=data.customer_id,
                payment_status=PaymentStatus.UNPAID.value,
                paid_amount=Decimal("0.00"),
            )
            for attr, value in data.metadata.items():
                setattr(invoice, attr, value)
            invoice.apply_totals(totals, data.discount_percent, data.cgst_percent, data.sgst_percent)

            self.session.add(invoice)
            self._write_lines(invoice, data.items, parts)
            self._check_stock(invoice)
            self._post_ledger(invoice)

            log_action(invoice, "CREATE", after=serialize_model(invoice), session=self.session)

        logger.info(
            "invoice %s created (%s, %d lines, total=%s)",
            invoice.invoice_number, invoice.type, len(invoice.items), invoice.total,
        )
        return invoice

    def update(self, invoice_id: int, payload: Mapping) -> Invoice:
        data = parse_invoice_payload(payload)
        totals = self._compute(data)

        with atomic(self.session, "invoice.update"):
            invoice = self.get(invoice_id)
            self._check_version(invoice, data.version)
            self._ensure_editable(invoice)

            if data.type != invoice.type:
                raise ValidationError("Invoice type cannot be changed.", field="type")

            self._check_counterparty(data)
            parts = self._resolve_parts(data.items)

            renumber = data.invoice_number and data.invoice_number != invoice.invoice_number
            if renumber:
                self._ensure_number_free(invoice.type, data.invoice_number, exclude_id=invoice.id)

            before = serialize_model(invoice)

            self._reverse_ledger(invoice)
            invoice.items.clear()
            self.session.flush()

            if renumber:
                invoice.invoice_number = data.invoice_number
            invoice.date = data.date
            invoice.supplier_id = data.supplier_id
            invoice.customer_id = data.customer_id
            for attr, value in data.metadata.items():
                setattr(invoice, attr, value)
            invoice.apply_totals(totals, data.discount_percent, data.cgst_percent, data.sgst_percent)
            invoice.updated_at = _utcnow()

            self._write_lines(invoice, data.items, parts)
            self._check_stock(invoice)
            self._post_ledger(invoice)

            log_action(invoice, "UPDATE", before=before, after=serialize_model(invoice), session=self.session)

        logger.info("invoice %s updated (total=%s, version=%s)", invoice.invoice_number, invoice.total, invoice.version)
        return invoice

    def patch(self, invoice_id: int, payload: Mapping) -> Invoice:
        """Non-financial metadata, payment status ON_CREDIT and/or a status transition."""
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object.")

        financial = sorted(k for k in payload if k in FINANCIAL_KEYS)
        if financial:
            raise ValidationError(
                "Financial fields cannot be patched; use PUT with the full invoice.",
                field=financial[0],
            )

        metadata = parse_metadata(payload)
        version = parse_version(payload)
        target = payload.get("status")
        payment_status = payload.get("paymentStatus")

        with atomic(self.session, "invoice.patch"):
            invoice = self.get(invoice_id)
            self._check_version(invoice, version)
            before = serialize_model(invoice)

            if metadata:
                if invoice.status == InvoiceStatus.CANCELLED:
                    raise InvalidStateError(
                        "A cancelled invoice cannot be changed.", status=invoice.status
                    )
                for attr, value in metadata.items():
                    setattr(invoice, attr, value)
                invoice.updated_at = _utcnow()

            if payment_status is not None:
                self._set_payment_status(invoice, payment_status)

            if target is not None:
                self._transition(invoice, target)

            action = "STATUS" if target is not None else "UPDATE"
            log_action(invoice, action, before=before, after=serialize_model(invoice), session=self.session)

        logger.info("invoice %s patched (status=%s)", invoice.invoice_number, invoice.status)
        return invoice

    # -----------------------------------------------------------------
    # Status transitions
    # -----------------------------------------------------------------
    def submit(self, invoice_id: int, version: Optional[int] = None) -> Invoice:
        return self._run_transition(invoice_id, InvoiceStatus.SUBMITTED, version)

    def mark_paid(self, invoice_id: int, version: Optional[int] = None) -> Invoice:
        return self._run_transition(invoice_id, InvoiceStatus.PAID, version)

    def cancel(self, invoice_id: int, version: Optional[int] = None) -> Invoice:
        return self._run_transition(invoice_id, InvoiceStatus.CANCELLED, version)

    def delete(self, invoice_id: int) -> None:
        """Only DRAFT invoices without payments. Ledger movements are reversed, not removed."""
        with atomic(self.session, "invoice.delete"):
            invoice = self.get(invoice_id)
            number = invoice.invoice_number
            self._delete_invoice(invoice)

        logger.info("invoice %s deleted", number)

    # -----------------------------------------------------------------
    # Bulk operations (all-or-nothing)
    # -----------------------------------------------------------------
    def get_many(self, ids) -> List[Invoice]:
        """Invoices for the given ids, in id order. Unknown ids are skipped."""
        ids = parse_ids(ids)
        return self.session.query(Invoice).filter(Invoice.id.in_(ids)).order_by(Invoice.id.asc()).all()

    def bulk_update_status(self, ids, target) -> List[Invoice]:
        """
        Move every listed invoice to `target` in one transaction.

        Each invoice goes through the same state machine as a single transition,
        so a cancel still reverses stock. One refusal rolls back the whole batch.
        """
        ids = parse_ids(ids)
        if target is None or str(target).strip() == "":
            raise ValidationError("Valid status is required.", field="status")

        with atomic(self.session, "invoice.bulk_status"):
            invoices = self._load_all(ids)
            for invoice in invoices:
                before = serialize_model(invoice)
                self._transition(invoice, target)
                log_action(invoice, "STATUS", before=before, after=serialize_model(invoice), session=self.session)

        logger.info("bulk status -> %s for %d invoice(s)", str(target).upper(), len(invoices))
        return invoices

    def bulk_delete(self, ids) -> int:
        """Delete DRAFT invoices in one transaction; any non-draft id rejects the batch."""
        ids = parse_ids(ids)

        with atomic(self.session, "invoice.bulk_delete"):
            invoices = self._load_all(ids)
            non_draft = [inv.id for inv in invoices if inv.status != InvoiceStatus.DRAFT]
            if non_draft:
                raise ConflictError(
                    f"Cannot delete {len(non_draft)} non-draft invoice(s). Only DRAFT invoices can be deleted.",
                    non_draft_ids=non_draft,
                )
            for invoice in invoices:
                self._delete_invoice(invoice)

        logger.info("bulk deleted %d invoice(s)", len(invoices))
        return len(invoices)

    # -----------------------------------------------------------------
    # Payments
    # -----------------------------------------------------------------
    def record_payment(self, invoice_id: int, payload: Mapping) -> Payment:
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object.")

        amount = to_decimal(payload.get("amount"), "amount", places=MONEY_PLACES)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero.", field="amount")
        amount = _money(amount)
        paid_on = parse_date(payload.get("paidOn"), "paidOn") or _utcnow().date()

        with atomic(self.session, "invoice.payment"):
            invoice = self.get(invoice_id)
            if invoice.status != InvoiceStatus.SUBMITTED:
                raise InvalidStateError(
                    "Payments can only be recorded against SUBMITTED invoices.",
                    status=invoice.status,
                )
            if amount > invoice.balance_due:
                raise ValidationError(
                    "Payment exceeds the outstanding balance.",
                    field="amount",
                    balance_due=str(invoice.balance_due),
                )

            payment = Payment(
                invoice=invoice,
                amount=amount,
                paid_on=paid_on,
                method=_optional_text(payload.get("method")),
                note=_optional_text(payload.get("note")),
            )
            self.session.add(payment)

            invoice.paid_amount = _money(_to_decimal(invoice.paid_amount) + amount)
            if invoice.balance_due == 0:
                invoice.payment_status = PaymentStatus.PAID.value
                invoice.status = InvoiceStatus.PAID.value
            else:
                invoice.payment_status = PaymentStatus.PARTIAL.value
            invoice.updated_at = _utcnow()

            self.session.flush()
            log_action(payment, "PAYMENT", after=serialize_model(payment), session=self.session)

        logger.info(
            "payment %s recorded on %s (balance=%s, status=%s)",
            amount, invoice.invoice_number, invoice.balance_due, invoice.status,
        )
        return payment

    # -----------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------
    def _compute(self, data: InvoiceInput) -> dict:
        totals = compute_totals(
            [{"quantity": line.quantity, "rate": line.rate} for line in data.items],
            data.discount_percent,
            data.cgst_percent,
            data.sgst_percent,
        )
        for idx, line in enumerate(data.items):
            if line.amount is not None and abs(line.amount - line_amount(line.quantity, line.rate)) > self.tolerance:
                raise ValidationError(
                    "Line amount does not equal quantity x rate.",
                    field=f"items[{idx}].amount",
                    expected=str(line_amount(line.quantity, line.rate)),
                )
        check_client_totals(totals, data.client_totals, self.tolerance)
        return totals

    def _check_counterparty(self, data: InvoiceInput) -> None:
        if data.type == InvoiceType.PURCHASE:
            if self.session.get(Supplier, data.supplier_id) is None:
                raise NotFoundError("Supplier not found.", supplier_id=data.supplier_id)
        else:
            if self.session.get(Customer, data.customer_id) is None:
                raise NotFoundError("Customer not found.", customer_id=data.customer_id)

    def _resolve_parts(self, lines: List[LineInput]) -> Dict[int, Part]:
        ids = {line.part_id for line in lines}
        parts = {
            p.id: p
            for p in self.session.query(Part).filter(Part.id.in_(ids), Part.is_deleted.is_(False)).all()
        }
        missing = sorted(ids - set(parts))
        if missing:
            raise NotFoundError("Part not found.", part_id=missing[0])
        return parts

    def _write_lines(self, invoice: Invoice, lines: List[LineInput], parts: Dict[int, Part]) -> None:
        for line_no, line in enumerate(lines, start=1):
            part = parts[line.part_id]
            invoice.items.append(
                InvoiceItem(
                    line_no=line_no,
                    part_id=part.id,
                    hsn_code=part.hsn_code,
                    unit=line.unit or part.unit,
                    quantity=line.quantity,
                    rate=line.rate,
                    amount=line_amount(line.quantity, line.rate),
                )
            )
        self.session.flush()

    def _post_ledger(self, invoice: Invoice) -> None:
        direction = invoice.ledger_direction
        for item in invoice.items:
            self.ledger.record_movement(
                item.part_id,
                item.id,
                direction,
                item.quantity,
                invoice_id=invoice.id,
                reference=invoice.invoice_number,
            )

    def _reverse_ledger(self, invoice: Invoice) -> None:
        for movement in self.ledger.active_movements(invoice.id):
            self.ledger.reverse_movement(movement.invoice_item_id, reference=invoice.invoice_number)

    def _check_stock(self, invoice: Invoice) -> None:
        """With ALLOW_NEGATIVE_STOCK off, a sale may not take any part below zero."""
        if self.allow_negative_stock or invoice.type != InvoiceType.SALE:
            return

        needed: Dict[int, Decimal] = {}
        for item in invoice.items:
            needed[item.part_id] = needed.get(item.part_id, Decimal("0")) + _to_decimal(item.quantity)

        for part_id, quantity in needed.items():
            available = self.ledger.current_stock(part_id)
            if quantity > available:
                raise ValidationError(
                    "Insufficient stock for this sale.",
                    field="items",
                    part_id=part_id,
                    available=str(available),
                    requested=str(quantity),
                )

    def _ensure_editable(self, invoice: Invoice) -> None:
        if invoice.status == InvoiceStatus.DRAFT:
            return
        if invoice.status == InvoiceStatus.SUBMITTED and self.allow_edit_submitted[InvoiceType(invoice.type)]:
            return
        raise InvalidStateError(
            f"A {invoice.status} invoice cannot be edited.",
            status=invoice.status,
            invoice_id=invoice.id,
        )

    def _check_version(self, invoice: Invoice, version: Optional[int]) -> None:
        if version is not None and version != invoice.version:
            raise ConflictError(
                "The invoice was modified by another request. Reload and retry.",
                invoice_id=invoice.id,
                expected_version=version,
                current_version=invoice.version,
            )

    def _ensure_number_free(self, invoice_type, number: str, exclude_id: Optional[int] = None) -> None:
        q = self.session.query(Invoice.id).filter(
            Invoice.type == InvoiceType(invoice_type).value,
            Invoice.invoice_number == number,
        )
        if exclude_id is not None:
            q = q.filter(Invoice.id != exclude_id)
        existing = q.first()
        if existing is not None:
            raise ConflictError(
                "Invoice number already exists.",
                invoice_number=number,
                conflicting_id=existing[0],
            )

    def _next_number(self, invoice_type: InvoiceType, when: datetime, consume: bool = True) -> str:
        prefix = NUMBER_PREFIX[invoice_type]
        year = when.year

        seq = (
            self.session.query(InvoiceSequence)
            .filter_by(type=invoice_type.value, year=year)
            .with_for_update()
            .one_or_none()
        )
        candidate = (seq.last_value if seq else 0) + 1

        # Caller-supplied numbers may already occupy the next slot
        while self._number_taken(invoice_type, f"{prefix}-{year}-{candidate:03d}"):
            candidate += 1

        if consume:
            if seq is None:
                seq = InvoiceSequence(type=invoice_type.value, year=year, last_value=0)
                self.session.add(seq)
            seq.last_value = candidate

        return f"{prefix}-{year}-{candidate:03d}"

    def _number_taken(self, invoice_type: InvoiceType, number: str) -> bool:
        return (
            self.session.query(Invoice.id)
            .filter_by(type=invoice_type.value, invoice_number=number)
            .first()
            is not None
        )

    def _load_all(self, ids: List[int]) -> List[Invoice]:
        found = {inv.id: inv for inv in self.session.query(Invoice).filter(Invoice.id.in_(ids)).all()}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError("Invoice not found.", invoice_id=missing[0])
        return [found[i] for i in ids]

    def _delete_invoice(self, invoice: Invoice) -> None:
        if invoice.status != InvoiceStatus.DRAFT:
            raise ConflictError(
                "Only DRAFT invoices can be deleted.",
                invoice_id=invoice.id,
                status=invoice.status,
            )
        if invoice.payments:
            raise ConflictError(
                "Invoice has payments and cannot be deleted.",
                invoice_id=invoice.id,
            )
        self._reverse_ledger(invoice)
        log_action(invoice, "DELETE", before=serialize_model(invoice), session=self.session)
        self.session.delete(invoice)

    def _run_transition(self, invoice_id: int, target: InvoiceStatus, version: Optional[int]) -> Invoice:
        with atomic(self.session, f"invoice.{target.value.lower()}"):
            invoice = self.get(invoice_id)
            self._check_version(invoice, version)
            before = serialize_model(invoice)
            self._transition(invoice, target)
            log_action(invoice, "STATUS", before=before, after=serialize_model(invoice), session=self.session)

        logger.info("invoice %s -> %s", invoice.invoice_number, invoice.status)
        return invoice

    def _transition(self, invoice: Invoice, target) -> None:
        try:
            target = InvoiceStatus(str(getattr(target, "value", target)).upper())
        except ValueError:
            raise ValidationError("Unknown invoice status.", field="status") from None

        if not invoice.can_transition_to(target):
            raise InvalidStateError(
                f"Cannot move invoice from {invoice.status} to {target.value}.",
                status=invoice.status,
                invoice_id=invoice.id,
                target=target.value,
            )

        if target == InvoiceStatus.CANCELLED:
            if invoice.payments:
                raise ConflictError(
                    "Invoice has payments and cannot be cancelled.",
                    invoice_id=invoice.id,
                )
            self._reverse_ledger(invoice)
        elif target == InvoiceStatus.PAID:
            invoice.payment_status = PaymentStatus.PAID.value

        invoice.status = target.value
        invoice.updated_at = _utcnow()

    def _set_payment_status(self, invoice: Invoice, value) -> None:
        if str(value).upper() != PaymentStatus.ON_CREDIT.value:
            raise ValidationError(
                "Only ON_CREDIT can be set directly; other payment states follow recorded payments.",
                field="paymentStatus",
            )
        if invoice.status != InvoiceStatus.SUBMITTED:
            raise InvalidStateError(
                "Only SUBMITTED invoices can be put on credit.", status=invoice.status
            )
        if _to_decimal(invoice.paid_amount) > 0:
            raise ValidationError(
                "Invoice already has payments.", field="paymentStatus"
            )
        invoice.payment_status = PaymentStatus.ON_CREDIT.value
        invoice.updated_at = _utcnow()
