"""
Trade Books – Domain Models

Catalog:
- Part (sellable / purchasable item, soft-deleted only)
- Supplier, Customer (counterparties)

Transactions:
- Invoice (aggregate root, PURCHASE | SALE, DRAFT → SUBMITTED → PAID / CANCELLED)
- InvoiceItem (ordered lines, HSN code + unit copied from Part at creation)
- Payment (money received / paid against a SUBMITTED invoice)

Inventory:
- InventoryTransaction (append-only ledger, IN / OUT)
- StockLevel (running total per part, updated in the same transaction as the ledger)

Support:
- InvoiceSequence (SAL-YYYY-NNN / PUR-YYYY-NNN counters)
- User, AuditLog

IMPORTANT:
- Client-supplied totals are never stored. Invoice money fields are written only
  through Invoice.apply_totals() with values from tradebooks.tax.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from .extensions import db


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_decimal(value) -> Decimal:
    """Convert Numeric/None to Decimal safely."""
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value))


def _money(x: Decimal) -> Decimal:
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------
# Enumerations (stored as plain strings)
# ---------------------------------------------------------------------
class InvoiceType(str, Enum):
    PURCHASE = "PURCHASE"
    SALE = "SALE"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    ON_CREDIT = "ON_CREDIT"


class Direction(str, Enum):
    IN = "IN"
    OUT = "OUT"

    @property
    def opposite(self) -> "Direction":
        return Direction.OUT if self is Direction.IN else Direction.IN


class EntryKind(str, Enum):
    MOVEMENT = "MOVEMENT"
    REVERSAL = "REVERSAL"
    ADJUSTMENT = "ADJUSTMENT"


class Unit(str, Enum):
    PCS = "PCS"
    SET = "SET"
    LTR = "LTR"
    KG = "KG"
    MTR = "MTR"
    BOX = "BOX"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


# DRAFT → SUBMITTED → PAID, DRAFT → SUBMITTED → CANCELLED, DRAFT → CANCELLED
ALLOWED_TRANSITIONS = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SUBMITTED, InvoiceStatus.CANCELLED},
    InvoiceStatus.SUBMITTED: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.CANCELLED: set(),
}


# ---------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------
class User(UserMixin, db.Model):
    """System login user."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(20), nullable=False, default=UserRole.USER.value, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def set_password(self, password: str):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self):
        return f"<User {self.username}>"


# ---------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------
class Part(db.Model):
    """Catalog item. The part number is the immutable business key."""

    __tablename__ = "parts"

    id = db.Column(db.Integer, primary_key=True)

    part_number = db.Column(db.String(64), nullable=False, unique=True, index=True)
    item_name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    hsn_code = db.Column(db.String(16), nullable=False)
    gst_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("18.00"))
    unit = db.Column(db.String(8), nullable=False, default=Unit.PCS.value)

    mrp = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    rtl = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    barcode = db.Column(db.String(64), nullable=True, unique=True)
    qr_code = db.Column(db.String(128), nullable=True, unique=True)

    is_deleted = db.Column(db.Boolean, default=False, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Part {self.part_number} - {self.item_name}>"


class _PartyMixin:
    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False, index=True)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)

    # 15-char GSTIN; state kept for reference only (no IGST switching)
    gstin = db.Column(db.String(15), nullable=True, index=True)
    state = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)


class Supplier(_PartyMixin, db.Model):
    __tablename__ = "suppliers"

    contact_person = db.Column(db.String(255), nullable=True)

    def __repr__(self):
        return f"<Supplier {self.name}>"


class Customer(_PartyMixin, db.Model):
    __tablename__ = "customers"

    def __repr__(self):
        return f"<Customer {self.name}>"


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
class Invoice(db.Model):
    """
    Invoice aggregate root.

    Invariants (maintained by apply_totals):
      total          == taxable_value + cgst_amount + sgst_amount + round_off
      taxable_value  == subtotal - discount_amount
      discount_amount == round(subtotal * discount_percent / 100, 2)
    """

    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)

    invoice_number = db.Column(db.String(50), nullable=False, index=True)
    type = db.Column(db.String(10), nullable=False, index=True)
    date = db.Column(db.DateTime, nullable=False, index=True)
    status = db.Column(db.String(12), nullable=False, default=InvoiceStatus.DRAFT.value, index=True)

    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey("suppliers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    customer_id = db.Column(
        db.Integer,
        db.ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    taxable_value = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    cgst_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    cgst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    sgst_percent = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    sgst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    round_off = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    payment_status = db.Column(db.String(12), nullable=False, default=PaymentStatus.UNPAID.value)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Dispatch metadata (non-financial, PATCH-able)
    delivery_note = db.Column(db.String(100), nullable=True)
    delivery_note_date = db.Column(db.Date, nullable=True)
    buyer_order_no = db.Column(db.String(100), nullable=True)
    dispatch_doc_no = db.Column(db.String(100), nullable=True)
    dispatched_through = db.Column(db.String(255), nullable=True)
    terms_of_delivery = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    supplier = db.relationship("Supplier", backref=db.backref("invoices", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))

    items = db.relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.line_no",
        cascade="all, delete-orphan",
    )

    payments = db.relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.id",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        db.UniqueConstraint("type", "invoice_number", name="uq_invoice_type_number"),
        db.CheckConstraint(
            "(type = 'PURCHASE' AND customer_id IS NULL) OR (type = 'SALE' AND supplier_id IS NULL)",
            name="ck_invoice_counterparty",
        ),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def ledger_direction(self) -> Direction:
        return Direction.IN if self.type == InvoiceType.PURCHASE else Direction.OUT

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[InvoiceStatus(self.status)]

    @property
    def balance_due(self) -> Decimal:
        return _money(_to_decimal(self.total) - _to_decimal(self.paid_amount))

    @property
    def counterparty(self):
        return self.supplier if self.type == InvoiceType.PURCHASE else self.customer

    def can_transition_to(self, target: InvoiceStatus) -> bool:
        return InvoiceStatus(target) in ALLOWED_TRANSITIONS[InvoiceStatus(self.status)]

    def apply_totals(self, totals: dict, discount_percent, cgst_percent, sgst_percent):
        """Write server-computed totals (see tradebooks.tax.compute_totals)."""
        self.discount_percent = _to_decimal(discount_percent)
        self.cgst_percent = _to_decimal(cgst_percent)
        self.sgst_percent = _to_decimal(sgst_percent)

        self.subtotal = totals["subtotal"]
        self.discount_amount = totals["discount_amount"]
        self.taxable_value = totals["taxable_value"]
        self.cgst_amount = totals["cgst_amount"]
        self.sgst_amount = totals["sgst_amount"]
        self.round_off = totals["round_off"]
        self.total = totals["total"]

    def __repr__(self):
        return f"<Invoice {self.type} {self.invoice_number} [{self.status}]>"


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    line_no = db.Column(db.Integer, nullable=False)

    part_id = db.Column(
        db.Integer,
        db.ForeignKey("parts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Snapshots taken from Part when the line is written
    hsn_code = db.Column(db.String(16), nullable=False)
    unit = db.Column(db.String(8), nullable=False)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    rate = db.Column(db.Numeric(12, 2), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)

    invoice = db.relationship("Invoice", back_populates="items")
    part = db.relationship("Part")

    # Item ids are ledger idempotency keys; never reuse a deleted rowid
    __table_args__ = {"sqlite_autoincrement": True}


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)

    invoice_id = db.Column(
        db.Integer,
        db.ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    paid_on = db.Column(db.Date, nullable=False)
    method = db.Column(db.String(50), nullable=True)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    invoice = db.relationship("Invoice", back_populates="payments")


class InvoiceSequence(db.Model):
    """Last issued number per (type, year)."""

    __tablename__ = "invoice_sequences"

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(10), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    __table_args__ = (db.UniqueConstraint("type", "year", name="uq_sequence_type_year"),)


# ---------------------------------------------------------------------
# Inventory ledger
# ---------------------------------------------------------------------
class InventoryTransaction(db.Model):
    """
    Immutable ledger entry.

    invoice_item_id / invoice_id are weak references (no FK): the ledger must
    outlive deleted DRAFT invoices and replaced lines.

    idempotency_key:
      item:<invoice_item_id>      original movement (at most one per item)
      reversal:<invoice_item_id>  its compensating entry (at most one)
      NULL                        manual adjustments
    """

    __tablename__ = "inventory_transactions"

    id = db.Column(db.Integer, primary_key=True)

    part_id = db.Column(
        db.Integer,
        db.ForeignKey("parts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    invoice_item_id = db.Column(db.Integer, nullable=True, index=True)
    invoice_id = db.Column(db.Integer, nullable=True, index=True)
    reference = db.Column(db.String(60), nullable=True)

    direction = db.Column(db.String(3), nullable=False, index=True)
    kind = db.Column(db.String(12), nullable=False, default=EntryKind.MOVEMENT.value)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)

    idempotency_key = db.Column(db.String(40), nullable=True, unique=True)

    reverses_id = db.Column(
        db.Integer,
        db.ForeignKey("inventory_transactions.id", ondelete="RESTRICT"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    part = db.relationship("Part")

    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_ledger_quantity_positive"),
    )

    @property
    def signed_quantity(self) -> Decimal:
        qty = _to_decimal(self.quantity)
        return qty if self.direction == Direction.IN else -qty


class StockLevel(db.Model):
    """Running stock total per part; always equal to the ledger's signed sum."""

    __tablename__ = "stock_levels"

    part_id = db.Column(
        db.Integer,
        db.ForeignKey("parts.id", ondelete="RESTRICT"),
        primary_key=True,
    )
    quantity = db.Column(db.Numeric(14, 3), nullable=False, default=Decimal("0"))

    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------
class AuditLog(db.Model):
    """Who did what to which entity, with before/after snapshots."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    username_snapshot = db.Column(db.String(150), nullable=True)

    entity_type = db.Column(db.String(50), nullable=False, index=True)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    action = db.Column(db.String(20), nullable=False, index=True)

    before_data = db.Column(db.Text, nullable=True)
    after_data = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)

    user = db.relationship("User", backref=db.backref("audit_entries", lazy=True))
