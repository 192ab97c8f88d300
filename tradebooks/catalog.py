"""
tradebooks/catalog.py

Parts, suppliers and customers.

The invoicing core only reads these by id. What matters here is referential
integrity: invoices are history, so
- parts are soft-deleted (is_deleted) and keep resolving on old invoice lines;
- a supplier/customer referenced by any invoice cannot be deleted.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from typing import List, Mapping, Optional

from sqlalchemy import or_

from .audit import log_action, serialize_model
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Customer, Invoice, Part, Supplier, Unit
from .tax import MONEY_PLACES, to_decimal
from .transactions import atomic

logger = logging.getLogger(__name__)

GSTIN_RE = re.compile(r"^[0-9A-Z]{15}$")

PARTY_MODELS = {"supplier": Supplier, "customer": Customer}


def _text(payload: Mapping, key: str, required: bool = False) -> Optional[str]:
    value = payload.get(key)
    value = str(value).strip() if value is not None else ""
    if required and not value:
        raise ValidationError(f"{key} is required.", field=key)
    return value or None


def _non_negative(payload: Mapping, key: str, default: Decimal) -> Decimal:
    if payload.get(key) is None:
        return default
    value = to_decimal(payload[key], key, places=MONEY_PLACES)
    if value < 0:
        raise ValidationError(f"{key} cannot be negative.", field=key)
    return value


class CatalogService:
    def __init__(self, session):
        self.session = session

    # -----------------------------------------------------------------
    # Parts
    # -----------------------------------------------------------------
    def get_part(self, part_id: int) -> Part:
        part = self.session.get(Part, part_id)
        if part is None or part.is_deleted:
            raise NotFoundError("Part not found.", part_id=part_id)
        return part

    def list_parts(self, search: Optional[str] = None) -> List[Part]:
        q = self.session.query(Part).filter(Part.is_deleted.is_(False))
        if search:
            like = f"%{search.strip()}%"
            q = q.filter(
                or_(
                    Part.part_number.ilike(like),
                    Part.item_name.ilike(like),
                    Part.barcode == search.strip(),
                    Part.qr_code == search.strip(),
                )
            )
        return q.order_by(Part.part_number.asc()).all()

    def _apply_part_fields(self, part: Part, payload: Mapping, creating: bool) -> None:
        if creating or "itemName" in payload:
            part.item_name = _text(payload, "itemName", required=True)
        if creating or "hsnCode" in payload:
            part.hsn_code = _text(payload, "hsnCode", required=True)
        if "description" in payload:
            part.description = _text(payload, "description")

        if creating or "unit" in payload:
            unit = (_text(payload, "unit") or Unit.PCS.value).upper()
            if unit not in Unit.__members__:
                raise ValidationError(f"unit must be one of {', '.join(Unit.__members__)}.", field="unit")
            part.unit = unit

        if creating or "gstPercent" in payload:
            gst = _non_negative(payload, "gstPercent", Decimal("18.00"))
            if gst > 100:
                raise ValidationError("gstPercent must be between 0 and 100.", field="gstPercent")
            part.gst_percent = gst

        if creating or "mrp" in payload:
            part.mrp = _non_negative(payload, "mrp", Decimal("0.00"))
        if creating or "rtl" in payload:
            part.rtl = _non_negative(payload, "rtl", Decimal("0.00"))

        for key, attr in (("barcode", "barcode"), ("qrCode", "qr_code")):
            if creating or key in payload:
                value = _text(payload, key)
                if value is not None:
                    clash = (
                        self.session.query(Part.id)
                        .filter(getattr(Part, attr) == value, Part.id != (part.id or 0))
                        .first()
                    )
                    if clash is not None:
                        raise ConflictError(f"{key} already assigned to another part.", field=key, conflicting_id=clash[0])
                setattr(part, attr, value)

    def create_part(self, payload: Mapping) -> Part:
        number = _text(payload, "partNumber", required=True)
        with atomic(self.session, "part.create"):
            existing = self.session.query(Part.id).filter_by(part_number=number).first()
            if existing is not None:
                raise ConflictError("Part number already exists.", field="partNumber", conflicting_id=existing[0])

            part = Part(part_number=number)
            self._apply_part_fields(part, payload, creating=True)
            self.session.add(part)
            self.session.flush()
            log_action(part, "CREATE", after=serialize_model(part), session=self.session)

        logger.info("part %s created", part.part_number)
        return part

    def update_part(self, part_id: int, payload: Mapping) -> Part:
        with atomic(self.session, "part.update"):
            part = self.get_part(part_id)
            new_number = payload.get("partNumber")
            if new_number is not None and str(new_number).strip() != part.part_number:
                raise ValidationError("partNumber cannot be changed.", field="partNumber")

            before = serialize_model(part)
            self._apply_part_fields(part, payload, creating=False)
            self.session.flush()
            log_action(part, "UPDATE", before=before, after=serialize_model(part), session=self.session)
        return part

    def delete_part(self, part_id: int) -> Part:
        """Soft delete; ledger history and invoice lines keep pointing at the row."""
        with atomic(self.session, "part.delete"):
            part = self.get_part(part_id)
            before = serialize_model(part)
            part.is_deleted = True
            self.session.flush()
            log_action(part, "DELETE", before=before, after=serialize_model(part), session=self.session)

        logger.info("part %s soft-deleted", part.part_number)
        return part

    # -----------------------------------------------------------------
    # Suppliers / customers
    # -----------------------------------------------------------------
    def _party_model(self, kind: str):
        try:
            return PARTY_MODELS[kind]
        except KeyError:
            raise ValueError(f"unknown party kind {kind!r}") from None

    def get_party(self, kind: str, party_id: int):
        model = self._party_model(kind)
        party = self.session.get(model, party_id)
        if party is None:
            raise NotFoundError(f"{kind.capitalize()} not found.", **{f"{kind}_id": party_id})
        return party

    def list_parties(self, kind: str, search: Optional[str] = None):
        model = self._party_model(kind)
        q = self.session.query(model)
        if search:
            like = f"%{search.strip()}%"
            q = q.filter(or_(model.name.ilike(like), model.phone.ilike(like), model.gstin.ilike(like)))
        return q.order_by(model.name.asc()).all()

    def _apply_party_fields(self, party, payload: Mapping, creating: bool) -> None:
        if creating or "name" in payload:
            party.name = _text(payload, "name", required=True)
        if creating or "phone" in payload:
            party.phone = _text(payload, "phone", required=True)

        if "email" in payload:
            email = _text(payload, "email")
            if email is not None and "@" not in email:
                raise ValidationError("email is not a valid address.", field="email")
            party.email = email

        if "gstin" in payload:
            gstin = _text(payload, "gstin")
            if gstin is not None:
                gstin = gstin.upper()
                if not GSTIN_RE.match(gstin):
                    raise ValidationError("gstin must be 15 alphanumeric characters.", field="gstin")
            party.gstin = gstin

        for key in ("address", "state"):
            if key in payload:
                setattr(party, key, _text(payload, key))
        if isinstance(party, Supplier) and "contactPerson" in payload:
            party.contact_person = _text(payload, "contactPerson")

    def create_party(self, kind: str, payload: Mapping):
        model = self._party_model(kind)
        with atomic(self.session, f"{kind}.create"):
            party = model()
            self._apply_party_fields(party, payload, creating=True)
            self.session.add(party)
            self.session.flush()
            log_action(party, "CREATE", after=serialize_model(party), session=self.session)

        logger.info("%s %s created", kind, party.name)
        return party

    def update_party(self, kind: str, party_id: int, payload: Mapping):
        with atomic(self.session, f"{kind}.update"):
            party = self.get_party(kind, party_id)
            before = serialize_model(party)
            self._apply_party_fields(party, payload, creating=False)
            self.session.flush()
            log_action(party, "UPDATE", before=before, after=serialize_model(party), session=self.session)
        return party

    def delete_party(self, kind: str, party_id: int) -> None:
        """Rejected while any invoice references the party."""
        column = Invoice.supplier_id if kind == "supplier" else Invoice.customer_id
        with atomic(self.session, f"{kind}.delete"):
            party = self.get_party(kind, party_id)
            count = self.session.query(Invoice.id).filter(column == party_id).count()
            if count:
                raise ConflictError(
                    f"Cannot delete {kind} with existing invoices.",
                    **{f"{kind}_id": party_id, "invoice_count": count},
                )
            log_action(party, "DELETE", before=serialize_model(party), session=self.session)
            self.session.delete(party)

        logger.info("%s %s deleted", kind, party_id)
