"""
JSON projections for API responses.

Money is rendered as a string with two decimals ("12980.00"); quantities as a
plain decimal string without trailing zeros ("5", "2.5").
"""

from decimal import Decimal

from .models import _money, _to_decimal


def money_str(value) -> str:
    return str(_money(_to_decimal(value)))


def qty_str(value) -> str:
    qty = _to_decimal(value).normalize()
    return format(qty, "f")


def _iso(value):
    return value.isoformat() if value is not None else None


def part_to_dict(part) -> dict:
    return {
        "id": part.id,
        "partNumber": part.part_number,
        "itemName": part.item_name,
        "description": part.description,
        "hsnCode": part.hsn_code,
        "gstPercent": money_str(part.gst_percent),
        "unit": part.unit,
        "mrp": money_str(part.mrp),
        "rtl": money_str(part.rtl),
        "barcode": part.barcode,
        "qrCode": part.qr_code,
        "isDeleted": part.is_deleted,
    }


def party_to_dict(party) -> dict:
    data = {
        "id": party.id,
        "name": party.name,
        "phone": party.phone,
        "email": party.email,
        "address": party.address,
        "gstin": party.gstin,
        "state": party.state,
    }
    if hasattr(party, "contact_person"):
        data["contactPerson"] = party.contact_person
    return data


def item_to_dict(item) -> dict:
    return {
        "id": item.id,
        "lineNo": item.line_no,
        "partId": item.part_id,
        "partNumber": item.part.part_number if item.part else None,
        "itemName": item.part.item_name if item.part else None,
        "hsnCode": item.hsn_code,
        "unit": item.unit,
        "quantity": qty_str(item.quantity),
        "rate": money_str(item.rate),
        "amount": money_str(item.amount),
    }


def payment_to_dict(payment) -> dict:
    return {
        "id": payment.id,
        "invoiceId": payment.invoice_id,
        "amount": money_str(payment.amount),
        "paidOn": _iso(payment.paid_on),
        "method": payment.method,
        "note": payment.note,
    }


def invoice_to_dict(invoice, include_items: bool = True) -> dict:
    party = invoice.counterparty
    data = {
        "id": invoice.id,
        "invoiceNumber": invoice.invoice_number,
        "type": invoice.type,
        "date": _iso(invoice.date),
        "status": invoice.status,
        "supplierId": invoice.supplier_id,
        "customerId": invoice.customer_id,
        "party": party_to_dict(party) if party is not None else None,
        "subtotal": money_str(invoice.subtotal),
        "discountPercent": money_str(invoice.discount_percent),
        "discountAmount": money_str(invoice.discount_amount),
        "taxableValue": money_str(invoice.taxable_value),
        "cgstPercent": money_str(invoice.cgst_percent),
        "cgstAmount": money_str(invoice.cgst_amount),
        "sgstPercent": money_str(invoice.sgst_percent),
        "sgstAmount": money_str(invoice.sgst_amount),
        "roundOff": money_str(invoice.round_off),
        "total": money_str(invoice.total),
        "paymentStatus": invoice.payment_status,
        "paidAmount": money_str(invoice.paid_amount),
        "balanceDue": money_str(invoice.balance_due),
        "deliveryNote": invoice.delivery_note,
        "deliveryNoteDate": _iso(invoice.delivery_note_date),
        "buyerOrderNo": invoice.buyer_order_no,
        "dispatchDocNo": invoice.dispatch_doc_no,
        "dispatchedThrough": invoice.dispatched_through,
        "termsOfDelivery": invoice.terms_of_delivery,
        "notes": invoice.notes,
        "version": invoice.version,
        "createdAt": _iso(invoice.created_at),
        "updatedAt": _iso(invoice.updated_at),
    }
    if include_items:
        data["items"] = [item_to_dict(item) for item in invoice.items]
        data["payments"] = [payment_to_dict(p) for p in invoice.payments]
    return data


def ledger_entry_to_dict(entry) -> dict:
    return {
        "id": entry.id,
        "partId": entry.part_id,
        "invoiceItemId": entry.invoice_item_id,
        "invoiceId": entry.invoice_id,
        "reference": entry.reference,
        "direction": entry.direction,
        "kind": entry.kind,
        "quantity": qty_str(entry.quantity),
        "createdAt": _iso(entry.created_at),
    }


def stock_row_to_dict(part, stock: Decimal) -> dict:
    data = part_to_dict(part)
    data["stock"] = qty_str(stock)
    return data
