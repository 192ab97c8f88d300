"""
Invoice routes (JSON API).

Provides:
- POST   /invoices                   create (DRAFT), 201
- GET    /invoices                   list with filters
- GET    /invoices/next-number       preview the next number for a type/date
- GET    /invoices/<id>              one invoice with lines and payments
- PUT    /invoices/<id>              full replace of header + lines
- PATCH  /invoices/<id>              dispatch metadata, paymentStatus, status
- DELETE /invoices/<id>              DRAFT only, 204
- POST   /invoices/<id>/payments     record a payment, 201
- POST   /invoices/bulk              fetch several invoices by id
- POST   /invoices/bulk-update-status  one status for several invoices
- POST   /invoices/bulk-delete       delete several DRAFT invoices

Routes stay thin: parsing and rules live in tradebooks.invoicing.
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from ...extensions import db
from ...invoicing import InvoiceService, parse_datetime
from ...serializers import invoice_to_dict, payment_to_dict
from ...utils import json_body, query_datetime, query_int

invoices_bp = Blueprint("invoices", __name__, url_prefix="/invoices")


def _service() -> InvoiceService:
    return InvoiceService(db.session, current_app.config)


@invoices_bp.route("", methods=["POST"])
@login_required
def create_invoice():
    invoice = _service().create(json_body())
    return jsonify(invoice_to_dict(invoice)), 201


@invoices_bp.route("", methods=["GET"])
@login_required
def list_invoices():
    invoices = _service().list(
        invoice_type=request.args.get("type") or None,
        status=request.args.get("status") or None,
        supplier_id=query_int("supplierId"),
        customer_id=query_int("customerId"),
        date_from=query_datetime("from"),
        date_to=query_datetime("to", end_of_day=True),
    )
    return jsonify([invoice_to_dict(inv, include_items=False) for inv in invoices])


@invoices_bp.route("/next-number", methods=["GET"])
@login_required
def next_number():
    invoice_type = request.args.get("type", "")
    raw_date = request.args.get("date")
    when = parse_datetime(raw_date, "date") if raw_date else None
    number = _service().next_invoice_number(invoice_type, when)
    return jsonify({"type": invoice_type.upper(), "invoiceNumber": number})


@invoices_bp.route("/<int:invoice_id>", methods=["GET"])
@login_required
def get_invoice(invoice_id: int):
    return jsonify(invoice_to_dict(_service().get(invoice_id)))


@invoices_bp.route("/<int:invoice_id>", methods=["PUT"])
@login_required
def update_invoice(invoice_id: int):
    invoice = _service().update(invoice_id, json_body())
    return jsonify(invoice_to_dict(invoice))


@invoices_bp.route("/<int:invoice_id>", methods=["PATCH"])
@login_required
def patch_invoice(invoice_id: int):
    invoice = _service().patch(invoice_id, json_body())
    return jsonify(invoice_to_dict(invoice))


@invoices_bp.route("/<int:invoice_id>", methods=["DELETE"])
@login_required
def delete_invoice(invoice_id: int):
    _service().delete(invoice_id)
    return "", 204


@invoices_bp.route("/<int:invoice_id>/payments", methods=["POST"])
@login_required
def record_payment(invoice_id: int):
    service = _service()
    payment = service.record_payment(invoice_id, json_body())
    return (
        jsonify({"payment": payment_to_dict(payment), "invoice": invoice_to_dict(service.get(invoice_id))}),
        201,
    )


@invoices_bp.route("/bulk", methods=["POST"])
@login_required
def bulk_fetch():
    invoices = _service().get_many(json_body().get("ids"))
    return jsonify([invoice_to_dict(inv) for inv in invoices])


@invoices_bp.route("/bulk-update-status", methods=["POST"])
@login_required
def bulk_update_status():
    payload = json_body()
    invoices = _service().bulk_update_status(payload.get("ids"), payload.get("status"))
    return jsonify(
        {
            "updated": len(invoices),
            "invoices": [invoice_to_dict(inv, include_items=False) for inv in invoices],
        }
    )


@invoices_bp.route("/bulk-delete", methods=["POST"])
@login_required
def bulk_delete():
    deleted = _service().bulk_delete(json_body().get("ids"))
    return jsonify({"deleted": deleted})
