"""
Catalog routes: parts, suppliers, customers.

Reads and writes are open to logged-in users; deletes are admin-only.
Parts are soft-deleted; parties referenced by invoices cannot be deleted (409).
"""

from flask import Blueprint, jsonify, request
from flask_login import login_required

from ...catalog import CatalogService
from ...extensions import db
from ...security import admin_required
from ...serializers import part_to_dict, party_to_dict
from ...utils import json_body

catalog_bp = Blueprint("catalog", __name__)

# URL segment -> party kind
PARTY_SEGMENTS = {"suppliers": "supplier", "customers": "customer"}


def _service() -> CatalogService:
    return CatalogService(db.session)


def _kind(segment: str) -> str:
    return PARTY_SEGMENTS[segment]


# ============================================================
# PARTS
# ============================================================

@catalog_bp.route("/parts", methods=["GET"])
@login_required
def parts_list():
    parts = _service().list_parts(search=request.args.get("q"))
    return jsonify([part_to_dict(p) for p in parts])


@catalog_bp.route("/parts", methods=["POST"])
@login_required
def parts_create():
    part = _service().create_part(json_body())
    return jsonify(part_to_dict(part)), 201


@catalog_bp.route("/parts/<int:part_id>", methods=["GET"])
@login_required
def parts_get(part_id: int):
    return jsonify(part_to_dict(_service().get_part(part_id)))


@catalog_bp.route("/parts/<int:part_id>", methods=["PUT", "PATCH"])
@login_required
def parts_update(part_id: int):
    part = _service().update_part(part_id, json_body())
    return jsonify(part_to_dict(part))


@catalog_bp.route("/parts/<int:part_id>", methods=["DELETE"])
@login_required
@admin_required
def parts_delete(part_id: int):
    _service().delete_part(part_id)
    return "", 204


# ============================================================
# SUPPLIERS / CUSTOMERS
# ============================================================

@catalog_bp.route("/<any(suppliers, customers):segment>", methods=["GET"])
@login_required
def parties_list(segment: str):
    parties = _service().list_parties(_kind(segment), search=request.args.get("q"))
    return jsonify([party_to_dict(p) for p in parties])


@catalog_bp.route("/<any(suppliers, customers):segment>", methods=["POST"])
@login_required
def parties_create(segment: str):
    party = _service().create_party(_kind(segment), json_body())
    return jsonify(party_to_dict(party)), 201


@catalog_bp.route("/<any(suppliers, customers):segment>/<int:party_id>", methods=["GET"])
@login_required
def parties_get(segment: str, party_id: int):
    return jsonify(party_to_dict(_service().get_party(_kind(segment), party_id)))


@catalog_bp.route("/<any(suppliers, customers):segment>/<int:party_id>", methods=["PUT", "PATCH"])
@login_required
def parties_update(segment: str, party_id: int):
    party = _service().update_party(_kind(segment), party_id, json_body())
    return jsonify(party_to_dict(party))


@catalog_bp.route("/<any(suppliers, customers):segment>/<int:party_id>", methods=["DELETE"])
@login_required
@admin_required
def parties_delete(segment: str, party_id: int):
    _service().delete_party(_kind(segment), party_id)
    return "", 204
