"""
Stock routes.

- GET  /stock?onlyPurchased=true     every active part with its stock
- GET  /stock/<part_id>              stock card: stock, incoming, outgoing, entries
- POST /stock/<part_id>/adjust       set the counted quantity (admin only)
"""

from flask import Blueprint, jsonify
from flask_login import login_required

from ...extensions import db
from ...ledger import InventoryLedger
from ...security import admin_required
from ...serializers import ledger_entry_to_dict, part_to_dict, qty_str, stock_row_to_dict
from ...stock import StockQueryService, adjust_stock
from ...utils import json_body, query_bool

stock_bp = Blueprint("stock", __name__, url_prefix="/stock")


@stock_bp.route("", methods=["GET"])
@login_required
def stock_list():
    rows = StockQueryService(db.session).stock_report(only_purchased=query_bool("onlyPurchased"))
    return jsonify([stock_row_to_dict(row["part"], row["stock"]) for row in rows])


@stock_bp.route("/<int:part_id>", methods=["GET"])
@login_required
def stock_detail(part_id: int):
    detail = StockQueryService(db.session).stock_detail(part_id)
    entries = InventoryLedger(db.session).entries_for_part(part_id)
    return jsonify(
        {
            "part": part_to_dict(detail["part"]),
            "stock": qty_str(detail["stock"]),
            "incoming": qty_str(detail["incoming"]),
            "outgoing": qty_str(detail["outgoing"]),
            "entries": [ledger_entry_to_dict(e) for e in entries],
        }
    )


@stock_bp.route("/<int:part_id>/adjust", methods=["POST"])
@login_required
@admin_required
def stock_adjust(part_id: int):
    payload = json_body()
    result = adjust_stock(db.session, part_id, payload.get("quantity"), reference=payload.get("reference"))
    return jsonify(
        {
            "part": part_to_dict(result["part"]),
            "previousStock": qty_str(result["previous_stock"]),
            "newStock": qty_str(result["new_stock"]),
            "adjustment": qty_str(result["adjustment"]),
        }
    )
