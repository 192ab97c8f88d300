"""
Report routes (read-only).

- GET /reports/profit-loss?from=&to=
- GET /reports/weekly-sales?weeks=8&end=YYYY-MM-DD
- GET /reports/low-stock?threshold=5
- GET /reports/dashboard
- GET /reports/monthly?year=2025&type=SALE
- GET /reports/top-parts?limit=10&type=SALE
"""

from datetime import date

from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required

from ...extensions import db
from ...invoicing import parse_date
from ...reports import ReportService
from ...serializers import money_str, part_to_dict, qty_str, stock_row_to_dict
from ...stock import StockQueryService
from ...utils import query_datetime, query_int

reports_bp = Blueprint("reports", __name__, url_prefix="/reports")


@reports_bp.route("/profit-loss", methods=["GET"])
@login_required
def profit_loss():
    summary = ReportService(db.session).profit_loss(
        date_from=query_datetime("from"),
        date_to=query_datetime("to", end_of_day=True),
    )
    return jsonify(
        {
            "totalSales": money_str(summary["total_sales"]),
            "totalPurchases": money_str(summary["total_purchases"]),
            "profitLoss": money_str(summary["profit_loss"]),
            "profitMargin": money_str(summary["profit_margin"]),
        }
    )


@reports_bp.route("/weekly-sales", methods=["GET"])
@login_required
def weekly_sales():
    weeks = query_int("weeks", default=8)
    end = parse_date(request.args.get("end"), "end")
    buckets = ReportService(db.session).weekly_sales(weeks=weeks, end=end)
    return jsonify(
        [
            {"weekStart": b["week_start"].isoformat(), "total": money_str(b["total"]), "count": b["count"]}
            for b in buckets
        ]
    )


@reports_bp.route("/low-stock", methods=["GET"])
@login_required
def low_stock():
    threshold = query_int("threshold", default=current_app.config.get("LOW_STOCK_THRESHOLD", 5))
    rows = StockQueryService(db.session).low_stock(threshold, limit=query_int("limit", default=10))
    return jsonify([stock_row_to_dict(row["part"], row["stock"]) for row in rows])


@reports_bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    summary = ReportService(db.session).dashboard(
        low_stock_threshold=current_app.config.get("LOW_STOCK_THRESHOLD", 5)
    )
    return jsonify(
        {
            "totalParts": summary["total_parts"],
            "totalSuppliers": summary["total_suppliers"],
            "totalCustomers": summary["total_customers"],
            "purchases": {
                "count": summary["purchases"]["count"],
                "total": money_str(summary["purchases"]["total"]),
            },
            "sales": {
                "count": summary["sales"]["count"],
                "total": money_str(summary["sales"]["total"]),
            },
            "lowStockParts": [stock_row_to_dict(row["part"], row["stock"]) for row in summary["low_stock"]],
        }
    )


@reports_bp.route("/monthly", methods=["GET"])
@login_required
def monthly():
    year = query_int("year", default=date.today().year)
    buckets = ReportService(db.session).monthly(year, invoice_type=request.args.get("type") or None)
    return jsonify(
        {
            "year": year,
            "data": [
                {"month": b["month"], "purchase": money_str(b["purchase"]), "sale": money_str(b["sale"])}
                for b in buckets
            ],
        }
    )


@reports_bp.route("/top-parts", methods=["GET"])
@login_required
def top_parts():
    rows = ReportService(db.session).top_parts(
        limit=query_int("limit", default=10),
        invoice_type=request.args.get("type") or "SALE",
    )
    return jsonify(
        [
            {
                **part_to_dict(row["part"]),
                "totalQuantity": qty_str(row["total_quantity"]),
                "totalAmount": money_str(row["total_amount"]),
            }
            for row in rows
        ]
    )
