"""
tradebooks/seed.py

Seed the demo catalog and two demo invoices.

Rules:
- Safe to run multiple times (idempotent): rows are looked up by their
  business key (party name, part number, invoice number) before insert.
- Invoices go through InvoiceService so totals are computed and ledger
  entries are written exactly as for API-created invoices.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from flask import current_app

from .extensions import db
from .invoicing import InvoiceService
from .models import Customer, Invoice, InvoiceType, Part, Supplier

logger = logging.getLogger(__name__)


DEFAULT_SUPPLIERS = [
    {
        "name": "JCB Parts India Ltd",
        "address": "Sector 5, Salt Lake, Kolkata - 700091, West Bengal",
        "phone": "+91-9876543210",
        "gstin": "19AABCU9603R1ZM",
        "state": "West Bengal",
    },
    {
        "name": "Hydraulic Solutions Pvt Ltd",
        "address": "Industrial Area, Durgapur - 713204, West Bengal",
        "phone": "+91-9123456789",
        "gstin": "19BBCDE1234F1ZX",
        "state": "West Bengal",
    },
]

DEFAULT_CUSTOMERS = [
    {
        "name": "ABC Construction Ltd",
        "address": "Park Street, Kolkata - 700016, West Bengal",
        "phone": "+91-8765432109",
        "gstin": "19FGHIJ5678K1ZY",
        "state": "West Bengal",
    },
    {
        "name": "XYZ Earthmovers",
        "address": "NH6, Howrah - 711101, West Bengal",
        "phone": "+91-7654321098",
        "gstin": "19LMNOP9012Q1ZZ",
        "state": "West Bengal",
    },
]

# (part_number, item_name, description, hsn_code, gst_percent, unit, mrp, rtl, barcode)
DEFAULT_PARTS = [
    ("JCB-HF-001", "Hydraulic Filter", "High pressure hydraulic oil filter", "84212190", "18", "PCS", "2500", "2200", "8901234567890"),
    ("JCB-AF-002", "Air Filter", "Heavy duty air filter for excavators", "84213990", "18", "PCS", "1800", "1600", None),
    ("JCB-OF-003", "Oil Filter", "Engine oil filter", "84212190", "18", "PCS", "1200", "1000", None),
    ("JCB-BP-004", "Brake Pad Set", "Front brake pad set", "87083010", "28", "SET", "5500", "5000", None),
    ("JCB-EO-005", "Engine Oil 15W-40", "Premium quality engine oil 5L", "27101980", "18", "LTR", "3500", "3200", None),
]


def _seed_parties(model, rows) -> dict:
    parties = {}
    for row in rows:
        party = model.query.filter_by(name=row["name"]).first()
        if party is None:
            party = model(**row)
            db.session.add(party)
        parties[row["name"]] = party
    return parties


def _seed_parts() -> dict:
    parts = {}
    for number, name, description, hsn, gst, unit, mrp, rtl, barcode in DEFAULT_PARTS:
        part = Part.query.filter_by(part_number=number).first()
        if part is None:
            part = Part(
                part_number=number,
                item_name=name,
                description=description,
                hsn_code=hsn,
                gst_percent=Decimal(gst),
                unit=unit,
                mrp=Decimal(mrp),
                rtl=Decimal(rtl),
                barcode=barcode,
            )
            db.session.add(part)
        parts[number] = part
    return parts


def seed_demo() -> bool:
    """Seed demo data. Returns True if anything was created."""
    existing = Invoice.query.filter(Invoice.invoice_number.in_(["PUR-2025-001", "SAL-2025-001"])).count()
    if existing == 2:
        return False

    suppliers = _seed_parties(Supplier, DEFAULT_SUPPLIERS)
    customers = _seed_parties(Customer, DEFAULT_CUSTOMERS)
    parts = _seed_parts()
    db.session.commit()

    service = InvoiceService(db.session, current_app.config)
    filter_id = parts["JCB-HF-001"].id

    demo_invoices = [
        {
            "type": InvoiceType.PURCHASE.value,
            "invoiceNumber": "PUR-2025-001",
            "date": "2025-11-01",
            "supplierId": suppliers["JCB Parts India Ltd"].id,
            "discountPercent": "5",
            "cgstPercent": "9",
            "sgstPercent": "9",
            "items": [{"partId": filter_id, "quantity": "20", "rate": "2000"}],
            "total": "44840",
        },
        {
            "type": InvoiceType.SALE.value,
            "invoiceNumber": "SAL-2025-001",
            "date": "2025-11-05",
            "customerId": customers["ABC Construction Ltd"].id,
            "cgstPercent": "9",
            "sgstPercent": "9",
            "items": [{"partId": filter_id, "quantity": "5", "rate": "2200"}],
            "total": "12980",
        },
    ]

    for payload in demo_invoices:
        found = Invoice.query.filter_by(type=payload["type"], invoice_number=payload["invoiceNumber"]).first()
        if found is not None:
            continue
        invoice = service.create(payload)
        service.submit(invoice.id)

    logger.info("demo data seeded")
    return True
