"""
Shared fixtures.

Every test gets a fresh in-memory database inside an application context.
Catalog fixtures mirror the demo data (JCB parts, two suppliers, two customers).
"""

from decimal import Decimal

import pytest

from tradebooks import create_app
from tradebooks.extensions import db as _db
from tradebooks.invoicing import InvoiceService
from tradebooks.models import Customer, Part, Supplier, User, UserRole

ADMIN_PASSWORD = "admin-pass-123"
USER_PASSWORD = "user-pass-123"


@pytest.fixture
def app():
    app = create_app("config.TestingConfig")
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def session(app):
    return _db.session


@pytest.fixture
def settings(app):
    """Mutable copy of the policy settings passed to services."""
    return dict(app.config)


@pytest.fixture
def service(session, settings):
    return InvoiceService(session, settings)


# ----------------------------------------------------------------------
# Users / clients
# ----------------------------------------------------------------------
def _make_user(session, username, password, role):
    user = User(username=username, role=role.value, is_active=True)
    user.set_password(password)
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def admin_user(session):
    return _make_user(session, "admin", ADMIN_PASSWORD, UserRole.ADMIN)


@pytest.fixture
def plain_user(session):
    return _make_user(session, "clerk", USER_PASSWORD, UserRole.USER)


@pytest.fixture
def client(app, admin_user):
    """Test client logged in as admin."""
    client = app.test_client()
    resp = client.post("/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client


@pytest.fixture
def clerk_client(app, plain_user):
    client = app.test_client()
    resp = client.post("/auth/login", json={"username": "clerk", "password": USER_PASSWORD})
    assert resp.status_code == 200
    return client


# ----------------------------------------------------------------------
# Catalog
# ----------------------------------------------------------------------
@pytest.fixture
def supplier(session):
    supplier = Supplier(
        name="JCB Parts India Ltd",
        phone="+91-9876543210",
        gstin="19AABCU9603R1ZM",
        state="West Bengal",
    )
    session.add(supplier)
    session.commit()
    return supplier


@pytest.fixture
def customer(session):
    customer = Customer(
        name="ABC Construction Ltd",
        phone="+91-8765432109",
        gstin="19FGHIJ5678K1ZY",
        state="West Bengal",
    )
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture
def hydraulic_filter(session):
    part = Part(
        part_number="JCB-HF-001",
        item_name="Hydraulic Filter",
        hsn_code="84212190",
        gst_percent=Decimal("18"),
        unit="PCS",
        mrp=Decimal("2500"),
        rtl=Decimal("2200"),
        barcode="8901234567890",
    )
    session.add(part)
    session.commit()
    return part


@pytest.fixture
def air_filter(session):
    part = Part(
        part_number="JCB-AF-002",
        item_name="Air Filter",
        hsn_code="84213990",
        gst_percent=Decimal("18"),
        unit="PCS",
        mrp=Decimal("1800"),
        rtl=Decimal("1600"),
    )
    session.add(part)
    session.commit()
    return part


# ----------------------------------------------------------------------
# Payload builders
# ----------------------------------------------------------------------
@pytest.fixture
def sale_payload(customer, hydraulic_filter):
    def build(quantity="5", rate="2200", **overrides):
        payload = {
            "type": "SALE",
            "date": "2025-11-05",
            "customerId": customer.id,
            "cgstPercent": "9",
            "sgstPercent": "9",
            "items": [{"partId": hydraulic_filter.id, "quantity": quantity, "rate": rate}],
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def purchase_payload(supplier, hydraulic_filter):
    def build(quantity="20", rate="2000", **overrides):
        payload = {
            "type": "PURCHASE",
            "date": "2025-11-01",
            "supplierId": supplier.id,
            "discountPercent": "5",
            "cgstPercent": "9",
            "sgstPercent": "9",
            "items": [{"partId": hydraulic_filter.id, "quantity": quantity, "rate": rate}],
        }
        payload.update(overrides)
        return payload

    return build
