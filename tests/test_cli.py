"""
CLI commands: create-admin, seed-demo, check-stock.
"""

from decimal import Decimal

from tradebooks.ledger import InventoryLedger
from tradebooks.models import Invoice, InvoiceStatus, Part, StockLevel, User


def test_create_admin(app, session):
    result = app.test_cli_runner().invoke(args=["create-admin", "boss", "--password", "s3cret"])

    assert result.exit_code == 0, result.output
    user = session.query(User).filter_by(username="boss").one()
    assert user.is_admin
    assert user.check_password("s3cret")


def test_create_admin_twice_fails(app):
    runner = app.test_cli_runner()
    runner.invoke(args=["create-admin", "boss", "--password", "s3cret"])
    result = runner.invoke(args=["create-admin", "boss", "--password", "other"])
    assert result.exit_code != 0


def test_seed_demo_is_idempotent(app, session):
    runner = app.test_cli_runner()
    first = runner.invoke(args=["seed-demo"])
    second = runner.invoke(args=["seed-demo"])

    assert first.exit_code == 0, first.output
    assert "already present" in second.output
    assert session.query(Part).count() == 5

    numbers = {i.invoice_number: i for i in session.query(Invoice).all()}
    assert set(numbers) == {"PUR-2025-001", "SAL-2025-001"}
    assert numbers["PUR-2025-001"].total == Decimal("44840.00")
    assert numbers["SAL-2025-001"].total == Decimal("12980.00")
    assert numbers["SAL-2025-001"].status == InvoiceStatus.SUBMITTED

    part = session.query(Part).filter_by(part_number="JCB-HF-001").one()
    assert InventoryLedger(session).current_stock(part.id) == Decimal("15")


def test_check_stock(app, session):
    runner = app.test_cli_runner()
    runner.invoke(args=["seed-demo"])

    ok = runner.invoke(args=["check-stock"])
    assert ok.exit_code == 0
    assert "match" in ok.output

    level = session.query(StockLevel).first()
    level.quantity = Decimal("999")
    session.commit()

    drift = runner.invoke(args=["check-stock"])
    assert drift.exit_code == 1
    assert "ledger=" in drift.output
