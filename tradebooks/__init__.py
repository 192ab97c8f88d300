"""
tradebooks/__init__.py

Flask application factory for the Trade Books back office (JSON API).

- Invoices (purchase / sale) with server-side GST totals
- Append-only inventory ledger and stock queries
- Parts / suppliers / customers catalog
- Light reports

All access control is server-side: every API route requires a logged-in user,
admin-only routes are marked with tradebooks.security.admin_required.
"""

from __future__ import annotations

import logging
import sys

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .errors import DomainError
from .extensions import csrf, db, login_manager, migrate
from .models import User, UserRole

logger = logging.getLogger(__name__)


def _configure_logging(app: Flask) -> None:
    """Attach one stream handler to the package logger."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    package_logger = logging.getLogger("tradebooks")
    package_logger.setLevel(level)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        package_logger.addHandler(handler)


def create_app(config_object: str = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)
    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required.", "code": "unauthorized"}), 401

    # ----------------------------------------------------------------------
    # Errors: every failure leaves as JSON {"error", "code", ...details}
    # ----------------------------------------------------------------------
    @app.errorhandler(DomainError)
    def handle_domain_error(exc: DomainError):
        logger.warning("%s %s: %s %s", exc.status_code, exc.code, exc.message, exc.details)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        code = (exc.name or "error").lower().replace(" ", "_")
        return jsonify({"error": exc.description, "code": code}), exc.code

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.catalog import catalog_bp
    from .blueprints.invoices import invoices_bp
    from .blueprints.reports import reports_bp
    from .blueprints.stock import stock_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(reports_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (development; use `flask db upgrade` elsewhere)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("create-admin")
    @click.argument("username")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def create_admin_command(username: str, password: str):
        """Create an administrator account."""
        username = username.strip()
        if not username or not password:
            raise click.UsageError("Username and password are required.")
        if User.query.filter_by(username=username).first() is not None:
            raise click.ClickException(f"User {username!r} already exists.")

        user = User(username=username, role=UserRole.ADMIN.value, is_active=True)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Admin {username} created.")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Seed demo parts, parties and two invoices."""
        from .seed import seed_demo

        created = seed_demo()
        click.echo("Demo data seeded." if created else "Demo data already present.")

    @app.cli.command("check-stock")
    def check_stock_command():
        """Compare running stock totals with the ledger; exit 1 on drift."""
        from .ledger import InventoryLedger

        drift = InventoryLedger(db.session).stock_drift()
        if not drift:
            click.echo("Stock levels match the ledger.")
            return
        for part_id, (level, ledger_sum) in sorted(drift.items()):
            click.echo(f"part {part_id}: stock_levels={level} ledger={ledger_sum}")
        sys.exit(1)

    return app
