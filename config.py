"""
Application configuration.

Settings for the Flask application: database connection, secret key and the
business policy switches used by the invoicing core. Values come from
environment variables with development defaults. In production, set
SECRET_KEY and DATABASE_URL explicitly.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'tradebooks.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection (clients send X-CSRFToken from /auth/csrf-token)
    WTF_CSRF_ENABLED = True

    APP_NAME = "Trade Books"

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Invoice editing override: SUBMITTED invoices stay editable per type
    ALLOW_EDIT_SUBMITTED_SALES = _env_flag("ALLOW_EDIT_SUBMITTED_SALES", False)
    ALLOW_EDIT_SUBMITTED_PURCHASES = _env_flag("ALLOW_EDIT_SUBMITTED_PURCHASES", False)

    # Sales may drive stock below zero unless disabled
    ALLOW_NEGATIVE_STOCK = _env_flag("ALLOW_NEGATIVE_STOCK", True)

    # Accepted difference between client-sent and recomputed money values
    MONEY_TOLERANCE = os.environ.get("MONEY_TOLERANCE", "0.01")

    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "5"))


class TestingConfig(Config):
    """In-memory database, no CSRF, deterministic policy defaults."""

    TESTING = True
    SECRET_KEY = "testing"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = "DEBUG"

    ALLOW_EDIT_SUBMITTED_SALES = False
    ALLOW_EDIT_SUBMITTED_PURCHASES = False
    ALLOW_NEGATIVE_STOCK = True
