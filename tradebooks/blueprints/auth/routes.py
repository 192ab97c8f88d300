"""
Authentication routes (JSON, session cookie via Flask-Login).

Provides:
- POST /auth/login
- POST /auth/logout
- GET  /auth/me
- GET  /auth/csrf-token

Accounts are created from the CLI (`flask create-admin`).
"""

import logging

from flask import Blueprint, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ...errors import ValidationError
from ...models import User
from ...utils import json_body

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _user_to_dict(user: User) -> dict:
    return {"id": user.id, "username": user.username, "role": user.role, "isAdmin": user.is_admin}


# ============================================================
# LOGIN / LOGOUT
# ============================================================

@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate a user.

    - Only active users may log in
    - Credentials validated via password hash
    """
    payload = json_body()
    username = str(payload.get("username") or "").strip()
    password = str(payload.get("password") or "")
    if not username or not password:
        raise ValidationError("username and password are required.", field="username")

    user = User.query.filter_by(username=username).first()
    if not user or not user.check_password(password):
        logger.info("failed login for %s", username)
        return jsonify({"error": "Invalid username or password.", "code": "unauthorized"}), 401

    if not user.is_active:
        return jsonify({"error": "Account is inactive.", "code": "forbidden"}), 403

    login_user(user)
    logger.info("user %s logged in", user.username)
    return jsonify(_user_to_dict(user))


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    """Log out the current user."""
    logout_user()
    return "", 204


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(_user_to_dict(current_user))


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    """Token for the X-CSRFToken header on unsafe requests."""
    return jsonify({"csrfToken": generate_csrf()})
