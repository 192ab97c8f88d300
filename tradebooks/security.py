"""
tradebooks/security.py

Access control helpers for the JSON API.

Key rules:
- All permission checks are server-side.
- Every API route requires a logged-in user (flask_login.login_required).
- Admin-only: manual stock adjustment and catalog deletions.

IMPORTANT:
- Decorators must preserve wrapped function metadata to avoid Flask endpoint collisions.
  We use functools.wraps everywhere.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Tuple

from flask import jsonify
from flask_login import current_user


def _forbidden() -> Tuple[Any, int]:
    """Consistent JSON 403."""
    return jsonify({"error": "Administrator access required.", "code": "forbidden"}), 403


def is_admin() -> bool:
    """Return True if current user is authenticated and admin."""
    return bool(current_user.is_authenticated and getattr(current_user, "is_admin", False))


def admin_required(view_func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator: admin-only."""
    @wraps(view_func)
    def wrapper(*args: Any, **kwargs: Any):
        if not is_admin():
            return _forbidden()
        return view_func(*args, **kwargs)

    return wrapper
