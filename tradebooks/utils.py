"""
Request helpers shared by the API blueprints:
- json_body: the request's JSON object (ValidationError otherwise)
- query_int / query_bool / query_datetime: typed query-string arguments
"""

from datetime import datetime, time

from flask import request

from .errors import ValidationError
from .invoicing import parse_datetime


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def query_int(name: str, default=None):
    raw = (request.args.get(name) or "").strip()
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer.", field=name) from None


def query_bool(name: str, default: bool = False) -> bool:
    raw = (request.args.get(name) or "").strip().lower()
    if raw == "":
        return default
    return raw in {"1", "true", "yes", "on"}


def query_datetime(name: str, end_of_day: bool = False):
    """
    ISO date/datetime query argument.

    A bare date (YYYY-MM-DD) used as an upper bound covers the whole day.
    """
    raw = (request.args.get(name) or "").strip()
    if raw == "":
        return None
    parsed = parse_datetime(raw, name)
    if end_of_day and len(raw) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed
