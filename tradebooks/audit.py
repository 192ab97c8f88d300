"""
tradebooks/audit.py

Audit logging helper.

Goals:
- Capture WHO did WHAT to WHICH entity, with BEFORE/AFTER snapshots.
- Store username snapshot to preserve identity even if username changes later.
- Store IP address for traceability.

IMPORTANT:
- This helper ADDS AuditLog entries to the given session.
  The caller controls transaction boundaries (commit/rollback), so the audit
  row commits or rolls back together with the change it describes.
- Outside a request (CLI seeding) the user and IP are recorded as NULL.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from flask import has_request_context, request
from flask_login import current_user

from .extensions import db
from .models import AuditLog


def _safe_str(value: Any) -> Optional[str]:
    """String form for JSON snapshots (Decimal/datetime/enum all stringify cleanly)."""
    if value is None:
        return None
    if hasattr(value, "value") and isinstance(value.value, str):
        return value.value
    return str(value)


def serialize_model(instance: Any) -> Dict[str, Optional[str]]:
    """
    Snapshot of a model's scalar columns.

    Relationships are not followed; invoice lines are audited through the
    invoice's totals and the ledger.
    """
    data: Dict[str, Optional[str]] = {}
    for column in instance.__table__.columns:
        data[column.name] = _safe_str(getattr(instance, column.key))
    return data


def _actor():
    if not has_request_context():
        return None, None, None
    if current_user and current_user.is_authenticated:
        return current_user.id, current_user.username, request.remote_addr
    return None, None, request.remote_addr


def log_action(
    entity: Any,
    action: str,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    session=None,
) -> AuditLog:
    """
    Add an AuditLog entry.

    Parameters:
        entity: model instance with .id (flush first)
        action: CREATE / UPDATE / STATUS / PAYMENT / DELETE / ADJUST
        before / after: dict snapshots (optional)
        session: defaults to db.session
    """
    entity_id = getattr(entity, "id", None)
    if entity_id is None:
        raise ValueError("log_action entity must have an 'id' attribute (after flush).")

    user_id, username, ip_address = _actor()

    entry = AuditLog(
        user_id=user_id,
        username_snapshot=username,
        entity_type=entity.__class__.__name__,
        entity_id=int(entity_id),
        action=str(action),
        before_data=json.dumps(before, ensure_ascii=False) if before else None,
        after_data=json.dumps(after, ensure_ascii=False) if after else None,
        ip_address=ip_address,
    )
    (session or db.session).add(entry)
    return entry
