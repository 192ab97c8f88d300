"""
tradebooks/errors.py

Domain error taxonomy.

Every failure raised by the invoicing core is one of these classes. The app
factory renders them as JSON with the class status code, so route code never
builds error responses by hand.

Details travel in ``details`` (field name, current status, conflicting id) and
are merged into the JSON body next to ``error``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class ValidationError(DomainError):
    """Malformed or missing input. The caller must correct and resubmit."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class NotFoundError(DomainError):
    """A referenced Part / Party / Invoice id does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    """Duplicate key, stale version token or delete blocked by dependents."""

    status_code = 409
    code = "conflict"


class DuplicateLedgerEntryError(ConflictError):
    """A ledger movement already exists for the invoice item."""

    code = "duplicate_ledger_entry"


class InvalidStateError(DomainError):
    """Operation not permitted in the invoice's current status."""

    status_code = 422
    code = "invalid_state"

    def __init__(self, message: str, status: Optional[str] = None, **details: Any):
        super().__init__(message, status=status, **details)
        self.status = status


class PersistenceError(DomainError):
    """Storage or transaction failure. Nothing was applied."""

    status_code = 500
    code = "persistence_error"
