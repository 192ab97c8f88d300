"""
tradebooks/transactions.py

Unit-of-work boundary for mutating services.

Every service method that writes wraps its work in ``atomic(session)``:
the whole block commits, or the session rolls back and nothing is visible
to later readers. Storage exceptions are translated to the domain taxonomy.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from .errors import ConflictError, DomainError, PersistenceError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(session, operation: str = "write"):
    """Commit on success, roll back on any failure."""
    try:
        yield session
        session.commit()
    except DomainError:
        session.rollback()
        raise
    except StaleDataError as exc:
        session.rollback()
        raise ConflictError(
            "The record was modified by another request. Reload and retry.",
            operation=operation,
        ) from exc
    except IntegrityError as exc:
        session.rollback()
        logger.warning("%s violated a constraint: %s", operation, exc.orig)
        raise ConflictError("The change conflicts with existing data.", operation=operation) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception("%s failed; transaction rolled back", operation)
        raise PersistenceError("The change could not be saved.", operation=operation) from exc
    except Exception:
        session.rollback()
        raise
