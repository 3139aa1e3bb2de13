"""
Translation of store-level failures into handler outcomes.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import Conflict, InternalError, NotFound

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION_SQLSTATE = "23505"
MYSQL_DUPLICATE_ENTRY = 1062


def is_unique_violation(exc: IntegrityError) -> bool:
    """Check whether an IntegrityError was raised by a unique constraint."""
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate == UNIQUE_VIOLATION_SQLSTATE:
        return True
    args = getattr(orig, "args", ())
    if args and args[0] == MYSQL_DUPLICATE_ENTRY:
        return True
    return "unique constraint" in str(orig).lower()


@contextmanager
def store_operation(db: Session, description: str, conflict_message: str = "Resource already exists"):
    """
    Run a block of store calls and map its failures.

    Uniqueness violations become ``Conflict(conflict_message)``; any other
    store failure rolls back and becomes ``InternalError`` carrying the
    driver message as ``detail``.
    """
    try:
        yield
    except IntegrityError as exc:
        db.rollback()
        if is_unique_violation(exc):
            raise Conflict(conflict_message) from exc
        logger.error("Integrity error while %s: %s", description, exc.orig)
        raise InternalError(f"Error while {description}", detail=str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Store error while %s: %s", description, exc)
        raise InternalError(f"Error while {description}", detail=str(exc)) from exc


def fetch_visible(db: Session, model, resource_id: str, resource: str):
    """
    Load a soft-deletable row by id, excluding deleted rows.

    Raises:
        NotFound: If the row is absent or deleted
    """
    with store_operation(db, f"loading {resource.lower()}"):
        row = (
            db.query(model)
            .filter(model.id == resource_id)
            .filter(model.visible())
            .first()
        )
    if row is None:
        raise NotFound(resource, resource_id)
    return row
