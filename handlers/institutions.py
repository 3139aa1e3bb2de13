"""
Institution handlers. Master only.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database import Institution
from .authorization import Action
from .context import CallerContext
from .exceptions import InvalidInput
from .identity import require_profile
from .store import fetch_visible, store_operation
from .validation import check_fields, optional_text, require_text

logger = logging.getLogger(__name__)

DUPLICATE_CODE = "An institution with that code already exists"


def list_institutions(db: Session, caller: CallerContext) -> List[Dict[str, Any]]:
    """List visible institutions ordered by name."""
    require_profile(db, caller, Action.INSTITUTIONS_LIST)

    with store_operation(db, "listing institutions"):
        rows = (
            db.query(Institution)
            .filter(Institution.visible())
            .order_by(Institution.name, Institution.id)
            .all()
        )
    return [row.to_dict() for row in rows]


def create_institution(
    db: Session,
    caller: CallerContext,
    name: Any,
    code: Any = None,
) -> Dict[str, Any]:
    """
    Create an institution.

    Args:
        db: Database session
        caller: Calling user
        name: Display name, trimmed and required
        code: Optional unique code; blank values are stored as null

    Returns:
        The created institution

    Raises:
        InvalidInput: If the name is empty
        Conflict: If the code is already taken
    """
    profile = require_profile(db, caller, Action.INSTITUTIONS_CREATE)
    name = require_text(name, "name", "Name")

    institution = Institution(
        name=name,
        code=optional_text(code),
        created_by=profile.id,
        updated_by=profile.id,
    )
    with store_operation(db, "creating institution", DUPLICATE_CODE):
        db.add(institution)
        db.commit()
        db.refresh(institution)

    logger.info("Institution %s created by %s", institution.id, profile.id)
    return institution.to_dict()


def update_institution(
    db: Session,
    caller: CallerContext,
    institution_id: str,
    changes: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Partially update an institution.

    Keys absent from ``changes`` are left alone; ``code: None`` clears the code.

    Raises:
        InvalidInput: Unknown field or empty name
        NotFound: Institution absent or deleted
        Conflict: Code already taken
    """
    profile = require_profile(db, caller, Action.INSTITUTIONS_UPDATE)
    check_fields(changes, ("name", "code"))

    name: Optional[str] = None
    if "name" in changes:
        name = require_text(changes["name"], "name", "Name")
    if "code" in changes and changes["code"] is not None and not isinstance(changes["code"], str):
        raise InvalidInput("code must be a string or null", ["code"])

    institution = fetch_visible(db, Institution, institution_id, "Institution")

    if name is not None:
        institution.name = name
    if "code" in changes:
        institution.code = optional_text(changes["code"])
    institution.updated_by = profile.id

    with store_operation(db, "updating institution", DUPLICATE_CODE):
        db.commit()
        db.refresh(institution)

    return institution.to_dict()


def delete_institution(db: Session, caller: CallerContext, institution_id: str) -> Dict[str, Any]:
    """Soft-delete an institution. Its id stays reserved."""
    profile = require_profile(db, caller, Action.INSTITUTIONS_DELETE)
    institution = fetch_visible(db, Institution, institution_id, "Institution")

    institution.soft_delete()
    institution.updated_by = profile.id
    with store_operation(db, "deleting institution"):
        db.commit()

    logger.info("Institution %s deleted by %s", institution_id, profile.id)
    return {"ok": True, "id": institution_id}
