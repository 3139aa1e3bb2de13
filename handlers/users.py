"""
User directory handlers. Master only.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from config import settings
from database import Institution, Profile, Role
from .authorization import Action, get_authorization_service
from .context import CallerContext
from .exceptions import InvalidInput, NotFound
from .identity import require_profile
from .store import fetch_visible, store_operation
from .validation import check_fields

logger = logging.getLogger(__name__)

ROLE_VALUES = [role.value for role in Role]


def list_users(db: Session, caller: CallerContext, q: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    List profiles, newest first.

    Args:
        db: Database session
        caller: Calling user
        q: Optional case-insensitive filter on email or full name

    Returns:
        At most ``users_page_limit`` profiles
    """
    require_profile(db, caller, Action.USERS_LIST)

    query = db.query(Profile).filter(Profile.visible())
    term = (q or "").strip().lower()
    if term:
        # Wildcards in the term match literally
        escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        query = query.filter(or_(
            func.lower(Profile.email).like(pattern, escape="\\"),
            func.lower(Profile.full_name).like(pattern, escape="\\"),
        ))

    with store_operation(db, "listing users"):
        rows = (
            query.order_by(Profile.created_at.desc(), Profile.id)
            .limit(settings.users_page_limit)
            .all()
        )
    return [row.to_dict() for row in rows]


def update_user(
    db: Session,
    caller: CallerContext,
    user_id: str,
    changes: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Change the role and/or institution of a profile.

    AUTHORIZATION:
    - Master only
    - A master can never move their own role away from master

    A key missing from ``changes`` leaves the value untouched; an explicit
    ``institution_id: None`` detaches the profile from its institution.

    Raises:
        InvalidInput: Unknown field, unknown role, null role, self-demotion
            or unknown institution
        NotFound: If the profile does not exist
    """
    profile = require_profile(db, caller, Action.USERS_UPDATE)
    check_fields(changes, ("role", "institution_id"))

    new_role: Optional[str] = None
    if "role" in changes:
        new_role = changes["role"]
        if new_role not in ROLE_VALUES:
            raise InvalidInput(f"role must be one of {', '.join(ROLE_VALUES)}", ["role"])
        get_authorization_service().enforce_role_change(profile, user_id, new_role)

    if "institution_id" in changes and changes["institution_id"] is not None:
        institution_id = changes["institution_id"]
        if not isinstance(institution_id, str) or not institution_id.strip():
            raise InvalidInput("institution_id must be a non-empty string or null", ["institution_id"])
        try:
            fetch_visible(db, Institution, institution_id, "Institution")
        except NotFound:
            raise InvalidInput("Unknown institution", ["institution_id"]) from None

    target = fetch_visible(db, Profile, user_id, "User")

    if new_role is not None:
        target.role = new_role
    if "institution_id" in changes:
        target.institution_id = changes["institution_id"]

    with store_operation(db, "updating user"):
        db.commit()
        db.refresh(target)

    logger.info("User %s updated by %s: %s", user_id, profile.id, sorted(changes))
    return target.to_dict()
