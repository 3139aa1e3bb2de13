"""
Identity resolution for the reading evaluation platform.
Turns an authenticated user id into a profile the policy guard can judge.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Profile, Role
from .authorization import Action, get_authorization_service
from .context import CallerContext, CallerProfile
from .exceptions import Unauthenticated

logger = logging.getLogger(__name__)

HOME_PATHS = {
    Role.MASTER: "/master",
    Role.ADMIN: "/admin",
    Role.MAESTRO: "/maestro",
    Role.TUTOR: "/tutor",
}


def resolve_profile(db: Session, user_id: Optional[str]) -> Optional[CallerProfile]:
    """
    Look up the directory entry of a user.

    Fails closed: a lookup error, a missing or soft-deleted row, or a role
    outside the four recognised values all yield None.

    Args:
        db: Database session
        user_id: Authenticated user id

    Returns:
        CallerProfile, or None when the user cannot be resolved
    """
    if not user_id:
        return None

    try:
        row = (
            db.query(Profile)
            .filter(Profile.id == user_id)
            .filter(Profile.visible())
            .first()
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Profile lookup failed for %s: %s", user_id, exc)
        return None

    if row is None:
        return None

    try:
        role = Role(row.role)
    except ValueError:
        logger.warning("Profile %s has unrecognised role %r", user_id, row.role)
        return None

    return CallerProfile(
        id=row.id,
        role=role,
        email=row.email,
        full_name=row.full_name,
        institution_id=row.institution_id,
    )


def require_profile(db: Session, caller: CallerContext, action: Action) -> CallerProfile:
    """
    Resolve the caller and check that their role may attempt ``action``.

    Raises:
        Unauthenticated: If the caller carries no identity
        Unauthorized: If no profile resolves or the role is not permitted
    """
    if not caller.is_authenticated:
        raise Unauthenticated()
    profile = resolve_profile(db, caller.user_id)
    return get_authorization_service().enforce(profile, action)


def describe_caller(db: Session, caller: CallerContext) -> Dict[str, Any]:
    """Return the caller's own profile and the home path of their role."""
    profile = require_profile(db, caller, Action.PROFILE_READ)
    return {
        "id": profile.id,
        "role": profile.role.value,
        "email": profile.email or "",
        "full_name": profile.full_name,
        "institution_id": profile.institution_id,
        "home_path": HOME_PATHS[profile.role],
    }
