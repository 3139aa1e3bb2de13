"""
Teacher directory of an institution.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database import Profile, Role
from .authorization import Action, get_authorization_service
from .context import CallerContext
from .identity import require_profile
from .store import store_operation


def list_teachers(
    db: Session,
    caller: CallerContext,
    institution_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    List the maestros of an institution, ordered by full name.

    AUTHORIZATION: master, or admin for its own institution only.

    Raises:
        Unauthorized: Admin asking for another institution
    """
    profile = require_profile(db, caller, Action.TEACHERS_LIST)
    target = get_authorization_service().teacher_listing_institution(profile, institution_id)

    with store_operation(db, "listing teachers"):
        rows = (
            db.query(Profile)
            .filter(Profile.visible())
            .filter(Profile.role == Role.MAESTRO.value)
            .filter(Profile.institution_id == target)
            .order_by(Profile.full_name, Profile.id)
            .all()
        )
    return [
        {"id": row.id, "full_name": row.full_name, "email": row.email}
        for row in rows
    ]
