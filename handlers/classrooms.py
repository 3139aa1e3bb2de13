"""
Classroom handlers: classrooms and their teacher assignments.

AUTHORIZATION:
- Listing: master (optionally by institution), admin (own institution),
  maestro (assigned classrooms only)
- Mutations: master, or admin of the classroom's institution
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database import Classroom, ClassroomTeacher, Institution, Profile, Role
from .authorization import Action, get_authorization_service
from .context import CallerContext, CallerProfile
from .exceptions import InvalidInput, NotFound
from .identity import require_profile
from .store import fetch_visible, store_operation
from .validation import check_fields, check_grade, require_text

logger = logging.getLogger(__name__)

DUPLICATE_NAME = "A classroom with that name already exists in this institution"


def _load_classroom(
    db: Session,
    profile: CallerProfile,
    classroom_id: str,
    action: Action,
    hide: bool = False,
) -> Classroom:
    classroom = fetch_visible(db, Classroom, classroom_id, "Classroom")
    get_authorization_service().enforce_institution(
        profile, classroom.institution_id, action, hide=hide, resource="Classroom"
    )
    return classroom


def list_classrooms(
    db: Session,
    caller: CallerContext,
    institution_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    List the classrooms visible to the caller, ordered by grade then name.

    A maestro without assignments gets an empty list.
    """
    profile = require_profile(db, caller, Action.CLASSROOMS_LIST)
    scope = get_authorization_service().classroom_scope(profile, institution_id)

    query = db.query(Classroom).filter(Classroom.visible())
    if scope.institution_id:
        query = query.filter(Classroom.institution_id == scope.institution_id)
    if scope.teacher_profile_id:
        query = query.join(ClassroomTeacher, ClassroomTeacher.classroom_id == Classroom.id).filter(
            ClassroomTeacher.teacher_profile_id == scope.teacher_profile_id
        )

    with store_operation(db, "listing classrooms"):
        rows = query.order_by(Classroom.grade_id, Classroom.name, Classroom.id).all()
    return [row.to_dict() for row in rows]


def create_classroom(
    db: Session,
    caller: CallerContext,
    name: Any,
    grade_id: Any,
    institution_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a classroom.

    Args:
        db: Database session
        caller: Calling user
        name: Classroom name, unique within the institution
        grade_id: School grade, 1 to 3
        institution_id: Target institution; defaults to the caller's own

    Returns:
        The created classroom

    Raises:
        InvalidInput: Bad name or grade, or no institution to create in
        Unauthorized: Admin targeting another institution
        NotFound: Institution absent or deleted
        Conflict: Duplicate name within the institution
    """
    profile = require_profile(db, caller, Action.CLASSROOMS_CREATE)
    name = require_text(name, "name", "Name")
    grade_id = check_grade(grade_id)

    target_institution = get_authorization_service().scoped_institution(
        profile, institution_id, Action.CLASSROOMS_CREATE
    )
    fetch_visible(db, Institution, target_institution, "Institution")

    classroom = Classroom(
        institution_id=target_institution,
        name=name,
        grade_id=grade_id,
        created_by=profile.id,
        updated_by=profile.id,
    )
    with store_operation(db, "creating classroom", DUPLICATE_NAME):
        db.add(classroom)
        db.commit()
        db.refresh(classroom)

    logger.info("Classroom %s created in %s by %s", classroom.id, target_institution, profile.id)
    return classroom.to_dict()


def update_classroom(
    db: Session,
    caller: CallerContext,
    classroom_id: str,
    changes: Dict[str, Any],
) -> Dict[str, Any]:
    """Rename a classroom or change its grade. Omitted fields stay as they are."""
    profile = require_profile(db, caller, Action.CLASSROOMS_UPDATE)
    check_fields(changes, ("name", "grade_id"))

    name = require_text(changes["name"], "name", "Name") if "name" in changes else None
    grade_id = check_grade(changes["grade_id"]) if "grade_id" in changes else None

    classroom = _load_classroom(db, profile, classroom_id, Action.CLASSROOMS_UPDATE)

    if name is not None:
        classroom.name = name
    if grade_id is not None:
        classroom.grade_id = grade_id
    classroom.updated_by = profile.id

    with store_operation(db, "updating classroom", DUPLICATE_NAME):
        db.commit()
        db.refresh(classroom)
    return classroom.to_dict()


def delete_classroom(db: Session, caller: CallerContext, classroom_id: str) -> Dict[str, Any]:
    """Soft-delete a classroom."""
    profile = require_profile(db, caller, Action.CLASSROOMS_DELETE)
    classroom = _load_classroom(db, profile, classroom_id, Action.CLASSROOMS_DELETE)

    classroom.soft_delete()
    classroom.updated_by = profile.id
    with store_operation(db, "deleting classroom"):
        db.commit()

    logger.info("Classroom %s deleted by %s", classroom_id, profile.id)
    return {"ok": True, "id": classroom_id}


def list_classroom_teachers(db: Session, caller: CallerContext, classroom_id: str) -> List[Dict[str, Any]]:
    """List the maestros assigned to a classroom, ordered by full name."""
    profile = require_profile(db, caller, Action.CLASSROOM_TEACHERS_LIST)
    classroom = _load_classroom(db, profile, classroom_id, Action.CLASSROOM_TEACHERS_LIST, hide=True)

    with store_operation(db, "listing classroom teachers"):
        rows = (
            db.query(ClassroomTeacher, Profile)
            .join(Profile, Profile.id == ClassroomTeacher.teacher_profile_id)
            .filter(ClassroomTeacher.classroom_id == classroom.id)
            .filter(Profile.visible())
            .order_by(Profile.full_name, Profile.id)
            .all()
        )
    return [
        {
            "id": assignment.id,
            "classroom_id": assignment.classroom_id,
            "teacher_profile_id": teacher.id,
            "full_name": teacher.full_name,
            "email": teacher.email,
        }
        for assignment, teacher in rows
    ]


def assign_teacher(
    db: Session,
    caller: CallerContext,
    classroom_id: str,
    teacher_profile_id: str,
) -> Dict[str, Any]:
    """
    Assign a maestro to a classroom.

    The profile must be a maestro of the classroom's institution.

    Raises:
        InvalidInput: If the profile is not an eligible maestro
        Conflict: If the maestro is already assigned
    """
    profile = require_profile(db, caller, Action.CLASSROOM_TEACHERS_ASSIGN)
    classroom = _load_classroom(db, profile, classroom_id, Action.CLASSROOM_TEACHERS_ASSIGN)

    try:
        teacher = fetch_visible(db, Profile, teacher_profile_id, "Teacher")
    except NotFound:
        raise InvalidInput("Unknown teacher", ["teacher_profile_id"]) from None
    if teacher.role != Role.MAESTRO.value:
        raise InvalidInput("Profile is not a maestro", ["teacher_profile_id"])
    if teacher.institution_id != classroom.institution_id:
        raise InvalidInput("Teacher belongs to another institution", ["teacher_profile_id"])

    assignment = ClassroomTeacher(
        classroom_id=classroom.id,
        teacher_profile_id=teacher.id,
        created_by=profile.id,
    )
    with store_operation(db, "assigning teacher", "Teacher is already assigned to this classroom"):
        db.add(assignment)
        db.commit()
        db.refresh(assignment)

    logger.info("Teacher %s assigned to classroom %s by %s", teacher.id, classroom.id, profile.id)
    return {
        "id": assignment.id,
        "classroom_id": classroom.id,
        "teacher_profile_id": teacher.id,
    }


def remove_teacher(
    db: Session,
    caller: CallerContext,
    classroom_id: str,
    teacher_profile_id: str,
) -> Dict[str, Any]:
    """
    Remove a maestro from a classroom.

    AUTHORIZATION: admin denied when the classroom belongs to another institution.
    """
    profile = require_profile(db, caller, Action.CLASSROOM_TEACHERS_REMOVE)
    classroom = _load_classroom(db, profile, classroom_id, Action.CLASSROOM_TEACHERS_REMOVE)

    with store_operation(db, "removing teacher"):
        removed = (
            db.query(ClassroomTeacher)
            .filter(ClassroomTeacher.classroom_id == classroom.id)
            .filter(ClassroomTeacher.teacher_profile_id == teacher_profile_id)
            .delete(synchronize_session=False)
        )
        if not removed:
            raise NotFound("Classroom teacher", teacher_profile_id)
        db.commit()

    logger.info("Teacher %s removed from classroom %s by %s", teacher_profile_id, classroom.id, profile.id)
    return {"ok": True, "classroom_id": classroom.id, "teacher_profile_id": teacher_profile_id}


def taught_classroom_ids(db: Session, profile: CallerProfile) -> List[str]:
    """
    Classrooms a teaching profile works with.

    A master gets every visible classroom; a maestro only its assignments.
    """
    query = db.query(Classroom.id).filter(Classroom.visible())
    if profile.role != Role.MASTER:
        query = query.join(ClassroomTeacher, ClassroomTeacher.classroom_id == Classroom.id).filter(
            ClassroomTeacher.teacher_profile_id == profile.id
        )
    with store_operation(db, "loading taught classrooms"):
        return [row.id for row in query.all()]
