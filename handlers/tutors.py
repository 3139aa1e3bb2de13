"""
Tutor (guardian) handlers.

Maestros link tutors to the students of their classrooms; tutors keep their
own child information up to date.
"""
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from database import Profile, Role, Student, StudentEnrollment, StudentTutor
from .authorization import Action
from .classrooms import taught_classroom_ids
from .context import CallerContext, CallerProfile
from .exceptions import Conflict, InvalidInput, NotFound, Unauthorized
from .identity import require_profile
from .store import store_operation
from .validation import check_grade, require_text

logger = logging.getLogger(__name__)


def _teaches_student(db: Session, profile: CallerProfile, student_id: str, action: Action) -> None:
    """
    Check that the student is actively enrolled in one of the caller's classrooms.

    Raises:
        Unauthorized: Otherwise
    """
    classroom_ids = taught_classroom_ids(db, profile)
    if not classroom_ids:
        raise Unauthorized("You have no classrooms assigned", user_id=profile.id, action=action.value)

    with store_operation(db, "checking enrollment"):
        enrollment = (
            db.query(StudentEnrollment.id)
            .filter(StudentEnrollment.classroom_id.in_(classroom_ids))
            .filter(StudentEnrollment.student_id == student_id)
            .filter(StudentEnrollment.active.is_(True))
            .filter(StudentEnrollment.visible())
            .first()
        )
    if enrollment is None:
        raise Unauthorized("Student is not in your classrooms", user_id=profile.id, action=action.value)


def get_tutor_overview(db: Session, caller: CallerContext) -> Dict[str, Any]:
    """
    Students of the caller's classrooms with their tutors, plus the tutors
    that can still be assigned.

    Returns:
        ``{students, available_tutors}``; both empty for a maestro without classrooms
    """
    profile = require_profile(db, caller, Action.TUTORS_OVERVIEW)
    classroom_ids = taught_classroom_ids(db, profile)
    if not classroom_ids:
        return {"students": [], "available_tutors": []}

    with store_operation(db, "loading tutor overview"):
        rows = (
            db.query(Student, StudentEnrollment.grade_id)
            .join(StudentEnrollment, StudentEnrollment.student_id == Student.id)
            .filter(StudentEnrollment.classroom_id.in_(classroom_ids))
            .filter(StudentEnrollment.active.is_(True))
            .filter(StudentEnrollment.visible())
            .filter(Student.visible())
            .order_by(Student.last_name, Student.first_name, Student.id)
            .all()
        )
        student_ids = [student.id for student, _ in rows]

        assignments = []
        if student_ids:
            assignments = (
                db.query(StudentTutor, Profile)
                .join(Profile, Profile.id == StudentTutor.tutor_profile_id)
                .filter(StudentTutor.student_id.in_(student_ids))
                .filter(StudentTutor.visible())
                .order_by(Profile.full_name, StudentTutor.id)
                .all()
            )

        tutors_query = (
            db.query(Profile)
            .filter(Profile.role == Role.TUTOR.value)
            .filter(Profile.visible())
        )
        if not profile.is_master and profile.institution_id:
            tutors_query = tutors_query.filter(Profile.institution_id == profile.institution_id)
        tutors = tutors_query.order_by(Profile.full_name, Profile.id).all()

    by_student: Dict[str, List[Dict[str, Any]]] = {}
    for assignment, tutor in assignments:
        by_student.setdefault(assignment.student_id, []).append({
            "assignment_id": assignment.id,
            "tutor_profile_id": tutor.id,
            "tutor_name": tutor.full_name or "Sin nombre",
            "tutor_email": tutor.email or "",
        })

    students = []
    seen = set()
    for student, grade_id in rows:
        if student.id in seen:
            continue
        seen.add(student.id)
        students.append({
            "id": student.id,
            "name": student.display_name,
            "grade": grade_id,
            "assigned_tutors": by_student.get(student.id, []),
        })

    return {
        "students": students,
        "available_tutors": [
            {
                "id": tutor.id,
                "full_name": tutor.full_name or "Sin nombre",
                "email": tutor.email or "",
                "child_name": tutor.child_name,
                "child_grade": tutor.child_grade,
            }
            for tutor in tutors
        ],
    }


def assign_tutor(
    db: Session,
    caller: CallerContext,
    student_id: str,
    tutor_profile_id: str,
) -> Dict[str, Any]:
    """
    Link a tutor to a student.

    AUTHORIZATION:
    - maestro: the student must be in one of its classrooms and the tutor in its institution
    - master: any student, any tutor

    A previously removed assignment is restored instead of duplicated.

    Raises:
        InvalidInput: Missing ids, or the profile is not an eligible tutor
        Unauthorized: Student outside the maestro's classrooms
        Conflict: Assignment already active
    """
    profile = require_profile(db, caller, Action.TUTOR_ASSIGN)
    missing = [name for name, value in (("student_id", student_id), ("tutor_profile_id", tutor_profile_id))
               if not value]
    if missing:
        raise InvalidInput("student_id and tutor_profile_id are required", missing)

    if not profile.is_master:
        _teaches_student(db, profile, student_id, Action.TUTOR_ASSIGN)

    with store_operation(db, "loading tutor"):
        tutor = (
            db.query(Profile)
            .filter(Profile.id == tutor_profile_id)
            .filter(Profile.visible())
            .first()
        )
    if tutor is None or tutor.role != Role.TUTOR.value:
        raise InvalidInput("Tutor does not exist or is not a tutor", ["tutor_profile_id"])
    if not profile.is_master and tutor.institution_id != profile.institution_id:
        raise InvalidInput("Tutor belongs to another institution", ["tutor_profile_id"])

    with store_operation(db, "assigning tutor", "This tutor is already assigned to the student"):
        existing = (
            db.query(StudentTutor)
            .filter(StudentTutor.student_id == student_id)
            .filter(StudentTutor.tutor_profile_id == tutor_profile_id)
            .first()
        )
        if existing is not None:
            if existing.is_visible:
                raise Conflict("This tutor is already assigned to the student")
            existing.restore()
            existing.assigned_by = profile.id
            assignment = existing
            restored = True
        else:
            assignment = StudentTutor(
                student_id=student_id,
                tutor_profile_id=tutor_profile_id,
                assigned_by=profile.id,
            )
            db.add(assignment)
            restored = False
        db.commit()
        db.refresh(assignment)

    logger.info("Tutor %s assigned to student %s by %s", tutor_profile_id, student_id, profile.id)
    return {"ok": True, "id": assignment.id, "restored": restored}


def remove_tutor_assignment(db: Session, caller: CallerContext, assignment_id: str) -> Dict[str, Any]:
    """
    Soft-delete a tutor assignment.

    AUTHORIZATION: maestro only; the student must be actively enrolled in
    one of its classrooms.

    Raises:
        NotFound: Unknown assignment
        Conflict: Assignment already removed
        Unauthorized: Student outside the maestro's classrooms
    """
    profile = require_profile(db, caller, Action.TUTOR_ASSIGNMENT_REMOVE)

    with store_operation(db, "loading tutor assignment"):
        assignment = db.query(StudentTutor).filter(StudentTutor.id == assignment_id).first()
    if assignment is None:
        raise NotFound("Tutor assignment", assignment_id)
    if not assignment.is_visible:
        raise Conflict("The assignment was already removed")

    _teaches_student(db, profile, assignment.student_id, Action.TUTOR_ASSIGNMENT_REMOVE)

    with store_operation(db, "removing tutor assignment"):
        assignment.soft_delete()
        db.commit()

    logger.info("Tutor assignment %s removed by %s", assignment_id, profile.id)
    return {"ok": True, "id": assignment_id}


def update_child_info(
    db: Session,
    caller: CallerContext,
    child_name: Any,
    child_grade: Any,
) -> Dict[str, Any]:
    """
    Update the child information on the caller's own tutor profile.

    Raises:
        InvalidInput: Empty name or grade outside 1 to 3
    """
    profile = require_profile(db, caller, Action.TUTOR_CHILD_UPDATE)
    child_name = require_text(child_name, "child_name", "child_name")
    child_grade = check_grade(child_grade, "child_grade")

    with store_operation(db, "updating tutor profile"):
        updated = (
            db.query(Profile)
            .filter(Profile.id == profile.id)
            .filter(Profile.role == Role.TUTOR.value)
            .update({"child_name": child_name, "child_grade": child_grade}, synchronize_session=False)
        )
        if not updated:
            raise NotFound("Profile", profile.id)
        db.commit()

    return {"ok": True, "child_name": child_name, "child_grade": child_grade}
