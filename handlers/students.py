"""
Student handlers: the student registry, enrollments and attempt history.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from config import settings
from database import (
    AttemptStatus,
    Classroom,
    EvaluationAttempt,
    EvaluationSession,
    Institution,
    ReadingText,
    Role,
    Student,
    StudentEnrollment,
)
from .authorization import Action, get_authorization_service
from .context import CallerContext
from .exceptions import Conflict, InvalidInput
from .identity import require_profile
from .store import fetch_visible, store_operation
from .validation import require_text

logger = logging.getLogger(__name__)

CURP_MIN_LENGTH = 18
CURP_MAX_LENGTH = 20


def _student_summary(student: Student) -> Dict[str, Any]:
    return {
        "id": student.id,
        "curp": student.curp,
        "first_name": student.first_name,
        "last_name": student.last_name,
        "display_name": student.display_name,
    }


def list_students(
    db: Session,
    caller: CallerContext,
    institution_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    List the students of an institution ordered by last then first name.

    A master without an institution filter gets an empty list.
    """
    profile = require_profile(db, caller, Action.STUDENTS_LIST)
    if profile.is_master and not institution_id:
        return []
    target = get_authorization_service().scoped_institution(profile, institution_id, Action.STUDENTS_LIST)

    with store_operation(db, "listing students"):
        rows = (
            db.query(Student)
            .filter(Student.visible())
            .filter(Student.institution_id == target)
            .order_by(Student.last_name, Student.first_name, Student.id)
            .all()
        )
    return [row.to_dict() for row in rows]


def create_student(
    db: Session,
    caller: CallerContext,
    curp: Any,
    first_name: Any,
    last_name: Any,
    institution_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Register a student.

    Args:
        db: Database session
        caller: Calling user
        curp: National identity key; stored upper-cased
        first_name: Given name
        last_name: Family name
        institution_id: Defaults to the caller's institution

    Raises:
        InvalidInput: Missing names or malformed CURP
        Conflict: CURP already registered
    """
    profile = require_profile(db, caller, Action.STUDENTS_CREATE)

    curp = require_text(curp, "curp", "CURP").upper()
    if not CURP_MIN_LENGTH <= len(curp) <= CURP_MAX_LENGTH:
        raise InvalidInput(
            f"CURP must have between {CURP_MIN_LENGTH} and {CURP_MAX_LENGTH} characters",
            ["curp"],
        )
    first_name = require_text(first_name, "first_name", "First name")
    last_name = require_text(last_name, "last_name", "Last name")

    target = get_authorization_service().scoped_institution(profile, institution_id, Action.STUDENTS_CREATE)
    fetch_visible(db, Institution, target, "Institution")

    student = Student(
        institution_id=target,
        curp=curp,
        first_name=first_name,
        last_name=last_name,
        created_by=profile.id,
        updated_by=profile.id,
    )
    with store_operation(db, "creating student", "A student with that CURP already exists"):
        db.add(student)
        db.commit()
        db.refresh(student)

    logger.info("Student %s created by %s", student.id, profile.id)
    return student.to_dict()


def list_enrollments(db: Session, caller: CallerContext, classroom_id: str) -> List[Dict[str, Any]]:
    """List the enrollments of a classroom, active and inactive, by student name."""
    profile = require_profile(db, caller, Action.ENROLLMENTS_LIST)
    classroom = fetch_visible(db, Classroom, classroom_id, "Classroom")
    get_authorization_service().enforce_institution(
        profile, classroom.institution_id, Action.ENROLLMENTS_LIST, hide=True, resource="Classroom"
    )

    with store_operation(db, "listing enrollments"):
        rows = (
            db.query(StudentEnrollment, Student)
            .join(Student, Student.id == StudentEnrollment.student_id)
            .filter(StudentEnrollment.classroom_id == classroom.id)
            .filter(StudentEnrollment.visible())
            .filter(Student.visible())
            .order_by(Student.last_name, Student.first_name, StudentEnrollment.enrolled_at.desc())
            .all()
        )
    return [
        {
            "id": enrollment.id,
            "classroom_id": enrollment.classroom_id,
            "grade_id": enrollment.grade_id,
            "active": enrollment.active,
            "enrolled_at": enrollment.enrolled_at.isoformat() if enrollment.enrolled_at else None,
            "student": _student_summary(student),
        }
        for enrollment, student in rows
    ]


def enroll_student(
    db: Session,
    caller: CallerContext,
    student_id: str,
    classroom_id: str,
) -> Dict[str, Any]:
    """
    Enroll a student in a classroom.

    A student holds at most one active enrollment per grade.

    Raises:
        InvalidInput: Student of another institution
        Conflict: Student already actively enrolled in that grade
    """
    profile = require_profile(db, caller, Action.ENROLLMENTS_CREATE)
    classroom = fetch_visible(db, Classroom, classroom_id, "Classroom")
    get_authorization_service().enforce_institution(
        profile, classroom.institution_id, Action.ENROLLMENTS_CREATE, resource="Classroom"
    )

    student = fetch_visible(db, Student, student_id, "Student")
    if student.institution_id != classroom.institution_id:
        raise InvalidInput("Student belongs to another institution", ["student_id"])

    with store_operation(db, "checking enrollments"):
        existing = (
            db.query(StudentEnrollment.id)
            .filter(StudentEnrollment.student_id == student.id)
            .filter(StudentEnrollment.grade_id == classroom.grade_id)
            .filter(StudentEnrollment.active.is_(True))
            .filter(StudentEnrollment.visible())
            .first()
        )
    if existing:
        raise Conflict("Student already has an active enrollment in this grade")

    enrollment = StudentEnrollment(
        student_id=student.id,
        classroom_id=classroom.id,
        institution_id=classroom.institution_id,
        grade_id=classroom.grade_id,
        active=True,
        created_by=profile.id,
        updated_by=profile.id,
    )
    with store_operation(db, "enrolling student"):
        db.add(enrollment)
        db.commit()
        db.refresh(enrollment)

    logger.info("Student %s enrolled in %s by %s", student.id, classroom.id, profile.id)
    return {
        "id": enrollment.id,
        "student_id": student.id,
        "classroom_id": classroom.id,
        "grade_id": enrollment.grade_id,
        "active": enrollment.active,
    }


def deactivate_enrollment(db: Session, caller: CallerContext, enrollment_id: str) -> Dict[str, Any]:
    """
    Mark an enrollment inactive.

    Raises:
        Conflict: If it is already inactive
    """
    profile = require_profile(db, caller, Action.ENROLLMENTS_DEACTIVATE)
    enrollment = fetch_visible(db, StudentEnrollment, enrollment_id, "Enrollment")
    get_authorization_service().enforce_institution(
        profile, enrollment.institution_id, Action.ENROLLMENTS_DEACTIVATE, resource="Enrollment"
    )

    with store_operation(db, "deactivating enrollment"):
        updated = (
            db.query(StudentEnrollment)
            .filter(StudentEnrollment.id == enrollment.id)
            .filter(StudentEnrollment.active.is_(True))
            .update({"active": False, "updated_by": profile.id}, synchronize_session=False)
        )
        if not updated:
            db.rollback()
            raise Conflict("Enrollment is already inactive")
        db.commit()

    return {"ok": True, "id": enrollment.id, "active": False}


def get_student_history(db: Session, caller: CallerContext, student_id: str) -> Dict[str, Any]:
    """
    Submitted attempts of a student, newest first.

    AUTHORIZATION:
    - master: every attempt
    - maestro: only attempts of sessions it published, within its institution

    Returns:
        ``{student, attempts}``; ``attempts`` is capped at ``student_history_limit``
    """
    profile = require_profile(db, caller, Action.STUDENT_HISTORY_READ)
    student = fetch_visible(db, Student, student_id, "Student")
    get_authorization_service().enforce_institution(
        profile, student.institution_id, Action.STUDENT_HISTORY_READ, hide=True, resource="Student"
    )

    query = (
        db.query(EvaluationAttempt, EvaluationSession, ReadingText)
        .join(EvaluationSession, EvaluationSession.id == EvaluationAttempt.session_id)
        .outerjoin(ReadingText, ReadingText.id == EvaluationSession.text_id)
        .filter(EvaluationAttempt.student_id == student.id)
        .filter(EvaluationAttempt.status == AttemptStatus.SUBMITTED.value)
        .filter(EvaluationAttempt.visible())
        .filter(EvaluationSession.visible())
    )
    if profile.role == Role.MAESTRO:
        query = query.filter(EvaluationSession.teacher_profile_id == profile.id)

    with store_operation(db, "loading student history"):
        rows = (
            query.order_by(EvaluationAttempt.submitted_at.desc(), EvaluationAttempt.id)
            .limit(settings.student_history_limit)
            .all()
        )

    return {
        "student": _student_summary(student),
        "attempts": [
            {
                "attempt_id": attempt.id,
                "session_id": session.id,
                "text_title": text_row.title if text_row else None,
                "score_percent": attempt.score_percent,
                "correct_count": attempt.correct_count,
                "total_questions": attempt.total_questions,
                "reading_time_ms": attempt.reading_time_ms,
                "submitted_at": attempt.submitted_at.isoformat() if attempt.submitted_at else None,
            }
            for attempt, session, text_row in rows
        ],
    }
