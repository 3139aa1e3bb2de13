"""
Dashboards for masters, maestros and tutors.
"""
from statistics import mean
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import (
    AttemptAnswer,
    AttemptStatus,
    Classroom,
    EvaluationAttempt,
    EvaluationSession,
    Institution,
    Profile,
    Role,
    SessionStatus,
    Student,
    StudentEnrollment,
    StudentTutor,
)
from .authorization import Action
from .classrooms import taught_classroom_ids
from .context import CallerContext
from .identity import require_profile
from .store import store_operation

HIGH_RISK_BELOW = 60
MEDIUM_RISK_BELOW = 80
TREND_THRESHOLD = 5
EXCELLENT_FROM = 80
GOOD_FROM = 60
TREND_WEEKS = 8


def compute_score(attempt: EvaluationAttempt) -> Optional[float]:
    """
    Score of a submitted attempt as a percentage.

    Falls back to ``correct_count / total_questions`` when no percent was stored.
    """
    if attempt.score_percent is not None:
        return float(attempt.score_percent)
    if attempt.correct_count is not None and attempt.total_questions:
        return attempt.correct_count / attempt.total_questions * 100
    return None


def compute_risk(score: Optional[float]) -> str:
    """Risk band: high below 60, medium below 80, low otherwise or without a score."""
    if score is None:
        return "low"
    if score < HIGH_RISK_BELOW:
        return "high"
    if score < MEDIUM_RISK_BELOW:
        return "medium"
    return "low"


def compute_trend(latest: Optional[float], previous: Optional[float]) -> Optional[str]:
    """Compare the two most recent scores; None unless both exist."""
    if latest is None or previous is None:
        return None
    if latest - previous > TREND_THRESHOLD:
        return "improving"
    if previous - latest > TREND_THRESHOLD:
        return "declining"
    return "stable"


def _submitted_attempts(db: Session, student_ids: List[str]) -> List[EvaluationAttempt]:
    if not student_ids:
        return []
    return (
        db.query(EvaluationAttempt)
        .filter(EvaluationAttempt.student_id.in_(student_ids))
        .filter(EvaluationAttempt.status == AttemptStatus.SUBMITTED.value)
        .filter(EvaluationAttempt.visible())
        .order_by(EvaluationAttempt.submitted_at.desc(), EvaluationAttempt.id)
        .all()
    )


def _latest_pairs(
    attempts: Iterable[EvaluationAttempt],
) -> Dict[str, Tuple[EvaluationAttempt, Optional[EvaluationAttempt]]]:
    """Latest and previous attempt per student. ``attempts`` must be newest first."""
    pairs: Dict[str, Tuple[EvaluationAttempt, Optional[EvaluationAttempt]]] = {}
    for attempt in attempts:
        current = pairs.get(attempt.student_id)
        if current is None:
            pairs[attempt.student_id] = (attempt, None)
        elif current[1] is None:
            pairs[attempt.student_id] = (current[0], attempt)
    return pairs


def _summarize(
    students: List[Student],
    grades: Dict[str, Optional[int]],
    attempts: List[EvaluationAttempt],
) -> Dict[str, Any]:
    pairs = _latest_pairs(attempts)
    scores: List[float] = []
    at_risk = 0
    rows = []
    for student in students:
        latest, previous = pairs.get(student.id, (None, None))
        latest_score = compute_score(latest) if latest else None
        previous_score = compute_score(previous) if previous else None
        risk = compute_risk(latest_score)
        if latest_score is not None:
            scores.append(latest_score)
        if risk == "high":
            at_risk += 1
        rows.append({
            "id": student.id,
            "name": student.display_name,
            "grade": grades.get(student.id),
            "latest_score_percent": latest_score,
            "risk": risk,
            "trend": compute_trend(latest_score, previous_score),
        })

    return {
        "total_students": len(students),
        "total_evaluations": len(attempts),
        "students_at_risk": at_risk,
        "avg_score_percent": round(mean(scores), 2) if scores else None,
        "students": rows,
    }


def _empty_summary() -> Dict[str, Any]:
    return _summarize([], {}, [])


def get_master_dashboard(db: Session, caller: CallerContext) -> Dict[str, Any]:
    """Platform wide counters."""
    require_profile(db, caller, Action.DASHBOARD_MASTER)

    with store_operation(db, "loading master dashboard"):
        institutions = db.query(func.count(Institution.id)).filter(Institution.visible()).scalar()
        classrooms = db.query(func.count(Classroom.id)).filter(Classroom.visible()).scalar()
        students = db.query(func.count(Student.id)).filter(Student.visible()).scalar()
        open_sessions = (
            db.query(func.count(EvaluationSession.id))
            .filter(EvaluationSession.visible())
            .filter(EvaluationSession.status == SessionStatus.OPEN.value)
            .scalar()
        )
        submitted = (
            db.query(func.count(EvaluationAttempt.id))
            .filter(EvaluationAttempt.visible())
            .filter(EvaluationAttempt.status == AttemptStatus.SUBMITTED.value)
            .scalar()
        )
        role_rows = (
            db.query(Profile.role, func.count(Profile.id))
            .filter(Profile.visible())
            .group_by(Profile.role)
            .all()
        )

    by_role = {role.value: 0 for role in Role}
    for role, count in role_rows:
        if role in by_role:
            by_role[role] = count

    return {
        "institutions_count": institutions or 0,
        "classrooms_count": classrooms or 0,
        "students_count": students or 0,
        "active_sessions_count": open_sessions or 0,
        "submitted_attempts_count": submitted or 0,
        "profiles_by_role": by_role,
    }


def get_maestro_dashboard(db: Session, caller: CallerContext) -> Dict[str, Any]:
    """
    Progress of the students in the caller's classrooms.

    A master sees every classroom. A maestro without classrooms gets an
    empty, valid dashboard.
    """
    profile = require_profile(db, caller, Action.DASHBOARD_MAESTRO)
    classroom_ids = taught_classroom_ids(db, profile)
    if not classroom_ids:
        return _empty_summary()

    with store_operation(db, "loading maestro dashboard"):
        enrollments = (
            db.query(StudentEnrollment.student_id, StudentEnrollment.grade_id)
            .filter(StudentEnrollment.classroom_id.in_(classroom_ids))
            .filter(StudentEnrollment.active.is_(True))
            .filter(StudentEnrollment.visible())
            .all()
        )
        grades = {student_id: grade_id for student_id, grade_id in enrollments}
        students = []
        if grades:
            students = (
                db.query(Student)
                .filter(Student.id.in_(list(grades)))
                .filter(Student.visible())
                .order_by(Student.last_name, Student.first_name, Student.id)
                .all()
            )
        attempts = _submitted_attempts(db, [student.id for student in students])

    return _summarize(students, grades, attempts)


def get_tutor_dashboard(db: Session, caller: CallerContext) -> Dict[str, Any]:
    """Progress of the students linked to the calling tutor."""
    profile = require_profile(db, caller, Action.DASHBOARD_TUTOR)

    with store_operation(db, "loading tutor dashboard"):
        students = (
            db.query(Student)
            .join(StudentTutor, StudentTutor.student_id == Student.id)
            .filter(StudentTutor.tutor_profile_id == profile.id)
            .filter(StudentTutor.visible())
            .filter(Student.visible())
            .order_by(Student.last_name, Student.first_name, Student.id)
            .all()
        )
        if not students:
            return _empty_summary()

        student_ids = [student.id for student in students]
        grades = dict(
            db.query(StudentEnrollment.student_id, StudentEnrollment.grade_id)
            .filter(StudentEnrollment.student_id.in_(student_ids))
            .filter(StudentEnrollment.active.is_(True))
            .filter(StudentEnrollment.visible())
            .all()
        )
        attempts = _submitted_attempts(db, student_ids)

    return _summarize(students, grades, attempts)


def score_band(score: float) -> str:
    """Distribution bucket of a score."""
    if score >= EXCELLENT_FROM:
        return "excellent"
    if score >= GOOD_FROM:
        return "good"
    return "needs_improvement"


def _iso_week(moment) -> str:
    year, week, _ = moment.isocalendar()
    return f"{year}-S{week:02d}"


def _empty_results() -> Dict[str, Any]:
    return {
        "total_attempts": 0,
        "avg_score_percent": None,
        "avg_reading_time_sec": None,
        "score_distribution": {"excellent": 0, "good": 0, "needs_improvement": 0},
        "category_averages": {"comprension": None},
        "score_trend": [],
    }


def _results(db: Session, attempts: List[EvaluationAttempt]) -> Dict[str, Any]:
    """
    Aggregate submitted attempts, newest first.

    The distribution counts each student once, by its latest score. The
    trend groups scores by ISO week of submission and keeps the last
    ``TREND_WEEKS`` weeks.
    """
    if not attempts:
        return _empty_results()

    scored = [(attempt, compute_score(attempt)) for attempt in attempts]
    scores = [score for _, score in scored if score is not None]
    reading_times = [attempt.reading_time_ms for attempt in attempts if attempt.reading_time_ms]

    distribution = {"excellent": 0, "good": 0, "needs_improvement": 0}
    for latest, _ in _latest_pairs(attempts).values():
        score = compute_score(latest)
        if score is not None:
            distribution[score_band(score)] += 1

    weeks: Dict[str, List[float]] = {}
    for attempt, score in scored:
        if score is not None and attempt.submitted_at is not None:
            weeks.setdefault(_iso_week(attempt.submitted_at), []).append(score)
    trend = [
        {"week": week, "avg_score": round(mean(values), 1), "attempts": len(values)}
        for week, values in sorted(weeks.items())
    ][-TREND_WEEKS:]

    answer_rows = (
        db.query(AttemptAnswer.attempt_id, AttemptAnswer.is_correct)
        .filter(AttemptAnswer.attempt_id.in_([attempt.id for attempt in attempts]))
        .all()
    )
    per_attempt: Dict[str, List[bool]] = {}
    for attempt_id, is_correct in answer_rows:
        per_attempt.setdefault(attempt_id, []).append(bool(is_correct))
    comprehension = [sum(marks) / len(marks) * 100 for marks in per_attempt.values()]

    return {
        "total_attempts": len(attempts),
        "avg_score_percent": round(mean(scores), 1) if scores else None,
        "avg_reading_time_sec": round(mean(reading_times) / 1000) if reading_times else None,
        "score_distribution": distribution,
        "category_averages": {
            "comprension": round(mean(comprehension), 1) if comprehension else None,
        },
        "score_trend": trend,
    }


def get_maestro_results(db: Session, caller: CallerContext) -> Dict[str, Any]:
    """
    Aggregated results of the students in the caller's classrooms.

    A maestro without classrooms, or whose students have no submitted
    attempts, gets the empty results.
    """
    profile = require_profile(db, caller, Action.RESULTS_MAESTRO)
    classroom_ids = taught_classroom_ids(db, profile)
    if not classroom_ids:
        return _empty_results()

    with store_operation(db, "loading maestro results"):
        student_ids = [
            student_id
            for (student_id,) in db.query(StudentEnrollment.student_id)
            .filter(StudentEnrollment.classroom_id.in_(classroom_ids))
            .filter(StudentEnrollment.active.is_(True))
            .filter(StudentEnrollment.visible())
            .distinct()
            .all()
        ]
        return _results(db, _submitted_attempts(db, student_ids))


def get_tutor_results(db: Session, caller: CallerContext) -> Dict[str, Any]:
    """Aggregated results of the students linked to the calling tutor."""
    profile = require_profile(db, caller, Action.RESULTS_TUTOR)

    with store_operation(db, "loading tutor results"):
        student_ids = [
            student_id
            for (student_id,) in db.query(StudentTutor.student_id)
            .filter(StudentTutor.tutor_profile_id == profile.id)
            .filter(StudentTutor.visible())
            .distinct()
            .all()
        ]
        return _results(db, _submitted_attempts(db, student_ids))
