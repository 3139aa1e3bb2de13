"""
Evaluation session lifecycle.

A session is published open and can only ever move to closed. Attempts
are reached by students through access codes; only the current code of an
attempt is accepted, and regenerating it revokes the previous one in the
same transaction.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from config import settings
from database import (
    AttemptCode,
    AttemptCodeDisplay,
    AttemptStatus,
    Classroom,
    EvaluationAttempt,
    EvaluationProcedures,
    EvaluationSession,
    ProcedureError,
    QuizQuestion,
    ReadingText,
    Role,
    SessionStatus,
    Student,
    generate_access_code,
    hash_access_code,
    utcnow,
)
from .authorization import Action, get_authorization_service
from .context import CallerContext
from .exceptions import AppError, Conflict, InternalError, InvalidInput, NotFound, Unauthorized
from .identity import require_profile
from .store import fetch_visible, store_operation

logger = logging.getLogger(__name__)

STATUS_FILTERS = ("open", "expired", "closed")
CODE_MIN_LENGTH = 4
CODE_MAX_LENGTH = 32
MIN_ANSWERS = 3
MAX_ANSWERS = 8


def _procedure_outcome(exc: ProcedureError) -> AppError:
    if exc.code == "forbidden":
        return Unauthorized(exc.message)
    if exc.code == "not_found":
        return NotFound(exc.message.split(" not found")[0] or "Resource")
    if exc.code == "invalid":
        return InvalidInput(exc.message, [exc.field] if exc.field else [])
    if exc.code == "conflict":
        return Conflict(exc.message)
    return InternalError("Procedure failed", detail=exc.message)


def _run_procedure(
    db: Session,
    description: str,
    call: Callable[[], Dict[str, Any]],
    conflict_message: str = "Access code collision, please retry",
) -> Dict[str, Any]:
    """Invoke a store procedure and map its failures onto the outcome taxonomy."""
    try:
        with store_operation(db, description, conflict_message):
            return call()
    except ProcedureError as exc:
        logger.info("Procedure rejected while %s: %s", description, exc.message)
        raise _procedure_outcome(exc) from exc


def _student_label(student: Optional[Student]) -> str:
    if student is None:
        return "Sin nombre"
    parts = [(student.last_name or "").strip(), (student.first_name or "").strip()]
    return ", ".join(part for part in parts if part) or "Sin nombre"


def _effective_status(session: EvaluationSession, now) -> str:
    if session.status == SessionStatus.OPEN.value and session.expires_at and session.expires_at <= now:
        return "expired"
    return session.status


def _clamp(value: Any, default: int, upper: Optional[int] = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    number = max(1, number)
    if upper is not None:
        number = min(upper, number)
    return number


def list_sessions(
    db: Session,
    caller: CallerContext,
    page: Any = 1,
    page_size: Any = None,
    status: Optional[str] = None,
    classroom_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Page through evaluation sessions, newest first.

    AUTHORIZATION:
    - maestro: only the sessions it published
    - master: every session

    Args:
        db: Database session
        caller: Calling user
        page: 1-based page number
        page_size: Clamped to ``[1, sessions_max_page_size]``
        status: ``open`` (open and not expired), ``expired`` or ``closed``
        classroom_id: Optional classroom filter

    Returns:
        ``{sessions, total, total_pages, page, page_size}``
    """
    profile = require_profile(db, caller, Action.SESSIONS_LIST)
    if status and status not in STATUS_FILTERS:
        raise InvalidInput(f"status must be one of {', '.join(STATUS_FILTERS)}", ["status"])

    page = _clamp(page, 1)
    page_size = _clamp(
        page_size if page_size is not None else settings.sessions_page_size,
        settings.sessions_page_size,
        settings.sessions_max_page_size,
    )
    now = utcnow()

    query = db.query(EvaluationSession).filter(EvaluationSession.visible())
    if profile.role != Role.MASTER:
        query = query.filter(EvaluationSession.teacher_profile_id == profile.id)
    if status == "open":
        query = query.filter(EvaluationSession.status == SessionStatus.OPEN.value).filter(
            or_(EvaluationSession.expires_at.is_(None), EvaluationSession.expires_at > now)
        )
    elif status == "expired":
        query = query.filter(EvaluationSession.status == SessionStatus.OPEN.value).filter(
            EvaluationSession.expires_at <= now
        )
    elif status == "closed":
        query = query.filter(EvaluationSession.status == SessionStatus.CLOSED.value)
    if classroom_id:
        query = query.filter(EvaluationSession.classroom_id == classroom_id)

    with store_operation(db, "listing sessions"):
        total = query.count()
        rows = (
            query.outerjoin(Classroom, Classroom.id == EvaluationSession.classroom_id)
            .outerjoin(ReadingText, ReadingText.id == EvaluationSession.text_id)
            .with_entities(EvaluationSession, Classroom, ReadingText)
            .order_by(EvaluationSession.published_at.desc(), EvaluationSession.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        session_ids = [session.id for session, _, _ in rows]
        counts = []
        if session_ids:
            counts = (
                db.query(EvaluationAttempt.session_id, EvaluationAttempt.status, func.count(EvaluationAttempt.id))
                .filter(EvaluationAttempt.session_id.in_(session_ids))
                .filter(EvaluationAttempt.visible())
                .group_by(EvaluationAttempt.session_id, EvaluationAttempt.status)
                .all()
            )

    stats: Dict[str, Dict[str, int]] = {
        session_id: {"total": 0, **{s.value: 0 for s in AttemptStatus}} for session_id in session_ids
    }
    for session_id, attempt_status, count in counts:
        bucket = stats[session_id]
        bucket["total"] += count
        if attempt_status in bucket:
            bucket[attempt_status] += count

    sessions: List[Dict[str, Any]] = []
    for session, classroom, text_row in rows:
        item = session.to_dict()
        item.update({
            "status": _effective_status(session, now),
            "classroom_name": classroom.name if classroom else None,
            "grade_id": classroom.grade_id if classroom else None,
            "text_title": text_row.title if text_row else None,
            "attempts": stats[session.id],
        })
        sessions.append(item)

    return {
        "sessions": sessions,
        "total": total,
        "total_pages": max(1, (total + page_size - 1) // page_size),
        "page": page,
        "page_size": page_size,
    }


def close_session(db: Session, caller: CallerContext, session_id: str) -> Dict[str, Any]:
    """
    Move a session from open to closed.

    The transition is a single conditional update, so of two concurrent
    closes exactly one succeeds.

    AUTHORIZATION:
    - master: any session
    - admin: sessions of its institution (Unauthorized otherwise)
    - maestro: its own sessions (NotFound otherwise)

    Raises:
        NotFound: Unknown or deleted session
        Conflict: Session already closed; ``closed_at`` is left untouched
    """
    profile = require_profile(db, caller, Action.SESSION_CLOSE)
    session = fetch_visible(db, EvaluationSession, session_id, "Evaluation session")
    get_authorization_service().enforce_session_close(profile, session)

    with store_operation(db, "closing session"):
        updated = (
            db.query(EvaluationSession)
            .filter(EvaluationSession.id == session.id)
            .filter(EvaluationSession.status == SessionStatus.OPEN.value)
            .filter(EvaluationSession.visible())
            .update(
                {
                    "status": SessionStatus.CLOSED.value,
                    "closed_at": utcnow(),
                    "updated_by": profile.id,
                },
                synchronize_session=False,
            )
        )
        if not updated:
            db.rollback()
            raise Conflict("Evaluation session is already closed")
        db.commit()
        db.refresh(session)

    logger.info("Session %s closed by %s", session.id, profile.id)
    return session.to_dict()


def list_attempts(db: Session, caller: CallerContext, session_id: str) -> List[Dict[str, Any]]:
    """
    Attempts of a session with student data and the current code.

    Only the maestro who published the session may list them. Students,
    attempts and codes are read in one joined query.
    """
    profile = require_profile(db, caller, Action.ATTEMPTS_LIST)
    session = fetch_visible(db, EvaluationSession, session_id, "Evaluation session")
    get_authorization_service().enforce_session_owner(profile, session)

    with store_operation(db, "listing attempts"):
        rows = (
            db.query(EvaluationAttempt, Student, AttemptCodeDisplay.code_plain)
            .outerjoin(Student, Student.id == EvaluationAttempt.student_id)
            .outerjoin(AttemptCodeDisplay, AttemptCodeDisplay.attempt_id == EvaluationAttempt.id)
            .filter(EvaluationAttempt.session_id == session.id)
            .filter(EvaluationAttempt.visible())
            .order_by(EvaluationAttempt.created_at, EvaluationAttempt.id)
            .all()
        )
    return [
        {
            "attempt_id": attempt.id,
            "student_id": attempt.student_id,
            "status": attempt.status,
            "student_name": _student_label(student),
            "curp": student.curp if student else None,
            "code": code_plain,
        }
        for attempt, student, code_plain in rows
    ]


def regenerate_attempt_code(
    db: Session,
    caller: CallerContext,
    procedures: EvaluationProcedures,
    session_id: str,
    attempt_id: str,
) -> Dict[str, Any]:
    """
    Issue a new access code for an attempt, revoking the previous one.

    The plaintext is returned here once; the store keeps only its digest
    and the display copy of the current code.

    Raises:
        NotFound: Session not owned by the caller, or attempt outside the session
        Conflict: Session already closed
    """
    profile = require_profile(db, caller, Action.ATTEMPT_CODE_REGENERATE)
    session = fetch_visible(db, EvaluationSession, session_id, "Evaluation session")
    get_authorization_service().enforce_session_owner(profile, session)

    attempt = fetch_visible(db, EvaluationAttempt, attempt_id, "Attempt")
    if attempt.session_id != session.id:
        raise NotFound("Attempt", attempt_id)
    if session.status != SessionStatus.OPEN.value:
        raise Conflict("Evaluation session is closed")

    code = generate_access_code()
    result = _run_procedure(
        db,
        "regenerating access code",
        lambda: procedures.regenerate_attempt_code(attempt.id, code),
    )

    logger.info("Access code of attempt %s regenerated by %s", attempt.id, profile.id)
    return {
        "attempt_id": attempt.id,
        "code": result.get("code", code),
        "expires_at": result.get("expires_at"),
    }


def publish_session(
    db: Session,
    caller: CallerContext,
    procedures: EvaluationProcedures,
    classroom_id: Any,
    text_id: Any,
    quiz_id: Any,
    expires_in_minutes: Any = None,
) -> Dict[str, Any]:
    """
    Publish an evaluation session for a classroom.

    Assignment and grade checks belong to the publish procedure; this
    handler validates the payload and labels the issued codes.

    Args:
        expires_in_minutes: Defaults to ``default_session_minutes``; at most
            ``max_session_minutes``

    Raises:
        InvalidInput: Missing ids or duration out of range
        Unauthorized: Caller may not publish for this classroom
        NotFound: Classroom, text or quiz missing
    """
    profile = require_profile(db, caller, Action.SESSION_PUBLISH)

    missing = [
        name for name, value in (("classroom_id", classroom_id), ("text_id", text_id), ("quiz_id", quiz_id))
        if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        raise InvalidInput("classroom_id, text_id and quiz_id are required", missing)

    if expires_in_minutes is None:
        expires_in_minutes = settings.default_session_minutes
    if isinstance(expires_in_minutes, bool) or not isinstance(expires_in_minutes, int) \
            or not 1 <= expires_in_minutes <= settings.max_session_minutes:
        raise InvalidInput(
            f"expires_in_minutes must be between 1 and {settings.max_session_minutes}",
            ["expires_in_minutes"],
        )

    result = _run_procedure(
        db,
        "publishing session",
        lambda: procedures.publish_evaluation_session(
            profile.id, classroom_id, text_id, quiz_id, expires_in_minutes
        ),
    )

    codes = result.get("codes") or []
    student_ids = [item["student_id"] for item in codes]
    if student_ids:
        with store_operation(db, "labelling access codes"):
            students = {
                student.id: student
                for student in db.query(Student).filter(Student.id.in_(student_ids)).all()
            }
        for item in codes:
            item["student_name"] = _student_label(students.get(item["student_id"]))
        codes.sort(key=lambda item: item["student_name"])
    result["codes"] = codes

    logger.info("Session %s published by %s", result.get("session_id"), profile.id)
    return result


def open_attempt(db: Session, code: Any) -> Dict[str, Any]:
    """
    Let a student enter an attempt with its access code.

    No caller identity is needed: the code is the credential. Only the
    current code of an attempt in an open, unexpired session is accepted.

    Raises:
        InvalidInput: Malformed code
        NotFound: Unknown or revoked code
        Conflict: Session closed or expired, or attempt already submitted
    """
    if not isinstance(code, str) or not CODE_MIN_LENGTH <= len(code.strip()) <= CODE_MAX_LENGTH:
        raise InvalidInput(
            f"code must have between {CODE_MIN_LENGTH} and {CODE_MAX_LENGTH} characters", ["code"]
        )

    with store_operation(db, "opening attempt"):
        row = (
            db.query(EvaluationAttempt, EvaluationSession)
            .join(AttemptCode, and_(
                AttemptCode.attempt_id == EvaluationAttempt.id,
                AttemptCode.active_slot == 1,
            ))
            .join(EvaluationSession, EvaluationSession.id == EvaluationAttempt.session_id)
            .filter(AttemptCode.code_hash == hash_access_code(code))
            .filter(EvaluationAttempt.visible())
            .filter(EvaluationSession.visible())
            .first()
        )
        if row is None:
            raise NotFound("Access code")
        attempt, session = row

        now = utcnow()
        if session.status != SessionStatus.OPEN.value:
            raise Conflict("Evaluation session is closed")
        if session.expires_at and session.expires_at <= now:
            raise Conflict("Evaluation session has expired")
        if attempt.status == AttemptStatus.SUBMITTED.value:
            raise Conflict("Attempt was already submitted")
        if attempt.status == AttemptStatus.EXPIRED.value:
            raise Conflict("Attempt has expired")

        if attempt.status == AttemptStatus.PENDING.value:
            (
                db.query(EvaluationAttempt)
                .filter(EvaluationAttempt.id == attempt.id)
                .filter(EvaluationAttempt.status == AttemptStatus.PENDING.value)
                .update({"status": AttemptStatus.IN_PROGRESS.value}, synchronize_session=False)
            )
            db.commit()
            db.refresh(attempt)

        text_row = db.query(ReadingText).filter(ReadingText.id == session.text_id).first()
        questions = (
            db.query(QuizQuestion)
            .filter(QuizQuestion.quiz_id == session.quiz_id)
            .order_by(QuizQuestion.order_index)
            .all()
        )

        return {
            "attempt_id": attempt.id,
            "session_id": session.id,
            "status": attempt.status,
            "expires_at": session.expires_at.isoformat() if session.expires_at else None,
            "student_name": _student_label(attempt.student),
            "text": {
                "title": text_row.title if text_row else None,
                "content": text_row.content if text_row else None,
            },
            "quiz_id": session.quiz_id,
            "questions": [
                {
                    "id": question.id,
                    "prompt": question.prompt,
                    "options": [
                        {"id": option.id, "text": option.option_text} for option in question.options
                    ],
                }
                for question in questions
            ],
        }


def submit_attempt(
    db: Session,
    procedures: EvaluationProcedures,
    attempt_id: Any,
    reading_time_ms: Any,
    answers: Any,
) -> Dict[str, Any]:
    """
    Submit the answers of an attempt and return its score.

    Like ``open_attempt`` this needs no caller identity; the attempt id is
    only known to whoever entered the attempt with its code. Scoring and
    the status change run in one procedure call, so an attempt is scored
    at most once.

    Args:
        attempt_id: Id returned by ``open_attempt``
        reading_time_ms: Milliseconds spent reading, zero or more
        answers: Between ``MIN_ANSWERS`` and ``MAX_ANSWERS`` items of
            ``{question_id, option_id}``

    Returns:
        ``{attempt_id, status, correct_count, total_questions,
        score_percent, reading_time_ms, submitted_at}``

    Raises:
        InvalidInput: Malformed payload, or answers outside the attempt's quiz
        NotFound: Unknown attempt
        Conflict: Attempt already submitted, or its session closed or expired
    """
    invalid = []
    if not isinstance(attempt_id, str) or not attempt_id.strip():
        invalid.append("attempt_id")
    if isinstance(reading_time_ms, bool) or not isinstance(reading_time_ms, int) or reading_time_ms < 0:
        invalid.append("reading_time_ms")
    if not isinstance(answers, list) or not MIN_ANSWERS <= len(answers) <= MAX_ANSWERS or not all(
        isinstance(answer, dict)
        and isinstance(answer.get("question_id"), str)
        and isinstance(answer.get("option_id"), str)
        for answer in answers
    ):
        invalid.append("answers")
    if invalid:
        raise InvalidInput(
            f"attempt_id, reading_time_ms and {MIN_ANSWERS} to {MAX_ANSWERS} answers are required",
            invalid,
        )

    payload = [
        {"question_id": answer["question_id"], "option_id": answer["option_id"]}
        for answer in answers
    ]
    result = _run_procedure(
        db,
        "submitting attempt",
        lambda: procedures.submit_attempt(attempt_id.strip(), reading_time_ms, payload),
        conflict_message="Attempt was already submitted",
    )

    logger.info("Attempt %s scored %s%%", result.get("attempt_id"), result.get("score_percent"))
    return result
