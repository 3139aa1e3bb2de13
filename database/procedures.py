"""
Evaluation procedures.

Publishing a session, regenerating an attempt code and submitting an
attempt must each run as a single atomic unit in the store. Handlers only
talk to the abstract ``EvaluationProcedures`` contract;
``SqlEvaluationProcedures`` is the implementation backed by the relational
database.
"""
import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .models import (
    AttemptAnswer,
    AttemptCode,
    AttemptCodeDisplay,
    AttemptStatus,
    ClassroomTeacher,
    Classroom,
    EvaluationAttempt,
    EvaluationSession,
    Profile,
    Quiz,
    QuizOption,
    QuizQuestion,
    ReadingText,
    Role,
    SessionStatus,
    StudentEnrollment,
    utcnow,
)

logger = logging.getLogger(__name__)

# No 0/O, 1/I: codes are read aloud and copied by hand
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8


def generate_access_code(length: int = CODE_LENGTH) -> str:
    """Return a fresh access code drawn from ``CODE_ALPHABET``."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def hash_access_code(code: str) -> str:
    """Digest under which a code is persisted. Input is normalised to upper case."""
    return hashlib.sha256(code.strip().upper().encode("utf-8")).hexdigest()


class ProcedureError(Exception):
    """
    Raised when a procedure rejects its input.

    Attributes:
        code: One of ``forbidden``, ``not_found``, ``invalid``, ``conflict``, ``failed``
        message: Human readable reason
        field: Input field the rejection is about, when there is one
    """

    def __init__(self, code: str, message: str, field: Optional[str] = None):
        self.code = code
        self.message = message
        self.field = field
        super().__init__(message)


class EvaluationProcedures(ABC):
    """Contract of the store-side evaluation procedures."""

    @abstractmethod
    def publish_evaluation_session(
        self,
        actor_id: str,
        classroom_id: str,
        text_id: str,
        quiz_id: str,
        expires_in_minutes: int,
    ) -> Dict[str, Any]:
        """
        Open a new session for ``classroom_id``.

        Preconditions: the actor is a maestro assigned to the classroom, an
        admin of its institution or a master; the text grade equals the
        classroom grade; the quiz belongs to the text.

        Postconditions: one open session, one pending attempt per active
        enrollment and one access code per attempt. Returns the session id
        and the issued ``codes`` as ``{student_id, attempt_id, code}``.
        """

    @abstractmethod
    def regenerate_attempt_code(self, attempt_id: str, new_code_plain: str) -> Dict[str, Any]:
        """
        Replace the access code of an attempt.

        Every previously active code is revoked in the same transaction that
        stores the new one. Returns ``{code, expires_at}``.
        """

    @abstractmethod
    def submit_attempt(
        self,
        attempt_id: str,
        reading_time_ms: int,
        answers: List[Dict[str, str]],
    ) -> Dict[str, Any]:
        """
        Score and submit an attempt.

        Preconditions: the attempt is pending or in progress, its session is
        open and unexpired, every answer names a distinct question of the
        session's quiz and one of that question's options.

        Postconditions: one answer row per answered question; the attempt is
        ``submitted`` with ``correct_count``, ``total_questions``,
        ``score_percent``, ``reading_time_ms`` and ``submitted_at`` set.
        Unanswered questions count as wrong.
        """


class SqlEvaluationProcedures(EvaluationProcedures):
    """Procedures implemented as SQLAlchemy transactions."""

    MAX_CODE_TRIES = 10

    def __init__(self, db: Session):
        self.db = db

    def _active_code_exists(self, code_hash: str) -> bool:
        return (
            self.db.query(AttemptCode.id)
            .filter(AttemptCode.code_hash == code_hash)
            .filter(AttemptCode.active_slot == 1)
            .first()
            is not None
        )

    def _issue_code(self, attempt_id: str, code: Optional[str] = None) -> str:
        """Store ``code`` (or a fresh one) as the single active code of an attempt."""
        if code is None:
            for _ in range(self.MAX_CODE_TRIES):
                code = generate_access_code()
                if not self._active_code_exists(hash_access_code(code)):
                    break
            else:
                raise ProcedureError("failed", "Could not allocate a unique access code")

        self.db.add(AttemptCode(attempt_id=attempt_id, code_hash=hash_access_code(code), active_slot=1))

        display = (
            self.db.query(AttemptCodeDisplay)
            .filter(AttemptCodeDisplay.attempt_id == attempt_id)
            .first()
        )
        if display:
            display.code_plain = code
            display.updated_at = utcnow()
        else:
            self.db.add(AttemptCodeDisplay(attempt_id=attempt_id, code_plain=code))
        return code

    def _check_publisher(self, actor: Optional[Profile], classroom: Classroom) -> None:
        if actor is None:
            raise ProcedureError("forbidden", "Unknown actor")
        if actor.role == Role.MASTER.value:
            return
        if actor.role == Role.ADMIN.value:
            if actor.institution_id is None or actor.institution_id != classroom.institution_id:
                raise ProcedureError("forbidden", "Classroom belongs to another institution")
            return
        if actor.role == Role.MAESTRO.value:
            assigned = (
                self.db.query(ClassroomTeacher.id)
                .filter(ClassroomTeacher.classroom_id == classroom.id)
                .filter(ClassroomTeacher.teacher_profile_id == actor.id)
                .first()
            )
            if assigned is None:
                raise ProcedureError("forbidden", "Teacher is not assigned to this classroom")
            return
        raise ProcedureError("forbidden", "Role cannot publish sessions")

    def publish_evaluation_session(
        self,
        actor_id: str,
        classroom_id: str,
        text_id: str,
        quiz_id: str,
        expires_in_minutes: int,
    ) -> Dict[str, Any]:
        db = self.db
        try:
            actor = (
                db.query(Profile)
                .filter(Profile.id == actor_id)
                .filter(Profile.visible())
                .first()
            )
            classroom = (
                db.query(Classroom)
                .filter(Classroom.id == classroom_id)
                .filter(Classroom.visible())
                .first()
            )
            if classroom is None:
                raise ProcedureError("not_found", "Classroom not found")

            self._check_publisher(actor, classroom)

            text_row = (
                db.query(ReadingText)
                .filter(ReadingText.id == text_id)
                .filter(ReadingText.visible())
                .first()
            )
            if text_row is None or text_row.institution_id != classroom.institution_id:
                raise ProcedureError("not_found", "Text not found")
            if text_row.grade_id != classroom.grade_id:
                raise ProcedureError("invalid", "Text grade does not match classroom grade", field="text_id")

            quiz = (
                db.query(Quiz)
                .filter(Quiz.id == quiz_id)
                .filter(Quiz.text_id == text_row.id)
                .filter(Quiz.visible())
                .first()
            )
            if quiz is None:
                raise ProcedureError("not_found", "Quiz not found for this text")
            if not quiz.question_count:
                raise ProcedureError("invalid", "Quiz has no questions", field="quiz_id")

            now = utcnow()
            session = EvaluationSession(
                institution_id=classroom.institution_id,
                classroom_id=classroom.id,
                text_id=text_row.id,
                quiz_id=quiz.id,
                teacher_profile_id=actor.id,
                status=SessionStatus.OPEN.value,
                published_at=now,
                expires_at=now + timedelta(minutes=expires_in_minutes),
                updated_by=actor.id,
            )
            db.add(session)
            db.flush()

            enrollments = (
                db.query(StudentEnrollment)
                .filter(StudentEnrollment.classroom_id == classroom.id)
                .filter(StudentEnrollment.active.is_(True))
                .filter(StudentEnrollment.visible())
                .all()
            )

            codes: List[Dict[str, str]] = []
            for enrollment in enrollments:
                attempt = EvaluationAttempt(session_id=session.id, student_id=enrollment.student_id)
                db.add(attempt)
                db.flush()
                code = self._issue_code(attempt.id)
                db.flush()
                codes.append({
                    "student_id": enrollment.student_id,
                    "attempt_id": attempt.id,
                    "code": code,
                })

            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Published session %s with %d attempts", session.id, len(codes))
        return {
            "session_id": session.id,
            "classroom_id": classroom.id,
            "text_id": text_row.id,
            "quiz_id": quiz.id,
            "question_count": quiz.question_count,
            "expires_in_minutes": expires_in_minutes,
            "expires_at": session.expires_at.isoformat(),
            "codes": codes,
        }

    def regenerate_attempt_code(self, attempt_id: str, new_code_plain: str) -> Dict[str, Any]:
        db = self.db
        try:
            attempt = (
                db.query(EvaluationAttempt)
                .filter(EvaluationAttempt.id == attempt_id)
                .filter(EvaluationAttempt.visible())
                .with_for_update()
                .first()
            )
            if attempt is None:
                raise ProcedureError("not_found", "Attempt not found")

            db.query(AttemptCode).filter(
                AttemptCode.attempt_id == attempt_id,
                AttemptCode.active_slot == 1,
            ).update(
                {"active_slot": None, "revoked_at": utcnow()},
                synchronize_session=False,
            )
            self._issue_code(attempt_id, new_code_plain)
            db.commit()
        except Exception:
            db.rollback()
            raise

        expires_at = attempt.session.expires_at if attempt.session else None
        return {
            "code": new_code_plain,
            "expires_at": expires_at.isoformat() if expires_at else None,
        }

    def submit_attempt(
        self,
        attempt_id: str,
        reading_time_ms: int,
        answers: List[Dict[str, str]],
    ) -> Dict[str, Any]:
        db = self.db
        try:
            attempt = (
                db.query(EvaluationAttempt)
                .filter(EvaluationAttempt.id == attempt_id)
                .filter(EvaluationAttempt.visible())
                .with_for_update()
                .first()
            )
            if attempt is None:
                raise ProcedureError("not_found", "Attempt not found")

            session = attempt.session
            now = utcnow()
            if session is None or session.status != SessionStatus.OPEN.value:
                raise ProcedureError("conflict", "Evaluation session is closed")
            if session.expires_at and session.expires_at <= now:
                raise ProcedureError("conflict", "Evaluation session has expired")
            if attempt.status not in (AttemptStatus.PENDING.value, AttemptStatus.IN_PROGRESS.value):
                raise ProcedureError("conflict", "Attempt was already submitted")

            question_ids = {
                row.id
                for row in db.query(QuizQuestion.id).filter(QuizQuestion.quiz_id == session.quiz_id).all()
            }
            options = {}
            if question_ids:
                options = {
                    row.id: row
                    for row in db.query(QuizOption)
                    .filter(QuizOption.question_id.in_(list(question_ids)))
                    .all()
                }

            seen = set()
            graded = []
            for answer in answers:
                question_id = answer["question_id"]
                if question_id not in question_ids:
                    raise ProcedureError("invalid", "Question does not belong to this quiz", field="answers")
                if question_id in seen:
                    raise ProcedureError("invalid", "Question answered more than once", field="answers")
                seen.add(question_id)
                option = options.get(answer["option_id"])
                if option is None or option.question_id != question_id:
                    raise ProcedureError("invalid", "Option does not belong to the question", field="answers")
                graded.append((question_id, option))

            total = len(question_ids)
            correct = sum(1 for _, option in graded if option.is_correct)
            score = round(correct / total * 100, 2) if total else 0.0

            updated = (
                db.query(EvaluationAttempt)
                .filter(EvaluationAttempt.id == attempt.id)
                .filter(EvaluationAttempt.status.in_([
                    AttemptStatus.PENDING.value,
                    AttemptStatus.IN_PROGRESS.value,
                ]))
                .update(
                    {
                        "status": AttemptStatus.SUBMITTED.value,
                        "correct_count": correct,
                        "total_questions": total,
                        "score_percent": score,
                        "reading_time_ms": reading_time_ms,
                        "submitted_at": now,
                    },
                    synchronize_session=False,
                )
            )
            if not updated:
                raise ProcedureError("conflict", "Attempt was already submitted")

            db.add_all([
                AttemptAnswer(
                    attempt_id=attempt.id,
                    question_id=question_id,
                    option_id=option.id,
                    is_correct=option.is_correct,
                )
                for question_id, option in graded
            ])
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info("Attempt %s submitted: %d/%d", attempt_id, correct, total)
        return {
            "attempt_id": attempt_id,
            "status": AttemptStatus.SUBMITTED.value,
            "correct_count": correct,
            "total_questions": total,
            "score_percent": score,
            "reading_time_ms": reading_time_ms,
            "submitted_at": now.isoformat(),
        }
