"""
Database models for the reading evaluation platform.

Every tenant-scoped table hangs off ``institutions``. Rows that can be
soft-deleted carry an explicit lifecycle state plus the timestamp of the
deletion; default reads must filter on ``Model.visible()``.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, DateTime, Enum, ForeignKey,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def new_id() -> str:
    """Generate an opaque, never reused primary key."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, PyEnum):
    """Profile roles."""
    MASTER = "master"
    ADMIN = "admin"
    MAESTRO = "maestro"
    TUTOR = "tutor"


class Lifecycle(str, PyEnum):
    """Lifecycle state of a soft-deletable row."""
    ACTIVE = "active"
    DELETED = "deleted"


class SessionStatus(str, PyEnum):
    OPEN = "open"
    CLOSED = "closed"


class AttemptStatus(str, PyEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


GRADES = (1, 2, 3)


class SoftDeleteMixin:
    """
    Soft-delete support.

    ``lifecycle`` is the source of truth for visibility; ``deleted_at``
    records when the row left the ``active`` state.
    """
    lifecycle = Column(
        Enum(*[s.value for s in Lifecycle], name="lifecycle_state"),
        nullable=False,
        default=Lifecycle.ACTIVE.value,
    )
    deleted_at = Column(DateTime, nullable=True)

    @classmethod
    def visible(cls):
        """SQL expression selecting rows that default reads may return."""
        return cls.lifecycle == Lifecycle.ACTIVE.value

    @property
    def is_visible(self) -> bool:
        return self.lifecycle != Lifecycle.DELETED.value

    def soft_delete(self) -> None:
        self.lifecycle = Lifecycle.DELETED.value
        self.deleted_at = utcnow()

    def restore(self) -> None:
        self.lifecycle = Lifecycle.ACTIVE.value
        self.deleted_at = None


class Institution(SoftDeleteMixin, Base):
    """
    Institutions table - the tenant boundary.

    Attributes:
        id: Opaque identifier
        name: Display name (required)
        code: Optional short code, globally unique when present
    """
    __tablename__ = "institutions"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    code = Column(String(64), nullable=True, unique=True)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    classrooms = relationship("Classroom", back_populates="institution")

    def __repr__(self):
        return f"<Institution(id={self.id}, name='{self.name}', code='{self.code}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Profile(SoftDeleteMixin, Base):
    """
    Profiles table - the identity directory.

    ``role`` is stored as free text; values outside ``Role`` make the
    profile unresolvable.
    """
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    role = Column(String(20), nullable=False)
    email = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=True)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=True)
    child_name = Column(String(255), nullable=True)
    child_grade = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Profile(id={self.id}, role='{self.role}', email='{self.email}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "institution_id": self.institution_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Classroom(SoftDeleteMixin, Base):
    """Classrooms table. Names are unique within an institution."""
    __tablename__ = "classrooms"
    __table_args__ = (
        UniqueConstraint("institution_id", "name", name="uq_classrooms_institution_name"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=False)
    name = Column(String(255), nullable=False)
    grade_id = Column(Integer, nullable=False)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    institution = relationship("Institution", back_populates="classrooms")
    teachers = relationship("ClassroomTeacher", back_populates="classroom")

    def __repr__(self):
        return f"<Classroom(id={self.id}, name='{self.name}', grade_id={self.grade_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "grade_id": self.grade_id,
            "institution_id": self.institution_id,
        }


class ClassroomTeacher(Base):
    """Assignment of a maestro profile to a classroom."""
    __tablename__ = "classroom_teachers"
    __table_args__ = (
        UniqueConstraint("classroom_id", "teacher_profile_id", name="uq_classroom_teachers"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    classroom_id = Column(String(36), ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    teacher_profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    classroom = relationship("Classroom", back_populates="teachers")
    teacher = relationship("Profile")


class Student(SoftDeleteMixin, Base):
    """
    Students table.

    Attributes:
        curp: National identity key, unique across the platform
    """
    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=new_id)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=False)
    curp = Column(String(20), nullable=False, unique=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Student(id={self.id}, curp='{self.curp}')>"

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip() or "Sin nombre"

    def to_dict(self):
        return {
            "id": self.id,
            "curp": self.curp,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class StudentEnrollment(SoftDeleteMixin, Base):
    """Enrollment of a student in a classroom; ``active`` marks the current one."""
    __tablename__ = "student_enrollments"

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    classroom_id = Column(String(36), ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=False)
    grade_id = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    enrolled_at = Column(DateTime, nullable=False, default=utcnow)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)

    student = relationship("Student")


class StudentTutor(SoftDeleteMixin, Base):
    """Guardian (tutor profile) assignment of a student."""
    __tablename__ = "student_tutors"
    __table_args__ = (
        UniqueConstraint("student_id", "tutor_profile_id", name="uq_student_tutors"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    student_id = Column(String(36), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    tutor_profile_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    assigned_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    tutor = relationship("Profile")


class ReadingText(SoftDeleteMixin, Base):
    """Evaluation template: a reading text plus its exercises."""
    __tablename__ = "texts"

    id = Column(String(36), primary_key=True, default=new_id)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=False)
    grade_id = Column(Integer, nullable=False)
    title = Column(String(255), nullable=True)
    topic = Column(String(255), nullable=True)
    content = Column(Text, nullable=True)
    difficulty = Column(String(50), nullable=True)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    quizzes = relationship("Quiz", back_populates="text")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title or "",
            "topic": self.topic or "",
            "content": self.content or "",
            "grade_id": self.grade_id,
            "difficulty": self.difficulty or "",
            "institution_id": self.institution_id,
        }


class Quiz(SoftDeleteMixin, Base):
    __tablename__ = "quizzes"

    id = Column(String(36), primary_key=True, default=new_id)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=False)
    text_id = Column(String(36), ForeignKey("texts.id", ondelete="CASCADE"), nullable=False)
    grade_id = Column(Integer, nullable=False)
    question_count = Column(Integer, nullable=False, default=0)
    created_by = Column(String(36), nullable=True)
    updated_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    text = relationship("ReadingText", back_populates="quizzes")


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id = Column(String(36), primary_key=True, default=new_id)
    quiz_id = Column(String(36), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)
    prompt = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False)
    created_by = Column(String(36), nullable=True)

    options = relationship("QuizOption", order_by="QuizOption.order_index")


class QuizOption(Base):
    __tablename__ = "quiz_options"

    id = Column(String(36), primary_key=True, default=new_id)
    question_id = Column(String(36), ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False)
    option_text = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(36), nullable=True)


class VocabularyPair(SoftDeleteMixin, Base):
    __tablename__ = "vocabulary_pairs"

    id = Column(String(36), primary_key=True, default=new_id)
    text_id = Column(String(36), ForeignKey("texts.id", ondelete="CASCADE"), nullable=False)
    word = Column(String(255), nullable=False)
    definition = Column(Text, nullable=False)
    order_index = Column(Integer, nullable=False)
    created_by = Column(String(36), nullable=True)


class SequenceItem(SoftDeleteMixin, Base):
    __tablename__ = "sequence_items"

    id = Column(String(36), primary_key=True, default=new_id)
    text_id = Column(String(36), ForeignKey("texts.id", ondelete="CASCADE"), nullable=False)
    text = Column(Text, nullable=False)
    correct_order = Column(Integer, nullable=False)
    created_by = Column(String(36), nullable=True)


class EvaluationSession(SoftDeleteMixin, Base):
    """
    One published assessment instance.

    ``status`` only ever moves from ``open`` to ``closed``.
    """
    __tablename__ = "evaluation_sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    institution_id = Column(String(36), ForeignKey("institutions.id"), nullable=False)
    classroom_id = Column(String(36), ForeignKey("classrooms.id"), nullable=False)
    text_id = Column(String(36), ForeignKey("texts.id"), nullable=False)
    quiz_id = Column(String(36), ForeignKey("quizzes.id"), nullable=False)
    teacher_profile_id = Column(String(36), ForeignKey("profiles.id"), nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.OPEN.value)
    published_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)
    updated_by = Column(String(36), nullable=True)

    classroom = relationship("Classroom")
    text = relationship("ReadingText")
    attempts = relationship("EvaluationAttempt", back_populates="session")

    def __repr__(self):
        return f"<EvaluationSession(id={self.id}, status='{self.status}')>"

    def to_dict(self):
        return {
            "id": self.id,
            "institution_id": self.institution_id,
            "classroom_id": self.classroom_id,
            "text_id": self.text_id,
            "quiz_id": self.quiz_id,
            "teacher_profile_id": self.teacher_profile_id,
            "status": self.status,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "updated_by": self.updated_by,
        }


class EvaluationAttempt(SoftDeleteMixin, Base):
    """One student's instance of an evaluation session."""
    __tablename__ = "evaluation_attempts"

    id = Column(String(36), primary_key=True, default=new_id)
    session_id = Column(String(36), ForeignKey("evaluation_sessions.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(String(36), ForeignKey("students.id"), nullable=False)
    status = Column(String(20), nullable=False, default=AttemptStatus.PENDING.value)
    score_percent = Column(Float, nullable=True)
    correct_count = Column(Integer, nullable=True)
    total_questions = Column(Integer, nullable=True)
    reading_time_ms = Column(Integer, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    session = relationship("EvaluationSession", back_populates="attempts")
    student = relationship("Student")
    code_display = relationship("AttemptCodeDisplay", uselist=False)


class AttemptCode(Base):
    """
    Access codes of an attempt, stored as digests.

    Active codes have ``active_slot = 1``; revoking sets it to NULL, so the
    unique constraints allow a single active code per attempt and per digest.
    """
    __tablename__ = "attempt_codes"
    __table_args__ = (
        UniqueConstraint("attempt_id", "active_slot", name="uq_attempt_codes_active"),
        UniqueConstraint("code_hash", "active_slot", name="uq_attempt_codes_hash_active"),
        Index("ix_attempt_codes_hash", "code_hash"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    attempt_id = Column(String(36), ForeignKey("evaluation_attempts.id", ondelete="CASCADE"), nullable=False)
    code_hash = Column(String(64), nullable=False)
    active_slot = Column(Integer, nullable=True, default=1)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    revoked_at = Column(DateTime, nullable=True)


class AttemptCodeDisplay(Base):
    """Plaintext of the current code of an attempt; replaced on regeneration."""
    __tablename__ = "attempt_code_display"

    attempt_id = Column(String(36), ForeignKey("evaluation_attempts.id", ondelete="CASCADE"), primary_key=True)
    code_plain = Column(String(32), nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class AttemptAnswer(Base):
    """Option chosen by the student for one quiz question of an attempt."""
    __tablename__ = "attempt_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_answers_question"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    attempt_id = Column(String(36), ForeignKey("evaluation_attempts.id", ondelete="CASCADE"), nullable=False)
    question_id = Column(String(36), ForeignKey("quiz_questions.id"), nullable=False)
    option_id = Column(String(36), ForeignKey("quiz_options.id"), nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
