"""Database module."""
from .models import (
    Base,
    Role,
    Lifecycle,
    SessionStatus,
    AttemptStatus,
    GRADES,
    SoftDeleteMixin,
    Institution,
    Profile,
    Classroom,
    ClassroomTeacher,
    Student,
    StudentEnrollment,
    StudentTutor,
    ReadingText,
    Quiz,
    QuizQuestion,
    QuizOption,
    VocabularyPair,
    SequenceItem,
    EvaluationSession,
    EvaluationAttempt,
    AttemptCode,
    AttemptCodeDisplay,
    AttemptAnswer,
    new_id,
    utcnow,
)
from .connection import engine, SessionLocal, get_db, get_db_context, init_db, drop_db
from .procedures import (
    EvaluationProcedures,
    SqlEvaluationProcedures,
    ProcedureError,
    generate_access_code,
    hash_access_code,
    CODE_ALPHABET,
    CODE_LENGTH,
)

__all__ = [
    "Base",
    "Role",
    "Lifecycle",
    "SessionStatus",
    "AttemptStatus",
    "GRADES",
    "SoftDeleteMixin",
    "Institution",
    "Profile",
    "Classroom",
    "ClassroomTeacher",
    "Student",
    "StudentEnrollment",
    "StudentTutor",
    "ReadingText",
    "Quiz",
    "QuizQuestion",
    "QuizOption",
    "VocabularyPair",
    "SequenceItem",
    "EvaluationSession",
    "EvaluationAttempt",
    "AttemptCode",
    "AttemptCodeDisplay",
    "AttemptAnswer",
    "new_id",
    "utcnow",
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
    "drop_db",
    "EvaluationProcedures",
    "SqlEvaluationProcedures",
    "ProcedureError",
    "generate_access_code",
    "hash_access_code",
    "CODE_ALPHABET",
    "CODE_LENGTH",
]
