"""
Pydantic schemas for API requests and responses.

Partial update bodies are read with ``model_dump(exclude_unset=True)`` so
an omitted field and an explicit null stay distinguishable.
"""
from typing import Optional, List, Any
from pydantic import BaseModel, Field


# Request schemas
class InstitutionCreateRequest(BaseModel):
    """Create an institution."""
    name: str = Field(..., description="Display name")
    code: Optional[str] = Field(None, description="Optional unique short code")


class InstitutionUpdateRequest(BaseModel):
    """Partial institution update. ``code: null`` clears the code."""
    name: Optional[str] = Field(None, description="New display name")
    code: Optional[str] = Field(None, description="New code, or null to clear it")


class UserUpdateRequest(BaseModel):
    """Partial profile update. ``institution_id: null`` detaches the profile."""
    role: Optional[str] = Field(None, description="master, admin, maestro or tutor")
    institution_id: Optional[str] = Field(None, description="Institution id, or null")


class ClassroomCreateRequest(BaseModel):
    """Create a classroom."""
    name: str = Field(..., description="Name, unique within the institution")
    grade_id: int = Field(..., description="Grade (1-3)")
    institution_id: Optional[str] = Field(None, description="Defaults to the caller's institution")


class ClassroomUpdateRequest(BaseModel):
    """Partial classroom update."""
    name: Optional[str] = Field(None, description="New name")
    grade_id: Optional[int] = Field(None, description="New grade (1-3)")


class TeacherAssignRequest(BaseModel):
    """Assign a maestro to a classroom."""
    teacher_profile_id: str = Field(..., description="Profile id of the maestro")


class StudentCreateRequest(BaseModel):
    """Register a student."""
    curp: str = Field(..., description="National identity key (18-20 characters)")
    first_name: str = Field(..., description="Given name")
    last_name: str = Field(..., description="Family name")
    institution_id: Optional[str] = Field(None, description="Defaults to the caller's institution")


class EnrollmentCreateRequest(BaseModel):
    """Enroll a student in a classroom."""
    student_id: str
    classroom_id: str


class QuestionRequest(BaseModel):
    """Multiple choice question with four options."""
    prompt: str = Field(..., description="Question text")
    options: List[str] = Field(..., description="Exactly four options")
    answer_index: int = Field(..., description="Index of the correct option (0-3)")


class TemplateCreateRequest(BaseModel):
    """Create an evaluation template."""
    title: str
    topic: str = Field(..., description="Topic (3-80 characters)")
    content: str = Field(..., description="Reading text")
    grade_id: int = Field(..., description="Grade (1-3)")
    difficulty: str = Field(..., description="facil, medio or dificil")
    questions: List[QuestionRequest] = Field(default_factory=list, description="Up to eight questions")
    institution_id: Optional[str] = Field(None, description="Defaults to the caller's institution")


class VocabularyPairRequest(BaseModel):
    """Word and definition pair."""
    word: str
    definition: str


class SequenceItemRequest(BaseModel):
    """Event of the sequencing exercise."""
    text: str
    correct_order: int = Field(..., description="1-based position")


class TutorAssignRequest(BaseModel):
    """Link a tutor to a student."""
    student_id: str
    tutor_profile_id: str


class ChildInfoRequest(BaseModel):
    """Child information kept on a tutor profile."""
    child_name: str
    child_grade: int = Field(..., description="Grade (1-3)")


class PublishSessionRequest(BaseModel):
    """Publish an evaluation session for a classroom."""
    classroom_id: str
    text_id: str
    quiz_id: str
    expires_in_minutes: Optional[int] = Field(None, description="Session duration in minutes")


class OpenAttemptRequest(BaseModel):
    """Access code typed by a student."""
    code: str


class SubmitAnswerRequest(BaseModel):
    """Option chosen for one question."""
    question_id: str
    option_id: str


class SubmitAttemptRequest(BaseModel):
    """Answers of an attempt opened with an access code."""
    attempt_id: str
    reading_time_ms: int = Field(..., ge=0, description="Time spent reading, in milliseconds")
    answers: List[SubmitAnswerRequest] = Field(..., min_length=3, max_length=8)


# Response schemas
class MeResponse(BaseModel):
    """Caller profile and the home path of its role."""
    id: str
    role: str
    email: str = ""
    full_name: Optional[str] = None
    institution_id: Optional[str] = None
    home_path: str


class InstitutionResponse(BaseModel):
    """Institution representation."""
    id: str
    name: str
    code: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class OkResponse(BaseModel):
    """Acknowledgement of a mutation."""
    ok: bool = True
    id: Optional[str] = None


class ErrorResponse(BaseModel):
    """Error response."""
    error: str = Field(..., description="Stable error kind")
    message: str = Field(..., description="Human readable summary")
    fields: Optional[List[str]] = Field(None, description="Offending fields, for invalid_input")
    detail: Optional[Any] = Field(None, description="Diagnostic detail, for internal_error")
