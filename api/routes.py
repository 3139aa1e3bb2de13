"""
API routes for the reading evaluation platform.

Routes only translate HTTP into handler calls; every handler error is an
``AppError`` rendered by the application's exception handlers.
"""
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import EvaluationProcedures, get_db
from handlers import (
    CallerContext,
    describe_caller,
    list_institutions,
    create_institution,
    update_institution,
    delete_institution,
    list_users,
    update_user,
    list_classrooms,
    create_classroom,
    update_classroom,
    delete_classroom,
    list_classroom_teachers,
    assign_teacher,
    remove_teacher,
    list_teachers,
    list_students,
    create_student,
    list_enrollments,
    enroll_student,
    deactivate_enrollment,
    get_student_history,
    list_templates,
    get_template,
    create_template,
    delete_template,
    add_question,
    add_vocabulary_pair,
    add_sequence_item,
    get_tutor_overview,
    assign_tutor,
    remove_tutor_assignment,
    update_child_info,
    get_master_dashboard,
    get_maestro_dashboard,
    get_tutor_dashboard,
    get_maestro_results,
    get_tutor_results,
    list_sessions,
    close_session,
    list_attempts,
    regenerate_attempt_code,
    publish_session,
    open_attempt,
    submit_attempt,
)
from .dependencies import get_caller, get_procedures
from .schemas import (
    InstitutionCreateRequest,
    InstitutionUpdateRequest,
    UserUpdateRequest,
    ClassroomCreateRequest,
    ClassroomUpdateRequest,
    TeacherAssignRequest,
    StudentCreateRequest,
    EnrollmentCreateRequest,
    QuestionRequest,
    TemplateCreateRequest,
    VocabularyPairRequest,
    SequenceItemRequest,
    TutorAssignRequest,
    ChildInfoRequest,
    PublishSessionRequest,
    OpenAttemptRequest,
    SubmitAttemptRequest,
    MeResponse,
    InstitutionResponse,
    OkResponse,
)


master_router = APIRouter(prefix="/master", tags=["Master"])
admin_router = APIRouter(prefix="/admin", tags=["Admin"])
classrooms_router = APIRouter(prefix="/classrooms", tags=["Classrooms"])
maestro_router = APIRouter(prefix="/maestro", tags=["Maestro"])
templates_router = APIRouter(prefix="/templates", tags=["Templates"])
tutor_router = APIRouter(prefix="/tutor", tags=["Tutor"])
student_router = APIRouter(prefix="/student", tags=["Student"])
me_router = APIRouter(prefix="/me", tags=["Profile"])


# ============== Profile ==============

@me_router.get("", response_model=MeResponse)
async def get_me(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    """Caller profile plus the home path of its role."""
    return describe_caller(db, caller)


# ============== Master ==============

@master_router.get("/institutions", response_model=list[InstitutionResponse])
async def get_institutions(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    return list_institutions(db, caller)


@master_router.post("/institutions", response_model=InstitutionResponse, status_code=201)
async def post_institution(
    request: InstitutionCreateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Create an institution (master only)."""
    return create_institution(db, caller, name=request.name, code=request.code)


@master_router.patch("/institutions/{institution_id}", response_model=InstitutionResponse)
async def patch_institution(
    institution_id: str,
    request: InstitutionUpdateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Partially update an institution; omitted fields are left untouched."""
    return update_institution(db, caller, institution_id, request.model_dump(exclude_unset=True))


@master_router.delete("/institutions/{institution_id}", response_model=OkResponse)
async def remove_institution(
    institution_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return delete_institution(db, caller, institution_id)


@master_router.get("/users")
async def get_users(
    q: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """List profiles, newest first. ``q`` filters on email or name."""
    return {"users": list_users(db, caller, q=q)}


@master_router.patch("/users/{user_id}")
async def patch_user(
    user_id: str,
    request: UserUpdateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Change role and/or institution of a profile."""
    return update_user(db, caller, user_id, request.model_dump(exclude_unset=True))


@master_router.get("/dashboard")
async def master_dashboard(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    return get_master_dashboard(db, caller)


# ============== Admin ==============

@admin_router.get("/classrooms")
async def admin_classrooms(
    institution_id: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return {"classrooms": list_classrooms(db, caller, institution_id)}


@admin_router.post("/classrooms", status_code=201)
async def post_classroom(
    request: ClassroomCreateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return create_classroom(
        db, caller, name=request.name, grade_id=request.grade_id, institution_id=request.institution_id
    )


@admin_router.patch("/classrooms/{classroom_id}")
async def patch_classroom(
    classroom_id: str,
    request: ClassroomUpdateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return update_classroom(db, caller, classroom_id, request.model_dump(exclude_unset=True))


@admin_router.delete("/classrooms/{classroom_id}", response_model=OkResponse)
async def remove_classroom(
    classroom_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return delete_classroom(db, caller, classroom_id)


@admin_router.get("/classrooms/{classroom_id}/teachers")
async def get_classroom_teachers(
    classroom_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return {"teachers": list_classroom_teachers(db, caller, classroom_id)}


@admin_router.post("/classrooms/{classroom_id}/teachers", status_code=201)
async def post_classroom_teacher(
    classroom_id: str,
    request: TeacherAssignRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return assign_teacher(db, caller, classroom_id, request.teacher_profile_id)


@admin_router.delete("/classrooms/{classroom_id}/teachers/{teacher_profile_id}")
async def delete_classroom_teacher(
    classroom_id: str,
    teacher_profile_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return remove_teacher(db, caller, classroom_id, teacher_profile_id)


@admin_router.get("/teachers")
async def get_teachers(
    institution_id: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Maestros of an institution; admins may only ask for their own."""
    return {"teachers": list_teachers(db, caller, institution_id)}


@admin_router.get("/students")
async def get_students(
    institution_id: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return {"students": list_students(db, caller, institution_id)}


@admin_router.post("/students", status_code=201)
async def post_student(
    request: StudentCreateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return create_student(
        db,
        caller,
        curp=request.curp,
        first_name=request.first_name,
        last_name=request.last_name,
        institution_id=request.institution_id,
    )


@admin_router.get("/enrollments")
async def get_enrollments(
    classroom_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return {"enrollments": list_enrollments(db, caller, classroom_id)}


@admin_router.post("/enrollments", status_code=201)
async def post_enrollment(
    request: EnrollmentCreateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return enroll_student(db, caller, request.student_id, request.classroom_id)


@admin_router.delete("/enrollments/{enrollment_id}")
async def delete_enrollment(
    enrollment_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Deactivate an enrollment."""
    return deactivate_enrollment(db, caller, enrollment_id)


@admin_router.post("/evaluation-sessions/{session_id}/close")
async def admin_close_session(
    session_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return close_session(db, caller, session_id)


# ============== Classrooms ==============

@classrooms_router.get("")
async def get_classrooms(
    institution_id: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Classrooms visible to the caller, by grade then name."""
    return {"classrooms": list_classrooms(db, caller, institution_id)}


# ============== Maestro ==============

@maestro_router.get("/classrooms")
async def maestro_classrooms(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    return {"classrooms": list_classrooms(db, caller)}


@maestro_router.get("/dashboard")
async def maestro_dashboard(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    return get_maestro_dashboard(db, caller)


@maestro_router.get("/resultados")
async def maestro_results(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    """Aggregated results of the students in the caller's classrooms."""
    return get_maestro_results(db, caller)


@maestro_router.get("/evaluation-sessions")
async def get_sessions(
    page: int = 1,
    page_size: Optional[int] = None,
    status: Optional[str] = None,
    classroom_id: Optional[str] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Page through the caller's sessions. ``status``: open, expired or closed."""
    return list_sessions(db, caller, page=page, page_size=page_size, status=status, classroom_id=classroom_id)


@maestro_router.post("/evaluation-sessions/{session_id}/close")
async def maestro_close_session(
    session_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return close_session(db, caller, session_id)


@maestro_router.get("/evaluation-sessions/{session_id}/attempts")
async def get_attempts(
    session_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return {"attempts": list_attempts(db, caller, session_id)}


@maestro_router.post("/evaluation-sessions/{session_id}/attempts/{attempt_id}/regenerate")
async def post_regenerate_code(
    session_id: str,
    attempt_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    procedures: EvaluationProcedures = Depends(get_procedures),
):
    """Issue a new access code; the plaintext is only returned here."""
    return regenerate_attempt_code(db, caller, procedures, session_id, attempt_id)


@maestro_router.post("/publish", status_code=201)
async def post_publish(
    request: PublishSessionRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
    procedures: EvaluationProcedures = Depends(get_procedures),
):
    return publish_session(
        db,
        caller,
        procedures,
        classroom_id=request.classroom_id,
        text_id=request.text_id,
        quiz_id=request.quiz_id,
        expires_in_minutes=request.expires_in_minutes,
    )


@maestro_router.get("/students/{student_id}")
async def get_history(
    student_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Submitted attempts of a student, newest first."""
    return get_student_history(db, caller, student_id)


@maestro_router.get("/tutores")
async def get_tutors(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    return get_tutor_overview(db, caller)


@maestro_router.post("/tutores", status_code=201)
async def post_tutor(
    request: TutorAssignRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return assign_tutor(db, caller, request.student_id, request.tutor_profile_id)


@maestro_router.delete("/tutores/{assignment_id}", response_model=OkResponse)
async def delete_tutor(
    assignment_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return remove_tutor_assignment(db, caller, assignment_id)


# ============== Templates ==============

@templates_router.get("")
async def get_templates(
    institution_id: Optional[str] = None,
    grade_id: Optional[int] = None,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return {"templates": list_templates(db, caller, institution_id=institution_id, grade_id=grade_id)}


@templates_router.post("", status_code=201)
async def post_template(
    request: TemplateCreateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return create_template(
        db,
        caller,
        title=request.title,
        topic=request.topic,
        content=request.content,
        grade_id=request.grade_id,
        difficulty=request.difficulty,
        questions=[question.model_dump() for question in request.questions],
        institution_id=request.institution_id,
    )


@templates_router.get("/{text_id}")
async def get_template_detail(
    text_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return get_template(db, caller, text_id)


@templates_router.delete("/{text_id}", response_model=OkResponse)
async def remove_template(
    text_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return delete_template(db, caller, text_id)


@templates_router.post("/{text_id}/questions", status_code=201)
async def post_question(
    text_id: str,
    request: QuestionRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return add_question(
        db, caller, text_id, prompt=request.prompt, options=request.options, answer_index=request.answer_index
    )


@templates_router.post("/{text_id}/vocabulary", status_code=201)
async def post_vocabulary(
    text_id: str,
    request: VocabularyPairRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return add_vocabulary_pair(db, caller, text_id, word=request.word, definition=request.definition)


@templates_router.post("/{text_id}/sequence", status_code=201)
async def post_sequence(
    text_id: str,
    request: SequenceItemRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    return add_sequence_item(db, caller, text_id, text=request.text, correct_order=request.correct_order)


# ============== Tutor ==============

@tutor_router.patch("/profile")
async def patch_tutor_profile(
    request: ChildInfoRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller),
):
    """Update the child information of the calling tutor."""
    return update_child_info(db, caller, child_name=request.child_name, child_grade=request.child_grade)


@tutor_router.get("/dashboard")
async def tutor_dashboard(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    return get_tutor_dashboard(db, caller)


@tutor_router.get("/resultados")
async def tutor_results(db: Session = Depends(get_db), caller: CallerContext = Depends(get_caller)):
    return get_tutor_results(db, caller)


# ============== Student ==============

@student_router.post("/open-attempt")
async def post_open_attempt(request: OpenAttemptRequest, db: Session = Depends(get_db)):
    """Enter an attempt with an access code. No login needed."""
    return {"ok": True, "result": open_attempt(db, request.code)}


@student_router.post("/submit")
async def post_submit_attempt(
    request: SubmitAttemptRequest,
    db: Session = Depends(get_db),
    procedures: EvaluationProcedures = Depends(get_procedures),
):
    """Submit the answers of an opened attempt and get its score."""
    result = submit_attempt(
        db,
        procedures,
        request.attempt_id,
        request.reading_time_ms,
        [answer.model_dump() for answer in request.answers],
    )
    return {"ok": True, "result": result}
