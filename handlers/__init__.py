"""
Handlers module for the reading evaluation platform.

Every handler takes a database session and an explicit ``CallerContext``,
resolves the caller's profile, applies the role policy and returns a plain
dict or list. Failures are raised as ``AppError`` subclasses.
"""
from .exceptions import (
    AppError,
    Unauthenticated,
    Unauthorized,
    InvalidInput,
    NotFound,
    Conflict,
    InternalError,
)

from .context import CallerContext, CallerProfile

from .authorization import (
    Action,
    POLICY,
    Decision,
    ClassroomScope,
    AuthorizationService,
    get_authorization_service,
)

from .identity import (
    HOME_PATHS,
    resolve_profile,
    require_profile,
    describe_caller,
)

from .institutions import (
    list_institutions,
    create_institution,
    update_institution,
    delete_institution,
)

from .users import list_users, update_user

from .classrooms import (
    list_classrooms,
    create_classroom,
    update_classroom,
    delete_classroom,
    list_classroom_teachers,
    assign_teacher,
    remove_teacher,
)

from .teachers import list_teachers

from .students import (
    list_students,
    create_student,
    list_enrollments,
    enroll_student,
    deactivate_enrollment,
    get_student_history,
)

from .templates import (
    list_templates,
    get_template,
    create_template,
    delete_template,
    add_question,
    add_vocabulary_pair,
    add_sequence_item,
)

from .tutors import (
    get_tutor_overview,
    assign_tutor,
    remove_tutor_assignment,
    update_child_info,
)

from .reporting import (
    compute_score,
    compute_risk,
    compute_trend,
    get_master_dashboard,
    get_maestro_dashboard,
    get_tutor_dashboard,
    get_maestro_results,
    get_tutor_results,
)

from .sessions import (
    list_sessions,
    close_session,
    list_attempts,
    regenerate_attempt_code,
    publish_session,
    open_attempt,
    submit_attempt,
)

__all__ = [
    # Exceptions
    "AppError",
    "Unauthenticated",
    "Unauthorized",
    "InvalidInput",
    "NotFound",
    "Conflict",
    "InternalError",
    # Context
    "CallerContext",
    "CallerProfile",
    # Authorization
    "Action",
    "POLICY",
    "Decision",
    "ClassroomScope",
    "AuthorizationService",
    "get_authorization_service",
    # Identity
    "HOME_PATHS",
    "resolve_profile",
    "require_profile",
    "describe_caller",
    # Institutions
    "list_institutions",
    "create_institution",
    "update_institution",
    "delete_institution",
    # Users
    "list_users",
    "update_user",
    # Classrooms
    "list_classrooms",
    "create_classroom",
    "update_classroom",
    "delete_classroom",
    "list_classroom_teachers",
    "assign_teacher",
    "remove_teacher",
    # Teachers
    "list_teachers",
    # Students
    "list_students",
    "create_student",
    "list_enrollments",
    "enroll_student",
    "deactivate_enrollment",
    "get_student_history",
    # Templates
    "list_templates",
    "get_template",
    "create_template",
    "delete_template",
    "add_question",
    "add_vocabulary_pair",
    "add_sequence_item",
    # Tutors
    "get_tutor_overview",
    "assign_tutor",
    "remove_tutor_assignment",
    "update_child_info",
    # Reporting
    "compute_score",
    "compute_risk",
    "compute_trend",
    "get_master_dashboard",
    "get_maestro_dashboard",
    "get_tutor_dashboard",
    "get_maestro_results",
    "get_tutor_results",
    # Sessions
    "list_sessions",
    "close_session",
    "list_attempts",
    "regenerate_attempt_code",
    "publish_session",
    "open_attempt",
    "submit_attempt",
]
