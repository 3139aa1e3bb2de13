"""
Role policy guard for the reading evaluation platform.

One declarative table says which roles may attempt each action; the
``AuthorizationService`` methods add the scoping rules (institution
equality, ownership, self-protection). Every check is deny-by-default.

RULES:
1. Roles come from the directory, never from the client
2. Institution scoping is exact equality, never a hierarchy
3. Read scope violations are reported as NotFound, write violations as Unauthorized
4. A master can never demote themselves
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from database import Role
from .context import CallerProfile
from .exceptions import InvalidInput, NotFound, Unauthorized

logger = logging.getLogger(__name__)


class Action(str, Enum):
    """Every guarded action."""
    PROFILE_READ = "profile.read"

    INSTITUTIONS_LIST = "institutions.list"
    INSTITUTIONS_CREATE = "institutions.create"
    INSTITUTIONS_UPDATE = "institutions.update"
    INSTITUTIONS_DELETE = "institutions.delete"

    USERS_LIST = "users.list"
    USERS_UPDATE = "users.update"

    CLASSROOMS_LIST = "classrooms.list"
    CLASSROOMS_CREATE = "classrooms.create"
    CLASSROOMS_UPDATE = "classrooms.update"
    CLASSROOMS_DELETE = "classrooms.delete"
    CLASSROOM_TEACHERS_LIST = "classroom_teachers.list"
    CLASSROOM_TEACHERS_ASSIGN = "classroom_teachers.assign"
    CLASSROOM_TEACHERS_REMOVE = "classroom_teachers.remove"

    TEACHERS_LIST = "teachers.list"

    STUDENTS_LIST = "students.list"
    STUDENTS_CREATE = "students.create"
    ENROLLMENTS_LIST = "enrollments.list"
    ENROLLMENTS_CREATE = "enrollments.create"
    ENROLLMENTS_DEACTIVATE = "enrollments.deactivate"
    STUDENT_HISTORY_READ = "students.history"

    SESSIONS_LIST = "sessions.list"
    SESSION_CLOSE = "sessions.close"
    SESSION_PUBLISH = "sessions.publish"
    ATTEMPTS_LIST = "attempts.list"
    ATTEMPT_CODE_REGENERATE = "attempts.regenerate_code"

    TEMPLATES_LIST = "templates.list"
    TEMPLATE_READ = "templates.read"
    TEMPLATE_CREATE = "templates.create"
    TEMPLATE_DELETE = "templates.delete"
    TEMPLATE_ADD_QUESTION = "templates.add_question"
    TEMPLATE_ADD_VOCABULARY = "templates.add_vocabulary"
    TEMPLATE_ADD_SEQUENCE = "templates.add_sequence"

    TUTORS_OVERVIEW = "tutors.overview"
    TUTOR_ASSIGN = "tutors.assign"
    TUTOR_ASSIGNMENT_REMOVE = "tutors.remove"
    TUTOR_CHILD_UPDATE = "tutors.update_child"

    DASHBOARD_MASTER = "dashboard.master"
    DASHBOARD_MAESTRO = "dashboard.maestro"
    DASHBOARD_TUTOR = "dashboard.tutor"
    RESULTS_MAESTRO = "results.maestro"
    RESULTS_TUTOR = "results.tutor"


_MASTER = frozenset({Role.MASTER})
_ADMINS = frozenset({Role.MASTER, Role.ADMIN})
_STAFF = frozenset({Role.MASTER, Role.ADMIN, Role.MAESTRO})
_TEACHING = frozenset({Role.MASTER, Role.MAESTRO})
_MAESTRO = frozenset({Role.MAESTRO})
_TUTOR = frozenset({Role.TUTOR})

POLICY: Dict[Action, FrozenSet[Role]] = {
    Action.PROFILE_READ: frozenset(Role),

    Action.INSTITUTIONS_LIST: _MASTER,
    Action.INSTITUTIONS_CREATE: _MASTER,
    Action.INSTITUTIONS_UPDATE: _MASTER,
    Action.INSTITUTIONS_DELETE: _MASTER,

    Action.USERS_LIST: _MASTER,
    Action.USERS_UPDATE: _MASTER,

    Action.CLASSROOMS_LIST: _STAFF,
    Action.CLASSROOMS_CREATE: _ADMINS,
    Action.CLASSROOMS_UPDATE: _ADMINS,
    Action.CLASSROOMS_DELETE: _ADMINS,
    Action.CLASSROOM_TEACHERS_LIST: _ADMINS,
    Action.CLASSROOM_TEACHERS_ASSIGN: _ADMINS,
    Action.CLASSROOM_TEACHERS_REMOVE: _ADMINS,

    Action.TEACHERS_LIST: _ADMINS,

    Action.STUDENTS_LIST: _ADMINS,
    Action.STUDENTS_CREATE: _ADMINS,
    Action.ENROLLMENTS_LIST: _ADMINS,
    Action.ENROLLMENTS_CREATE: _ADMINS,
    Action.ENROLLMENTS_DEACTIVATE: _ADMINS,
    Action.STUDENT_HISTORY_READ: _TEACHING,

    Action.SESSIONS_LIST: _TEACHING,
    Action.SESSION_CLOSE: _STAFF,
    Action.SESSION_PUBLISH: _STAFF,
    Action.ATTEMPTS_LIST: _MAESTRO,
    Action.ATTEMPT_CODE_REGENERATE: _MAESTRO,

    Action.TEMPLATES_LIST: _STAFF,
    Action.TEMPLATE_READ: _STAFF,
    Action.TEMPLATE_CREATE: _STAFF,
    Action.TEMPLATE_DELETE: _STAFF,
    Action.TEMPLATE_ADD_QUESTION: _STAFF,
    Action.TEMPLATE_ADD_VOCABULARY: _STAFF,
    Action.TEMPLATE_ADD_SEQUENCE: _STAFF,

    Action.TUTORS_OVERVIEW: _TEACHING,
    Action.TUTOR_ASSIGN: _TEACHING,
    Action.TUTOR_ASSIGNMENT_REMOVE: _MAESTRO,
    Action.TUTOR_CHILD_UPDATE: _TUTOR,

    Action.DASHBOARD_MASTER: _MASTER,
    Action.DASHBOARD_MAESTRO: _TEACHING,
    Action.DASHBOARD_TUTOR: _TUTOR,
    Action.RESULTS_MAESTRO: _TEACHING,
    Action.RESULTS_TUTOR: _TUTOR,
}


@dataclass(frozen=True)
class Decision:
    """Outcome of a policy evaluation."""
    allowed: bool
    reason: str = ""


@dataclass(frozen=True)
class ClassroomScope:
    """
    Filter a classroom listing must apply.

    ``institution_id`` None means every institution (master only);
    ``teacher_profile_id`` restricts to classrooms the teacher is assigned to.
    """
    institution_id: Optional[str] = None
    teacher_profile_id: Optional[str] = None


class AuthorizationService:
    """
    Pure policy decisions over a resolved profile.
    Nothing here touches the store; handlers load the resources first.
    """

    def decide(self, profile: Optional[CallerProfile], action: Action) -> Decision:
        if profile is None:
            return Decision(False, "No profile")
        allowed_roles = POLICY.get(action)
        if not allowed_roles:
            return Decision(False, f"Action '{action.value}' is not in the policy table")
        if profile.role not in allowed_roles:
            return Decision(False, f"Role '{profile.role.value}' cannot perform '{action.value}'")
        return Decision(True)

    def enforce(self, profile: Optional[CallerProfile], action: Action) -> CallerProfile:
        """
        Enforce the role half of the policy table.

        Raises:
            Unauthorized: If the profile is missing or its role is not allowed
        """
        decision = self.decide(profile, action)
        if not decision.allowed:
            logger.info("Denied %s for %s: %s", action.value, profile.id if profile else None, decision.reason)
            raise Unauthorized(decision.reason, user_id=profile.id if profile else None, action=action.value)
        return profile

    def enforce_institution(
        self,
        profile: CallerProfile,
        institution_id: Optional[str],
        action: Action,
        hide: bool = False,
        resource: str = "Resource",
    ) -> None:
        """
        Enforce exact institution equality for every role but master.

        Args:
            profile: The caller
            institution_id: Institution owning the target resource
            action: Action being attempted, for logging
            hide: Report a mismatch as NotFound (read access)
            resource: Resource name used in the NotFound message

        Raises:
            Unauthorized: On mismatch when ``hide`` is False
            NotFound: On mismatch when ``hide`` is True
        """
        if profile.is_master:
            return
        if profile.institution_id is not None and profile.institution_id == institution_id:
            return
        logger.info("Institution scope denied %s for %s", action.value, profile.id)
        if hide:
            raise NotFound(resource, institution_id)
        raise Unauthorized(
            f"{resource} belongs to another institution",
            user_id=profile.id,
            action=action.value,
        )

    def scoped_institution(
        self,
        profile: CallerProfile,
        institution_param: Optional[str],
        action: Action,
    ) -> str:
        """
        Resolve the institution an action applies to.

        The explicit parameter wins, then the caller's own institution.
        Non-master callers may only name their own institution.

        Raises:
            InvalidInput: If no institution can be determined
            Unauthorized: If a non-master names another institution
        """
        effective = institution_param or profile.institution_id
        if not effective:
            raise InvalidInput("institution_id is required", ["institution_id"])
        self.enforce_institution(profile, effective, action, resource="Institution")
        return effective

    def enforce_role_change(
        self,
        profile: CallerProfile,
        target_user_id: str,
        new_role: Optional[str],
    ) -> None:
        """
        Block a master from changing their own role away from master.

        Raises:
            InvalidInput: On a self-demotion attempt
        """
        if target_user_id == profile.id and new_role is not None and new_role != Role.MASTER.value:
            logger.info("Blocked self-demotion of %s", profile.id)
            raise InvalidInput("You cannot change your own master role", ["role"])

    def classroom_scope(self, profile: CallerProfile, institution_param: Optional[str]) -> ClassroomScope:
        """
        Scope of a classroom listing.

        - master: every institution, or the one named by the parameter
        - admin: always its own institution
        - maestro: its own institution, restricted to assigned classrooms

        Raises:
            Unauthorized: For other roles, a scoped role without institution,
                or a parameter naming a foreign institution
        """
        self.enforce(profile, Action.CLASSROOMS_LIST)
        if profile.is_master:
            return ClassroomScope(institution_id=institution_param)

        if not profile.institution_id:
            raise Unauthorized(
                "Profile has no institution assigned",
                user_id=profile.id,
                action=Action.CLASSROOMS_LIST.value,
            )
        if institution_param and institution_param != profile.institution_id:
            self.enforce_institution(profile, institution_param, Action.CLASSROOMS_LIST, resource="Institution")

        if profile.role == Role.MAESTRO:
            return ClassroomScope(institution_id=profile.institution_id, teacher_profile_id=profile.id)
        return ClassroomScope(institution_id=profile.institution_id)

    def teacher_listing_institution(self, profile: CallerProfile, institution_param: Optional[str]) -> str:
        """
        Institution whose teachers may be listed.

        Raises:
            InvalidInput: Master without an institution parameter
            Unauthorized: Admin naming another institution, or without one
        """
        self.enforce(profile, Action.TEACHERS_LIST)
        if profile.is_master:
            if not institution_param:
                raise InvalidInput("institution_id is required", ["institution_id"])
            return institution_param
        if not profile.institution_id:
            raise Unauthorized(
                "Profile has no institution assigned",
                user_id=profile.id,
                action=Action.TEACHERS_LIST.value,
            )
        effective = institution_param or profile.institution_id
        self.enforce_institution(profile, effective, Action.TEACHERS_LIST, resource="Institution")
        return effective

    def enforce_session_close(self, profile: CallerProfile, session) -> None:
        """
        Scoping for closing a session.

        Raises:
            Unauthorized: Admin of another institution
            NotFound: Maestro that does not own the session
        """
        if profile.is_master:
            return
        if profile.role == Role.ADMIN:
            self.enforce_institution(profile, session.institution_id, Action.SESSION_CLOSE, resource="Evaluation session")
            return
        self.enforce_session_owner(profile, session)

    def enforce_session_owner(self, profile: CallerProfile, session) -> None:
        """
        Only the teacher who published a session may touch its attempts.

        Raises:
            NotFound: If the caller does not own the session
        """
        if session.teacher_profile_id != profile.id:
            logger.info("Session ownership denied for %s on %s", profile.id, session.id)
            raise NotFound("Evaluation session", session.id)


def get_authorization_service() -> AuthorizationService:
    """Factory function to create AuthorizationService."""
    return AuthorizationService()
