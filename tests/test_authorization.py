"""
Unit tests for the role policy guard and identity resolution.
"""
import pytest

from database import Role
from handlers import (
    Action,
    POLICY,
    CallerContext,
    CallerProfile,
    ClassroomScope,
    InvalidInput,
    NotFound,
    Unauthenticated,
    Unauthorized,
    describe_caller,
    get_authorization_service,
    require_profile,
    resolve_profile,
)


@pytest.fixture
def auth():
    return get_authorization_service()


def make_profile(role, institution_id="inst-1", profile_id="user-1"):
    return CallerProfile(id=profile_id, role=role, institution_id=institution_id)


class TestPolicyTable:
    """Tests for the declarative role table."""

    def test_every_action_is_listed(self):
        """Test that no action falls through to the implicit deny."""
        assert set(POLICY) == set(Action)

    def test_missing_profile_is_denied(self, auth):
        """Test that an unresolved caller is denied every action."""
        decision = auth.decide(None, Action.PROFILE_READ)
        assert not decision.allowed

    def test_every_role_reads_its_profile(self, auth):
        """Test that profile.read is open to all four roles."""
        for role in Role:
            assert auth.decide(make_profile(role), Action.PROFILE_READ).allowed

    def test_tutor_cannot_manage_institutions(self, auth):
        """Test that a tutor is denied master actions."""
        with pytest.raises(Unauthorized):
            auth.enforce(make_profile(Role.TUTOR), Action.INSTITUTIONS_CREATE)

    def test_admin_cannot_list_attempts(self, auth):
        """Test that attempts are reserved to maestros."""
        assert not auth.decide(make_profile(Role.ADMIN), Action.ATTEMPTS_LIST).allowed
        assert auth.decide(make_profile(Role.MAESTRO), Action.ATTEMPTS_LIST).allowed


class TestInstitutionScoping:
    """Tests for institution equality checks."""

    def test_master_bypasses_scoping(self, auth):
        """Test that a master may act on any institution."""
        auth.enforce_institution(make_profile(Role.MASTER, None), "inst-2", Action.CLASSROOMS_UPDATE)

    def test_foreign_write_is_unauthorized(self, auth):
        """Test that writes across institutions are denied."""
        with pytest.raises(Unauthorized):
            auth.enforce_institution(make_profile(Role.ADMIN), "inst-2", Action.CLASSROOMS_UPDATE)

    def test_foreign_read_is_hidden(self, auth):
        """Test that reads across institutions look like missing resources."""
        with pytest.raises(NotFound):
            auth.enforce_institution(
                make_profile(Role.ADMIN), "inst-2", Action.CLASSROOM_TEACHERS_LIST, hide=True
            )

    def test_profile_without_institution_never_matches(self, auth):
        """Test that a null institution does not equal a null target."""
        with pytest.raises(Unauthorized):
            auth.enforce_institution(make_profile(Role.ADMIN, None), None, Action.CLASSROOMS_UPDATE)

    def test_scoped_institution_defaults_to_own(self, auth):
        """Test that the caller's institution is used when none is given."""
        assert auth.scoped_institution(make_profile(Role.ADMIN), None, Action.STUDENTS_CREATE) == "inst-1"

    def test_scoped_institution_requires_a_value(self, auth):
        """Test that a master without parameter must name an institution."""
        with pytest.raises(InvalidInput) as exc_info:
            auth.scoped_institution(make_profile(Role.MASTER, None), None, Action.STUDENTS_CREATE)
        assert exc_info.value.fields == ["institution_id"]


class TestClassroomScope:
    """Tests for classroom listing scope."""

    def test_master_without_filter_sees_everything(self, auth):
        assert auth.classroom_scope(make_profile(Role.MASTER, None), None) == ClassroomScope()

    def test_master_filter_is_kept(self, auth):
        scope = auth.classroom_scope(make_profile(Role.MASTER, None), "inst-9")
        assert scope.institution_id == "inst-9"

    def test_admin_is_pinned_to_own_institution(self, auth):
        """Test that an admin always lists its own institution."""
        scope = auth.classroom_scope(make_profile(Role.ADMIN), None)
        assert scope == ClassroomScope(institution_id="inst-1")

    def test_admin_naming_foreign_institution(self, auth):
        with pytest.raises(Unauthorized):
            auth.classroom_scope(make_profile(Role.ADMIN), "inst-2")

    def test_maestro_restricted_to_assignments(self, auth):
        scope = auth.classroom_scope(make_profile(Role.MAESTRO, profile_id="m-1"), None)
        assert scope.teacher_profile_id == "m-1"
        assert scope.institution_id == "inst-1"

    def test_admin_without_institution(self, auth):
        with pytest.raises(Unauthorized):
            auth.classroom_scope(make_profile(Role.ADMIN, None), None)

    def test_tutor_cannot_list(self, auth):
        with pytest.raises(Unauthorized):
            auth.classroom_scope(make_profile(Role.TUTOR), None)


class TestTeacherListing:
    """Tests for the teacher directory scope."""

    def test_master_must_name_institution(self, auth):
        with pytest.raises(InvalidInput):
            auth.teacher_listing_institution(make_profile(Role.MASTER, None), None)

    def test_admin_defaults_to_own(self, auth):
        assert auth.teacher_listing_institution(make_profile(Role.ADMIN), None) == "inst-1"

    def test_admin_foreign_institution(self, auth):
        with pytest.raises(Unauthorized):
            auth.teacher_listing_institution(make_profile(Role.ADMIN), "inst-2")

    def test_maestro_denied(self, auth):
        with pytest.raises(Unauthorized):
            auth.teacher_listing_institution(make_profile(Role.MAESTRO), None)


class TestRoleChange:
    """Tests for the self-demotion guard."""

    def test_self_demotion_blocked(self, auth):
        with pytest.raises(InvalidInput) as exc_info:
            auth.enforce_role_change(make_profile(Role.MASTER), "user-1", "admin")
        assert exc_info.value.fields == ["role"]

    def test_self_keep_master_allowed(self, auth):
        auth.enforce_role_change(make_profile(Role.MASTER), "user-1", "master")

    def test_other_user_demotion_allowed(self, auth):
        auth.enforce_role_change(make_profile(Role.MASTER), "user-2", "tutor")


class TestIdentity:
    """Tests for directory lookups."""

    def test_resolves_known_profile(self, db, factory):
        """Test that a stored profile resolves with its role."""
        institution = factory.institution()
        row = factory.profile(Role.ADMIN, institution)
        profile = resolve_profile(db, row.id)
        assert profile.role == Role.ADMIN
        assert profile.institution_id == institution.id

    def test_unknown_user_is_none(self, db):
        assert resolve_profile(db, "missing") is None
        assert resolve_profile(db, None) is None

    def test_unrecognised_role_fails_closed(self, db, factory):
        """Test that a role outside the four values is never resolved."""
        row = factory.profile("superuser")
        assert resolve_profile(db, row.id) is None

    def test_soft_deleted_profile_fails_closed(self, db, factory):
        row = factory.profile(Role.MASTER)
        row.soft_delete()
        db.commit()
        assert resolve_profile(db, row.id) is None

    def test_anonymous_is_unauthenticated(self, db):
        with pytest.raises(Unauthenticated):
            require_profile(db, CallerContext(), Action.PROFILE_READ)

    def test_unresolvable_caller_is_unauthorized(self, db):
        with pytest.raises(Unauthorized):
            require_profile(db, CallerContext(user_id="ghost"), Action.PROFILE_READ)

    def test_describe_caller_home_path(self, db, factory, as_caller):
        """Test that /me reports the home path of the role."""
        row = factory.profile(Role.TUTOR, full_name="Carmen")
        me = describe_caller(db, as_caller(row))
        assert me["role"] == "tutor"
        assert me["home_path"] == "/tutor"
        assert me["full_name"] == "Carmen"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
