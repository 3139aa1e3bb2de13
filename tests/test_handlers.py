"""
Tests for the directory, classroom, student, template and tutor handlers.
"""
import pytest

from database import Institution, Profile, Role
from handlers import (
    Conflict,
    InvalidInput,
    NotFound,
    Unauthorized,
    add_question,
    add_vocabulary_pair,
    assign_teacher,
    assign_tutor,
    compute_risk,
    compute_trend,
    create_classroom,
    create_institution,
    create_student,
    deactivate_enrollment,
    delete_classroom,
    delete_institution,
    enroll_student,
    get_master_dashboard,
    get_template,
    get_tutor_dashboard,
    get_tutor_overview,
    list_classroom_teachers,
    list_classrooms,
    list_institutions,
    list_students,
    list_teachers,
    list_templates,
    list_users,
    remove_teacher,
    remove_tutor_assignment,
    update_child_info,
    update_institution,
    update_user,
)


class TestInstitutions:
    """Tests for institution management."""

    def test_create_trims_name_and_blank_code(self, db, school, as_caller):
        created = create_institution(db, as_caller(school["master"]), name="  Escuela Dos ", code="  ")
        assert created["name"] == "Escuela Dos"
        assert created["code"] is None

    def test_duplicate_code_is_conflict(self, db, school, as_caller):
        """Test that a taken code is reported and nothing is written."""
        master = as_caller(school["master"])
        with pytest.raises(Conflict):
            create_institution(db, master, name="Otra", code="E1")
        names = [row["name"] for row in list_institutions(db, master)]
        assert names == ["Escuela Uno"]

    def test_update_to_taken_code_leaves_row_unchanged(self, db, school, as_caller):
        master = as_caller(school["master"])
        second = create_institution(db, master, name="Escuela Dos", code="E2")
        with pytest.raises(Conflict):
            update_institution(db, master, second["id"], {"code": "E1"})
        row = db.query(Institution).filter(Institution.id == second["id"]).one()
        assert row.code == "E2"

    def test_null_code_clears_and_omitted_keeps(self, db, school, as_caller):
        """Test that an explicit null differs from an omitted key."""
        master = as_caller(school["master"])
        institution_id = school["institution"].id
        renamed = update_institution(db, master, institution_id, {"name": "Escuela Uno Bis"})
        assert renamed["code"] == "E1"
        cleared = update_institution(db, master, institution_id, {"code": None})
        assert cleared["code"] is None
        assert cleared["name"] == "Escuela Uno Bis"

    def test_unknown_field_rejected(self, db, school, as_caller):
        with pytest.raises(InvalidInput) as exc_info:
            update_institution(db, as_caller(school["master"]), school["institution"].id, {"owner": "x"})
        assert exc_info.value.fields == ["owner"]

    def test_blank_name_rejected(self, db, school, as_caller):
        with pytest.raises(InvalidInput) as exc_info:
            create_institution(db, as_caller(school["master"]), name="   ")
        assert exc_info.value.fields == ["name"]

    def test_deleted_institution_hidden_and_not_updatable(self, db, school, as_caller):
        master = as_caller(school["master"])
        second = create_institution(db, master, name="Escuela Dos")
        delete_institution(db, master, second["id"])
        assert second["id"] not in [row["id"] for row in list_institutions(db, master)]
        with pytest.raises(NotFound):
            update_institution(db, master, second["id"], {"name": "Revivida"})

        row = db.query(Institution).filter(Institution.id == second["id"]).one()
        assert row.lifecycle == "deleted"
        assert row.deleted_at is not None

    def test_admin_cannot_create(self, db, school, as_caller):
        with pytest.raises(Unauthorized):
            create_institution(db, as_caller(school["admin"]), name="Nope")


class TestUsers:
    """Tests for the user directory."""

    def test_self_demotion_rejected(self, db, school, as_caller):
        """Test that a master cannot remove their own master role."""
        master = school["master"]
        with pytest.raises(InvalidInput) as exc_info:
            update_user(db, as_caller(master), master.id, {"role": "admin"})
        assert exc_info.value.fields == ["role"]
        assert db.query(Profile).filter(Profile.id == master.id).one().role == "master"

    def test_omitted_institution_is_kept(self, db, school, as_caller):
        admin = school["admin"]
        updated = update_user(db, as_caller(school["master"]), admin.id, {"role": "maestro"})
        assert updated["role"] == "maestro"
        assert updated["institution_id"] == school["institution"].id

    def test_null_institution_detaches(self, db, school, as_caller):
        updated = update_user(db, as_caller(school["master"]), school["admin"].id, {"institution_id": None})
        assert updated["institution_id"] is None
        assert updated["role"] == "admin"

    def test_unknown_institution_is_invalid_input(self, db, school, as_caller):
        with pytest.raises(InvalidInput) as exc_info:
            update_user(db, as_caller(school["master"]), school["admin"].id, {"institution_id": "nowhere"})
        assert exc_info.value.fields == ["institution_id"]

    def test_unknown_role_rejected(self, db, school, as_caller):
        with pytest.raises(InvalidInput):
            update_user(db, as_caller(school["master"]), school["admin"].id, {"role": "root"})

    def test_search_matches_name_case_insensitively(self, db, school, as_caller):
        found = list_users(db, as_caller(school["master"]), q="rosa")
        assert [row["id"] for row in found] == [school["maestro"].id]

    def test_search_wildcards_match_literally(self, db, school, factory, as_caller):
        """Test that ``_`` and ``%`` in the term are not LIKE wildcards."""
        underscored = factory.profile(Role.MAESTRO, school["institution"], full_name="Ana_Maria")
        factory.profile(Role.MAESTRO, school["institution"], full_name="AnaXMaria")
        master = as_caller(school["master"])

        found = list_users(db, master, q="a_m")
        assert [row["id"] for row in found] == [underscored.id]
        assert list_users(db, master, q="%") == []


class TestClassrooms:
    """Tests for classrooms and teacher assignments."""

    def test_admin_creates_in_own_institution(self, db, school, as_caller):
        created = create_classroom(db, as_caller(school["admin"]), name="2A", grade_id=2)
        assert created["institution_id"] == school["institution"].id

    def test_duplicate_name_is_conflict(self, db, school, as_caller):
        with pytest.raises(Conflict):
            create_classroom(db, as_caller(school["admin"]), name="1A", grade_id=1)

    def test_grade_out_of_range(self, db, school, as_caller):
        with pytest.raises(InvalidInput) as exc_info:
            create_classroom(db, as_caller(school["admin"]), name="4A", grade_id=4)
        assert exc_info.value.fields == ["grade_id"]

    def test_admin_cannot_create_elsewhere(self, db, school, factory, as_caller):
        other = factory.institution(name="Escuela Dos")
        with pytest.raises(Unauthorized):
            create_classroom(db, as_caller(school["admin"]), name="1A", grade_id=1, institution_id=other.id)

    def test_maestro_sees_only_assigned(self, db, school, factory, as_caller):
        factory.classroom(school["institution"], name="2B", grade_id=2)
        listed = list_classrooms(db, as_caller(school["maestro"]))
        assert [row["name"] for row in listed] == ["1A"]

    def test_maestro_without_classrooms_gets_empty_list(self, db, school, as_caller):
        assert list_classrooms(db, as_caller(school["other_maestro"])) == []

    def test_listing_is_ordered_by_grade_then_name(self, db, school, factory, as_caller):
        factory.classroom(school["institution"], name="3A", grade_id=3)
        factory.classroom(school["institution"], name="1B", grade_id=1)
        listed = list_classrooms(db, as_caller(school["admin"]))
        assert [row["name"] for row in listed] == ["1A", "1B", "3A"]

    def test_deleted_classroom_hidden(self, db, school, as_caller):
        admin = as_caller(school["admin"])
        classroom_id = school["classroom"].id
        delete_classroom(db, admin, classroom_id)
        assert list_classrooms(db, admin) == []
        with pytest.raises(NotFound):
            list_classroom_teachers(db, admin, classroom_id)

    def test_assign_teacher_rules(self, db, school, as_caller):
        admin = as_caller(school["admin"])
        classroom_id = school["classroom"].id
        with pytest.raises(InvalidInput):
            assign_teacher(db, admin, classroom_id, school["tutor"].id)
        with pytest.raises(Conflict):
            assign_teacher(db, admin, classroom_id, school["maestro"].id)

        assign_teacher(db, admin, classroom_id, school["other_maestro"].id)
        names = [row["full_name"] for row in list_classroom_teachers(db, admin, classroom_id)]
        assert names == ["Jorge Ramírez", "Rosa Hernández"]

    def test_remove_unassigned_teacher_not_found(self, db, school, as_caller):
        with pytest.raises(NotFound):
            remove_teacher(db, as_caller(school["admin"]), school["classroom"].id, school["other_maestro"].id)

    def test_foreign_admin_cannot_see_teachers(self, db, school, factory, as_caller):
        other = factory.institution(name="Escuela Dos")
        other_admin = factory.profile(Role.ADMIN, other)
        with pytest.raises(NotFound):
            list_classroom_teachers(db, as_caller(other_admin), school["classroom"].id)


class TestTeachers:
    """Tests for the teacher directory."""

    def test_lists_maestros_by_name(self, db, school, as_caller):
        listed = list_teachers(db, as_caller(school["admin"]))
        assert [row["full_name"] for row in listed] == ["Jorge Ramírez", "Rosa Hernández"]

    def test_admin_foreign_institution_unauthorized(self, db, school, factory, as_caller):
        other = factory.institution(name="Escuela Dos")
        with pytest.raises(Unauthorized):
            list_teachers(db, as_caller(school["admin"]), institution_id=other.id)

    def test_master_must_name_institution(self, db, school, as_caller):
        with pytest.raises(InvalidInput):
            list_teachers(db, as_caller(school["master"]))


class TestStudents:
    """Tests for the student registry and enrollments."""

    def test_curp_is_upper_cased(self, db, school, as_caller):
        created = create_student(
            db, as_caller(school["admin"]), curp="abcd010101hdfxyz09", first_name="Luis", last_name="Pérez"
        )
        assert created["curp"] == "ABCD010101HDFXYZ09"

    def test_short_curp_rejected(self, db, school, as_caller):
        with pytest.raises(InvalidInput) as exc_info:
            create_student(db, as_caller(school["admin"]), curp="ABC", first_name="Luis", last_name="Pérez")
        assert exc_info.value.fields == ["curp"]

    def test_duplicate_curp_is_conflict(self, db, school, as_caller):
        admin = as_caller(school["admin"])
        curp = school["students"][0].curp
        with pytest.raises(Conflict):
            create_student(db, admin, curp=curp, first_name="Otra", last_name="Persona")

    def test_master_without_institution_gets_empty_list(self, db, school, as_caller):
        assert list_students(db, as_caller(school["master"])) == []

    def test_listing_ordered_by_last_name(self, db, school, as_caller):
        listed = list_students(db, as_caller(school["admin"]))
        assert [row["last_name"] for row in listed] == ["García", "López"]

    def test_second_active_enrollment_in_grade_conflicts(self, db, school, factory, as_caller):
        """Test that a student holds one active enrollment per grade."""
        other_room = factory.classroom(school["institution"], name="1B", grade_id=1)
        with pytest.raises(Conflict):
            enroll_student(db, as_caller(school["admin"]), school["students"][0].id, other_room.id)

    def test_deactivate_twice_conflicts(self, db, school, factory, as_caller):
        admin = as_caller(school["admin"])
        student = factory.student(school["institution"], "Tomás", "Martínez")
        enrollment = enroll_student(db, admin, student.id, school["classroom"].id)
        assert deactivate_enrollment(db, admin, enrollment["id"])["active"] is False
        with pytest.raises(Conflict):
            deactivate_enrollment(db, admin, enrollment["id"])

        # Inactive enrollments free the grade again
        again = enroll_student(db, admin, student.id, school["classroom"].id)
        assert again["active"] is True

    def test_student_of_other_institution_rejected(self, db, school, factory, as_caller):
        other = factory.institution(name="Escuela Dos")
        outsider = factory.student(other, "Mateo", "Torres")
        with pytest.raises(InvalidInput):
            enroll_student(db, as_caller(school["admin"]), outsider.id, school["classroom"].id)


class TestTemplates:
    """Tests for evaluation templates."""

    def test_create_with_questions(self, db, school, factory, as_caller):
        created = factory.template(school["maestro"], questions=3)
        assert created["question_count"] == 3
        template = get_template(db, as_caller(school["maestro"]), created["id"])
        assert [q["prompt"] for q in template["questions"]] == ["Pregunta 0", "Pregunta 1", "Pregunta 2"]
        assert template["questions"][1]["answer_index"] == 1

    def test_too_many_questions_on_create(self, factory, school):
        with pytest.raises(InvalidInput) as exc_info:
            factory.template(school["maestro"], questions=9)
        assert exc_info.value.fields == ["questions"]

    def test_question_limit_on_append(self, db, school, factory, as_caller):
        created = factory.template(school["maestro"], questions=8)
        with pytest.raises(InvalidInput):
            add_question(db, as_caller(school["maestro"]), created["id"], "Novena", ["a", "b", "c", "d"], 0)

    def test_first_question_creates_quiz(self, db, school, factory, as_caller):
        created = factory.template(school["maestro"], questions=0)
        assert created["quiz_id"] is None
        added = add_question(db, as_caller(school["maestro"]), created["id"], "¿Quién?", ["a", "b", "c", "d"], 3)
        assert added["question_count"] == 1
        listed = list_templates(db, as_caller(school["admin"]))
        assert listed[0]["quiz_id"] == added["quiz_id"]

    def test_three_options_rejected(self, db, school, factory, as_caller):
        created = factory.template(school["maestro"], questions=0)
        with pytest.raises(InvalidInput) as exc_info:
            add_question(db, as_caller(school["maestro"]), created["id"], "¿Qué?", ["a", "b", "c"], 0)
        assert exc_info.value.fields == ["options"]

    def test_vocabulary_order_increments(self, db, school, factory, as_caller):
        created = factory.template(school["maestro"])
        maestro = as_caller(school["maestro"])
        first = add_vocabulary_pair(db, maestro, created["id"], "parra", "Planta de uvas")
        second = add_vocabulary_pair(db, maestro, created["id"], "zorro", "Animal astuto")
        assert (first["order_index"], second["order_index"]) == (1, 2)

    def test_foreign_template_hidden(self, db, school, factory, as_caller):
        created = factory.template(school["maestro"])
        other = factory.institution(name="Escuela Dos")
        stranger = factory.profile(Role.MAESTRO, other)
        with pytest.raises(NotFound):
            get_template(db, as_caller(stranger), created["id"])


class TestTutors:
    """Tests for tutor assignments."""

    def test_assign_remove_and_restore(self, db, school, as_caller):
        maestro = as_caller(school["maestro"])
        student = school["students"][0]
        tutor = school["tutor"]

        assigned = assign_tutor(db, maestro, student.id, tutor.id)
        assert assigned["restored"] is False
        with pytest.raises(Conflict):
            assign_tutor(db, maestro, student.id, tutor.id)

        overview = get_tutor_overview(db, maestro)
        ana = next(row for row in overview["students"] if row["id"] == student.id)
        assert [t["tutor_profile_id"] for t in ana["assigned_tutors"]] == [tutor.id]

        remove_tutor_assignment(db, maestro, assigned["id"])
        with pytest.raises(Conflict):
            remove_tutor_assignment(db, maestro, assigned["id"])

        restored = assign_tutor(db, maestro, student.id, tutor.id)
        assert restored["restored"] is True
        assert restored["id"] == assigned["id"]

    def test_maestro_outside_classroom_unauthorized(self, db, school, as_caller):
        with pytest.raises(Unauthorized):
            assign_tutor(db, as_caller(school["other_maestro"]), school["students"][0].id, school["tutor"].id)

    def test_non_tutor_profile_rejected(self, db, school, as_caller):
        with pytest.raises(InvalidInput) as exc_info:
            assign_tutor(db, as_caller(school["maestro"]), school["students"][0].id, school["admin"].id)
        assert exc_info.value.fields == ["tutor_profile_id"]

    def test_unknown_assignment_not_found(self, db, school, as_caller):
        with pytest.raises(NotFound):
            remove_tutor_assignment(db, as_caller(school["maestro"]), "missing")

    def test_child_info(self, db, school, as_caller):
        tutor = as_caller(school["tutor"])
        updated = update_child_info(db, tutor, " Diego ", 2)
        assert updated["child_name"] == "Diego"
        with pytest.raises(InvalidInput) as exc_info:
            update_child_info(db, tutor, "Diego", 4)
        assert exc_info.value.fields == ["child_grade"]


class TestReporting:
    """Tests for risk bands, trends and dashboards."""

    @pytest.mark.parametrize("score,expected", [
        (None, "low"),
        (59.9, "high"),
        (60, "medium"),
        (79.9, "medium"),
        (80, "low"),
    ])
    def test_risk_bands(self, score, expected):
        assert compute_risk(score) == expected

    def test_trend(self):
        assert compute_trend(70, 60) == "improving"
        assert compute_trend(60, 70) == "declining"
        assert compute_trend(65, 60) == "stable"
        assert compute_trend(65, None) is None

    def test_tutor_without_students_gets_empty_dashboard(self, db, school, as_caller):
        dashboard = get_tutor_dashboard(db, as_caller(school["tutor"]))
        assert dashboard["total_students"] == 0
        assert dashboard["avg_score_percent"] is None
        assert dashboard["students"] == []

    def test_master_dashboard_counts(self, db, school, as_caller):
        dashboard = get_master_dashboard(db, as_caller(school["master"]))
        assert dashboard["institutions_count"] == 1
        assert dashboard["classrooms_count"] == 1
        assert dashboard["students_count"] == 2
        assert dashboard["profiles_by_role"] == {"master": 1, "admin": 1, "maestro": 2, "tutor": 1}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
