"""
Shared fixtures: an in-memory database rebuilt for every test and small
factories for the rows the handlers work on.
"""
import os
import sys

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret-key-with-at-least-32-bytes")

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from database import (
    SessionLocal,
    init_db,
    drop_db,
    Institution,
    Profile,
    Classroom,
    ClassroomTeacher,
    Student,
    StudentEnrollment,
    Role,
)
from handlers import CallerContext, create_template


@pytest.fixture
def db():
    """Fresh schema and session per test."""
    drop_db()
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class Factory:
    """Insert rows directly, bypassing the handlers."""

    def __init__(self, db):
        self.db = db
        self._curp = 0
        self._email = 0

    def institution(self, name="Escuela Uno", code=None):
        row = Institution(name=name, code=code)
        self.db.add(row)
        self.db.commit()
        return row

    def profile(self, role, institution=None, email=None, full_name=None):
        role_value = role.value if isinstance(role, Role) else role
        self._email += 1
        row = Profile(
            role=role_value,
            email=email or f"{role_value}{self._email}@example.com",
            full_name=full_name or role_value.title(),
            institution_id=institution.id if institution else None,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def classroom(self, institution, name="1A", grade_id=1, teachers=()):
        row = Classroom(institution_id=institution.id, name=name, grade_id=grade_id)
        self.db.add(row)
        self.db.flush()
        for teacher in teachers:
            self.db.add(ClassroomTeacher(classroom_id=row.id, teacher_profile_id=teacher.id))
        self.db.commit()
        return row

    def student(self, institution, first_name="Ana", last_name="García"):
        self._curp += 1
        row = Student(
            institution_id=institution.id,
            curp=f"CURP{self._curp:014d}",
            first_name=first_name,
            last_name=last_name,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def enroll(self, student, classroom, active=True):
        row = StudentEnrollment(
            student_id=student.id,
            classroom_id=classroom.id,
            institution_id=classroom.institution_id,
            grade_id=classroom.grade_id,
            active=active,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def template(self, author, grade_id=1, questions=1, institution=None):
        """Create a template through the handler so quiz counters stay consistent."""
        return create_template(
            self.db,
            as_caller(author),
            title="El zorro y las uvas",
            topic="Fábulas",
            content="Un zorro hambriento vio unas uvas colgando de una parra.",
            grade_id=grade_id,
            difficulty="facil",
            questions=[
                {
                    "prompt": f"Pregunta {n}",
                    "options": ["a", "b", "c", "d"],
                    "answer_index": n % 4,
                }
                for n in range(questions)
            ],
            institution_id=institution.id if institution else None,
        )


def as_caller(profile):
    """CallerContext carrying the id of ``profile``."""
    return CallerContext(user_id=profile.id)


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def school(factory):
    """
    One institution with a master, an admin, two maestros and a tutor,
    a grade 1 classroom taught by the first maestro with two students.
    """
    institution = factory.institution(name="Escuela Uno", code="E1")
    master = factory.profile(Role.MASTER, full_name="Master")
    admin = factory.profile(Role.ADMIN, institution, full_name="Admin")
    maestro = factory.profile(Role.MAESTRO, institution, full_name="Rosa Hernández")
    other_maestro = factory.profile(Role.MAESTRO, institution, full_name="Jorge Ramírez")
    tutor = factory.profile(Role.TUTOR, institution, full_name="Carmen López")
    classroom = factory.classroom(institution, name="1A", grade_id=1, teachers=[maestro])
    ana = factory.student(institution, "Ana", "García")
    diego = factory.student(institution, "Diego", "López")
    factory.enroll(ana, classroom)
    factory.enroll(diego, classroom)
    return {
        "institution": institution,
        "master": master,
        "admin": admin,
        "maestro": maestro,
        "other_maestro": other_maestro,
        "tutor": tutor,
        "classroom": classroom,
        "students": [ana, diego],
    }


@pytest.fixture(name="as_caller")
def as_caller_fixture():
    return as_caller
