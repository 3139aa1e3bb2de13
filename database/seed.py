"""
Seed script to populate the database with sample data.
"""
from .connection import get_db_context, init_db
from .models import (
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
    Role,
)


def seed_database():
    """Seed the database with one sample institution."""
    with get_db_context() as db:
        # Check if already seeded
        if db.query(Institution).first():
            print("Database already seeded. Skipping...")
            return

        institution = Institution(name="Escuela Primaria Benito Juárez", code="EPBJ")
        db.add(institution)
        db.flush()

        master = Profile(role=Role.MASTER.value, email="master@example.com", full_name="Coordinación General")
        admin = Profile(
            role=Role.ADMIN.value,
            email="direccion@epbj.example.com",
            full_name="Laura Méndez",
            institution_id=institution.id,
        )
        maestros = [
            Profile(role=Role.MAESTRO.value, email="rosa@epbj.example.com",
                    full_name="Rosa Hernández", institution_id=institution.id),
            Profile(role=Role.MAESTRO.value, email="jorge@epbj.example.com",
                    full_name="Jorge Ramírez", institution_id=institution.id),
        ]
        tutor = Profile(
            role=Role.TUTOR.value,
            email="familia.lopez@example.com",
            full_name="Carmen López",
            institution_id=institution.id,
            child_name="Diego López",
            child_grade=2,
        )
        db.add_all([master, admin, tutor] + maestros)
        db.flush()

        classrooms = [
            Classroom(institution_id=institution.id, name="1A", grade_id=1, created_by=admin.id),
            Classroom(institution_id=institution.id, name="2A", grade_id=2, created_by=admin.id),
            Classroom(institution_id=institution.id, name="3A", grade_id=3, created_by=admin.id),
        ]
        db.add_all(classrooms)
        db.flush()

        # Rosa teaches 1A and 2A, Jorge teaches 3A
        db.add_all([
            ClassroomTeacher(classroom_id=classrooms[0].id, teacher_profile_id=maestros[0].id, created_by=admin.id),
            ClassroomTeacher(classroom_id=classrooms[1].id, teacher_profile_id=maestros[0].id, created_by=admin.id),
            ClassroomTeacher(classroom_id=classrooms[2].id, teacher_profile_id=maestros[1].id, created_by=admin.id),
        ])

        names = [
            ("LOPD150312HDFPRGA1", "Diego", "López"),
            ("GARA150721MDFRNNA2", "Ana", "García"),
            ("MART140205HDFRTMA3", "Tomás", "Martínez"),
            ("SANV140918MDFNLLA4", "Valeria", "Sánchez"),
            ("TORM130610HDFRRTA5", "Mateo", "Torres"),
        ]
        students = [
            Student(institution_id=institution.id, curp=curp, first_name=first, last_name=last, created_by=admin.id)
            for curp, first, last in names
        ]
        db.add_all(students)
        db.flush()

        # First two students in 2A, next two in 1A, the last one in 3A
        placement = [1, 1, 0, 0, 2]
        enrollments = [
            StudentEnrollment(
                student_id=student.id,
                classroom_id=classrooms[index].id,
                institution_id=institution.id,
                grade_id=classrooms[index].grade_id,
                created_by=admin.id,
            )
            for student, index in zip(students, placement)
        ]
        db.add_all(enrollments)
        db.add(StudentTutor(student_id=students[0].id, tutor_profile_id=tutor.id, assigned_by=maestros[0].id))

        text = ReadingText(
            institution_id=institution.id,
            grade_id=2,
            title="El zorro y las uvas",
            topic="Fábulas",
            content=(
                "Un zorro hambriento vio unas uvas colgando de una parra. Saltó una y otra vez "
                "sin alcanzarlas. Al final se alejó diciendo que seguramente estaban verdes."
            ),
            difficulty="facil",
            created_by=maestros[0].id,
        )
        db.add(text)
        db.flush()

        quiz = Quiz(institution_id=institution.id, text_id=text.id, grade_id=2, created_by=maestros[0].id)
        db.add(quiz)
        db.flush()

        questions = [
            ("¿Qué quería el zorro?", ["Uvas", "Agua", "Queso", "Dormir"], 0),
            ("¿Por qué no las comió?", ["No le gustaban", "No las alcanzó", "Llovía", "Se durmió"], 1),
            ("¿Qué dijo al irse?", ["Que eran dulces", "Que volvería", "Que estaban verdes", "Nada"], 2),
        ]
        for order, (prompt, options, answer) in enumerate(questions, start=1):
            question = QuizQuestion(quiz_id=quiz.id, prompt=prompt, order_index=order, created_by=maestros[0].id)
            db.add(question)
            db.flush()
            db.add_all([
                QuizOption(
                    question_id=question.id,
                    option_text=option,
                    order_index=index + 1,
                    is_correct=index == answer,
                )
                for index, option in enumerate(options)
            ])
        quiz.question_count = len(questions)

        db.add_all([
            VocabularyPair(text_id=text.id, word="parra", definition="Planta que da uvas", order_index=1),
            VocabularyPair(text_id=text.id, word="hambriento", definition="Que tiene mucha hambre", order_index=2),
            SequenceItem(text_id=text.id, text="El zorro ve las uvas", correct_order=1),
            SequenceItem(text_id=text.id, text="Salta para alcanzarlas", correct_order=2),
            SequenceItem(text_id=text.id, text="Se va diciendo que están verdes", correct_order=3),
        ])
        db.commit()

        print("Database seeded successfully!")
        print("Created:")
        print(f"  - 1 institution ({institution.code})")
        print(f"  - {len(maestros)} maestros, 1 admin, 1 master, 1 tutor")
        print(f"  - {len(classrooms)} classrooms")
        print(f"  - {len(students)} students")
        print(f"  - 1 template with {len(questions)} questions")

        # Print some IDs for reference
        print("\nReference IDs:")
        print(f"  Master: {master.id}")
        print(f"  Admin: {admin.id}")
        print(f"  Maestros: {[(m.id, m.full_name) for m in maestros]}")
        print(f"  Tutor: {tutor.id}")
        print(f"  Template: {text.id} (quiz {quiz.id})")


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Seeding database...")
    seed_database()
