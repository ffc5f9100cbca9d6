"""Seed a demo school with classes, subjects, teachers and a weekly structure.

Run:
  PYTHONPATH=backend python scripts/seed_demo_school.py
"""

from __future__ import annotations

import os

from sqlalchemy import func, select

from app.core.security import create_access_token
from app.db.bootstrap import ensure_runtime_schema
from app.db.session import SessionLocal
from app.models.class_subject_assignment import ClassSubjectAssignment
from app.models.school import SchoolClass, Subject
from app.models.teacher import Teacher
from app.models.timetable_structure import TimetableStructure
from app.services.baseline_generator import generate_baseline

SCHOOL_ID = os.getenv("SEED_SCHOOL_ID", "demo-school").strip() or "demo-school"
ADMIN_ID = os.getenv("SEED_ADMIN_ID", "demo-admin").strip() or "demo-admin"
GENERATE_BASELINES = os.getenv("SEED_GENERATE_BASELINES", "true").strip().lower() in {"1", "true", "yes", "on"}

WORKING_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]
TIME_SLOTS = [
    {"period": 1, "start_time": "08:00", "end_time": "08:45", "is_break": False},
    {"period": 2, "start_time": "08:45", "end_time": "09:30", "is_break": False},
    {"period": 3, "start_time": "09:30", "end_time": "10:15", "is_break": False},
    {"period": 4, "start_time": "10:15", "end_time": "10:35", "is_break": True},
    {"period": 5, "start_time": "10:35", "end_time": "11:20", "is_break": False},
    {"period": 6, "start_time": "11:20", "end_time": "12:05", "is_break": False},
    {"period": 7, "start_time": "12:05", "end_time": "12:50", "is_break": False},
]

SUBJECTS = [
    ("MATH", "Mathematics"),
    ("SCI", "Science"),
    ("ENG", "English"),
    ("HIST", "History"),
    ("ART", "Art"),
]

CLASSES = [(9, "A"), (9, "B"), (10, "A"), (10, "B")]

# name, email, subject codes
TEACHERS = [
    ("Anita Rao", "anita.rao@school.example", ["MATH"]),
    ("Bilal Khan", "bilal.khan@school.example", ["MATH", "SCI"]),
    ("Chen Wei", "chen.wei@school.example", ["SCI"]),
    ("Divya Nair", "divya.nair@school.example", ["ENG", "HIST"]),
    ("Emma Lopez", "emma.lopez@school.example", ["ENG"]),
    ("Farid Haddad", "farid.haddad@school.example", ["HIST", "ART"]),
    ("Grace Obi", "grace.obi@school.example", ["ART", "ENG"]),
    ("Hiro Tanaka", "hiro.tanaka@school.example", ["MATH", "SCI"]),
]

# subject code -> weekly periods
WEEKLY_PLAN = {"MATH": 6, "SCI": 5, "ENG": 5, "HIST": 3, "ART": 2}

# (grade, section, subject code) -> teacher name
TEACHING_LOAD = {
    (9, "A", "MATH"): "Anita Rao",
    (9, "B", "MATH"): "Bilal Khan",
    (10, "A", "MATH"): "Hiro Tanaka",
    (10, "B", "MATH"): "Anita Rao",
    (9, "A", "SCI"): "Chen Wei",
    (9, "B", "SCI"): "Hiro Tanaka",
    (10, "A", "SCI"): "Bilal Khan",
    (10, "B", "SCI"): "Chen Wei",
    (9, "A", "ENG"): "Emma Lopez",
    (9, "B", "ENG"): "Divya Nair",
    (10, "A", "ENG"): "Grace Obi",
    (10, "B", "ENG"): "Emma Lopez",
    (9, "A", "HIST"): "Farid Haddad",
    (9, "B", "HIST"): "Divya Nair",
    (10, "A", "HIST"): "Divya Nair",
    (10, "B", "HIST"): "Farid Haddad",
    (9, "A", "ART"): "Grace Obi",
    (9, "B", "ART"): "Farid Haddad",
    (10, "A", "ART"): "Farid Haddad",
    (10, "B", "ART"): "Grace Obi",
}


def upsert_structure(session) -> TimetableStructure:
    structure = session.execute(
        select(TimetableStructure).where(
            TimetableStructure.school_id == SCHOOL_ID,
            TimetableStructure.is_active.is_(True),
        )
    ).scalar_one_or_none()
    if structure is None:
        structure = TimetableStructure(school_id=SCHOOL_ID, is_active=True, created_by=ADMIN_ID)
        session.add(structure)
    structure.working_days = list(WORKING_DAYS)
    structure.periods_per_day = len(TIME_SLOTS)
    structure.time_slots = [dict(slot) for slot in TIME_SLOTS]
    return structure


def upsert_subjects(session) -> dict[str, Subject]:
    by_code: dict[str, Subject] = {}
    for code, name in SUBJECTS:
        subject = session.execute(
            select(Subject).where(Subject.school_id == SCHOOL_ID, Subject.code == code)
        ).scalar_one_or_none()
        if subject is None:
            subject = Subject(school_id=SCHOOL_ID, code=code, name=name)
            session.add(subject)
        subject.name = name
        by_code[code] = subject
    session.flush()
    return by_code


def upsert_classes(session) -> dict[tuple[int, str], SchoolClass]:
    by_key: dict[tuple[int, str], SchoolClass] = {}
    for grade, section in CLASSES:
        name = f"{grade}{section}"
        school_class = session.execute(
            select(SchoolClass).where(SchoolClass.school_id == SCHOOL_ID, SchoolClass.name == name)
        ).scalar_one_or_none()
        if school_class is None:
            school_class = SchoolClass(school_id=SCHOOL_ID, name=name, grade=grade, section=section)
            session.add(school_class)
        by_key[(grade, section)] = school_class
    session.flush()
    return by_key


def upsert_teachers(session, subjects: dict[str, Subject]) -> dict[str, Teacher]:
    by_name: dict[str, Teacher] = {}
    for name, email, codes in TEACHERS:
        teacher = session.execute(
            select(Teacher).where(Teacher.school_id == SCHOOL_ID, Teacher.email == email)
        ).scalar_one_or_none()
        if teacher is None:
            teacher = Teacher(school_id=SCHOOL_ID, email=email, name=name)
            session.add(teacher)
        teacher.name = name
        teacher.subject_ids = [subjects[code].id for code in codes]
        teacher.is_active = True
        by_name[name] = teacher
    session.flush()
    return by_name


def upsert_assignments(
    session,
    classes: dict[tuple[int, str], SchoolClass],
    subjects: dict[str, Subject],
    teachers: dict[str, Teacher],
) -> int:
    written = 0
    for (grade, section), school_class in classes.items():
        for code, frequency in WEEKLY_PLAN.items():
            subject = subjects[code]
            teacher_name = TEACHING_LOAD.get((grade, section, code))
            assignment = session.execute(
                select(ClassSubjectAssignment).where(
                    ClassSubjectAssignment.class_id == school_class.id,
                    ClassSubjectAssignment.subject_id == subject.id,
                )
            ).scalar_one_or_none()
            if assignment is None:
                assignment = ClassSubjectAssignment(class_id=school_class.id, subject_id=subject.id)
                session.add(assignment)
            assignment.weekly_frequency = frequency
            assignment.assigned_teacher_id = teachers[teacher_name].id if teacher_name else None
            written += 1
    return written


def main() -> None:
    ensure_runtime_schema()

    with SessionLocal() as session:
        upsert_structure(session)
        subjects = upsert_subjects(session)
        classes = upsert_classes(session)
        teachers = upsert_teachers(session, subjects)
        assignment_count = upsert_assignments(session, classes, subjects, teachers)
        session.commit()

        generated: dict[str, int] = {}
        if GENERATE_BASELINES:
            for school_class in sorted(classes.values(), key=lambda item: item.name):
                result = generate_baseline(session, class_id=school_class.id, school_id=SCHOOL_ID, actor_id=ADMIN_ID)
                generated[school_class.name] = result.entries_created

        teacher_count = session.execute(
            select(func.count(Teacher.id)).where(Teacher.school_id == SCHOOL_ID)
        ).scalar_one()

    token = create_access_token(ADMIN_ID, role="admin", school_id=SCHOOL_ID, expires_minutes=24 * 60)

    print("Demo school seeded successfully.")
    print("")
    print(f"School: {SCHOOL_ID}")
    print(f"Classes: {len(classes)}")
    print(f"Subjects: {len(subjects)}")
    print(f"Teachers: {teacher_count}")
    print(f"Subject assignments: {assignment_count}")
    for name, count in generated.items():
        print(f"  Baseline {name}: {count} periods")
    print("")
    print("Admin bearer token (24h):")
    print(f"  {token}")


if __name__ == "__main__":
    main()
