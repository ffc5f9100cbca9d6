import os
from datetime import date, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.api.deps import get_db
from app.core.security import create_access_token
from app.db.base import Base
from app.main import app
from app.models.class_subject_assignment import ClassSubjectAssignment
from app.models.school import SchoolClass, Subject
from app.models.teacher import Teacher
from app.models.timetable_structure import TimetableStructure
from app.services.jobs import clear_job_store
from app.services.week_guard import clear_week_guards

SCHOOL_ID = "school-1"
ADMIN_ID = "admin-1"

TIME_SLOTS = [
    {"period": 1, "start_time": "08:00", "end_time": "08:45", "is_break": False},
    {"period": 2, "start_time": "08:45", "end_time": "09:30", "is_break": False},
    {"period": 3, "start_time": "09:30", "end_time": "10:15", "is_break": False},
    {"period": 4, "start_time": "10:15", "end_time": "10:35", "is_break": True},
    {"period": 5, "start_time": "10:35", "end_time": "11:20", "is_break": False},
    {"period": 6, "start_time": "11:20", "end_time": "12:05", "is_break": False},
]


def next_monday(start: date | None = None) -> date:
    """Monday of next week, so tests never touch a week that has already ended."""
    today = start or date.today()
    return today - timedelta(days=today.weekday()) + timedelta(weeks=1)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    clear_week_guards()
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(session_factory):
    clear_job_store()
    clear_week_guards()

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    clear_job_store()


def auth_headers(role: str = "admin", *, user_id: str = ADMIN_ID, school_id: str = SCHOOL_ID) -> dict:
    token = create_access_token(user_id, role=role, school_id=school_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin_headers():
    return auth_headers("admin")


@pytest.fixture()
def headers_for():
    return auth_headers


@pytest.fixture()
def week_start():
    return next_monday()


@pytest.fixture()
def school(session_factory):
    """One school: two classes, three subjects, four teachers and a 5-day structure.

    T1 (Alice) teaches Math in 10A; T2 (Bob) and T3 (Carol) can also teach Math;
    T4 (Dave) teaches Science only.
    """
    db = session_factory()
    try:
        structure = TimetableStructure(
            school_id=SCHOOL_ID,
            working_days=["monday", "tuesday", "wednesday", "thursday", "friday"],
            periods_per_day=6,
            time_slots=TIME_SLOTS,
            is_active=True,
        )
        class_a = SchoolClass(school_id=SCHOOL_ID, name="10A", grade=10, section="A")
        class_b = SchoolClass(school_id=SCHOOL_ID, name="10B", grade=10, section="B")
        math = Subject(school_id=SCHOOL_ID, name="Mathematics", code="MATH")
        science = Subject(school_id=SCHOOL_ID, name="Science", code="SCI")
        english = Subject(school_id=SCHOOL_ID, name="English", code="ENG")
        db.add_all([structure, class_a, class_b, math, science, english])
        db.flush()

        alice = Teacher(school_id=SCHOOL_ID, name="Alice", subject_ids=[math.id, english.id])
        bob = Teacher(school_id=SCHOOL_ID, name="Bob", subject_ids=[math.id])
        carol = Teacher(school_id=SCHOOL_ID, name="Carol", subject_ids=[math.id])
        dave = Teacher(school_id=SCHOOL_ID, name="Dave", subject_ids=[science.id])
        db.add_all([alice, bob, carol, dave])
        db.flush()

        data = {
            "structure_id": structure.id,
            "class_a": class_a.id,
            "class_b": class_b.id,
            "math": math.id,
            "science": science.id,
            "english": english.id,
            "alice": alice.id,
            "bob": bob.id,
            "carol": carol.id,
            "dave": dave.id,
        }
        db.commit()
        return data
    finally:
        db.close()


@pytest.fixture()
def make_assignment(db_session):
    def _make(*, class_id, subject_id, teacher_id, frequency):
        assignment = ClassSubjectAssignment(
            class_id=class_id,
            subject_id=subject_id,
            weekly_frequency=frequency,
            assigned_teacher_id=teacher_id,
        )
        db_session.add(assignment)
        db_session.commit()
        return assignment

    return _make
