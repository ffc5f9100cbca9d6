from datetime import timedelta

from sqlalchemy.exc import OperationalError

from app.models.teacher import Teacher
from app.models.teacher_attendance import AttendanceStatus, TeacherAttendance
from app.models.timetable_entry import Weekday
from app.schemas.weekly import AssignedOverride, CancelledOverride
from app.services.availability import declares_period, is_available, teacher_commitments
from app.services.baseline_generator import generate_baseline
from app.services.merge_engine import update_weekly_slot
from conftest import ADMIN_ID, SCHOOL_ID


def test_empty_availability_means_unrestricted():
    teacher = Teacher(school_id=SCHOOL_ID, name="Eve", subject_ids=[], availability={})

    assert declares_period(teacher, Weekday.saturday, 6) is True


def test_declared_availability_limits_periods():
    teacher = Teacher(school_id=SCHOOL_ID, name="Eve", subject_ids=[], availability={"monday": [1, 2]})

    assert declares_period(teacher, "monday", 2) is True
    assert declares_period(teacher, "monday", 3) is False
    assert declares_period(teacher, "tuesday", 1) is False


def test_baseline_booking_blocks_other_classes(db_session, school, make_assignment, week_start):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=1)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    assert is_available(db_session, school["alice"], Weekday.monday, 1, week_start) is False
    assert is_available(db_session, school["alice"], Weekday.monday, 2, week_start) is True
    assert (
        is_available(db_session, school["alice"], Weekday.monday, 1, week_start, exclude_class_id=school["class_a"])
        is True
    )


def test_weekly_overrides_adjust_commitments_for_that_week_only(db_session, school, make_assignment, week_start):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=1)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    update_weekly_slot(
        db_session,
        class_id=school["class_a"],
        week_start=week_start,
        day=Weekday.monday,
        period=1,
        override=CancelledOverride(),
        reason="Exam",
        actor_id=ADMIN_ID,
    )
    update_weekly_slot(
        db_session,
        class_id=school["class_b"],
        week_start=week_start,
        day=Weekday.monday,
        period=2,
        override=AssignedOverride(teacher_id=school["alice"], subject_id=school["math"]),
        reason="Cover",
        actor_id=ADMIN_ID,
    )

    commitments = teacher_commitments(db_session, school["alice"], Weekday.monday, week_start)
    assert commitments == {2: [school["class_b"]]}
    next_week = teacher_commitments(db_session, school["alice"], Weekday.monday, week_start + timedelta(weeks=1))
    assert next_week == {1: [school["class_a"]]}


def test_absence_makes_teacher_unavailable(db_session, school, week_start):
    db_session.add(
        TeacherAttendance(
            teacher_id=school["bob"],
            school_id=SCHOOL_ID,
            attendance_date=week_start,
            status=AttendanceStatus.half_day,
        )
    )
    db_session.commit()

    assert is_available(db_session, school["bob"], Weekday.monday, 3, week_start) is False
    assert is_available(db_session, school["bob"], Weekday.tuesday, 3, week_start + timedelta(days=1)) is True


def test_inactive_or_unknown_teacher_is_unavailable(db_session, school, week_start):
    carol = db_session.get(Teacher, school["carol"])
    carol.is_active = False
    db_session.commit()

    assert is_available(db_session, school["carol"], Weekday.monday, 1, week_start) is False
    assert is_available(db_session, "nobody", Weekday.monday, 1, week_start) is False


def test_lookup_failure_reports_unavailable(db_session, school, week_start, monkeypatch, caplog):
    def broken_get(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(db_session, "get", broken_get)

    assert is_available(db_session, school["bob"], Weekday.monday, 1, week_start) is False
    assert "AVAILABILITY LOOKUP FAILED" in caplog.text
