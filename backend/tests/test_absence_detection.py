import pytest
from sqlalchemy import select

import app.services.absence as absence_service
from app.core.exceptions import SchedulerError
from app.models.audit_log import AuditLog
from app.models.substitution import Substitution, SubstitutionStatus
from app.models.teacher_attendance import AttendanceStatus, TeacherAttendance
from app.models.timetable_change import TimetableChange
from app.services.absence import absent_teacher_alerts, mark_teacher_attendance
from app.services.baseline_generator import generate_baseline
from conftest import ADMIN_ID, SCHOOL_ID


@pytest.fixture()
def alice_on_monday(db_session, school, make_assignment):
    """Alice teaches 10A twice on Monday (periods 1 and 2)."""
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=6)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    return school


def _mark(db_session, teacher_id, on_date, status, reason=None):
    return mark_teacher_attendance(
        db_session,
        teacher_id=teacher_id,
        on_date=on_date,
        status=status,
        reason=reason,
        actor_id=ADMIN_ID,
        school_id=SCHOOL_ID,
    )


def test_marking_absent_opens_substitutions_for_the_day(db_session, alice_on_monday, week_start):
    outcome = _mark(db_session, alice_on_monday["alice"], week_start, AttendanceStatus.absent, "Flu")

    assert outcome.detection_error is None
    assert outcome.attendance.status == AttendanceStatus.absent
    created = outcome.substitutions_created
    assert [item.period for item in created] == [1, 2]
    assert all(item.status == SubstitutionStatus.auto_assigned for item in created)
    assert all(item.substitute_teacher_id == alice_on_monday["bob"] for item in created)
    assert all(item.reason == "Flu" for item in created)

    alerts = absent_teacher_alerts(db_session, school_id=SCHOOL_ID, on_date=week_start)
    assert len(alerts) == 1
    assert alerts[0].teacher_name == "Alice"
    assert alerts[0].periods_affected == 2
    assert alerts[0].uncovered_substitution_ids == []


def test_repeated_absence_does_not_duplicate_requests(db_session, alice_on_monday, week_start):
    _mark(db_session, alice_on_monday["alice"], week_start, AttendanceStatus.absent)
    again = _mark(db_session, alice_on_monday["alice"], week_start, AttendanceStatus.on_leave)

    assert again.substitutions_created == []
    assert len(db_session.scalars(select(Substitution)).all()) == 2
    assert len(db_session.scalars(select(TeacherAttendance)).all()) == 1


def test_return_withdraws_automatic_substitutions(db_session, alice_on_monday, week_start):
    _mark(db_session, alice_on_monday["alice"], week_start, AttendanceStatus.absent)

    outcome = _mark(db_session, alice_on_monday["alice"], week_start, AttendanceStatus.present)

    assert outcome.substitutions_reverted == 2
    statuses = db_session.scalars(select(Substitution.status)).all()
    assert statuses == [SubstitutionStatus.rejected, SubstitutionStatus.rejected]
    changes = db_session.scalars(select(TimetableChange)).all()
    assert changes and all(change.is_active is False for change in changes)
    assert absent_teacher_alerts(db_session, school_id=SCHOOL_ID, on_date=week_start) == []


def test_uncovered_periods_are_reported(db_session, alice_on_monday, week_start):
    for teacher_id in (alice_on_monday["bob"], alice_on_monday["carol"]):
        _mark(db_session, teacher_id, week_start, AttendanceStatus.absent)

    _mark(db_session, alice_on_monday["alice"], week_start, AttendanceStatus.absent)

    alerts = {alert.teacher_name: alert for alert in absent_teacher_alerts(db_session, school_id=SCHOOL_ID, on_date=week_start)}
    assert list(alerts) == ["Alice", "Bob", "Carol"]
    assert len(alerts["Alice"].uncovered_substitution_ids) == 2
    assert alerts["Bob"].periods_affected == 0


def test_detection_failure_is_recorded_and_attendance_kept(db_session, alice_on_monday, week_start, monkeypatch):
    def failing_detection(*args, **kwargs):
        raise SchedulerError("timetable unavailable")

    monkeypatch.setattr(absence_service, "handle_teacher_absence", failing_detection)

    outcome = _mark(db_session, alice_on_monday["alice"], week_start, AttendanceStatus.absent)

    assert outcome.detection_error == "timetable unavailable"
    record = db_session.scalar(select(TeacherAttendance))
    assert record.status == AttendanceStatus.absent
    error_log = db_session.scalar(select(AuditLog).where(AuditLog.action == "absence_detection_error"))
    assert error_log.entity_id == alice_on_monday["alice"]
    assert error_log.description == "timetable unavailable"
