from datetime import timedelta
import threading

import pytest
from sqlalchemy import select

from app.core.exceptions import ResourceNotFoundError, SchedulerError
from app.models.audit_log import AuditLog
from app.models.teacher import Teacher
from app.models.timetable_entry import TimetableEntry
from app.models.timetable_structure import TimetableStructure
from app.models.weekly_timetable import WeeklyTimetable
from app.services import baseline_generator
from app.services.baseline_generator import (
    clear_baseline_and_future_weeks,
    daily_periods_for,
    generate_baseline,
    hold_upcoming_layers,
    validate_timetable,
)
from app.services.merge_engine import effective_schedule
from app.services.week_guard import week_guard
from app.services.weekly_layers import load_baseline
from app.services.weeks import current_week_start
from conftest import ADMIN_ID, SCHOOL_ID


def _slots(entries):
    return [(entry.day.value, entry.period) for entry in entries]


def test_daily_periods_rule():
    assert [daily_periods_for(n) for n in (1, 5, 6, 10, 11)] == [1, 1, 2, 2, 3]


def test_frequency_six_places_two_per_day_on_first_three_days(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=6)

    result = generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    assert result.success is True
    assert result.entries_created == 6
    entries = load_baseline(db_session, school["class_a"])
    assert _slots(entries) == [
        ("monday", 1),
        ("monday", 2),
        ("tuesday", 1),
        ("tuesday", 2),
        ("wednesday", 1),
        ("wednesday", 2),
    ]
    assert entries[0].start_time == "08:00"
    assert entries[1].end_time == "09:30"


def test_assignments_fill_next_unused_periods_in_creation_order(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=3)
    make_assignment(class_id=school["class_a"], subject_id=school["science"], teacher_id=school["dave"], frequency=4)

    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    entries = load_baseline(db_session, school["class_a"])
    by_subject = {}
    for entry in entries:
        by_subject.setdefault(entry.subject_id, []).append((entry.day.value, entry.period))
    assert by_subject[school["math"]] == [("monday", 1), ("tuesday", 1), ("wednesday", 1)]
    assert by_subject[school["science"]] == [("monday", 2), ("tuesday", 2), ("wednesday", 2), ("thursday", 1)]


def test_break_periods_are_skipped(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=25)

    result = generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    assert result.entries_created == 25
    assert result.unplaced_periods == 0
    assert all(entry.period != 4 for entry in load_baseline(db_session, school["class_a"]))


def test_overflow_is_reported_as_unplaced(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=30)

    result = generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    assert result.entries_created == 25
    assert result.unplaced_periods == 5
    assert "did not fit" in result.message


def test_requires_structure(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=2)
    structure = db_session.get(TimetableStructure, school["structure_id"])
    structure.is_active = False
    db_session.commit()

    with pytest.raises(SchedulerError, match="No timetable structure"):
        generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)


def test_requires_assignment_with_teacher(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=None, frequency=2)

    with pytest.raises(SchedulerError, match="no subject assignments"):
        generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)


def test_unknown_or_foreign_class_is_not_found(db_session, school):
    with pytest.raises(ResourceNotFoundError):
        generate_baseline(db_session, class_id="missing", school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    with pytest.raises(ResourceNotFoundError):
        generate_baseline(db_session, class_id=school["class_a"], school_id="other-school", actor_id=ADMIN_ID)


def test_regeneration_supersedes_baseline_and_keeps_past_weeks(db_session, school, make_assignment, week_start):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=2)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    first_ids = {entry.id for entry in load_baseline(db_session, school["class_a"])}

    effective_schedule(db_session, class_id=school["class_a"], week_start=week_start)
    past_week = current_week_start() - timedelta(weeks=2)
    db_session.add(
        WeeklyTimetable(
            school_id=SCHOOL_ID,
            class_id=school["class_a"],
            week_start=past_week,
            week_end=past_week + timedelta(days=6),
            entries=[],
        )
    )
    db_session.commit()

    result = generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    assert result.weeks_cleared == 1
    db_session.expire_all()
    remaining_weeks = db_session.scalars(
        select(WeeklyTimetable.week_start).where(WeeklyTimetable.class_id == school["class_a"])
    ).all()
    assert remaining_weeks == [past_week]
    new_ids = {entry.id for entry in load_baseline(db_session, school["class_a"])}
    assert new_ids.isdisjoint(first_ids)
    old_rows = db_session.scalars(select(TimetableEntry).where(TimetableEntry.id.in_(first_ids))).all()
    assert all(row.is_active is False for row in old_rows)
    actions = db_session.scalars(select(AuditLog.action)).all()
    assert actions.count("baseline.generate") == 2


def test_clear_baseline_and_future_weeks(db_session, school, make_assignment, week_start):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=2)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    effective_schedule(db_session, class_id=school["class_a"], week_start=week_start)

    result = clear_baseline_and_future_weeks(
        db_session,
        class_id=school["class_a"],
        school_id=SCHOOL_ID,
        actor_id=ADMIN_ID,
    )

    assert result.entries_deactivated == 2
    assert result.weeks_cleared == 1
    assert load_baseline(db_session, school["class_a"]) == []


def test_validate_reports_deferred_teacher_clash(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=1)
    make_assignment(class_id=school["class_b"], subject_id=school["math"], teacher_id=school["alice"], frequency=1)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    generate_baseline(db_session, class_id=school["class_b"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    report = validate_timetable(db_session, SCHOOL_ID)

    assert report.is_valid is False
    clash = [item for item in report.conflicts if item.conflict_type == "teacher_double_booked"]
    assert len(clash) == 1
    assert clash[0].teacher_id == school["alice"]
    assert clash[0].day.value == "monday"
    assert clash[0].period == 1
    assert {clash[0].class_id, clash[0].competing_class_id} == {school["class_a"], school["class_b"]}


def test_validate_reports_unscheduled_class_and_daily_overload(db_session, school, make_assignment):
    alice = db_session.get(Teacher, school["alice"])
    alice.max_daily_periods = 1
    db_session.commit()
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=10)
    make_assignment(class_id=school["class_b"], subject_id=school["science"], teacher_id=school["dave"], frequency=2)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    report = validate_timetable(db_session, SCHOOL_ID)

    kinds = [item.conflict_type for item in report.conflicts]
    assert "class_unscheduled" in kinds
    assert kinds.count("teacher_daily_overload") == 5
    unscheduled = next(item for item in report.conflicts if item.conflict_type == "class_unscheduled")
    assert unscheduled.class_id == school["class_b"]


def test_validate_clean_timetable(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=3)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    report = validate_timetable(db_session, SCHOOL_ID)

    assert report.is_valid is True
    assert report.conflicts == []


def test_upcoming_layer_guards_cover_a_layer_created_while_listing(db_session, monkeypatch, week_start):
    listings = iter([[], [week_start], [week_start]])
    monkeypatch.setattr(
        baseline_generator,
        "current_and_future_layer_weeks",
        lambda db, class_id, today=None: next(listings),
    )
    entered = threading.Event()

    def contender():
        with week_guard(("class-1", week_start)):
            entered.set()

    with hold_upcoming_layers(db_session, "class-1") as weeks:
        worker = threading.Thread(target=contender)
        worker.start()
        assert not entered.wait(timeout=0.2)
    worker.join(timeout=5)

    assert weeks == [week_start]
    assert entered.is_set()
