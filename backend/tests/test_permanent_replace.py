from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.exceptions import ConflictError, SchedulerError
from app.models.class_subject_assignment import ClassSubjectAssignment
from app.models.teacher import Teacher, TeacherStatus
from app.models.teacher_replacement import TeacherReplacement
from app.models.timetable_entry import TimetableEntry, Weekday
from app.models.weekly_timetable import WeeklyTimetable
from app.schemas.weekly import AssignedOverride, WeeklySlot
from app.services.baseline_generator import generate_baseline
from app.services.merge_engine import effective_schedule, update_weekly_slot
from app.services.substitution_workflow import permanent_replace
from app.services.weekly_layers import get_weekly_layer, read_slots
from app.services.weeks import current_week_start, upcoming_week_starts
from conftest import ADMIN_ID, SCHOOL_ID


def _baseline_teachers(db_session, class_id):
    rows = db_session.scalars(
        select(TimetableEntry).where(TimetableEntry.class_id == class_id, TimetableEntry.is_active.is_(True))
    ).all()
    return {row.teacher_id for row in rows}


def test_clean_replacement_rewrites_baseline_and_upcoming_weeks(db_session, school, make_assignment, week_start):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=3)
    make_assignment(class_id=school["class_a"], subject_id=school["science"], teacher_id=school["dave"], frequency=2)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    past_week = current_week_start() - timedelta(weeks=1)
    past_slots = [
        WeeklySlot(
            day=Weekday.monday,
            period=1,
            start_time="08:00",
            end_time="08:45",
            teacher_id=school["alice"],
            subject_id=school["math"],
        ).model_dump(mode="json")
    ]
    db_session.add(
        WeeklyTimetable(
            school_id=SCHOOL_ID,
            class_id=school["class_a"],
            week_start=past_week,
            week_end=past_week + timedelta(days=6),
            entries=past_slots,
        )
    )
    db_session.commit()

    record = permanent_replace(
        db_session,
        original_teacher_id=school["alice"],
        replacement_teacher_id=school["carol"],
        reason="Resigned",
        actor_id=ADMIN_ID,
    )

    assert record.status == "completed"
    assert len(record.affected_timetable_entries) == 3
    assert len(record.affected_weeks) == 4
    assert _baseline_teachers(db_session, school["class_a"]) == {school["carol"], school["dave"]}
    alice = db_session.get(Teacher, school["alice"])
    assert alice.is_active is False
    assert alice.status == TeacherStatus.left_school
    assignment = db_session.scalar(
        select(ClassSubjectAssignment).where(ClassSubjectAssignment.subject_id == school["math"])
    )
    assert assignment.assigned_teacher_id == school["carol"]

    for week in upcoming_week_starts(3):
        layer = get_weekly_layer(db_session, school["class_a"], week)
        assert layer is not None
        replaced = [slot for slot in read_slots(layer) if slot.is_modified]
        assert len(replaced) == 3
        assert all(slot.override.teacher_id == school["carol"] for slot in replaced)
        assert all(slot.modification_reason == "Permanent replacement: Resigned" for slot in replaced)

    past_layer = get_weekly_layer(db_session, school["class_a"], past_week)
    assert past_layer.entries == past_slots


def test_existing_week_overrides_follow_the_replacement(db_session, school, make_assignment, week_start):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["bob"], frequency=2)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    update_weekly_slot(
        db_session,
        class_id=school["class_a"],
        week_start=week_start,
        day=Weekday.monday,
        period=1,
        override=AssignedOverride(teacher_id=school["alice"], subject_id=school["math"]),
        reason="Cover",
        actor_id=ADMIN_ID,
    )

    permanent_replace(
        db_session,
        original_teacher_id=school["alice"],
        replacement_teacher_id=school["carol"],
        reason="Transfer",
        actor_id=ADMIN_ID,
    )

    weekly = effective_schedule(db_session, class_id=school["class_a"], week_start=week_start)
    assert [(item.day.value, item.teacher_id) for item in weekly.entries] == [
        ("monday", school["carol"]),
        ("tuesday", school["bob"]),
    ]


def test_conflicting_replacement_changes_nothing(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=2)
    make_assignment(class_id=school["class_b"], subject_id=school["math"], teacher_id=school["bob"], frequency=1)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    generate_baseline(db_session, class_id=school["class_b"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)

    with pytest.raises(ConflictError) as exc_info:
        permanent_replace(
            db_session,
            original_teacher_id=school["alice"],
            replacement_teacher_id=school["bob"],
            reason="Resigned",
            actor_id=ADMIN_ID,
        )

    assert exc_info.value.conflicts == [
        {
            "conflict_type": "teacher_double_booked",
            "message": f"Replacement already teaches class {school['class_b']} on monday period 1",
            "day": "monday",
            "period": 1,
            "teacher_id": school["bob"],
            "class_id": school["class_a"],
            "competing_class_id": school["class_b"],
        }
    ]
    db_session.expire_all()
    assert _baseline_teachers(db_session, school["class_a"]) == {school["alice"]}
    assert db_session.get(Teacher, school["alice"]).is_active is True
    assert db_session.scalar(select(func.count(TeacherReplacement.id))) == 0
    assert db_session.scalar(select(func.count(WeeklyTimetable.id))) == 0


def test_replacement_must_be_another_active_teacher(db_session, school):
    with pytest.raises(SchedulerError, match="must differ"):
        permanent_replace(
            db_session,
            original_teacher_id=school["alice"],
            replacement_teacher_id=school["alice"],
            reason="x",
            actor_id=ADMIN_ID,
        )

    bob = db_session.get(Teacher, school["bob"])
    bob.is_active = False
    db_session.commit()
    with pytest.raises(SchedulerError, match="not active"):
        permanent_replace(
            db_session,
            original_teacher_id=school["alice"],
            replacement_teacher_id=school["bob"],
            reason="x",
            actor_id=ADMIN_ID,
        )


def test_replacement_booked_by_a_week_override_changes_nothing(db_session, school, make_assignment, week_start):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=1)
    make_assignment(class_id=school["class_b"], subject_id=school["science"], teacher_id=school["dave"], frequency=1)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    generate_baseline(db_session, class_id=school["class_b"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    update_weekly_slot(
        db_session,
        class_id=school["class_b"],
        week_start=week_start,
        day=Weekday.monday,
        period=1,
        override=AssignedOverride(teacher_id=school["bob"], subject_id=school["math"]),
        reason="Exam revision",
        actor_id=ADMIN_ID,
    )

    with pytest.raises(ConflictError) as exc_info:
        permanent_replace(
            db_session,
            original_teacher_id=school["alice"],
            replacement_teacher_id=school["bob"],
            reason="Resigned",
            actor_id=ADMIN_ID,
        )

    assert exc_info.value.conflicts == [
        {
            "conflict_type": "teacher_double_booked",
            "message": (
                f"Replacement is booked in class {school['class_b']} on monday period 1 "
                f"in the week of {week_start.isoformat()}"
            ),
            "day": "monday",
            "period": 1,
            "teacher_id": school["bob"],
            "class_id": school["class_a"],
            "competing_class_id": school["class_b"],
        }
    ]
    db_session.expire_all()
    assert _baseline_teachers(db_session, school["class_a"]) == {school["alice"]}
    assert db_session.get(Teacher, school["alice"]).is_active is True
    assert db_session.scalar(select(func.count(TeacherReplacement.id))) == 0
    assert get_weekly_layer(db_session, school["class_a"], week_start) is None
    weekly = effective_schedule(db_session, class_id=school["class_b"], week_start=week_start)
    assert [(item.day.value, item.teacher_id) for item in weekly.entries] == [("monday", school["bob"])]
