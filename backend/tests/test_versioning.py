import pytest
from sqlalchemy import select

from app.core.exceptions import ResourceNotFoundError, SchedulerError
from app.models.audit_log import AuditLog
from app.models.timetable_change import TimetableChange
from app.models.timetable_entry import Weekday
from app.schemas.weekly import AssignedOverride, CancelledOverride
from app.services.baseline_generator import generate_baseline
from app.services.merge_engine import effective_schedule, update_weekly_slot
from app.services.versioning import promote_week_to_global, reset_week_from_global
from app.services.weekly_layers import get_weekly_layer, load_baseline
from conftest import ADMIN_ID, SCHOOL_ID


@pytest.fixture()
def baseline(db_session, school, make_assignment):
    make_assignment(class_id=school["class_a"], subject_id=school["math"], teacher_id=school["alice"], frequency=3)
    generate_baseline(db_session, class_id=school["class_a"], school_id=SCHOOL_ID, actor_id=ADMIN_ID)
    return school


def _teachers(schedule):
    return [(item.day.value, item.period, item.teacher_id) for item in schedule.entries]


def test_reset_discards_week_changes_and_is_idempotent(db_session, baseline, week_start):
    update_weekly_slot(
        db_session,
        class_id=baseline["class_a"],
        week_start=week_start,
        day=Weekday.tuesday,
        period=1,
        override=CancelledOverride(),
        reason="Trip",
        actor_id=ADMIN_ID,
    )

    first = reset_week_from_global(db_session, class_id=baseline["class_a"], week_start=week_start, actor_id=ADMIN_ID)
    first_entries = list(first.entries)
    second = reset_week_from_global(db_session, class_id=baseline["class_a"], week_start=week_start, actor_id=ADMIN_ID)

    assert first.modification_count == 0
    assert second.entries == first_entries
    assert all(slot["override"]["kind"] == "inherited" for slot in second.entries)
    schedule = effective_schedule(db_session, class_id=baseline["class_a"], week_start=week_start)
    assert len(schedule.entries) == 3
    change = db_session.scalar(select(TimetableChange))
    assert change.is_active is False


def test_promote_then_reset_round_trips(db_session, baseline, week_start):
    update_weekly_slot(
        db_session,
        class_id=baseline["class_a"],
        week_start=week_start,
        day=Weekday.monday,
        period=1,
        override=AssignedOverride(teacher_id=baseline["bob"], subject_id=baseline["math"]),
        reason="New timetable",
        actor_id=ADMIN_ID,
    )
    promoted_view = _teachers(effective_schedule(db_session, class_id=baseline["class_a"], week_start=week_start))

    result = promote_week_to_global(db_session, class_id=baseline["class_a"], week_start=week_start, actor_id=ADMIN_ID)

    assert result.entries_promoted == 3
    assert [(entry.day.value, entry.period, entry.teacher_id) for entry in load_baseline(db_session, baseline["class_a"])] == [
        ("monday", 1, baseline["bob"]),
        ("tuesday", 1, baseline["alice"]),
        ("wednesday", 1, baseline["alice"]),
    ]
    assert get_weekly_layer(db_session, baseline["class_a"], week_start).is_active is False

    layer = reset_week_from_global(db_session, class_id=baseline["class_a"], week_start=week_start, actor_id=ADMIN_ID)

    assert layer.is_active is True
    assert _teachers(effective_schedule(db_session, class_id=baseline["class_a"], week_start=week_start)) == promoted_view
    actions = db_session.scalars(select(AuditLog.action).order_by(AuditLog.created_at)).all()
    assert "weekly.promote" in actions
    assert "weekly.reset" in actions


def test_promote_requires_an_active_layer(db_session, baseline, week_start):
    with pytest.raises(ResourceNotFoundError):
        promote_week_to_global(db_session, class_id=baseline["class_a"], week_start=week_start, actor_id=ADMIN_ID)


def test_promote_refuses_an_empty_week(db_session, baseline, week_start):
    for day in (Weekday.monday, Weekday.tuesday, Weekday.wednesday):
        update_weekly_slot(
            db_session,
            class_id=baseline["class_a"],
            week_start=week_start,
            day=day,
            period=1,
            override=CancelledOverride(),
            reason="Holiday",
            actor_id=ADMIN_ID,
        )

    with pytest.raises(SchedulerError, match="no entries"):
        promote_week_to_global(db_session, class_id=baseline["class_a"], week_start=week_start, actor_id=ADMIN_ID)

    assert len(load_baseline(db_session, baseline["class_a"])) == 3
