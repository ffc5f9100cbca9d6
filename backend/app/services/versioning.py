from __future__ import annotations

from datetime import date
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError, SchedulerError
from app.db.transaction import atomic
from app.models.timetable_change import TimetableChange
from app.models.timetable_entry import TimetableEntry
from app.models.weekly_timetable import WeeklyTimetable
from app.schemas.baseline import PromotionResult
from app.services.audit import log_activity
from app.services.baseline_generator import get_class_in_school, supersede_baseline
from app.services.merge_engine import merge_layers
from app.services.week_guard import week_guard
from app.services.weekly_layers import (
    get_or_create_weekly_layer,
    get_weekly_layer,
    load_baseline,
    read_slots,
    snapshot_slots,
    write_slots,
)
from app.services.weeks import is_past_week, week_end_for, week_start_for

logger = logging.getLogger(__name__)


def promote_week_to_global(
    db: Session,
    *,
    class_id: str,
    week_start: date,
    actor_id: str | None,
    school_id: str | None = None,
    today: date | None = None,
) -> PromotionResult:
    school_class = get_class_in_school(db, class_id, school_id)
    week_start = week_start_for(week_start)
    if is_past_week(week_start, today):
        raise SchedulerError("Weeks that have already ended are read-only")

    with week_guard((class_id, week_start)), atomic(db):
        layer = get_weekly_layer(db, class_id, week_start)
        if layer is None or not layer.is_active:
            raise ResourceNotFoundError("WeeklyTimetable", f"{class_id}/{week_start.isoformat()}")
        merged = merge_layers(load_baseline(db, class_id), read_slots(layer))
        valid = [entry for entry in merged if entry.teacher_id and entry.subject_id]
        if not valid:
            raise SchedulerError("Weekly timetable has no entries to promote")

        superseded = supersede_baseline(db, class_id)
        for entry in valid:
            db.add(
                TimetableEntry(
                    school_id=school_class.school_id,
                    class_id=class_id,
                    teacher_id=entry.teacher_id,
                    subject_id=entry.subject_id,
                    day=entry.day,
                    period=entry.period,
                    start_time=entry.start_time,
                    end_time=entry.end_time,
                    room=entry.room,
                )
            )
        layer.is_active = False
        layer.modified_by = actor_id
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_class.school_id,
            action="weekly.promote",
            entity_type="weekly_timetable",
            entity_id=layer.id,
            description=f"Promoted week of {week_start.isoformat()} to the baseline of {school_class.name}",
            details={
                "class_id": class_id,
                "week_start": week_start.isoformat(),
                "entries_promoted": len(valid),
                "entries_superseded": superseded,
            },
        )

    logger.info(
        "WEEK PROMOTED | class_id=%s | week=%s | entries=%s",
        class_id,
        week_start,
        len(valid),
    )
    return PromotionResult(
        success=True,
        message=f"Promoted {len(valid)} entries to the baseline",
        entries_promoted=len(valid),
    )


def reset_week_from_global(
    db: Session,
    *,
    class_id: str,
    week_start: date,
    actor_id: str | None,
    school_id: str | None = None,
    today: date | None = None,
) -> WeeklyTimetable:
    school_class = get_class_in_school(db, class_id, school_id)
    week_start = week_start_for(week_start)
    if is_past_week(week_start, today):
        raise SchedulerError("Weeks that have already ended are read-only")

    with week_guard((class_id, week_start)), atomic(db):
        layer = get_or_create_weekly_layer(db, school_class, week_start, actor_id=actor_id)
        write_slots(layer, snapshot_slots(load_baseline(db, class_id)))
        layer.modification_count = 0
        layer.modified_by = actor_id
        cleared = db.execute(
            update(TimetableChange)
            .where(
                TimetableChange.class_id == class_id,
                TimetableChange.change_date >= week_start,
                TimetableChange.change_date <= week_end_for(week_start),
                TimetableChange.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        ).rowcount or 0
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_class.school_id,
            action="weekly.reset",
            entity_type="weekly_timetable",
            entity_id=layer.id,
            description=f"Reset week of {week_start.isoformat()} for {school_class.name} from the baseline",
            details={"class_id": class_id, "week_start": week_start.isoformat(), "changes_cleared": cleared},
        )
    db.refresh(layer)
    logger.info("WEEK RESET | class_id=%s | week=%s | changes_cleared=%s", class_id, week_start, cleared)
    return layer
