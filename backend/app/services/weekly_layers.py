from __future__ import annotations

from datetime import date
import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.core.exceptions import SchedulerError
from app.models.school import SchoolClass
from app.models.timetable_entry import TimetableEntry
from app.models.timetable_structure import TimetableStructure
from app.models.weekly_timetable import WeeklyTimetable
from app.schemas.weekly import InheritedOverride, SlotOverride, WeeklySlot
from app.services.weeks import current_week_start, slot_sort_key, week_end_for, week_start_for

logger = logging.getLogger(__name__)


def load_baseline(db: Session, class_id: str) -> list[TimetableEntry]:
    rows = db.scalars(
        select(TimetableEntry).where(
            TimetableEntry.class_id == class_id,
            TimetableEntry.is_active.is_(True),
        )
    ).all()
    return sorted(rows, key=lambda row: slot_sort_key(row.day, row.period))


def snapshot_slots(entries: list[TimetableEntry]) -> list[WeeklySlot]:
    return [
        WeeklySlot(
            day=entry.day,
            period=entry.period,
            start_time=entry.start_time,
            end_time=entry.end_time,
            room=entry.room,
            teacher_id=entry.teacher_id,
            subject_id=entry.subject_id,
        )
        for entry in entries
    ]


def read_slots(layer: WeeklyTimetable) -> list[WeeklySlot]:
    return [WeeklySlot.model_validate(item) for item in layer.entries or []]


def write_slots(layer: WeeklyTimetable, slots: list[WeeklySlot]) -> None:
    # JSON columns only detect reassignment
    ordered = sorted(slots, key=lambda slot: slot_sort_key(slot.day, slot.period))
    layer.entries = [slot.model_dump(mode="json") for slot in ordered]


def get_weekly_layer(db: Session, class_id: str, week_start: date) -> WeeklyTimetable | None:
    return db.scalar(
        select(WeeklyTimetable).where(
            WeeklyTimetable.class_id == class_id,
            WeeklyTimetable.week_start == week_start_for(week_start),
        )
    )


def get_or_create_weekly_layer(
    db: Session,
    school_class: SchoolClass,
    week_start: date,
    *,
    actor_id: str | None = None,
) -> WeeklyTimetable:
    """Return the active layer for the week, materializing it from the baseline if needed.

    Callers must hold ``week_guard((class_id, week_start))`` and commit before releasing it.
    """
    week_start = week_start_for(week_start)
    layer = get_weekly_layer(db, school_class.id, week_start)
    if layer is not None and layer.is_active:
        return layer

    slots = snapshot_slots(load_baseline(db, school_class.id))
    if layer is None:
        layer = WeeklyTimetable(
            school_id=school_class.school_id,
            class_id=school_class.id,
            week_start=week_start,
            week_end=week_end_for(week_start),
            modified_by=actor_id,
            modification_count=0,
            is_active=True,
        )
        db.add(layer)
        logger.info("WEEKLY LAYER MATERIALIZED | class_id=%s | week=%s", school_class.id, week_start)
    else:
        layer.is_active = True
        layer.modification_count = 0
        layer.modified_by = actor_id
        logger.info("WEEKLY LAYER REACTIVATED | class_id=%s | week=%s", school_class.id, week_start)
    write_slots(layer, slots)
    db.flush()
    return layer


def apply_slot_override(
    layer: WeeklyTimetable,
    *,
    day,
    period: int,
    override: SlotOverride,
    reason: str | None,
    actor_id: str | None,
    structure: TimetableStructure | None = None,
) -> WeeklySlot | None:
    slots = read_slots(layer)
    updated: WeeklySlot | None = None
    for index, slot in enumerate(slots):
        if slot.day == day and slot.period == period:
            updated = slot.model_copy(
                update={
                    "override": override,
                    "modification_reason": reason if override.kind != "inherited" else None,
                }
            )
            slots[index] = updated
            break
    else:
        if isinstance(override, InheritedOverride):
            return None
        time_slot = structure.slot_for(period) if structure is not None else None
        if time_slot is None or time_slot.get("is_break"):
            raise SchedulerError(
                f"Period {period} is not a teaching period in the timetable structure",
                details={"day": str(day), "period": period},
            )
        updated = WeeklySlot(
            day=day,
            period=period,
            start_time=time_slot["start_time"],
            end_time=time_slot["end_time"],
            override=override,
            modification_reason=reason,
        )
        slots.append(updated)

    write_slots(layer, slots)
    layer.modified_by = actor_id
    layer.modification_count = (layer.modification_count or 0) + 1
    return updated


def current_and_future_layer_weeks(db: Session, class_id: str, today: date | None = None) -> list[date]:
    return list(
        db.scalars(
            select(WeeklyTimetable.week_start).where(
                WeeklyTimetable.class_id == class_id,
                WeeklyTimetable.week_start >= current_week_start(today),
            )
        ).all()
    )


def delete_current_and_future_layers(db: Session, class_id: str, today: date | None = None) -> int:
    """Drop weekly layers from the current week on; earlier weeks stay as history."""
    result = db.execute(
        delete(WeeklyTimetable).where(
            WeeklyTimetable.class_id == class_id,
            WeeklyTimetable.week_start >= current_week_start(today),
        )
    )
    return result.rowcount or 0


def active_structure(db: Session, school_id: str) -> TimetableStructure | None:
    return db.scalar(
        select(TimetableStructure)
        .where(TimetableStructure.school_id == school_id, TimetableStructure.is_active.is_(True))
        .order_by(TimetableStructure.created_at.desc())
    )
