from __future__ import annotations

from datetime import date, datetime, timezone
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, ResourceNotFoundError, SchedulerError, StaleWriteError
from app.db.transaction import atomic
from app.models.teacher import Teacher
from app.models.timetable_change import ChangeType, TimetableChange
from app.models.timetable_entry import TimetableEntry, Weekday
from app.models.weekly_timetable import WeeklyTimetable
from app.schemas.conflict import ScheduleConflict
from app.schemas.weekly import (
    AssignedOverride,
    CancelledOverride,
    EffectiveEntry,
    EffectiveScheduleOut,
    SlotOverride,
    WeeklySlot,
)
from app.services.audit import log_activity
from app.services.availability import teacher_commitments
from app.services.baseline_generator import get_class_in_school
from app.services.week_guard import week_guard
from app.services.weekly_layers import (
    active_structure,
    apply_slot_override,
    get_or_create_weekly_layer,
    get_weekly_layer,
    load_baseline,
    read_slots,
)
from app.services.weeks import date_for, is_past_week, slot_sort_key, week_end_for, week_start_for, weekday_for

logger = logging.getLogger(__name__)


def _index_baseline(baseline: list[TimetableEntry]) -> dict[tuple[Weekday, int], EffectiveEntry]:
    return {
        (Weekday(entry.day), entry.period): EffectiveEntry(
            day=entry.day,
            period=entry.period,
            start_time=entry.start_time,
            end_time=entry.end_time,
            teacher_id=entry.teacher_id,
            subject_id=entry.subject_id,
            room=entry.room,
            timetable_entry_id=entry.id,
        )
        for entry in baseline
    }


def _index_snapshot(slots: list[WeeklySlot]) -> dict[tuple[Weekday, int], EffectiveEntry]:
    indexed: dict[tuple[Weekday, int], EffectiveEntry] = {}
    for slot in slots:
        if slot.teacher_id is None or slot.subject_id is None:
            continue
        indexed[(Weekday(slot.day), slot.period)] = EffectiveEntry(
            day=slot.day,
            period=slot.period,
            start_time=slot.start_time,
            end_time=slot.end_time,
            teacher_id=slot.teacher_id,
            subject_id=slot.subject_id,
            room=slot.room,
        )
    return indexed


def _apply_overrides(
    merged: dict[tuple[Weekday, int], EffectiveEntry],
    slots: list[WeeklySlot] | None,
) -> list[EffectiveEntry]:
    for slot in slots or []:
        override = slot.override
        if override.kind == "inherited":
            continue
        key = (Weekday(slot.day), slot.period)
        if override.kind == "cancelled":
            merged.pop(key, None)
            continue
        base = merged.get(key)
        merged[key] = EffectiveEntry(
            day=slot.day,
            period=slot.period,
            start_time=slot.start_time,
            end_time=slot.end_time,
            teacher_id=override.teacher_id,
            subject_id=override.subject_id,
            room=slot.room if slot.room is not None else (base.room if base else None),
            timetable_entry_id=base.timetable_entry_id if base else None,
            is_modified=True,
            modification_reason=slot.modification_reason,
        )

    return [merged[key] for key in sorted(merged, key=lambda item: slot_sort_key(*item))]


def merge_layers(
    baseline: list[TimetableEntry],
    slots: list[WeeklySlot] | None,
) -> list[EffectiveEntry]:
    return _apply_overrides(_index_baseline(baseline), slots)


def merge_snapshot(slots: list[WeeklySlot]) -> list[EffectiveEntry]:
    """Merged view of a layer on its own, using the baseline copy taken when it was materialized."""
    return _apply_overrides(_index_snapshot(slots), slots)


def _elapsed_week_entries(db: Session, class_id: str, layer: WeeklyTimetable | None) -> list[EffectiveEntry]:
    # an ended week keeps what its layer recorded; later baselines never leak into it
    if layer is not None:
        return merge_snapshot(read_slots(layer))
    return merge_layers(load_baseline(db, class_id), None)


def effective_schedule(
    db: Session,
    *,
    class_id: str,
    week_start: date,
    school_id: str | None = None,
    actor_id: str | None = None,
    today: date | None = None,
) -> EffectiveScheduleOut:
    school_class = get_class_in_school(db, class_id, school_id)
    week_start = week_start_for(week_start)
    if is_past_week(week_start, today):
        layer = get_weekly_layer(db, class_id, week_start)
        return EffectiveScheduleOut(
            class_id=class_id,
            week_start=week_start,
            week_end=week_end_for(week_start),
            layer_version=layer.version if layer is not None else None,
            entries=_elapsed_week_entries(db, class_id, layer),
        )
    with week_guard((class_id, week_start)), atomic(db):
        layer = get_or_create_weekly_layer(db, school_class, week_start, actor_id=actor_id)
        entries = merge_layers(load_baseline(db, class_id), read_slots(layer))
    return EffectiveScheduleOut(
        class_id=class_id,
        week_start=week_start,
        week_end=week_end_for(week_start),
        layer_version=layer.version,
        entries=entries,
    )


def peek_effective_schedule(
    db: Session,
    class_id: str,
    week_start: date,
    today: date | None = None,
) -> list[EffectiveEntry]:
    """Merged view without materializing a layer."""
    layer = get_weekly_layer(db, class_id, week_start)
    if is_past_week(week_start_for(week_start), today):
        return _elapsed_week_entries(db, class_id, layer)
    slots = read_slots(layer) if layer is not None and layer.is_active else None
    return merge_layers(load_baseline(db, class_id), slots)


def approved_changes_for(db: Session, class_id: str, on_date: date) -> list[TimetableChange]:
    return list(
        db.scalars(
            select(TimetableChange)
            .where(
                TimetableChange.class_id == class_id,
                TimetableChange.change_date == on_date,
                TimetableChange.is_active.is_(True),
                TimetableChange.approved_at.is_not(None),
            )
            .order_by(TimetableChange.approved_at, TimetableChange.id)
        ).all()
    )


def apply_daily_changes(entries: list[EffectiveEntry], changes: list[TimetableChange]) -> list[EffectiveEntry]:
    by_slot = {(Weekday(entry.day), entry.period): entry for entry in entries}
    for change in changes:
        key = (Weekday(change.day), change.period)
        if change.change_type == ChangeType.cancellation:
            by_slot.pop(key, None)
            continue
        current = by_slot.get(key)
        if current is None or not change.new_teacher_id:
            continue
        by_slot[key] = current.model_copy(
            update={
                "teacher_id": change.new_teacher_id,
                "is_modified": True,
                "modification_reason": current.modification_reason or change.reason,
                "change_id": change.id,
            }
        )
    return [by_slot[key] for key in sorted(by_slot, key=lambda item: slot_sort_key(*item))]


def effective_schedule_for_date(
    db: Session,
    *,
    class_id: str,
    on_date: date,
    school_id: str | None = None,
    actor_id: str | None = None,
    today: date | None = None,
) -> EffectiveScheduleOut:
    weekly = effective_schedule(
        db,
        class_id=class_id,
        week_start=week_start_for(on_date),
        school_id=school_id,
        actor_id=actor_id,
        today=today,
    )
    day = weekday_for(on_date)
    todays = [entry for entry in weekly.entries if entry.day == day]
    entries = apply_daily_changes(todays, approved_changes_for(db, class_id, on_date))
    return weekly.model_copy(update={"on_date": on_date, "entries": entries})


def check_teacher_free(
    db: Session,
    *,
    teacher_id: str,
    class_id: str,
    day: Weekday,
    period: int,
    week_start: date,
    school_id: str,
) -> None:
    commitments = teacher_commitments(
        db,
        teacher_id,
        day,
        week_start,
        school_id=school_id,
        exclude_class_id=class_id,
    )
    competing = commitments.get(period, [])
    if not competing:
        return
    conflicts = [
        ScheduleConflict(
            conflict_type="teacher_double_booked",
            message=f"Teacher is already teaching class {other} on {day.value} period {period}",
            day=day,
            period=period,
            teacher_id=teacher_id,
            class_id=class_id,
            competing_class_id=other,
        ).model_dump(mode="json")
        for other in competing
    ]
    raise ConflictError("Teacher is already booked for this period", conflicts=conflicts)


def update_weekly_slot(
    db: Session,
    *,
    class_id: str,
    week_start: date,
    day: Weekday,
    period: int,
    override: SlotOverride,
    reason: str | None,
    actor_id: str | None,
    school_id: str | None = None,
    expected_version: int | None = None,
    today: date | None = None,
) -> WeeklyTimetable:
    school_class = get_class_in_school(db, class_id, school_id)
    week_start = week_start_for(week_start)
    day = Weekday(day)
    if is_past_week(week_start, today):
        raise SchedulerError("Weeks that have already ended are read-only")

    if isinstance(override, AssignedOverride):
        teacher = db.get(Teacher, override.teacher_id)
        if teacher is None or teacher.school_id != school_class.school_id:
            raise ResourceNotFoundError("Teacher", override.teacher_id)
        if not teacher.is_active:
            raise SchedulerError("Teacher is not active")
        if not teacher.can_teach(override.subject_id):
            raise SchedulerError("Teacher is not qualified for this subject")

    structure = active_structure(db, school_class.school_id)
    with week_guard((class_id, week_start)), atomic(db):
        layer = get_or_create_weekly_layer(db, school_class, week_start, actor_id=actor_id)
        if expected_version is not None and layer.version != expected_version:
            raise StaleWriteError(details={"expected_version": expected_version, "current_version": layer.version})
        if isinstance(override, AssignedOverride):
            check_teacher_free(
                db,
                teacher_id=override.teacher_id,
                class_id=class_id,
                day=day,
                period=period,
                week_start=week_start,
                school_id=school_class.school_id,
            )

        apply_slot_override(
            layer,
            day=day,
            period=period,
            override=override,
            reason=reason,
            actor_id=actor_id,
            structure=structure,
        )
        if isinstance(override, CancelledOverride):
            baseline_entry = next(
                (entry for entry in load_baseline(db, class_id) if entry.day == day and entry.period == period),
                None,
            )
            if baseline_entry is not None:
                now = datetime.now(timezone.utc)
                db.add(
                    TimetableChange(
                        school_id=school_class.school_id,
                        class_id=class_id,
                        timetable_entry_id=baseline_entry.id,
                        change_type=ChangeType.cancellation,
                        change_date=date_for(week_start, day),
                        day=day,
                        period=period,
                        original_teacher_id=baseline_entry.teacher_id,
                        reason=reason,
                        change_source="manual",
                        approved_by=actor_id,
                        approved_at=now,
                        created_by=actor_id,
                    )
                )
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_class.school_id,
            action="weekly_slot.update",
            entity_type="weekly_timetable",
            entity_id=layer.id,
            description=f"{override.kind} {day.value} period {period} for week of {week_start.isoformat()}",
            details={
                "class_id": class_id,
                "week_start": week_start.isoformat(),
                "day": day.value,
                "period": period,
                "override": override.model_dump(mode="json"),
                "reason": reason,
            },
        )
    db.refresh(layer)
    logger.info(
        "WEEKLY SLOT UPDATED | class_id=%s | week=%s | %s/%s | kind=%s | version=%s",
        class_id,
        week_start,
        day.value,
        period,
        override.kind,
        layer.version,
    )
    return layer
