from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
import logging
import math

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.exceptions import ResourceNotFoundError, SchedulerError
from app.db.transaction import atomic
from app.models.class_subject_assignment import ClassSubjectAssignment
from app.models.school import SchoolClass
from app.models.teacher import Teacher
from app.models.timetable_entry import TimetableEntry, Weekday
from app.models.timetable_structure import TimetableStructure
from app.schemas.baseline import BaselineClearResult, BaselineGenerationResult
from app.schemas.conflict import ScheduleConflict, TimetableValidationReport
from app.services.audit import log_activity
from app.services.week_guard import week_guard
from app.services.weekly_layers import (
    active_structure,
    current_and_future_layer_weeks,
    delete_current_and_future_layers,
)
from app.services.weeks import SCHOOL_WEEK, slot_sort_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    assignment_id: str
    teacher_id: str
    subject_id: str
    day: Weekday
    period: int
    start_time: str
    end_time: str


def daily_periods_for(weekly_frequency: int) -> int:
    if weekly_frequency <= 5:
        return 1
    return math.ceil(weekly_frequency / 5)


def teaching_days(structure: TimetableStructure) -> list[Weekday]:
    configured = {str(item).strip().lower() for item in structure.working_days or []}
    return [day for day in SCHOOL_WEEK if day.value in configured]


def teaching_periods(structure: TimetableStructure) -> list[dict]:
    slots = [
        slot
        for slot in structure.time_slots or []
        if not slot.get("is_break") and 1 <= int(slot.get("period", 0)) <= structure.periods_per_day
    ]
    return sorted(slots, key=lambda slot: int(slot["period"]))


def plan_placements(
    assignments: list[ClassSubjectAssignment],
    structure: TimetableStructure,
) -> tuple[list[Placement], int]:
    """Greedy day-by-day spread. Returns placements and the number of periods left unplaced.

    Teacher clashes across classes are not checked here; ``validate_timetable`` reports them.
    """
    days = teaching_days(structure)
    periods = teaching_periods(structure)
    used: dict[Weekday, set[int]] = defaultdict(set)
    placements: list[Placement] = []
    unplaced = 0

    for assignment in assignments:
        remaining = assignment.weekly_frequency
        per_day = daily_periods_for(assignment.weekly_frequency)
        for day in days:
            if remaining <= 0:
                break
            placed_today = 0
            for slot in periods:
                if placed_today >= per_day or remaining <= 0:
                    break
                period = int(slot["period"])
                if period in used[day]:
                    continue
                used[day].add(period)
                placements.append(
                    Placement(
                        assignment_id=assignment.id,
                        teacher_id=assignment.assigned_teacher_id,
                        subject_id=assignment.subject_id,
                        day=day,
                        period=period,
                        start_time=slot["start_time"],
                        end_time=slot["end_time"],
                    )
                )
                placed_today += 1
                remaining -= 1
        if remaining > 0:
            logger.warning(
                "BASELINE PLACEMENT SHORT | assignment_id=%s | unplaced=%s",
                assignment.id,
                remaining,
            )
            unplaced += remaining
    return placements, unplaced


def get_class_in_school(db: Session, class_id: str, school_id: str | None = None) -> SchoolClass:
    school_class = db.get(SchoolClass, class_id)
    if school_class is None or (school_id is not None and school_class.school_id != school_id):
        raise ResourceNotFoundError("Class", class_id)
    return school_class


def supersede_baseline(db: Session, class_id: str) -> int:
    result = db.execute(
        update(TimetableEntry)
        .where(TimetableEntry.class_id == class_id, TimetableEntry.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


@contextmanager
def hold_upcoming_layers(db: Session, class_id: str, today: date | None = None) -> Iterator[list[date]]:
    """Hold the week guard of every current and future layer of the class.

    The weeks are listed again under the guards; a layer materialized in between
    widens the set and the guards are retaken.
    """
    weeks = set(current_and_future_layer_weeks(db, class_id, today))
    while True:
        with week_guard(*[(class_id, week) for week in weeks]):
            listed = set(current_and_future_layer_weeks(db, class_id, today))
            if listed <= weeks:
                yield sorted(weeks)
                return
        weeks |= listed


def generate_baseline(
    db: Session,
    *,
    class_id: str,
    school_id: str,
    actor_id: str | None,
    today: date | None = None,
) -> BaselineGenerationResult:
    school_class = get_class_in_school(db, class_id, school_id)
    structure = active_structure(db, school_class.school_id)
    if structure is None:
        raise SchedulerError("No timetable structure configured for this school")
    if not teaching_days(structure) or not teaching_periods(structure):
        raise SchedulerError("Timetable structure has no teaching days or periods")

    assignments = db.scalars(
        select(ClassSubjectAssignment)
        .where(
            ClassSubjectAssignment.class_id == class_id,
            ClassSubjectAssignment.assigned_teacher_id.is_not(None),
        )
        .order_by(ClassSubjectAssignment.created_at, ClassSubjectAssignment.id)
    ).all()
    if not assignments:
        raise SchedulerError("Class has no subject assignments with a teacher")

    logger.info(
        "BASELINE GENERATION START | class_id=%s | assignments=%s",
        class_id,
        len(assignments),
    )
    placements, unplaced = plan_placements(list(assignments), structure)

    with hold_upcoming_layers(db, class_id, today), atomic(db):
        superseded = supersede_baseline(db, class_id)
        weeks_cleared = delete_current_and_future_layers(db, class_id, today)
        for placement in placements:
            db.add(
                TimetableEntry(
                    school_id=school_class.school_id,
                    class_id=class_id,
                    teacher_id=placement.teacher_id,
                    subject_id=placement.subject_id,
                    day=placement.day,
                    period=placement.period,
                    start_time=placement.start_time,
                    end_time=placement.end_time,
                )
            )
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_class.school_id,
            action="baseline.generate",
            entity_type="class",
            entity_id=class_id,
            description=f"Generated {len(placements)} baseline periods for {school_class.name}",
            details={
                "entries_created": len(placements),
                "entries_superseded": superseded,
                "unplaced_periods": unplaced,
                "weeks_cleared": weeks_cleared,
            },
        )

    logger.info(
        "BASELINE GENERATION COMPLETE | class_id=%s | entries=%s | unplaced=%s | weeks_cleared=%s",
        class_id,
        len(placements),
        unplaced,
        weeks_cleared,
    )
    message = f"Generated {len(placements)} periods"
    if unplaced:
        message += f"; {unplaced} period(s) did not fit the week"
    return BaselineGenerationResult(
        success=True,
        message=message,
        class_id=class_id,
        entries_created=len(placements),
        unplaced_periods=unplaced,
        weeks_cleared=weeks_cleared,
    )


def clear_baseline_and_future_weeks(
    db: Session,
    *,
    class_id: str,
    school_id: str,
    actor_id: str | None,
    today: date | None = None,
) -> BaselineClearResult:
    school_class = get_class_in_school(db, class_id, school_id)
    with hold_upcoming_layers(db, class_id, today), atomic(db):
        deactivated = supersede_baseline(db, class_id)
        weeks_cleared = delete_current_and_future_layers(db, class_id, today)
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_class.school_id,
            action="baseline.clear",
            entity_type="class",
            entity_id=class_id,
            description=f"Cleared baseline and upcoming weeks for {school_class.name}",
            details={"entries_deactivated": deactivated, "weeks_cleared": weeks_cleared},
        )
    logger.info(
        "BASELINE CLEARED | class_id=%s | entries=%s | weeks_cleared=%s",
        class_id,
        deactivated,
        weeks_cleared,
    )
    return BaselineClearResult(
        success=True,
        message="Baseline cleared; past weeks preserved",
        entries_deactivated=deactivated,
        weeks_cleared=weeks_cleared,
    )


def validate_timetable(db: Session, school_id: str) -> TimetableValidationReport:
    entries = db.scalars(
        select(TimetableEntry).where(
            TimetableEntry.school_id == school_id,
            TimetableEntry.is_active.is_(True),
        )
    ).all()
    conflicts: list[ScheduleConflict] = []

    by_teacher_slot: dict[tuple[str, Weekday, int], list[str]] = defaultdict(list)
    per_teacher_day: dict[tuple[str, Weekday], int] = defaultdict(int)
    scheduled_classes: set[str] = set()
    for entry in entries:
        by_teacher_slot[(entry.teacher_id, entry.day, entry.period)].append(entry.class_id)
        per_teacher_day[(entry.teacher_id, entry.day)] += 1
        scheduled_classes.add(entry.class_id)

    for (teacher_id, day, period), class_ids in sorted(
        by_teacher_slot.items(), key=lambda item: (item[0][0], *slot_sort_key(item[0][1], item[0][2]))
    ):
        if len(class_ids) < 2:
            continue
        ordered = sorted(class_ids)
        for competing in ordered[1:]:
            conflicts.append(
                ScheduleConflict(
                    conflict_type="teacher_double_booked",
                    message=f"Teacher {teacher_id} is booked in {len(ordered)} classes on {day.value} period {period}",
                    day=day,
                    period=period,
                    teacher_id=teacher_id,
                    class_id=ordered[0],
                    competing_class_id=competing,
                )
            )

    required = db.execute(
        select(ClassSubjectAssignment.class_id, ClassSubjectAssignment.weekly_frequency)
        .join(SchoolClass, SchoolClass.id == ClassSubjectAssignment.class_id)
        .where(SchoolClass.school_id == school_id)
    ).all()
    demand: dict[str, int] = defaultdict(int)
    for class_id, frequency in required:
        demand[class_id] += frequency
    for class_id in sorted(demand):
        if demand[class_id] > 0 and class_id not in scheduled_classes:
            conflicts.append(
                ScheduleConflict(
                    conflict_type="class_unscheduled",
                    message=f"Class {class_id} requires {demand[class_id]} periods but has none scheduled",
                    class_id=class_id,
                )
            )

    teachers = {
        teacher.id: teacher
        for teacher in db.scalars(select(Teacher).where(Teacher.school_id == school_id)).all()
    }
    for (teacher_id, day), count in sorted(
        per_teacher_day.items(), key=lambda item: (item[0][0], slot_sort_key(item[0][1], 0))
    ):
        teacher = teachers.get(teacher_id)
        if teacher is None or count <= teacher.max_daily_periods:
            continue
        conflicts.append(
            ScheduleConflict(
                conflict_type="teacher_daily_overload",
                message=(
                    f"Teacher {teacher.name} has {count} periods on {day.value}, "
                    f"above the limit of {teacher.max_daily_periods}"
                ),
                day=day,
                teacher_id=teacher_id,
            )
        )

    return TimetableValidationReport(is_valid=not conflicts, conflicts=conflicts)
