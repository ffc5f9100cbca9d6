from __future__ import annotations

from datetime import date
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.teacher import Teacher
from app.models.teacher_attendance import AttendanceStatus, TeacherAttendance
from app.models.timetable_entry import TimetableEntry, Weekday
from app.models.weekly_timetable import WeeklyTimetable
from app.services.weekly_layers import read_slots
from app.services.weeks import week_start_for

logger = logging.getLogger(__name__)


def declares_period(teacher: Teacher, day: Weekday | str, period: int) -> bool:
    availability = teacher.availability or {}
    if not availability:
        return True
    periods = availability.get(Weekday(day).value)
    if periods is None:
        return False
    return int(period) in {int(item) for item in periods}


def absence_for(db: Session, teacher_id: str, on_date: date) -> TeacherAttendance | None:
    record = db.scalar(
        select(TeacherAttendance).where(
            TeacherAttendance.teacher_id == teacher_id,
            TeacherAttendance.attendance_date == on_date,
        )
    )
    if record is None or record.status == AttendanceStatus.present:
        return None
    return record


def is_absent(db: Session, teacher_id: str, on_date: date) -> bool:
    return absence_for(db, teacher_id, on_date) is not None


def teacher_commitments(
    db: Session,
    teacher_id: str,
    day: Weekday | str,
    week_start: date,
    *,
    school_id: str | None = None,
    exclude_class_id: str | None = None,
) -> dict[int, list[str]]:
    """Periods on ``day`` of the week where the teacher is booked, mapped to class ids.

    Baseline bookings are adjusted by each class's weekly layer for that week.
    """
    day = Weekday(day)
    busy: set[tuple[str, int]] = set()
    baseline_rows = db.scalars(
        select(TimetableEntry).where(
            TimetableEntry.teacher_id == teacher_id,
            TimetableEntry.day == day,
            TimetableEntry.is_active.is_(True),
        )
    ).all()
    for row in baseline_rows:
        busy.add((row.class_id, row.period))

    layer_query = select(WeeklyTimetable).where(
        WeeklyTimetable.week_start == week_start_for(week_start),
        WeeklyTimetable.is_active.is_(True),
    )
    if school_id is not None:
        layer_query = layer_query.where(WeeklyTimetable.school_id == school_id)
    for layer in db.scalars(layer_query).all():
        for slot in read_slots(layer):
            if slot.day != day or not slot.is_modified:
                continue
            key = (layer.class_id, slot.period)
            override = slot.override
            if override.kind == "assigned" and override.teacher_id == teacher_id:
                busy.add(key)
            else:
                busy.discard(key)

    commitments: dict[int, list[str]] = {}
    for class_id, period in sorted(busy):
        if class_id == exclude_class_id:
            continue
        commitments.setdefault(period, []).append(class_id)
    return commitments


def is_available(
    db: Session,
    teacher_id: str,
    day: Weekday | str,
    period: int,
    on_date: date,
    *,
    exclude_class_id: str | None = None,
) -> bool:
    try:
        teacher = db.get(Teacher, teacher_id)
        if teacher is None or not teacher.is_active:
            return False
        if not declares_period(teacher, day, period):
            return False
        commitments = teacher_commitments(
            db,
            teacher_id,
            day,
            week_start_for(on_date),
            school_id=teacher.school_id,
            exclude_class_id=exclude_class_id,
        )
        if period in commitments:
            return False
        return not is_absent(db, teacher_id, on_date)
    except SQLAlchemyError:
        logger.exception(
            "AVAILABILITY LOOKUP FAILED | teacher_id=%s | day=%s | period=%s | date=%s",
            teacher_id,
            day,
            period,
            on_date,
        )
        return False
