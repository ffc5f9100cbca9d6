from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import AppError, ResourceNotFoundError
from app.db.transaction import atomic
from app.models.school import SchoolClass
from app.models.substitution import OPEN_SUBSTITUTION_STATUSES, Substitution, SubstitutionStatus
from app.models.teacher import Teacher
from app.models.teacher_attendance import AttendanceStatus, TeacherAttendance
from app.schemas.substitution import AbsenceAlert
from app.services.audit import log_activity
from app.services.merge_engine import peek_effective_schedule
from app.services.substitution_workflow import (
    auto_assign_substitute,
    open_substitution_for,
    withdraw_pending_changes,
)
from app.services.weeks import week_start_for, weekday_for

logger = logging.getLogger(__name__)


@dataclass
class AttendanceOutcome:
    attendance: TeacherAttendance
    substitutions_created: list[Substitution] = field(default_factory=list)
    substitutions_reverted: int = 0
    detection_error: str | None = None


def handle_teacher_absence(
    db: Session,
    *,
    teacher_id: str,
    on_date: date,
    reason: str | None,
    actor_id: str | None,
) -> list[Substitution]:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None:
        raise ResourceNotFoundError("Teacher", teacher_id)
    day = weekday_for(on_date)
    week_start = week_start_for(on_date)
    classes = db.scalars(
        select(SchoolClass).where(SchoolClass.school_id == teacher.school_id).order_by(SchoolClass.name)
    ).all()

    created: list[Substitution] = []
    for school_class in classes:
        for entry in peek_effective_schedule(db, school_class.id, week_start):
            if entry.day != day or entry.teacher_id != teacher_id:
                continue
            if entry.timetable_entry_id is None:
                logger.warning(
                    "ABSENCE SLOT WITHOUT BASELINE | class_id=%s | %s/%s",
                    school_class.id,
                    day.value,
                    entry.period,
                )
                continue
            if open_substitution_for(db, entry.timetable_entry_id, on_date) is not None:
                continue
            created.append(
                auto_assign_substitute(
                    db,
                    timetable_entry_id=entry.timetable_entry_id,
                    on_date=on_date,
                    reason=reason or "Teacher absent",
                    actor_id=actor_id,
                    original_teacher_id=teacher_id,
                )
            )

    logger.info(
        "ABSENCE HANDLED | teacher_id=%s | date=%s | substitutions=%s | uncovered=%s",
        teacher_id,
        on_date,
        len(created),
        sum(1 for item in created if item.substitute_teacher_id is None),
    )
    return created


def handle_teacher_return(
    db: Session,
    *,
    teacher_id: str,
    on_date: date,
    actor_id: str | None,
) -> int:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None:
        raise ResourceNotFoundError("Teacher", teacher_id)
    substitutions = db.scalars(
        select(Substitution).where(
            Substitution.original_teacher_id == teacher_id,
            Substitution.substitution_date == on_date,
            Substitution.is_auto_generated.is_(True),
            Substitution.status.in_(OPEN_SUBSTITUTION_STATUSES),
        )
    ).all()
    if not substitutions:
        return 0

    with atomic(db):
        now = datetime.now(timezone.utc)
        for substitution in substitutions:
            substitution.status = SubstitutionStatus.rejected
            substitution.reviewed_by = actor_id
            substitution.reviewed_at = now
            withdraw_pending_changes(db, substitution.id)
        log_activity(
            db,
            user_id=actor_id,
            school_id=teacher.school_id,
            action="teacher.return",
            entity_type="teacher",
            entity_id=teacher_id,
            description=f"{teacher.name} returned; withdrew {len(substitutions)} automatic substitution(s)",
            details={"date": on_date.isoformat(), "substitution_ids": [item.id for item in substitutions]},
        )
    logger.info("TEACHER RETURN | teacher_id=%s | date=%s | reverted=%s", teacher_id, on_date, len(substitutions))
    return len(substitutions)


def mark_teacher_attendance(
    db: Session,
    *,
    teacher_id: str,
    on_date: date,
    status: AttendanceStatus,
    reason: str | None,
    actor_id: str | None,
    school_id: str | None = None,
) -> AttendanceOutcome:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None or (school_id is not None and teacher.school_id != school_id):
        raise ResourceNotFoundError("Teacher", teacher_id)

    record = db.scalar(
        select(TeacherAttendance).where(
            TeacherAttendance.teacher_id == teacher_id,
            TeacherAttendance.attendance_date == on_date,
        )
    )
    previous = record.status if record is not None else None
    with atomic(db):
        if record is None:
            record = TeacherAttendance(
                teacher_id=teacher_id,
                school_id=teacher.school_id,
                attendance_date=on_date,
            )
            db.add(record)
        record.status = status
        record.reason = reason
        record.marked_by = actor_id
        log_activity(
            db,
            user_id=actor_id,
            school_id=teacher.school_id,
            action="teacher.attendance",
            entity_type="teacher",
            entity_id=teacher_id,
            description=f"{teacher.name} marked {status.value} for {on_date.isoformat()}",
            details={"previous": previous.value if previous else None, "status": status.value},
        )

    outcome = AttendanceOutcome(attendance=record)
    became_absent = status != AttendanceStatus.present and previous in (None, AttendanceStatus.present)
    became_present = status == AttendanceStatus.present and previous not in (None, AttendanceStatus.present)
    if not (became_absent or became_present):
        return outcome

    # attendance is already committed; detection failures are reported, not raised
    try:
        if became_absent:
            outcome.substitutions_created = handle_teacher_absence(
                db,
                teacher_id=teacher_id,
                on_date=on_date,
                reason=reason,
                actor_id=actor_id,
            )
        else:
            outcome.substitutions_reverted = handle_teacher_return(
                db,
                teacher_id=teacher_id,
                on_date=on_date,
                actor_id=actor_id,
            )
    except (AppError, SQLAlchemyError) as exc:
        db.rollback()
        logger.exception("ABSENCE DETECTION FAILED | teacher_id=%s | date=%s", teacher_id, on_date)
        outcome.detection_error = getattr(exc, "message", None) or str(exc)
        with atomic(db):
            log_activity(
                db,
                user_id=actor_id,
                school_id=teacher.school_id,
                action="absence_detection_error",
                entity_type="teacher",
                entity_id=teacher_id,
                description=outcome.detection_error,
                details={"date": on_date.isoformat(), "status": status.value},
            )
    return outcome


def absent_teacher_alerts(db: Session, *, school_id: str, on_date: date) -> list[AbsenceAlert]:
    records = db.scalars(
        select(TeacherAttendance).where(
            TeacherAttendance.school_id == school_id,
            TeacherAttendance.attendance_date == on_date,
            TeacherAttendance.status != AttendanceStatus.present,
        )
    ).all()
    day = weekday_for(on_date)
    week_start = week_start_for(on_date)
    classes = db.scalars(select(SchoolClass.id).where(SchoolClass.school_id == school_id)).all()
    periods_by_teacher: dict[str, int] = {}
    for class_id in classes:
        for entry in peek_effective_schedule(db, class_id, week_start):
            if entry.day == day:
                periods_by_teacher[entry.teacher_id] = periods_by_teacher.get(entry.teacher_id, 0) + 1

    alerts: list[AbsenceAlert] = []
    for record in records:
        teacher = db.get(Teacher, record.teacher_id)
        uncovered = db.scalars(
            select(Substitution.id).where(
                Substitution.original_teacher_id == record.teacher_id,
                Substitution.substitution_date == on_date,
                Substitution.status == SubstitutionStatus.pending,
                Substitution.substitute_teacher_id.is_(None),
            )
        ).all()
        alerts.append(
            AbsenceAlert(
                teacher_id=record.teacher_id,
                teacher_name=teacher.name if teacher else record.teacher_id,
                status=record.status,
                reason=record.reason,
                periods_affected=periods_by_teacher.get(record.teacher_id, 0),
                uncovered_substitution_ids=list(uncovered),
            )
        )
    alerts.sort(key=lambda alert: alert.teacher_name.lower())
    return alerts
