from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import AppError, ConflictError, ResourceNotFoundError, SchedulerError
from app.db.transaction import atomic
from app.models.class_subject_assignment import ClassSubjectAssignment
from app.models.school import SchoolClass, Subject
from app.models.teacher import Teacher
from app.models.timetable_entry import TimetableEntry
from app.models.timetable_structure import TimetableStructure
from app.schemas.assignment import (
    BulkAssignItemError,
    BulkAssignTeacherResult,
    ClassSubjectAssignmentCreate,
    ClassSubjectAssignmentOut,
    ClassSubjectAssignmentUpdate,
)
from app.schemas.structure import TimetableStructureUpsert
from app.services.audit import log_activity
from app.services.baseline_generator import get_class_in_school

logger = logging.getLogger(__name__)


def upsert_structure(
    db: Session,
    *,
    school_id: str,
    payload: TimetableStructureUpsert,
    actor_id: str | None,
) -> TimetableStructure:
    with atomic(db):
        db.execute(
            update(TimetableStructure)
            .where(TimetableStructure.school_id == school_id, TimetableStructure.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        )
        structure = TimetableStructure(
            school_id=school_id,
            working_days=[day.value for day in payload.working_days],
            periods_per_day=payload.periods_per_day,
            time_slots=[slot.model_dump() for slot in sorted(payload.time_slots, key=lambda slot: slot.period)],
            is_active=True,
            created_by=actor_id,
        )
        db.add(structure)
        db.flush()
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_id,
            action="structure.upsert",
            entity_type="timetable_structure",
            entity_id=structure.id,
            details={"working_days": structure.working_days, "periods_per_day": structure.periods_per_day},
        )
    db.refresh(structure)
    return structure


def _check_teacher_for_subject(db: Session, teacher_id: str, subject_id: str, school_id: str) -> Teacher:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None or teacher.school_id != school_id:
        raise ResourceNotFoundError("Teacher", teacher_id)
    if not teacher.is_active:
        raise SchedulerError(f"Teacher {teacher.name} is not active")
    if not teacher.can_teach(subject_id):
        raise SchedulerError(f"Teacher {teacher.name} is not qualified for this subject")
    return teacher


def _get_assignment(db: Session, assignment_id: str, school_id: str) -> tuple[ClassSubjectAssignment, SchoolClass]:
    assignment = db.get(ClassSubjectAssignment, assignment_id)
    if assignment is None:
        raise ResourceNotFoundError("ClassSubjectAssignment", assignment_id)
    school_class = db.get(SchoolClass, assignment.class_id)
    if school_class is None or school_class.school_id != school_id:
        raise ResourceNotFoundError("ClassSubjectAssignment", assignment_id)
    return assignment, school_class


def list_assignments(db: Session, *, class_id: str, school_id: str) -> list[ClassSubjectAssignment]:
    get_class_in_school(db, class_id, school_id)
    return list(
        db.scalars(
            select(ClassSubjectAssignment)
            .where(ClassSubjectAssignment.class_id == class_id)
            .order_by(ClassSubjectAssignment.created_at, ClassSubjectAssignment.id)
        ).all()
    )


def create_assignment(
    db: Session,
    *,
    class_id: str,
    school_id: str,
    payload: ClassSubjectAssignmentCreate,
    actor_id: str | None,
) -> ClassSubjectAssignment:
    school_class = get_class_in_school(db, class_id, school_id)
    subject = db.get(Subject, payload.subject_id)
    if subject is None or subject.school_id != school_id:
        raise ResourceNotFoundError("Subject", payload.subject_id)
    if payload.assigned_teacher_id:
        _check_teacher_for_subject(db, payload.assigned_teacher_id, subject.id, school_id)

    try:
        with atomic(db):
            assignment = ClassSubjectAssignment(
                class_id=school_class.id,
                subject_id=subject.id,
                weekly_frequency=payload.weekly_frequency,
                assigned_teacher_id=payload.assigned_teacher_id,
            )
            db.add(assignment)
            db.flush()
            log_activity(
                db,
                user_id=actor_id,
                school_id=school_id,
                action="assignment.create",
                entity_type="class_subject_assignment",
                entity_id=assignment.id,
                details=payload.model_dump(),
            )
    except IntegrityError as exc:
        raise ConflictError("Subject is already assigned to this class") from exc
    db.refresh(assignment)
    return assignment


def update_assignment(
    db: Session,
    *,
    assignment_id: str,
    school_id: str,
    payload: ClassSubjectAssignmentUpdate,
    actor_id: str | None,
) -> ClassSubjectAssignment:
    assignment, _ = _get_assignment(db, assignment_id, school_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("assigned_teacher_id"):
        _check_teacher_for_subject(db, changes["assigned_teacher_id"], assignment.subject_id, school_id)
    with atomic(db):
        for key, value in changes.items():
            if key == "weekly_frequency" and value is None:
                continue
            setattr(assignment, key, value)
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_id,
            action="assignment.update",
            entity_type="class_subject_assignment",
            entity_id=assignment.id,
            details=changes,
        )
    db.refresh(assignment)
    return assignment


def delete_assignment(db: Session, *, assignment_id: str, school_id: str, actor_id: str | None) -> int:
    """Remove the assignment and soft-delete the baseline periods derived from it."""
    assignment, school_class = _get_assignment(db, assignment_id, school_id)
    with atomic(db):
        removed = db.execute(
            update(TimetableEntry)
            .where(
                TimetableEntry.class_id == school_class.id,
                TimetableEntry.subject_id == assignment.subject_id,
                TimetableEntry.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session="fetch")
        ).rowcount or 0
        db.delete(assignment)
        log_activity(
            db,
            user_id=actor_id,
            school_id=school_id,
            action="assignment.delete",
            entity_type="class_subject_assignment",
            entity_id=assignment_id,
            details={"class_id": school_class.id, "subject_id": assignment.subject_id, "entries_removed": removed},
        )
    logger.info("ASSIGNMENT DELETED | assignment_id=%s | baseline_entries_removed=%s", assignment_id, removed)
    return removed


def bulk_assign_teacher(
    db: Session,
    *,
    teacher_id: str,
    assignment_ids: list[str],
    school_id: str,
    actor_id: str | None,
) -> BulkAssignTeacherResult:
    updated: list[ClassSubjectAssignmentOut] = []
    errors: list[BulkAssignItemError] = []
    for assignment_id in assignment_ids:
        try:
            assignment = update_assignment(
                db,
                assignment_id=assignment_id,
                school_id=school_id,
                payload=ClassSubjectAssignmentUpdate(assigned_teacher_id=teacher_id),
                actor_id=actor_id,
            )
        except AppError as exc:
            errors.append(BulkAssignItemError(assignment_id=assignment_id, message=exc.message))
            continue
        updated.append(ClassSubjectAssignmentOut.model_validate(assignment))

    logger.info(
        "BULK ASSIGN COMPLETE | teacher_id=%s | updated=%s | failed=%s",
        teacher_id,
        len(updated),
        len(errors),
    )
    return BulkAssignTeacherResult(success=not errors, updated=updated, errors=errors)
