from __future__ import annotations

from datetime import date, datetime, timezone
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import ConflictError, ResourceNotFoundError, SchedulerError
from app.db.transaction import atomic
from app.models.class_subject_assignment import ClassSubjectAssignment
from app.models.school import SchoolClass
from app.models.substitution import OPEN_SUBSTITUTION_STATUSES, Substitution, SubstitutionStatus
from app.models.teacher import Teacher, TeacherStatus
from app.models.teacher_replacement import TeacherReplacement
from app.models.timetable_change import ChangeType, TimetableChange
from app.models.timetable_entry import TimetableEntry, Weekday
from app.models.weekly_timetable import WeeklyTimetable
from app.schemas.conflict import ScheduleConflict
from app.schemas.weekly import AssignedOverride
from app.services.audit import log_activity
from app.services.availability import absence_for, is_absent, is_available, teacher_commitments
from app.services.week_guard import week_guard
from app.services.weekly_layers import apply_slot_override, get_or_create_weekly_layer, read_slots, write_slots
from app.services.weeks import is_past_week, slot_sort_key, upcoming_week_starts, week_start_for, weekday_for

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _get_entry(db: Session, timetable_entry_id: str) -> TimetableEntry:
    entry = db.get(TimetableEntry, timetable_entry_id)
    if entry is None:
        raise ResourceNotFoundError("TimetableEntry", timetable_entry_id)
    return entry


def _get_teacher(db: Session, teacher_id: str, school_id: str | None = None) -> Teacher:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None or (school_id is not None and teacher.school_id != school_id):
        raise ResourceNotFoundError("Teacher", teacher_id)
    return teacher


def _get_substitution(db: Session, substitution_id: str, school_id: str | None = None) -> Substitution:
    substitution = db.get(Substitution, substitution_id)
    if substitution is None or (school_id is not None and substitution.school_id != school_id):
        raise ResourceNotFoundError("Substitution", substitution_id)
    return substitution


def _class_teacher_ids(db: Session, class_id: str) -> set[str]:
    assigned = db.scalars(
        select(ClassSubjectAssignment.assigned_teacher_id).where(
            ClassSubjectAssignment.class_id == class_id,
            ClassSubjectAssignment.assigned_teacher_id.is_not(None),
        )
    ).all()
    scheduled = db.scalars(
        select(TimetableEntry.teacher_id).where(
            TimetableEntry.class_id == class_id,
            TimetableEntry.is_active.is_(True),
        )
    ).all()
    return set(assigned) | set(scheduled)


def find_substitutes(
    db: Session,
    *,
    original_teacher_id: str,
    timetable_entry_id: str,
    on_date: date,
    school_id: str | None = None,
) -> list[tuple[Teacher, bool]]:
    """Qualified, free teachers for the entry's slot on ``on_date``.

    Returns ``(teacher, teaches_class)`` pairs, class teachers first, then by name.
    """
    entry = _get_entry(db, timetable_entry_id)
    if school_id is not None and entry.school_id != school_id:
        raise ResourceNotFoundError("TimetableEntry", timetable_entry_id)
    _get_teacher(db, original_teacher_id, entry.school_id)
    if weekday_for(on_date) != entry.day:
        raise SchedulerError(
            f"{on_date.isoformat()} is not a {Weekday(entry.day).value}",
            details={"date": on_date.isoformat(), "day": Weekday(entry.day).value},
        )

    teachers = db.scalars(
        select(Teacher).where(
            Teacher.school_id == entry.school_id,
            Teacher.is_active.is_(True),
            Teacher.id != original_teacher_id,
        )
    ).all()
    class_teachers = _class_teacher_ids(db, entry.class_id)
    candidates: list[tuple[Teacher, bool]] = []
    for teacher in teachers:
        if not teacher.can_teach(entry.subject_id):
            continue
        if is_absent(db, teacher.id, on_date):
            continue
        if not is_available(db, teacher.id, entry.day, entry.period, on_date, exclude_class_id=entry.class_id):
            continue
        candidates.append((teacher, teacher.id in class_teachers))

    candidates.sort(key=lambda item: (0 if item[1] else 1, item[0].name.lower(), item[0].id))
    return candidates


def open_substitution_for(db: Session, timetable_entry_id: str, on_date: date) -> Substitution | None:
    return db.scalar(
        select(Substitution).where(
            Substitution.timetable_entry_id == timetable_entry_id,
            Substitution.substitution_date == on_date,
            Substitution.status.in_(OPEN_SUBSTITUTION_STATUSES),
        )
    )


def auto_assign_substitute(
    db: Session,
    *,
    timetable_entry_id: str,
    on_date: date,
    reason: str | None,
    actor_id: str | None,
    original_teacher_id: str | None = None,
    school_id: str | None = None,
) -> Substitution:
    entry = _get_entry(db, timetable_entry_id)
    if school_id is not None and entry.school_id != school_id:
        raise ResourceNotFoundError("TimetableEntry", timetable_entry_id)
    if not entry.is_active:
        raise SchedulerError("Timetable entry is no longer part of the baseline")
    if open_substitution_for(db, entry.id, on_date) is not None:
        raise ConflictError("An open substitution already exists for this period and date")

    original_id = original_teacher_id or entry.teacher_id
    candidates = find_substitutes(
        db,
        original_teacher_id=original_id,
        timetable_entry_id=entry.id,
        on_date=on_date,
    )
    substitute = candidates[0][0] if candidates else None

    with atomic(db):
        substitution = Substitution(
            school_id=entry.school_id,
            timetable_entry_id=entry.id,
            class_id=entry.class_id,
            day=entry.day,
            period=entry.period,
            original_teacher_id=original_id,
            substitute_teacher_id=substitute.id if substitute else None,
            substitution_date=on_date,
            reason=reason,
            status=SubstitutionStatus.auto_assigned if substitute else SubstitutionStatus.pending,
            is_auto_generated=True,
            created_by=actor_id,
        )
        db.add(substitution)
        db.flush()
        if substitute is not None:
            db.add(
                TimetableChange(
                    school_id=entry.school_id,
                    class_id=entry.class_id,
                    timetable_entry_id=entry.id,
                    substitution_id=substitution.id,
                    change_type=ChangeType.substitution,
                    change_date=on_date,
                    day=entry.day,
                    period=entry.period,
                    original_teacher_id=original_id,
                    new_teacher_id=substitute.id,
                    reason=reason,
                    change_source="auto",
                    created_by=actor_id,
                )
            )
        log_activity(
            db,
            user_id=actor_id,
            school_id=entry.school_id,
            action="substitution.auto_assign",
            entity_type="substitution",
            entity_id=substitution.id,
            description=(
                f"Auto-assigned substitute {substitute.name}"
                if substitute
                else "No substitute available; awaiting manual assignment"
            ),
            details={
                "timetable_entry_id": entry.id,
                "date": on_date.isoformat(),
                "original_teacher_id": original_id,
                "substitute_teacher_id": substitute.id if substitute else None,
                "candidates": len(candidates),
            },
        )

    if substitute is None:
        logger.warning(
            "NO SUBSTITUTE AVAILABLE | entry_id=%s | date=%s | class_id=%s | period=%s",
            entry.id,
            on_date,
            entry.class_id,
            entry.period,
        )
    else:
        logger.info(
            "SUBSTITUTE AUTO-ASSIGNED | entry_id=%s | date=%s | substitute=%s",
            entry.id,
            on_date,
            substitute.id,
        )
    return substitution


def _availability_conflicts(
    db: Session,
    *,
    teacher: Teacher,
    substitution: Substitution,
) -> list[dict]:
    day = Weekday(substitution.day)
    conflicts: list[dict] = []
    if absence_for(db, teacher.id, substitution.substitution_date) is not None:
        conflicts.append(
            ScheduleConflict(
                conflict_type="teacher_absent",
                message=f"{teacher.name} is absent on {substitution.substitution_date.isoformat()}",
                day=day,
                period=substitution.period,
                teacher_id=teacher.id,
                class_id=substitution.class_id,
            ).model_dump(mode="json")
        )
    commitments = teacher_commitments(
        db,
        teacher.id,
        day,
        week_start_for(substitution.substitution_date),
        school_id=teacher.school_id,
        exclude_class_id=substitution.class_id,
    )
    for competing in commitments.get(substitution.period, []):
        conflicts.append(
            ScheduleConflict(
                conflict_type="teacher_double_booked",
                message=f"{teacher.name} is already teaching class {competing} in this period",
                day=day,
                period=substitution.period,
                teacher_id=teacher.id,
                class_id=substitution.class_id,
                competing_class_id=competing,
            ).model_dump(mode="json")
        )
    if not conflicts and not is_available(
        db,
        teacher.id,
        day,
        substitution.period,
        substitution.substitution_date,
        exclude_class_id=substitution.class_id,
    ):
        conflicts.append(
            ScheduleConflict(
                conflict_type="teacher_unavailable",
                message=f"{teacher.name} is not available in this period",
                day=day,
                period=substitution.period,
                teacher_id=teacher.id,
                class_id=substitution.class_id,
            ).model_dump(mode="json")
        )
    return conflicts


def approve_substitution(
    db: Session,
    *,
    substitution_id: str,
    actor_id: str | None,
    substitute_teacher_id: str | None = None,
    school_id: str | None = None,
    today: date | None = None,
) -> Substitution:
    substitution = _get_substitution(db, substitution_id, school_id)
    week_start = week_start_for(substitution.substitution_date)
    key = (substitution.class_id, week_start)

    with week_guard(key):
        db.refresh(substitution)
        if substitution.status not in OPEN_SUBSTITUTION_STATUSES:
            raise ConflictError(f"Substitution is already {substitution.status.value}")
        chosen_id = substitute_teacher_id or substitution.substitute_teacher_id
        if not chosen_id:
            raise SchedulerError("No substitute teacher selected")
        if chosen_id == substitution.original_teacher_id:
            raise SchedulerError("Substitute must differ from the original teacher")
        if is_past_week(week_start, today):
            raise SchedulerError("Weeks that have already ended are read-only")

        entry = _get_entry(db, substitution.timetable_entry_id)
        substitute = _get_teacher(db, chosen_id, substitution.school_id)
        if not substitute.is_active:
            raise SchedulerError("Substitute teacher is not active")
        if not substitute.can_teach(entry.subject_id):
            raise SchedulerError("Substitute teacher is not qualified for this subject")
        conflicts = _availability_conflicts(db, teacher=substitute, substitution=substitution)
        if conflicts:
            logger.warning(
                "SUBSTITUTION APPROVAL BLOCKED | substitution_id=%s | conflicts=%s",
                substitution.id,
                len(conflicts),
            )
            raise ConflictError("Substitute teacher is not free for this period", conflicts=conflicts)

        school_class = db.get(SchoolClass, substitution.class_id)
        if school_class is None:
            raise ResourceNotFoundError("Class", substitution.class_id)

        with atomic(db):
            now = _utc_now()
            layer = get_or_create_weekly_layer(db, school_class, week_start, actor_id=actor_id)
            apply_slot_override(
                layer,
                day=Weekday(substitution.day),
                period=substitution.period,
                override=AssignedOverride(teacher_id=substitute.id, subject_id=entry.subject_id),
                reason=f"Substitution: {substitution.reason}" if substitution.reason else "Substitution",
                actor_id=actor_id,
            )
            substitution.substitute_teacher_id = substitute.id
            substitution.status = SubstitutionStatus.confirmed
            substitution.reviewed_by = actor_id
            substitution.reviewed_at = now

            change = db.scalar(
                select(TimetableChange).where(
                    TimetableChange.substitution_id == substitution.id,
                    TimetableChange.is_active.is_(True),
                )
            )
            if change is None:
                change = TimetableChange(
                    school_id=substitution.school_id,
                    class_id=substitution.class_id,
                    timetable_entry_id=entry.id,
                    substitution_id=substitution.id,
                    change_type=ChangeType.substitution,
                    change_date=substitution.substitution_date,
                    day=substitution.day,
                    period=substitution.period,
                    original_teacher_id=substitution.original_teacher_id,
                    reason=substitution.reason,
                    change_source="manual",
                    created_by=actor_id,
                )
                db.add(change)
            change.new_teacher_id = substitute.id
            change.approved_by = actor_id
            change.approved_at = now

            log_activity(
                db,
                user_id=actor_id,
                school_id=substitution.school_id,
                action="substitution.approve",
                entity_type="substitution",
                entity_id=substitution.id,
                description=f"Approved {substitute.name} as substitute",
                details={
                    "substitute_teacher_id": substitute.id,
                    "date": substitution.substitution_date.isoformat(),
                    "weekly_timetable_id": layer.id,
                },
            )

    logger.info(
        "SUBSTITUTION APPROVED | substitution_id=%s | substitute=%s",
        substitution.id,
        substitution.substitute_teacher_id,
    )
    return substitution


def withdraw_pending_changes(db: Session, substitution_id: str) -> int:
    changes = db.scalars(
        select(TimetableChange).where(
            TimetableChange.substitution_id == substitution_id,
            TimetableChange.is_active.is_(True),
            TimetableChange.approved_at.is_(None),
        )
    ).all()
    for change in changes:
        change.is_active = False
    return len(changes)


def reject_substitution(
    db: Session,
    *,
    substitution_id: str,
    actor_id: str | None,
    reason: str | None = None,
    school_id: str | None = None,
) -> Substitution:
    substitution = _get_substitution(db, substitution_id, school_id)
    if substitution.status not in OPEN_SUBSTITUTION_STATUSES:
        raise ConflictError(f"Substitution is already {substitution.status.value}")

    with atomic(db):
        substitution.status = SubstitutionStatus.rejected
        substitution.reviewed_by = actor_id
        substitution.reviewed_at = _utc_now()
        withdrawn = withdraw_pending_changes(db, substitution.id)
        log_activity(
            db,
            user_id=actor_id,
            school_id=substitution.school_id,
            action="substitution.reject",
            entity_type="substitution",
            entity_id=substitution.id,
            description="Rejected substitution proposal",
            details={"reason": reason, "changes_withdrawn": withdrawn},
        )
    logger.info("SUBSTITUTION REJECTED | substitution_id=%s", substitution.id)
    return substitution


def replacement_conflicts(
    original_entries: list[TimetableEntry],
    replacement_entries: list[TimetableEntry],
    replacement_id: str,
) -> list[dict]:
    occupied = {(Weekday(entry.day), entry.period): entry.class_id for entry in replacement_entries}
    conflicts: list[dict] = []
    for entry in original_entries:
        day = Weekday(entry.day)
        competing = occupied.get((day, entry.period))
        if competing is None:
            continue
        conflicts.append(
            ScheduleConflict(
                conflict_type="teacher_double_booked",
                message=f"Replacement already teaches class {competing} on {day.value} period {entry.period}",
                day=day,
                period=entry.period,
                teacher_id=replacement_id,
                class_id=entry.class_id,
                competing_class_id=competing,
            ).model_dump(mode="json")
        )
    return conflicts


def week_replacement_conflicts(
    db: Session,
    original: Teacher,
    replacement: Teacher,
    weeks: list[date],
    *,
    reported: list[dict] | None = None,
) -> list[dict]:
    """Clashes between the original's week bookings and the replacement's, per week.

    Both sides are resolved through the weekly layers, so overrides already handed to the
    replacement count as bookings. Each clashing slot is reported once, at its first
    week, and clashes already present in ``reported`` are skipped.
    """
    seen = {
        (item["day"], item["period"], item["class_id"], item["competing_class_id"])
        for item in reported or []
    }
    conflicts: list[dict] = []
    for week in weeks:
        for day in Weekday:
            taken_over = teacher_commitments(db, original.id, day, week, school_id=original.school_id)
            if not taken_over:
                continue
            booked = teacher_commitments(db, replacement.id, day, week, school_id=original.school_id)
            for period, class_ids in sorted(taken_over.items()):
                for class_id in class_ids:
                    for competing in booked.get(period, []):
                        key = (day.value, period, class_id, competing)
                        if competing == class_id or key in seen:
                            continue
                        seen.add(key)
                        conflicts.append(
                            ScheduleConflict(
                                conflict_type="teacher_double_booked",
                                message=(
                                    f"Replacement is booked in class {competing} on {day.value} "
                                    f"period {period} in the week of {week.isoformat()}"
                                ),
                                day=day,
                                period=period,
                                teacher_id=replacement.id,
                                class_id=class_id,
                                competing_class_id=competing,
                            ).model_dump(mode="json")
                        )
    return conflicts


def _active_entries_for(db: Session, teacher_id: str) -> list[TimetableEntry]:
    rows = db.scalars(
        select(TimetableEntry).where(
            TimetableEntry.teacher_id == teacher_id,
            TimetableEntry.is_active.is_(True),
        )
    ).all()
    return sorted(rows, key=lambda row: (row.class_id, *slot_sort_key(row.day, row.period)))


def _classes_with_week_assignments(db: Session, teacher_id: str, school_id: str, weeks: list[date]) -> set[str]:
    layers = db.scalars(
        select(WeeklyTimetable).where(
            WeeklyTimetable.school_id == school_id,
            WeeklyTimetable.week_start.in_(weeks),
            WeeklyTimetable.is_active.is_(True),
        )
    ).all()
    return {
        layer.class_id
        for layer in layers
        if any(
            slot.override.kind == "assigned" and slot.override.teacher_id == teacher_id
            for slot in read_slots(layer)
        )
    }


def permanent_replace(
    db: Session,
    *,
    original_teacher_id: str,
    replacement_teacher_id: str,
    reason: str,
    actor_id: str | None,
    school_id: str | None = None,
    today: date | None = None,
) -> TeacherReplacement:
    original = _get_teacher(db, original_teacher_id, school_id)
    replacement = _get_teacher(db, replacement_teacher_id, original.school_id)
    if original.id == replacement.id:
        raise SchedulerError("Replacement teacher must differ from the original teacher")
    if not replacement.is_active:
        raise SchedulerError("Replacement teacher is not active")

    settings = get_settings()
    weeks = upcoming_week_starts(settings.replacement_weeks_ahead, today)
    locked_classes = {entry.class_id for entry in _active_entries_for(db, original.id)} | (
        _classes_with_week_assignments(db, original.id, original.school_id, weeks)
    )

    keys = [(class_id, week) for class_id in locked_classes for week in weeks]
    with week_guard(*keys), atomic(db):
        original_entries = _active_entries_for(db, original.id)
        conflicts = replacement_conflicts(original_entries, _active_entries_for(db, replacement.id), replacement.id)
        conflicts += week_replacement_conflicts(db, original, replacement, weeks, reported=conflicts)
        if conflicts:
            logger.warning(
                "PERMANENT REPLACEMENT BLOCKED | original=%s | replacement=%s | conflicts=%s",
                original.id,
                replacement.id,
                len(conflicts),
            )
            raise ConflictError(
                f"{replacement.name} already teaches in {len(conflicts)} of {original.name}'s periods",
                conflicts=conflicts,
            )

        class_ids = sorted(
            {entry.class_id for entry in original_entries}
            | _classes_with_week_assignments(db, original.id, original.school_id, weeks)
        )
        slots_by_class: dict[str, set[tuple[Weekday, int]]] = {}
        for entry in original_entries:
            slots_by_class.setdefault(entry.class_id, set()).add((Weekday(entry.day), entry.period))

        for entry in original_entries:
            entry.teacher_id = replacement.id
        for assignment in db.scalars(
            select(ClassSubjectAssignment).where(ClassSubjectAssignment.assigned_teacher_id == original.id)
        ).all():
            assignment.assigned_teacher_id = replacement.id
        original.is_active = False
        original.status = TeacherStatus.left_school
        db.flush()

        modification_reason = f"Permanent replacement: {reason}"
        touched_weeks: list[str] = []
        for class_id in class_ids:
            school_class = db.get(SchoolClass, class_id)
            if school_class is None:
                continue
            for week in weeks:
                layer = get_or_create_weekly_layer(db, school_class, week, actor_id=actor_id)
                slots = read_slots(layer)
                changed = 0
                for index, slot in enumerate(slots):
                    override = slot.override
                    if override.kind == "assigned":
                        # slots already handed to someone else this week stay as they are
                        if override.teacher_id != original.id:
                            continue
                        subject_id = override.subject_id
                    elif override.kind == "inherited":
                        if (Weekday(slot.day), slot.period) not in slots_by_class.get(class_id, set()):
                            continue
                        subject_id = slot.subject_id
                    else:
                        continue
                    slots[index] = slot.model_copy(
                        update={
                            "override": AssignedOverride(teacher_id=replacement.id, subject_id=subject_id),
                            "modification_reason": modification_reason,
                        }
                    )
                    changed += 1
                if changed:
                    write_slots(layer, slots)
                    layer.modified_by = actor_id
                    layer.modification_count = (layer.modification_count or 0) + changed
                touched_weeks.append(f"{class_id}:{week.isoformat()}")

        record = TeacherReplacement(
            school_id=original.school_id,
            original_teacher_id=original.id,
            replacement_teacher_id=replacement.id,
            reason=reason,
            affected_timetable_entries=[entry.id for entry in original_entries],
            affected_weeks=touched_weeks,
            status="completed",
            replaced_by=actor_id,
            completed_at=_utc_now(),
        )
        db.add(record)
        db.flush()
        log_activity(
            db,
            user_id=actor_id,
            school_id=original.school_id,
            action="teacher.permanent_replace",
            entity_type="teacher_replacement",
            entity_id=record.id,
            description=f"Replaced {original.name} with {replacement.name}",
            details={
                "original_teacher_id": original.id,
                "replacement_teacher_id": replacement.id,
                "entries_rewritten": len(original_entries),
                "weeks_updated": len(touched_weeks),
                "reason": reason,
            },
        )

    logger.info(
        "PERMANENT REPLACEMENT COMPLETE | original=%s | replacement=%s | entries=%s | weeks=%s",
        original.id,
        replacement.id,
        len(original_entries),
        len(touched_weeks),
    )
    return record
