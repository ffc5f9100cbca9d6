from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import RequestContext, get_db, require_admin, require_staff
from app.models.substitution import Substitution, SubstitutionStatus
from app.models.teacher_replacement import TeacherReplacement
from app.schemas.substitution import (
    AbsenceAlert,
    AttendanceMark,
    AttendanceOut,
    AttendanceResult,
    AutoAssignRequest,
    PermanentReplaceRequest,
    SubstitutionApprove,
    SubstitutionOut,
    SubstitutionReject,
    TeacherCandidateOut,
    TeacherReplacementOut,
)
from app.services.absence import absent_teacher_alerts, mark_teacher_attendance
from app.services.substitution_workflow import (
    approve_substitution,
    auto_assign_substitute,
    find_substitutes,
    permanent_replace,
    reject_substitution,
)

router = APIRouter()


@router.get("/substitutes", response_model=list[TeacherCandidateOut])
def get_substitute_candidates(
    teacher_id: str = Query(min_length=1, max_length=36),
    entry_id: str = Query(min_length=1, max_length=36),
    on_date: date = Query(alias="date"),
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[TeacherCandidateOut]:
    candidates = find_substitutes(
        db,
        original_teacher_id=teacher_id,
        timetable_entry_id=entry_id,
        on_date=on_date,
        school_id=context.school_id,
    )
    return [
        TeacherCandidateOut(
            id=teacher.id,
            name=teacher.name,
            email=teacher.email,
            subject_ids=list(teacher.subject_ids or []),
            teaches_class=teaches_class,
        )
        for teacher, teaches_class in candidates
    ]


@router.get("/substitutions", response_model=list[SubstitutionOut])
def list_substitutions(
    status_filter: SubstitutionStatus | None = Query(default=None, alias="status"),
    on_date: date | None = Query(default=None, alias="date"),
    context: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
) -> list[SubstitutionOut]:
    query = select(Substitution).where(Substitution.school_id == context.school_id)
    if status_filter is not None:
        query = query.where(Substitution.status == status_filter)
    if on_date is not None:
        query = query.where(Substitution.substitution_date == on_date)
    query = query.order_by(Substitution.substitution_date.desc(), Substitution.period, Substitution.id)
    return list(db.scalars(query).all())


@router.get("/substitutions/alerts", response_model=list[AbsenceAlert])
def get_absence_alerts(
    on_date: date | None = Query(default=None, alias="date"),
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[AbsenceAlert]:
    return absent_teacher_alerts(db, school_id=context.school_id, on_date=on_date or date.today())


@router.post(
    "/substitutions/auto-assign",
    response_model=SubstitutionOut,
    status_code=status.HTTP_201_CREATED,
)
def post_auto_assign(
    payload: AutoAssignRequest,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> SubstitutionOut:
    return auto_assign_substitute(
        db,
        timetable_entry_id=payload.timetable_entry_id,
        on_date=payload.substitution_date,
        reason=payload.reason,
        actor_id=context.user_id,
        school_id=context.school_id,
    )


@router.post("/substitutions/{substitution_id}/approve", response_model=SubstitutionOut)
def post_approve_substitution(
    substitution_id: str,
    payload: SubstitutionApprove | None = None,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> SubstitutionOut:
    return approve_substitution(
        db,
        substitution_id=substitution_id,
        actor_id=context.user_id,
        substitute_teacher_id=payload.substitute_teacher_id if payload else None,
        school_id=context.school_id,
    )


@router.post("/substitutions/{substitution_id}/reject", response_model=SubstitutionOut)
def post_reject_substitution(
    substitution_id: str,
    payload: SubstitutionReject | None = None,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> SubstitutionOut:
    return reject_substitution(
        db,
        substitution_id=substitution_id,
        actor_id=context.user_id,
        reason=payload.reason if payload else None,
        school_id=context.school_id,
    )


@router.post("/teachers/{teacher_id}/attendance", response_model=AttendanceResult)
def post_teacher_attendance(
    teacher_id: str,
    payload: AttendanceMark,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> AttendanceResult:
    outcome = mark_teacher_attendance(
        db,
        teacher_id=teacher_id,
        on_date=payload.attendance_date,
        status=payload.status,
        reason=payload.reason,
        actor_id=context.user_id,
        school_id=context.school_id,
    )
    return AttendanceResult(
        attendance=AttendanceOut.model_validate(outcome.attendance),
        substitutions_created=[SubstitutionOut.model_validate(item) for item in outcome.substitutions_created],
        substitutions_reverted=outcome.substitutions_reverted,
        detection_error=outcome.detection_error,
    )


@router.post("/teachers/{teacher_id}/permanent-replace", response_model=TeacherReplacementOut)
def post_permanent_replace(
    teacher_id: str,
    payload: PermanentReplaceRequest,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TeacherReplacementOut:
    return permanent_replace(
        db,
        original_teacher_id=teacher_id,
        replacement_teacher_id=payload.replacement_teacher_id,
        reason=payload.reason,
        actor_id=context.user_id,
        school_id=context.school_id,
    )


@router.get("/teacher-replacements", response_model=list[TeacherReplacementOut])
def list_teacher_replacements(
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[TeacherReplacementOut]:
    return list(
        db.scalars(
            select(TeacherReplacement)
            .where(TeacherReplacement.school_id == context.school_id)
            .order_by(TeacherReplacement.created_at.desc())
        ).all()
    )
