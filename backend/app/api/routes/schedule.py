from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import RequestContext, get_db, require_admin, require_staff
from app.schemas.baseline import PromotionResult
from app.schemas.weekly import EffectiveScheduleOut, WeeklySlotUpdate, WeeklyTimetableOut
from app.services.merge_engine import effective_schedule, effective_schedule_for_date, update_weekly_slot
from app.services.versioning import promote_week_to_global, reset_week_from_global
from app.services.weeks import current_week_start

router = APIRouter()


@router.get("/classes/{class_id}/schedule", response_model=EffectiveScheduleOut)
def get_effective_schedule(
    class_id: str,
    week: date | None = Query(default=None, description="Any date inside the week"),
    on_date: date | None = Query(default=None, alias="date", description="Daily view for a single date"),
    context: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
) -> EffectiveScheduleOut:
    if on_date is not None:
        return effective_schedule_for_date(
            db,
            class_id=class_id,
            on_date=on_date,
            school_id=context.school_id,
            actor_id=context.user_id,
        )
    return effective_schedule(
        db,
        class_id=class_id,
        week_start=week or current_week_start(),
        school_id=context.school_id,
        actor_id=context.user_id,
    )


@router.put("/classes/{class_id}/weeks/{week_start}/slots", response_model=WeeklyTimetableOut)
def put_weekly_slot(
    class_id: str,
    week_start: date,
    payload: WeeklySlotUpdate,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WeeklyTimetableOut:
    return update_weekly_slot(
        db,
        class_id=class_id,
        week_start=week_start,
        day=payload.day,
        period=payload.period,
        override=payload.override,
        reason=payload.reason,
        actor_id=context.user_id,
        school_id=context.school_id,
        expected_version=payload.expected_version,
    )


@router.post("/classes/{class_id}/weeks/{week_start}/promote", response_model=PromotionResult)
def post_promote_week(
    class_id: str,
    week_start: date,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> PromotionResult:
    return promote_week_to_global(
        db,
        class_id=class_id,
        week_start=week_start,
        actor_id=context.user_id,
        school_id=context.school_id,
    )


@router.post("/classes/{class_id}/weeks/{week_start}/reset", response_model=WeeklyTimetableOut)
def post_reset_week(
    class_id: str,
    week_start: date,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WeeklyTimetableOut:
    return reset_week_from_global(
        db,
        class_id=class_id,
        week_start=week_start,
        actor_id=context.user_id,
        school_id=context.school_id,
    )
