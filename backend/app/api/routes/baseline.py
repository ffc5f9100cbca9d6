from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.api.deps import RequestContext, get_db, require_admin, require_staff
from app.core.exceptions import ResourceNotFoundError
from app.models.timetable_entry import TimetableEntry
from app.schemas.baseline import BaselineClearResult, BaselineGenerationResult, JobOut, TimetableEntryOut
from app.schemas.conflict import TimetableValidationReport
from app.services.baseline_generator import (
    clear_baseline_and_future_weeks,
    generate_baseline,
    get_class_in_school,
    validate_timetable,
)
from app.services.jobs import Job, JobStore, get_job_store, run_generate_all_baselines
from app.services.weekly_layers import load_baseline

router = APIRouter()


def _job_out(job: Job) -> JobOut:
    return JobOut(
        id=job.id,
        kind=job.kind,
        status=job.status.value,
        created_at=job.created_at,
        updated_at=job.updated_at,
        result=job.result,
        error=job.error,
    )


@router.post("/classes/{class_id}/baseline/generate", response_model=BaselineGenerationResult)
def post_generate_baseline(
    class_id: str,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BaselineGenerationResult:
    return generate_baseline(db, class_id=class_id, school_id=context.school_id, actor_id=context.user_id)


@router.get("/classes/{class_id}/baseline", response_model=list[TimetableEntryOut])
def get_baseline(
    class_id: str,
    context: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
) -> list[TimetableEntryOut]:
    get_class_in_school(db, class_id, context.school_id)
    return load_baseline(db, class_id)


@router.post("/classes/{class_id}/baseline/clear", response_model=BaselineClearResult)
def post_clear_baseline(
    class_id: str,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BaselineClearResult:
    return clear_baseline_and_future_weeks(
        db,
        class_id=class_id,
        school_id=context.school_id,
        actor_id=context.user_id,
    )


@router.get("/baseline/validate", response_model=TimetableValidationReport)
def get_validate_baseline(
    context: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
) -> TimetableValidationReport:
    return validate_timetable(db, context.school_id)


@router.get("/baseline/entries/{entry_id}", response_model=TimetableEntryOut)
def get_baseline_entry(
    entry_id: str,
    context: RequestContext = Depends(require_staff),
    db: Session = Depends(get_db),
) -> TimetableEntryOut:
    entry = db.scalar(
        select(TimetableEntry).where(TimetableEntry.id == entry_id, TimetableEntry.school_id == context.school_id)
    )
    if entry is None:
        raise ResourceNotFoundError("TimetableEntry", entry_id)
    return entry


@router.post("/baseline/generate-all", response_model=JobOut, status_code=status.HTTP_202_ACCEPTED)
def post_generate_all(
    background_tasks: BackgroundTasks,
    context: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
    store: JobStore = Depends(get_job_store),
) -> JobOut:
    job = store.create("baseline.generate_all")
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())
    background_tasks.add_task(
        run_generate_all_baselines,
        store,
        session_factory,
        job_id=job.id,
        school_id=context.school_id,
        actor_id=context.user_id,
    )
    return _job_out(job)


@router.get("/jobs/{job_id}", response_model=JobOut)
def get_job(
    job_id: str,
    context: RequestContext = Depends(require_staff),
    store: JobStore = Depends(get_job_store),
) -> JobOut:
    job = store.get(job_id)
    if job is None:
        raise ResourceNotFoundError("Job", job_id)
    return _job_out(job)
