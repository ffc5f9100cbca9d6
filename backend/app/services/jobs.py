from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
from threading import Lock
from typing import Callable, Protocol
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.exceptions import AppError
from app.models.school import SchoolClass
from app.services.baseline_generator import generate_baseline

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Job:
    kind: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.pending
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    result: dict | None = None
    error: str | None = None


class JobStore(Protocol):
    def create(self, kind: str) -> Job: ...

    def get(self, job_id: str) -> Job | None: ...

    def mark_processing(self, job_id: str) -> None: ...

    def mark_completed(self, job_id: str, result: dict) -> None: ...

    def mark_failed(self, job_id: str, error: str) -> None: ...

    def cleanup(self, now: datetime | None = None) -> int: ...


class InMemoryJobStore:
    def __init__(self, ttl_seconds: int) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = Lock()
        self._ttl = timedelta(seconds=max(1, ttl_seconds))

    def create(self, kind: str) -> Job:
        job = Job(kind=kind)
        with self._lock:
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def _transition(self, job_id: str, status: JobStatus, **changes) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            job.status = status
            job.updated_at = _utc_now()
            for key, value in changes.items():
                setattr(job, key, value)

    def mark_processing(self, job_id: str) -> None:
        self._transition(job_id, JobStatus.processing)

    def mark_completed(self, job_id: str, result: dict) -> None:
        self._transition(job_id, JobStatus.completed, result=result)

    def mark_failed(self, job_id: str, error: str) -> None:
        self._transition(job_id, JobStatus.failed, error=error)

    def cleanup(self, now: datetime | None = None) -> int:
        cutoff = (now or _utc_now()) - self._ttl
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in (JobStatus.completed, JobStatus.failed) and job.updated_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()


_store = InMemoryJobStore(get_settings().job_ttl_seconds)


def get_job_store() -> JobStore:
    return _store


def clear_job_store() -> None:
    _store.clear()


def run_generate_all_baselines(
    store: JobStore,
    session_factory: Callable[[], Session],
    *,
    job_id: str,
    school_id: str,
    actor_id: str | None,
) -> None:
    store.mark_processing(job_id)
    db = session_factory()
    try:
        class_ids = db.scalars(
            select(SchoolClass.id).where(SchoolClass.school_id == school_id).order_by(SchoolClass.name)
        ).all()
        results: list[dict] = []
        for class_id in class_ids:
            try:
                outcome = generate_baseline(db, class_id=class_id, school_id=school_id, actor_id=actor_id)
            except AppError as exc:
                results.append({"class_id": class_id, "success": False, "message": exc.message})
                continue
            results.append(
                {
                    "class_id": class_id,
                    "success": True,
                    "message": outcome.message,
                    "entries_created": outcome.entries_created,
                }
            )
        store.mark_completed(
            job_id,
            {
                "classes": len(results),
                "succeeded": sum(1 for item in results if item["success"]),
                "results": results,
            },
        )
        logger.info("GENERATE ALL COMPLETE | job_id=%s | classes=%s", job_id, len(results))
    except Exception as exc:
        logger.exception("GENERATE ALL FAILED | job_id=%s", job_id)
        store.mark_failed(job_id, str(exc))
    finally:
        db.close()
        store.cleanup()
