from __future__ import annotations

import logging

from sqlalchemy import inspect

from app.core.config import get_settings
from app.db.base import Base
from app.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "timetable_structures": {"id", "school_id", "working_days", "time_slots", "is_active"},
    "timetable_entries": {"id", "class_id", "teacher_id", "subject_id", "day", "period", "is_active"},
    "weekly_timetables": {"id", "class_id", "week_start", "entries", "version"},
    "substitutions": {"id", "timetable_entry_id", "status", "is_auto_generated"},
    "timetable_changes": {"id", "change_type", "change_date", "is_active"},
    "audit_logs": {"id", "action", "school_id"},
}


def missing_schema_items(bind=None) -> tuple[list[str], dict[str, list[str]]]:
    inspector = inspect(bind if bind is not None else engine)
    table_names = set(inspector.get_table_names())
    missing_tables: list[str] = []
    missing_columns: dict[str, list[str]] = {}
    for table_name, columns in REQUIRED_COLUMNS.items():
        if table_name not in table_names:
            missing_tables.append(table_name)
            continue
        existing = {item["name"] for item in inspector.get_columns(table_name)}
        missing = sorted(columns - existing)
        if missing:
            missing_columns[table_name] = missing
    return missing_tables, missing_columns


def ensure_runtime_schema() -> None:
    settings = get_settings()
    try:
        if settings.auto_create_schema:
            import app.models  # noqa: F401

            Base.metadata.create_all(bind=engine)
        missing_tables, missing_columns = missing_schema_items()
        if missing_tables or missing_columns:
            logger.warning(
                "SCHEMA INCOMPLETE | missing_tables=%s | missing_columns=%s | run alembic upgrade head",
                missing_tables,
                missing_columns,
            )
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema bootstrap failed")
        raise RuntimeError("Runtime schema bootstrap failed") from exc
