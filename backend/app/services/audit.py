from __future__ import annotations

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog


def log_activity(
    db: Session,
    *,
    user_id: str | None,
    school_id: str | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    description: str | None = None,
    details: dict | None = None,
) -> None:
    record = AuditLog(
        user_id=user_id,
        school_id=school_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
        details=details or {},
    )
    db.add(record)
