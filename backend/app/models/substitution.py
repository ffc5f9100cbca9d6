import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base
from app.models.timetable_entry import Weekday


class SubstitutionStatus(str, Enum):
    pending = "pending"
    auto_assigned = "auto_assigned"
    confirmed = "confirmed"
    rejected = "rejected"


OPEN_SUBSTITUTION_STATUSES = (SubstitutionStatus.pending, SubstitutionStatus.auto_assigned)


class Substitution(Base):
    __tablename__ = "substitutions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    timetable_entry_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    class_id: Mapped[str] = mapped_column(String(36), nullable=False)
    day: Mapped[Weekday] = mapped_column(SAEnum(Weekday, name="weekday"), nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    original_teacher_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    substitute_teacher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    substitution_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[SubstitutionStatus] = mapped_column(
        SAEnum(SubstitutionStatus, name="substitution_status"),
        nullable=False,
        default=SubstitutionStatus.pending,
    )
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
