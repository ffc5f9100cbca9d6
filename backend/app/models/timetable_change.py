import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base
from app.models.timetable_entry import Weekday


class ChangeType(str, Enum):
    substitution = "substitution"
    cancellation = "cancellation"


class TimetableChange(Base):
    """Append-only record of a dated change shown on daily views."""

    __tablename__ = "timetable_changes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    class_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    timetable_entry_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    substitution_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    change_type: Mapped[ChangeType] = mapped_column(SAEnum(ChangeType, name="change_type"), nullable=False)
    change_date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    day: Mapped[Weekday] = mapped_column(SAEnum(Weekday, name="weekday"), nullable=False)
    period: Mapped[int] = mapped_column(Integer, nullable=False)
    original_teacher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    new_teacher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    change_source: Mapped[str] = mapped_column(String(30), nullable=False, default="manual")
    approved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
