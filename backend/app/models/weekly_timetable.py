import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class WeeklyTimetable(Base):
    """Per-class, per-week override layer on top of the baseline."""

    __tablename__ = "weekly_timetables"
    __table_args__ = (UniqueConstraint("class_id", "week_start", name="uq_weekly_timetables_class_week"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    class_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    week_start: Mapped[date] = mapped_column(Date, nullable=False)
    week_end: Mapped[date] = mapped_column(Date, nullable=False)
    # serialized app.schemas.weekly.WeeklySlot items; always reassigned, never mutated in place
    entries: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    modified_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    modification_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}
