import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class TimetableStructure(Base):
    __tablename__ = "timetable_structures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    school_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    working_days: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    periods_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=8)
    # [{"period": 1, "start_time": "08:00", "end_time": "08:45", "is_break": false}, ...]
    time_slots: Mapped[list[dict]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def slot_for(self, period: int) -> dict | None:
        for slot in self.time_slots or []:
            if int(slot.get("period", 0)) == period:
                return slot
        return None
