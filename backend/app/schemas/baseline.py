from datetime import datetime

from pydantic import BaseModel

from app.models.timetable_entry import Weekday


class TimetableEntryOut(BaseModel):
    id: str
    class_id: str
    teacher_id: str
    subject_id: str
    day: Weekday
    period: int
    start_time: str
    end_time: str
    room: str | None = None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BaselineGenerationResult(BaseModel):
    success: bool
    message: str
    class_id: str
    entries_created: int
    unplaced_periods: int = 0
    weeks_cleared: int = 0


class BaselineClearResult(BaseModel):
    success: bool
    message: str
    entries_deactivated: int
    weeks_cleared: int


class PromotionResult(BaseModel):
    success: bool
    message: str
    entries_promoted: int


class JobOut(BaseModel):
    id: str
    kind: str
    status: str
    created_at: datetime
    updated_at: datetime
    result: dict | None = None
    error: str | None = None
