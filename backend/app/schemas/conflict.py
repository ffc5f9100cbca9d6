from typing import Literal

from pydantic import BaseModel

from app.models.timetable_entry import Weekday


class ScheduleConflict(BaseModel):
    conflict_type: Literal[
        "teacher_double_booked",
        "class_unscheduled",
        "teacher_daily_overload",
        "teacher_unavailable",
        "teacher_absent",
    ]
    message: str
    day: Weekday | None = None
    period: int | None = None
    teacher_id: str | None = None
    class_id: str | None = None
    competing_class_id: str | None = None


class TimetableValidationReport(BaseModel):
    is_valid: bool
    conflicts: list[ScheduleConflict]
