from __future__ import annotations

from datetime import datetime
import re

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.timetable_entry import Weekday

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_time_to_minutes(value: str) -> int:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class TimeSlotEntry(BaseModel):
    period: int = Field(ge=1, le=20)
    start_time: str
    end_time: str
    is_break: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @model_validator(mode="after")
    def validate_time_order(self) -> "TimeSlotEntry":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("end_time must be after start_time")
        return self


class TimetableStructureUpsert(BaseModel):
    working_days: list[Weekday] = Field(
        default_factory=lambda: [
            Weekday.monday,
            Weekday.tuesday,
            Weekday.wednesday,
            Weekday.thursday,
            Weekday.friday,
        ],
        min_length=1,
    )
    periods_per_day: int = Field(ge=1, le=20)
    time_slots: list[TimeSlotEntry] = Field(min_length=1)

    @field_validator("working_days", mode="before")
    @classmethod
    def normalize_days(cls, value):
        if isinstance(value, list):
            return [str(item).strip().lower() for item in value]
        return value

    @model_validator(mode="after")
    def validate_slots(self) -> "TimetableStructureUpsert":
        if len(set(self.working_days)) != len(self.working_days):
            raise ValueError("working_days contains duplicates")
        periods = [slot.period for slot in self.time_slots]
        if len(set(periods)) != len(periods):
            raise ValueError("time_slots contains duplicate periods")
        if max(periods) > self.periods_per_day:
            raise ValueError("time_slots reference a period beyond periods_per_day")
        ordered = sorted(self.time_slots, key=lambda slot: slot.period)
        for previous, current in zip(ordered, ordered[1:]):
            if parse_time_to_minutes(current.start_time) < parse_time_to_minutes(previous.end_time):
                raise ValueError(f"Period {current.period} overlaps period {previous.period}")
        return self


class TimetableStructureOut(BaseModel):
    id: str
    school_id: str
    working_days: list[str]
    periods_per_day: int
    time_slots: list[TimeSlotEntry]
    is_active: bool
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}
