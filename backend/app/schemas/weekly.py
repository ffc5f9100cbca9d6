from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, computed_field

from app.models.timetable_entry import Weekday


class InheritedOverride(BaseModel):
    kind: Literal["inherited"] = "inherited"


class AssignedOverride(BaseModel):
    kind: Literal["assigned"] = "assigned"
    teacher_id: str = Field(min_length=1, max_length=36)
    subject_id: str = Field(min_length=1, max_length=36)


class CancelledOverride(BaseModel):
    kind: Literal["cancelled"] = "cancelled"


SlotOverride = Annotated[
    Union[InheritedOverride, AssignedOverride, CancelledOverride],
    Field(discriminator="kind"),
]


class WeeklySlot(BaseModel):
    """One cell of a weekly layer.

    ``teacher_id``/``subject_id`` snapshot the baseline at materialization time;
    ``override`` decides what the merged view shows.
    """

    day: Weekday
    period: int
    start_time: str
    end_time: str
    room: str | None = None
    teacher_id: str | None = None
    subject_id: str | None = None
    override: SlotOverride = Field(default_factory=InheritedOverride)
    modification_reason: str | None = None

    @computed_field
    @property
    def is_modified(self) -> bool:
        return self.override.kind != "inherited"


class WeeklySlotUpdate(BaseModel):
    day: Weekday
    period: int = Field(ge=1, le=20)
    override: SlotOverride
    reason: str | None = Field(default=None, max_length=500)
    expected_version: int | None = Field(default=None, ge=1)


class WeeklyTimetableOut(BaseModel):
    id: str
    class_id: str
    week_start: date
    week_end: date
    entries: list[WeeklySlot]
    modified_by: str | None = None
    modification_count: int
    is_active: bool
    version: int
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class EffectiveEntry(BaseModel):
    day: Weekday
    period: int
    start_time: str
    end_time: str
    teacher_id: str
    subject_id: str
    room: str | None = None
    timetable_entry_id: str | None = None
    is_modified: bool = False
    modification_reason: str | None = None
    change_id: str | None = None


class EffectiveScheduleOut(BaseModel):
    class_id: str
    week_start: date
    week_end: date
    on_date: date | None = None
    layer_version: int | None = None
    entries: list[EffectiveEntry]
