from datetime import date, datetime

from pydantic import BaseModel, EmailStr, Field

from app.models.substitution import SubstitutionStatus
from app.models.teacher_attendance import AttendanceStatus
from app.models.timetable_entry import Weekday


class TeacherCandidateOut(BaseModel):
    id: str
    name: str
    email: EmailStr | None = None
    subject_ids: list[str]
    teaches_class: bool = False


class AutoAssignRequest(BaseModel):
    timetable_entry_id: str = Field(min_length=1, max_length=36)
    substitution_date: date
    reason: str | None = Field(default=None, max_length=500)


class SubstitutionApprove(BaseModel):
    substitute_teacher_id: str | None = Field(default=None, max_length=36)


class SubstitutionReject(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class SubstitutionOut(BaseModel):
    id: str
    timetable_entry_id: str
    class_id: str
    day: Weekday
    period: int
    original_teacher_id: str
    substitute_teacher_id: str | None = None
    substitution_date: date
    reason: str | None = None
    status: SubstitutionStatus
    is_auto_generated: bool
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AttendanceMark(BaseModel):
    attendance_date: date
    status: AttendanceStatus
    reason: str | None = Field(default=None, max_length=500)


class AttendanceOut(BaseModel):
    id: str
    teacher_id: str
    attendance_date: date
    status: AttendanceStatus
    reason: str | None = None
    marked_by: str | None = None

    model_config = {"from_attributes": True}


class AttendanceResult(BaseModel):
    attendance: AttendanceOut
    substitutions_created: list[SubstitutionOut] = []
    substitutions_reverted: int = 0
    detection_error: str | None = None


class AbsenceAlert(BaseModel):
    teacher_id: str
    teacher_name: str
    status: AttendanceStatus
    reason: str | None = None
    periods_affected: int
    uncovered_substitution_ids: list[str]


class PermanentReplaceRequest(BaseModel):
    replacement_teacher_id: str = Field(min_length=1, max_length=36)
    reason: str = Field(min_length=3, max_length=1000)


class TeacherReplacementOut(BaseModel):
    id: str
    original_teacher_id: str
    replacement_teacher_id: str
    reason: str
    affected_timetable_entries: list[str]
    affected_weeks: list[str]
    status: str
    replaced_by: str | None = None
    completed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
