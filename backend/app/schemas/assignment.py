from datetime import datetime

from pydantic import BaseModel, Field


class ClassSubjectAssignmentCreate(BaseModel):
    subject_id: str = Field(min_length=1, max_length=36)
    weekly_frequency: int = Field(ge=1, le=40)
    assigned_teacher_id: str | None = Field(default=None, max_length=36)


class ClassSubjectAssignmentUpdate(BaseModel):
    weekly_frequency: int | None = Field(default=None, ge=1, le=40)
    assigned_teacher_id: str | None = Field(default=None, max_length=36)


class ClassSubjectAssignmentOut(BaseModel):
    id: str
    class_id: str
    subject_id: str
    weekly_frequency: int
    assigned_teacher_id: str | None = None
    created_at: datetime
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class BulkAssignTeacherRequest(BaseModel):
    teacher_id: str = Field(min_length=1, max_length=36)
    assignment_ids: list[str] = Field(min_length=1, max_length=200)


class BulkAssignItemError(BaseModel):
    assignment_id: str
    message: str


class BulkAssignTeacherResult(BaseModel):
    success: bool
    updated: list[ClassSubjectAssignmentOut]
    errors: list[BulkAssignItemError]
