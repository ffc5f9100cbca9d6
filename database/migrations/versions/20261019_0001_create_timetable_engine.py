"""create timetable engine tables

Revision ID: 20261019_0001
Revises: None
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


weekday_enum = sa.Enum(
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
    name="weekday",
)
teacher_status_enum = sa.Enum("active", "left_school", name="teacher_status")
attendance_status_enum = sa.Enum("present", "absent", "on_leave", "half_day", name="attendance_status")
substitution_status_enum = sa.Enum(
    "pending",
    "auto_assigned",
    "confirmed",
    "rejected",
    name="substitution_status",
)
change_type_enum = sa.Enum("substitution", "cancellation", name="change_type")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _column_type(enum: sa.Enum) -> postgresql.ENUM:
    # types are created once up front; columns must not try again
    return postgresql.ENUM(*enum.enums, name=enum.name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in (weekday_enum, teacher_status_enum, attendance_status_enum, substitution_status_enum, change_type_enum):
        enum.create(bind, checkfirst=True)
    weekday = _column_type(weekday_enum)

    op.create_table(
        "school_classes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("grade", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("section", sa.String(length=20), nullable=False, server_default="A"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_school_classes_school_id", "school_classes", ["school_id"])

    op.create_table(
        "subjects",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_subjects_school_id", "subjects", ["school_id"])

    op.create_table(
        "teachers",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("subject_ids", sa.JSON(), nullable=False),
        sa.Column("availability", sa.JSON(), nullable=False),
        sa.Column("max_daily_periods", sa.Integer(), nullable=False, server_default="6"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("status", _column_type(teacher_status_enum), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_teachers_school_id", "teachers", ["school_id"])

    op.create_table(
        "timetable_structures",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("working_days", sa.JSON(), nullable=False),
        sa.Column("periods_per_day", sa.Integer(), nullable=False),
        sa.Column("time_slots", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_timetable_structures_school_id", "timetable_structures", ["school_id"])

    op.create_table(
        "class_subject_assignments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=False),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
        sa.Column("weekly_frequency", sa.Integer(), nullable=False),
        sa.Column("assigned_teacher_id", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("class_id", "subject_id", name="uq_class_subject_assignment"),
    )
    op.create_index("ix_class_subject_assignments_class_id", "class_subject_assignments", ["class_id"])
    op.create_index(
        "ix_class_subject_assignments_assigned_teacher_id",
        "class_subject_assignments",
        ["assigned_teacher_id"],
    )

    op.create_table(
        "timetable_entries",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("subject_id", sa.String(length=36), nullable=False),
        sa.Column("day", weekday, nullable=False),
        sa.Column("period", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("room", sa.String(length=50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_timetable_entries_school_id", "timetable_entries", ["school_id"])
    op.create_index("ix_timetable_entries_class_active", "timetable_entries", ["class_id", "is_active"])
    op.create_index("ix_timetable_entries_teacher_slot", "timetable_entries", ["teacher_id", "day", "period"])

    op.create_table(
        "weekly_timetables",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=False),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("week_end", sa.Date(), nullable=False),
        sa.Column("entries", sa.JSON(), nullable=False),
        sa.Column("modified_by", sa.String(length=36), nullable=True),
        sa.Column("modification_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("class_id", "week_start", name="uq_weekly_timetables_class_week"),
    )
    op.create_index("ix_weekly_timetables_school_id", "weekly_timetables", ["school_id"])
    op.create_index("ix_weekly_timetables_class_id", "weekly_timetables", ["class_id"])

    op.create_table(
        "teacher_attendance",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("teacher_id", sa.String(length=36), nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("status", _column_type(attendance_status_enum), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("marked_by", sa.String(length=36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("teacher_id", "attendance_date", name="uq_teacher_attendance_day"),
    )
    op.create_index("ix_teacher_attendance_teacher_id", "teacher_attendance", ["teacher_id"])
    op.create_index("ix_teacher_attendance_school_id", "teacher_attendance", ["school_id"])

    op.create_table(
        "substitutions",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("timetable_entry_id", sa.String(length=36), nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=False),
        sa.Column("day", weekday, nullable=False),
        sa.Column("period", sa.Integer(), nullable=False),
        sa.Column("original_teacher_id", sa.String(length=36), nullable=False),
        sa.Column("substitute_teacher_id", sa.String(length=36), nullable=True),
        sa.Column("substitution_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", _column_type(substitution_status_enum), nullable=False),
        sa.Column("is_auto_generated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("reviewed_by", sa.String(length=36), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_substitutions_school_id", "substitutions", ["school_id"])
    op.create_index("ix_substitutions_timetable_entry_id", "substitutions", ["timetable_entry_id"])
    op.create_index("ix_substitutions_original_teacher_id", "substitutions", ["original_teacher_id"])
    op.create_index("ix_substitutions_substitution_date", "substitutions", ["substitution_date"])

    op.create_table(
        "timetable_changes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("class_id", sa.String(length=36), nullable=False),
        sa.Column("timetable_entry_id", sa.String(length=36), nullable=True),
        sa.Column("substitution_id", sa.String(length=36), nullable=True),
        sa.Column("change_type", _column_type(change_type_enum), nullable=False),
        sa.Column("change_date", sa.Date(), nullable=False),
        sa.Column("day", weekday, nullable=False),
        sa.Column("period", sa.Integer(), nullable=False),
        sa.Column("original_teacher_id", sa.String(length=36), nullable=True),
        sa.Column("new_teacher_id", sa.String(length=36), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("change_source", sa.String(length=30), nullable=False, server_default="manual"),
        sa.Column("approved_by", sa.String(length=36), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_timetable_changes_school_id", "timetable_changes", ["school_id"])
    op.create_index("ix_timetable_changes_class_id", "timetable_changes", ["class_id"])
    op.create_index("ix_timetable_changes_substitution_id", "timetable_changes", ["substitution_id"])
    op.create_index("ix_timetable_changes_change_date", "timetable_changes", ["change_date"])

    op.create_table(
        "teacher_replacements",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("school_id", sa.String(length=36), nullable=False),
        sa.Column("original_teacher_id", sa.String(length=36), nullable=False),
        sa.Column("replacement_teacher_id", sa.String(length=36), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("affected_timetable_entries", sa.JSON(), nullable=False),
        sa.Column("affected_weeks", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="completed"),
        sa.Column("replaced_by", sa.String(length=36), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_teacher_replacements_school_id", "teacher_replacements", ["school_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("school_id", sa.String(length=36), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_school_id", "audit_logs", ["school_id"])


def downgrade() -> None:
    for table_name in (
        "audit_logs",
        "teacher_replacements",
        "timetable_changes",
        "substitutions",
        "teacher_attendance",
        "weekly_timetables",
        "timetable_entries",
        "class_subject_assignments",
        "timetable_structures",
        "teachers",
        "subjects",
        "school_classes",
    ):
        op.drop_table(table_name)
    bind = op.get_bind()
    for enum in (change_type_enum, substitution_status_enum, attendance_status_enum, teacher_status_enum, weekday_enum):
        enum.drop(bind, checkfirst=True)
