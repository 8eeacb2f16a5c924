"""Lesson scheduling schema"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_lesson_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    ]


def upgrade() -> None:
    op.create_table(
        "teacher",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255)),
        *_timestamps(),
    )

    op.create_table(
        "classroom",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False, unique=True),
        sa.Column("capacity", sa.Integer()),
        *_timestamps(),
    )

    op.create_table(
        "student",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("full_name", sa.String(length=150), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "class_group",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("teacher_id", sa.String(length=36), sa.ForeignKey("teacher.id"), nullable=False),
        sa.Column("classroom_id", sa.String(length=36), sa.ForeignKey("classroom.id"), nullable=False),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )

    op.create_table(
        "class_enrollment",
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("class_group.id"), primary_key=True),
        sa.Column("student_id", sa.String(length=36), sa.ForeignKey("student.id"), primary_key=True),
    )

    op.create_table(
        "class_schedule",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("class_group.id"), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.CheckConstraint("weekday BETWEEN 0 AND 6", name="chk_class_schedule_weekday"),
        sa.CheckConstraint("end_time > start_time", name="chk_class_schedule_time_order"),
    )
    op.create_index("ix_class_schedule_class_id", "class_schedule", ["class_id"])

    op.create_table(
        "academic_year",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean()),
        *_timestamps(),
        sa.CheckConstraint("end_date >= start_date", name="chk_academic_year_range"),
    )

    op.create_table(
        "semester",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("academic_year_id", sa.String(length=36), sa.ForeignKey("academic_year.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("semester_number", sa.Integer()),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("end_date >= start_date", name="chk_semester_range"),
    )

    op.create_table(
        "teaching_break",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("academic_year_id", sa.String(length=36), sa.ForeignKey("academic_year.id")),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("break_type", sa.String(length=20), nullable=False, server_default="vacation"),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("end_date >= start_date", name="chk_teaching_break_range"),
        sa.CheckConstraint(
            "break_type IN ('holiday','vacation','exam_period')",
            name="chk_teaching_break_type",
        ),
    )

    op.create_table(
        "public_holiday",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("academic_year_id", sa.String(length=36), sa.ForeignKey("academic_year.id")),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("holiday_date", sa.Date(), nullable=False),
        sa.Column("recurring_annually", sa.Boolean()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_public_holiday_holiday_date", "public_holiday", ["holiday_date"])

    op.create_table(
        "lesson",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("class_group.id"), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("teacher_id", sa.String(length=36), sa.ForeignKey("teacher.id"), nullable=False),
        sa.Column("classroom_id", sa.String(length=36), sa.ForeignKey("classroom.id"), nullable=False),
        sa.Column("status_name", sa.String(length=20), nullable=False),
        sa.Column("makeup_lesson_id", sa.String(length=36), sa.ForeignKey("lesson.id")),
        sa.Column("original_lesson_id", sa.String(length=36), sa.ForeignKey("lesson.id"), unique=True),
        sa.Column("generation_source", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("cancellation_reason", sa.String(length=500)),
        sa.Column("reschedule_reason", sa.String(length=500)),
        sa.Column("conducted_at", sa.DateTime()),
        sa.Column("teacher_name_snapshot", sa.String(length=120)),
        sa.Column("classroom_name_snapshot", sa.String(length=120)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("end_time > start_time", name="chk_lesson_time_order"),
        sa.CheckConstraint(
            "status_name IN ('Scheduled','Conducted','Cancelled','Make Up','No Show')",
            name="chk_lesson_status",
        ),
        sa.CheckConstraint(
            "generation_source IN ('manual','automatic','makeup')",
            name="chk_lesson_generation_source",
        ),
    )
    op.create_index("ix_lesson_scheduled_date", "lesson", ["scheduled_date"])
    op.create_index("ix_lesson_teacher_id", "lesson", ["teacher_id"])
    op.create_index("ix_lesson_classroom_id", "lesson", ["classroom_id"])
    op.create_index("ix_lesson_class_date", "lesson", ["class_id", "scheduled_date"])

    op.create_table(
        "lesson_generation_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.String(length=36), sa.ForeignKey("class_group.id"), nullable=False),
        sa.Column("generation_mode", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20)),
        sa.Column("summary", sa.Text()),
        sa.Column("messages", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("window_start", sa.Date()),
        sa.Column("window_end", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('success','warning','error')",
            name="chk_lesson_generation_log_status",
        ),
    )
    op.create_index("ix_lesson_generation_log_class_id", "lesson_generation_log", ["class_id"])


def downgrade() -> None:
    op.drop_index("ix_lesson_generation_log_class_id", table_name="lesson_generation_log")
    op.drop_table("lesson_generation_log")
    op.drop_index("ix_lesson_class_date", table_name="lesson")
    op.drop_index("ix_lesson_classroom_id", table_name="lesson")
    op.drop_index("ix_lesson_teacher_id", table_name="lesson")
    op.drop_index("ix_lesson_scheduled_date", table_name="lesson")
    op.drop_table("lesson")
    op.drop_index("ix_public_holiday_holiday_date", table_name="public_holiday")
    op.drop_table("public_holiday")
    op.drop_table("teaching_break")
    op.drop_table("semester")
    op.drop_table("academic_year")
    op.drop_index("ix_class_schedule_class_id", table_name="class_schedule")
    op.drop_table("class_schedule")
    op.drop_table("class_enrollment")
    op.drop_table("class_group")
    op.drop_table("student")
    op.drop_table("classroom")
    op.drop_table("teacher")
