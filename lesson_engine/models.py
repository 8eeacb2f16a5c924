from __future__ import annotations

import json
import uuid
from datetime import date, datetime, time, timezone
from typing import List, Optional, Set

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    Time,
    and_,
    or_,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class LessonStatus:
    SCHEDULED = "Scheduled"
    CONDUCTED = "Conducted"
    CANCELLED = "Cancelled"
    MAKE_UP = "Make Up"
    NO_SHOW = "No Show"

    CHOICES = (SCHEDULED, CONDUCTED, CANCELLED, MAKE_UP, NO_SHOW)
    UPCOMING = frozenset({SCHEDULED, MAKE_UP})
    TERMINAL = frozenset({CONDUCTED, CANCELLED, NO_SHOW})


class GenerationSource:
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    MAKEUP = "makeup"

    CHOICES = (MANUAL, AUTOMATIC, MAKEUP)


BREAK_TYPE_HOLIDAY = "holiday"
BREAK_TYPE_CHOICES = (BREAK_TYPE_HOLIDAY, "vacation", "exam_period")

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class_enrollment = Table(
    "class_enrollment",
    db.Model.metadata,
    Column("class_id", ForeignKey("class_group.id"), primary_key=True),
    Column("student_id", ForeignKey("student.id"), primary_key=True),
)


class TimeStampedModel:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class Teacher(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))

    classes: Mapped[List["ClassGroup"]] = relationship(back_populates="teacher")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Teacher<{self.name}>"


class Classroom(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    capacity: Mapped[int] = mapped_column(Integer, default=20)

    classes: Mapped[List["ClassGroup"]] = relationship(back_populates="classroom")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Classroom<{self.name}>"


class Student(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    full_name: Mapped[str] = mapped_column(String(150), nullable=False)

    classes: Mapped[List["ClassGroup"]] = relationship(
        secondary=class_enrollment, back_populates="students"
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Student<{self.full_name}>"


class ClassGroup(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    teacher_id: Mapped[str] = mapped_column(ForeignKey("teacher.id"), nullable=False)
    classroom_id: Mapped[str] = mapped_column(ForeignKey("classroom.id"), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    teacher: Mapped[Teacher] = relationship(back_populates="classes")
    classroom: Mapped[Classroom] = relationship(back_populates="classes")
    students: Mapped[List[Student]] = relationship(
        secondary=class_enrollment,
        back_populates="classes",
        order_by="Student.full_name",
    )
    schedules: Mapped[List["ClassSchedule"]] = relationship(
        back_populates="class_group",
        cascade="all, delete-orphan",
        order_by="[ClassSchedule.weekday, ClassSchedule.start_time]",
    )
    lessons: Mapped[List["Lesson"]] = relationship(back_populates="class_group")

    def student_ids(self) -> Set[str]:
        return {student.id for student in self.students}

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"ClassGroup<{self.id} {self.name}>"


class ClassSchedule(db.Model):
    """Weekly template slot of a class (weekday 0 = Monday)."""

    id: Mapped[int] = mapped_column(primary_key=True)
    class_id: Mapped[str] = mapped_column(ForeignKey("class_group.id"), nullable=False, index=True)
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)

    class_group: Mapped[ClassGroup] = relationship(back_populates="schedules")

    __table_args__ = (
        CheckConstraint("weekday BETWEEN 0 AND 6", name="chk_class_schedule_weekday"),
        CheckConstraint("end_time > start_time", name="chk_class_schedule_time_order"),
    )

    @property
    def day_name(self) -> str:
        return WEEKDAY_NAMES[self.weekday]


class AcademicYear(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    semesters: Mapped[List["Semester"]] = relationship(
        back_populates="academic_year",
        cascade="all, delete-orphan",
        order_by="Semester.start_date",
    )

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="chk_academic_year_range"),
    )

    @classmethod
    def containing(cls, day: date) -> Optional["AcademicYear"]:
        return (
            cls.query.filter(cls.start_date <= day, cls.end_date >= day)
            .order_by(cls.is_active.desc(), cls.start_date)
            .first()
        )

    def as_range(self) -> tuple[date, date]:
        return (self.start_date, self.end_date)


class Semester(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    academic_year_id: Mapped[str] = mapped_column(ForeignKey("academic_year.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    semester_number: Mapped[int] = mapped_column(Integer, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    academic_year: Mapped[AcademicYear] = relationship(back_populates="semesters")

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="chk_semester_range"),
    )

    def as_range(self) -> tuple[date, date]:
        return (self.start_date, self.end_date)


class TeachingBreak(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    academic_year_id: Mapped[Optional[str]] = mapped_column(ForeignKey("academic_year.id"))
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    break_type: Mapped[str] = mapped_column(String(20), default="vacation", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="chk_teaching_break_range"),
        CheckConstraint(
            "break_type IN ('holiday','vacation','exam_period')",
            name="chk_teaching_break_type",
        ),
    )

    @classmethod
    def overlapping(cls, start: date, end: date) -> List["TeachingBreak"]:
        if start > end:
            start, end = end, start
        return (
            cls.query.filter(cls.start_date <= end, cls.end_date >= start)
            .order_by(cls.start_date, cls.end_date, cls.id)
            .all()
        )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"TeachingBreak<{self.name} {self.start_date}→{self.end_date}>"


class PublicHoliday(db.Model, TimeStampedModel):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    academic_year_id: Mapped[Optional[str]] = mapped_column(ForeignKey("academic_year.id"))
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    recurring_annually: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    @classmethod
    def between(cls, start: date, end: date) -> List["PublicHoliday"]:
        return (
            cls.query.filter(
                or_(
                    cls.recurring_annually.is_(True),
                    and_(cls.holiday_date >= start, cls.holiday_date <= end),
                )
            )
            .order_by(cls.holiday_date, cls.id)
            .all()
        )

    def occurrences(self, start: date, end: date) -> List[date]:
        if not self.recurring_annually:
            if start <= self.holiday_date <= end:
                return [self.holiday_date]
            return []
        found: list[date] = []
        for year in range(start.year, end.year + 1):
            try:
                candidate = self.holiday_date.replace(year=year)
            except ValueError:
                # 29 February outside leap years
                continue
            if start <= candidate <= end:
                found.append(candidate)
        return found


class Lesson(db.Model):
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    class_id: Mapped[str] = mapped_column(ForeignKey("class_group.id"), nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    teacher_id: Mapped[str] = mapped_column(ForeignKey("teacher.id"), nullable=False, index=True)
    classroom_id: Mapped[str] = mapped_column(ForeignKey("classroom.id"), nullable=False, index=True)
    status_name: Mapped[str] = mapped_column(String(20), nullable=False, default=LessonStatus.SCHEDULED)
    makeup_lesson_id: Mapped[Optional[str]] = mapped_column(ForeignKey("lesson.id"))
    original_lesson_id: Mapped[Optional[str]] = mapped_column(ForeignKey("lesson.id"), unique=True)
    generation_source: Mapped[str] = mapped_column(String(20), nullable=False, default=GenerationSource.MANUAL)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500))
    reschedule_reason: Mapped[Optional[str]] = mapped_column(String(500))
    conducted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    teacher_name_snapshot: Mapped[Optional[str]] = mapped_column(String(120))
    classroom_name_snapshot: Mapped[Optional[str]] = mapped_column(String(120))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    class_group: Mapped[ClassGroup] = relationship(back_populates="lessons")
    teacher: Mapped[Teacher] = relationship()
    classroom: Mapped[Classroom] = relationship()

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="chk_lesson_time_order"),
        CheckConstraint(
            "status_name IN ('Scheduled','Conducted','Cancelled','Make Up','No Show')",
            name="chk_lesson_status",
        ),
        CheckConstraint(
            "generation_source IN ('manual','automatic','makeup')",
            name="chk_lesson_generation_source",
        ),
        Index("ix_lesson_class_date", "class_id", "scheduled_date"),
    )

    @property
    def scheduled_start(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.start_time)

    @property
    def scheduled_end(self) -> datetime:
        return datetime.combine(self.scheduled_date, self.end_time)

    @property
    def is_upcoming(self) -> bool:
        return self.status_name in LessonStatus.UPCOMING

    @property
    def day_of_week(self) -> str:
        return WEEKDAY_NAMES[self.scheduled_date.weekday()]

    @property
    def time_range_label(self) -> str:
        return f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"

    def touch(self, now: datetime) -> None:
        """Bump ``updated_at`` without ever moving it backwards."""
        if self.updated_at is None or now > self.updated_at:
            self.updated_at = now

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"Lesson<{self.id} {self.scheduled_date} {self.time_range_label} {self.status_name}>"


class LessonGenerationLog(db.Model, TimeStampedModel):
    id: Mapped[int] = mapped_column(primary_key=True)
    class_id: Mapped[str] = mapped_column(ForeignKey("class_group.id"), nullable=False, index=True)
    generation_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="success")
    summary: Mapped[Optional[str]] = mapped_column(Text)
    messages: Mapped[str] = mapped_column(Text, default="[]", nullable=False)
    window_start: Mapped[Optional[date]] = mapped_column(Date)
    window_end: Mapped[Optional[date]] = mapped_column(Date)

    __table_args__ = (
        CheckConstraint(
            "status IN ('success','warning','error')",
            name="chk_lesson_generation_log_status",
        ),
    )

    def parsed_messages(self) -> list[dict[str, object]]:
        try:
            payload = json.loads(self.messages or "[]")
        except (TypeError, ValueError):
            return []
        if not isinstance(payload, list):
            return []
        return [entry for entry in payload if isinstance(entry, dict) and entry.get("message")]
