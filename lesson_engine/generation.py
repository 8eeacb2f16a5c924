from __future__ import annotations

import calendar as month_calendar
import json
import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import Iterable, List, Optional

from flask import current_app

from .academic_calendar import (
    KIND_PUBLIC_HOLIDAY,
    KIND_TEACHING_BREAK,
    AcademicCalendar,
    CalendarGate,
    NonTeachingDay,
    daterange,
)
from .clock import Clock, SystemClock
from .conflicts import Conflict, ConflictCandidate, ConflictDetector
from .errors import ValidationError
from .extensions import db
from .models import (
    BREAK_TYPE_HOLIDAY,
    WEEKDAY_NAMES,
    AcademicYear,
    ClassSchedule,
    GenerationSource,
    Lesson,
    LessonGenerationLog,
    Semester,
)
from .roster import ClassResources, RosterService
from .status import LessonStatusMachine

SKIP_TEACHING_BREAK = "teaching_break"
SKIP_EXISTING_LESSON_CONFLICT = "existing_lesson_conflict"


class GenerationMode:
    CUSTOM_RANGE = "CustomRange"
    MONTH = "Month"
    SEMESTER = "Semester"
    FULL_YEAR = "FullYear"

    CHOICES = (CUSTOM_RANGE, MONTH, SEMESTER, FULL_YEAR)


@dataclass(frozen=True)
class GenerationRequest:
    class_id: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    generation_mode: str = GenerationMode.CUSTOM_RANGE
    academic_year_id: Optional[str] = None
    semester_id: Optional[str] = None
    respect_breaks: bool = True
    respect_holidays: bool = True


@dataclass(frozen=True)
class SkippedLesson:
    scheduled_date: date
    day_of_week: str
    start_time: time
    end_time: time
    skip_reason: str
    skip_details: dict

    def as_dict(self) -> dict[str, object]:
        return {
            "scheduled_date": self.scheduled_date.isoformat(),
            "day_of_week": self.day_of_week,
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "skip_reason": self.skip_reason,
            "skip_details": self.skip_details,
        }


@dataclass(frozen=True)
class AcademicContext:
    academic_year_id: Optional[str] = None
    academic_year_name: Optional[str] = None
    semester_id: Optional[str] = None
    semester_name: Optional[str] = None
    teaching_break_days: int = 0
    public_holiday_days: int = 0
    total_non_teaching_days: int = 0

    def as_dict(self) -> dict[str, object]:
        return {
            "academic_year_id": self.academic_year_id,
            "academic_year_name": self.academic_year_name,
            "semester_id": self.semester_id,
            "semester_name": self.semester_name,
            "teaching_break_days": self.teaching_break_days,
            "public_holiday_days": self.public_holiday_days,
            "total_non_teaching_days": self.total_non_teaching_days,
        }


@dataclass
class GenerationResult:
    class_id: str
    generation_mode: str
    generation_start_date: date
    generation_end_date: date
    academic_context: AcademicContext = field(default_factory=AcademicContext)
    generated_lessons: List[Lesson] = field(default_factory=list)
    skipped_lessons: List[SkippedLesson] = field(default_factory=list)
    public_holiday_skips: int = 0
    teaching_break_skips: int = 0
    conflict_count: int = 0
    errors: List[str] = field(default_factory=list)
    log_id: Optional[int] = None

    @property
    def generated_count(self) -> int:
        return len(self.generated_lessons)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_lessons)

    def as_dict(self) -> dict[str, object]:
        return {
            "class_id": self.class_id,
            "generation_mode": self.generation_mode,
            "generation_start_date": self.generation_start_date.isoformat(),
            "generation_end_date": self.generation_end_date.isoformat(),
            "generated_count": self.generated_count,
            "skipped_count": self.skipped_count,
            "conflict_count": self.conflict_count,
            "public_holiday_skips": self.public_holiday_skips,
            "teaching_break_skips": self.teaching_break_skips,
            "academic_context": self.academic_context.as_dict(),
            "generated_lessons": [
                {
                    "id": lesson.id,
                    "scheduled_date": lesson.scheduled_date.isoformat(),
                    "day_of_week": lesson.day_of_week,
                    "start_time": lesson.start_time.strftime("%H:%M"),
                    "end_time": lesson.end_time.strftime("%H:%M"),
                    "status_name": lesson.status_name,
                }
                for lesson in self.generated_lessons
            ],
            "skipped_lessons": [skipped.as_dict() for skipped in self.skipped_lessons],
            "errors": list(self.errors),
            "log_id": self.log_id,
        }


class GenerationReporter:
    MAX_DETAILED_ENTRIES = 50
    MAX_TOTAL_ENTRIES = 120
    LEVELS = {
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    def __init__(self, resources: ClassResources, generation_mode: str, session=None) -> None:
        self.resources = resources
        self.generation_mode = generation_mode
        self.session = session or db.session
        self.window_start: date | None = None
        self.window_end: date | None = None
        self.entries: list[dict[str, object]] = []
        self.status = "success"
        self.summary: str | None = None
        self._record: LessonGenerationLog | None = None

    def set_window(self, start: date, end: date) -> None:
        self.window_start = start
        self.window_end = end
        self.info(f"Generation window: {start} to {end} ({self.generation_mode})")

    def info(self, message: str) -> None:
        self._add_entry("info", message)

    def warning(self, message: str) -> None:
        self._add_entry("warning", message)
        self.status = "warning"

    def lesson_created(self, lesson: Lesson) -> None:
        self.info(
            f"Lesson scheduled on {lesson.day_of_week} {lesson.scheduled_date} "
            f"{lesson.time_range_label}"
        )

    def lesson_skipped(self, skipped: SkippedLesson) -> None:
        label = f"{skipped.day_of_week} {skipped.scheduled_date}"
        if skipped.skip_reason == SKIP_EXISTING_LESSON_CONFLICT:
            details = skipped.skip_details.get("conflict_details", {})
            self.warning(
                f"Skipped {label}: conflicts with {details.get('conflicting_class_name')} "
                f"({details.get('conflict_type')})"
            )
        else:
            details = skipped.skip_details.get("break_details", {})
            self.info(f"Skipped {label}: {details.get('break_name')} ({details.get('break_type')})")

    def finalise(self, result: GenerationResult) -> LessonGenerationLog:
        if self._record is not None:
            return self._record
        if self.summary is None:
            self.summary = (
                f"{result.generated_count} lesson(s) generated, "
                f"{result.skipped_count} skipped ({result.conflict_count} conflict(s))"
            )
        log = LessonGenerationLog(
            class_id=self.resources.class_id,
            generation_mode=self.generation_mode,
            status=self.status,
            summary=self.summary,
            messages=json.dumps(self._serialise_entries(), ensure_ascii=False),
            window_start=self.window_start,
            window_end=self.window_end,
        )
        self.session.add(log)
        self._record = log
        return log

    def _add_entry(self, level: str, message: str) -> None:
        text = message.strip()
        if not text:
            return
        self.entries.append({"level": level, "message": text})
        logger = getattr(current_app, "logger", None)
        if logger is not None:
            logger.log(self.LEVELS.get(level, logging.INFO), "[%s] %s", self.resources.class_name, text)

    def _serialise_entries(self) -> list[dict[str, object]]:
        if len(self.entries) <= self.MAX_DETAILED_ENTRIES:
            return [dict(entry) for entry in self.entries]

        detailed = [dict(entry) for entry in self.entries[: self.MAX_DETAILED_ENTRIES]]
        summary_counts: dict[tuple[str, str], int] = {}
        summary_order: list[tuple[str, str]] = []
        for entry in self.entries[self.MAX_DETAILED_ENTRIES :]:
            key = (entry["level"], entry["message"])
            if key not in summary_counts:
                summary_counts[key] = 0
                summary_order.append(key)
            summary_counts[key] += 1

        for level, message in summary_order:
            count = summary_counts[(level, message)]
            detailed.append({"level": level, "message": f"{message} (summary {count}x)"})
            if len(detailed) >= self.MAX_TOTAL_ENTRIES:
                break
        return detailed[: self.MAX_TOTAL_ENTRIES]


class BulkGenerator:
    """Materializes a class's weekly template over a date range.

    Per-day outcomes never raise; structural problems raise
    :class:`ValidationError` before anything is written.
    """

    def __init__(
        self,
        detector: ConflictDetector,
        machine: LessonStatusMachine,
        *,
        calendar: AcademicCalendar | None = None,
        roster: RosterService | None = None,
        clock: Clock | None = None,
        session=None,
    ) -> None:
        self.session = session or db.session
        self.detector = detector
        self.machine = machine
        self.calendar = calendar or AcademicCalendar(self.session)
        self.roster = roster or RosterService(self.session)
        self.clock = clock or SystemClock()

    def resolve_window(
        self, request: GenerationRequest
    ) -> tuple[date, date, Optional[AcademicYear], Optional[Semester]]:
        mode = request.generation_mode
        year: Optional[AcademicYear] = None
        semester: Optional[Semester] = None
        if mode == GenerationMode.CUSTOM_RANGE:
            if request.start_date is None or request.end_date is None:
                raise ValidationError("A custom range needs both a start and an end date.", field="start_date")
            start, end = request.start_date, request.end_date
        elif mode == GenerationMode.MONTH:
            today = self.clock.today()
            last_day = month_calendar.monthrange(today.year, today.month)[1]
            start, end = today.replace(day=1), today.replace(day=last_day)
        elif mode == GenerationMode.SEMESTER:
            if not request.semester_id:
                raise ValidationError("Semester generation needs a semester id.", field="semester_id")
            semester = self.calendar.get_semester(request.semester_id)
            year = semester.academic_year
            start, end = semester.as_range()
        elif mode == GenerationMode.FULL_YEAR:
            if not request.academic_year_id:
                raise ValidationError(
                    "Full-year generation needs an academic year id.", field="academic_year_id"
                )
            year = self.calendar.get_academic_year(request.academic_year_id)
            start, end = year.as_range()
        else:
            raise ValidationError(f"Unknown generation mode '{mode}'.", field="generation_mode")

        if end < start:
            raise ValidationError("The end date must not be before the start date.", field="end_date")
        if year is None:
            if request.academic_year_id:
                year = self.calendar.get_academic_year(request.academic_year_id)
            else:
                year = self.calendar.year_for(start)
        if semester is None and request.semester_id:
            semester = self.calendar.get_semester(request.semester_id)
        return start, end, year, semester

    def generate(self, request: GenerationRequest) -> GenerationResult:
        resources = self.roster.resolve(request.class_id, error=ValidationError)
        class_group = self.roster.get_class(request.class_id, error=ValidationError)
        schedules: list[ClassSchedule] = list(class_group.schedules)
        if not schedules:
            raise ValidationError(
                f"Class {class_group.name} has no weekly schedule to generate from.",
                field="class_id",
            )
        start, end, year, semester = self.resolve_window(request)
        gate = self.calendar.gate_for(start, end)

        reporter = GenerationReporter(resources, request.generation_mode, self.session)
        reporter.set_window(start, end)
        result = GenerationResult(
            class_id=resources.class_id,
            generation_mode=request.generation_mode,
            generation_start_date=start,
            generation_end_date=end,
            academic_context=AcademicContext(
                academic_year_id=year.id if year else None,
                academic_year_name=year.name if year else None,
                semester_id=semester.id if semester else None,
                semester_name=semester.name if semester else None,
                teaching_break_days=gate.count_days(KIND_TEACHING_BREAK),
                public_holiday_days=gate.count_days(KIND_PUBLIC_HOLIDAY),
                total_non_teaching_days=gate.total_days,
            ),
        )
        base_details = {
            "generation_mode": request.generation_mode,
            "respect_holidays_enabled": request.respect_holidays,
            "respect_breaks_enabled": request.respect_breaks,
            "academic_year_id": year.id if year else None,
            "actual_date_range": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        }

        for day in daterange(start, end):
            for schedule in schedules:
                if schedule.weekday != day.weekday():
                    continue
                self._generate_day(day, schedule, request, resources, gate, base_details, result, reporter)

        if result.conflict_count:
            reporter.warning(f"{result.conflict_count} day(s) skipped because of conflicts")
        log = reporter.finalise(result)
        self.session.flush()
        result.log_id = log.id
        return result

    def _generate_day(
        self,
        day: date,
        schedule: ClassSchedule,
        request: GenerationRequest,
        resources: ClassResources,
        gate: CalendarGate,
        base_details: dict,
        result: GenerationResult,
        reporter: GenerationReporter,
    ) -> None:
        holiday = gate.holiday_on(day) if request.respect_holidays else None
        teaching_break = gate.break_on(day) if request.respect_breaks and holiday is None else None
        if holiday is not None:
            details = dict(base_details, holiday_details=holiday.holiday_details())
            details["break_details"] = dict(holiday.break_details(), break_type=BREAK_TYPE_HOLIDAY)
            self._skip(day, schedule, SKIP_TEACHING_BREAK, details, result, reporter)
            result.public_holiday_skips += 1
            return
        if teaching_break is not None:
            details = dict(base_details, break_details=teaching_break.break_details())
            self._skip(day, schedule, SKIP_TEACHING_BREAK, details, result, reporter)
            result.teaching_break_skips += 1
            return

        candidate = ConflictCandidate(
            class_id=resources.class_id,
            scheduled_date=day,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            teacher_id=resources.teacher_id,
            classroom_id=resources.classroom_id,
        )
        conflicts = self.detector.find_conflicts(candidate, resources)
        if conflicts:
            details = dict(base_details, **self._conflict_details(conflicts[0]))
            self._skip(day, schedule, SKIP_EXISTING_LESSON_CONFLICT, details, result, reporter)
            result.conflict_count += 1
            return

        lesson = self.machine.create(
            class_id=resources.class_id,
            scheduled_date=day,
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            teacher_id=resources.teacher_id,
            classroom_id=resources.classroom_id,
            generation_source=GenerationSource.AUTOMATIC,
            teacher_name=resources.teacher_name,
            classroom_name=resources.classroom_name,
            allow_past=True,
        )
        self.session.add(lesson)
        result.generated_lessons.append(lesson)
        reporter.lesson_created(lesson)

    @staticmethod
    def _skip(
        day: date,
        schedule: ClassSchedule,
        reason: str,
        details: dict,
        result: GenerationResult,
        reporter: GenerationReporter,
    ) -> None:
        skipped = SkippedLesson(
            scheduled_date=day,
            day_of_week=WEEKDAY_NAMES[day.weekday()],
            start_time=schedule.start_time,
            end_time=schedule.end_time,
            skip_reason=reason,
            skip_details=details,
        )
        result.skipped_lessons.append(skipped)
        reporter.lesson_skipped(skipped)

    @staticmethod
    def _conflict_details(conflict: Conflict) -> dict[str, dict[str, object]]:
        return {
            "conflict_details": {
                "conflicting_lesson_id": conflict.lesson_id,
                "conflicting_class_id": conflict.class_id,
                "conflicting_class_name": conflict.class_name,
                "conflicting_teacher_name": conflict.teacher_name,
                "conflicting_classroom_name": conflict.classroom_name,
                "conflicting_start_time": conflict.start_time.strftime("%H:%M"),
                "conflicting_end_time": conflict.end_time.strftime("%H:%M"),
                "conflicting_lesson_status": conflict.status_name,
                "conflict_type": conflict.conflict_type,
            },
            "existing_lesson_details": {
                "lesson_id": conflict.lesson_id,
                "scheduled_date": conflict.scheduled_date.isoformat(),
                "time_range": conflict.time_range,
                "status_name": conflict.status_name,
                "details": conflict.details,
            },
        }


def non_teaching_summary(days: Iterable[NonTeachingDay]) -> dict[str, int]:
    gate = CalendarGate(days)
    return {
        "teaching_break_days": gate.count_days(KIND_TEACHING_BREAK),
        "public_holiday_days": gate.count_days(KIND_PUBLIC_HOLIDAY),
        "total_non_teaching_days": gate.total_days,
    }
