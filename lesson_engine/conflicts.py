"""Overlap detection between a candidate slot and existing bookings."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import or_, select

from .academic_calendar import AcademicCalendar
from .clock import Clock, SystemClock
from .errors import ValidationError
from .extensions import db
from .models import Lesson, LessonStatus, WEEKDAY_NAMES
from .roster import ClassResources, RosterService

TEACHER_CONFLICT = "teacher_conflict"
CLASSROOM_CONFLICT = "classroom_conflict"
STUDENT_CONFLICT = "student_conflict"
EXISTING_LESSON = "existing_lesson"

SUGGESTION_SAME_DAY = "same_day"
SUGGESTION_NEXT_WEEK = "next_week"


def overlaps(a_start: time, a_end: time, b_start: time, b_end: time) -> bool:
    return a_start < b_end and b_start < a_end


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _from_minutes(total: int) -> time:
    return time(total // 60, total % 60)


def _format_time(value: time) -> str:
    return value.strftime("%H:%M")


@dataclass(frozen=True)
class ConflictCandidate:
    class_id: str
    scheduled_date: date
    start_time: time
    end_time: time
    exclude_lesson_id: Optional[str] = None
    teacher_id: Optional[str] = None
    classroom_id: Optional[str] = None

    def validate(self) -> None:
        if self.end_time <= self.start_time:
            raise ValidationError("The end time must be after the start time.", field="end_time")

    def moved_to(self, scheduled_date: date, start_time: time, end_time: time) -> "ConflictCandidate":
        return ConflictCandidate(
            class_id=self.class_id,
            scheduled_date=scheduled_date,
            start_time=start_time,
            end_time=end_time,
            exclude_lesson_id=self.exclude_lesson_id,
            teacher_id=self.teacher_id,
            classroom_id=self.classroom_id,
        )


@dataclass(frozen=True)
class Conflict:
    conflict_type: str
    lesson_id: str
    class_id: str
    class_name: str
    teacher_name: Optional[str]
    classroom_name: Optional[str]
    scheduled_date: date
    start_time: time
    end_time: time
    status_name: str
    details: str

    @property
    def time_range(self) -> str:
        return f"{_format_time(self.start_time)}-{_format_time(self.end_time)}"

    def as_dict(self) -> dict[str, object]:
        return {
            "conflict_type": self.conflict_type,
            "conflicting_lesson_id": self.lesson_id,
            "conflicting_class_id": self.class_id,
            "conflicting_class_name": self.class_name,
            "teacher_name": self.teacher_name,
            "classroom_name": self.classroom_name,
            "scheduled_date": self.scheduled_date.isoformat(),
            "start_time": _format_time(self.start_time),
            "end_time": _format_time(self.end_time),
            "time_range": self.time_range,
            "status_name": self.status_name,
            "conflict_details": self.details,
        }


@dataclass(frozen=True)
class Slot:
    scheduled_date: date
    start_time: time
    end_time: time
    suggestion_type: str = SUGGESTION_SAME_DAY

    @property
    def label(self) -> str:
        day_name = WEEKDAY_NAMES[self.scheduled_date.weekday()]
        prefix = "Same day" if self.suggestion_type == SUGGESTION_SAME_DAY else "Next week"
        return (
            f"{prefix} ({day_name} {self.scheduled_date.isoformat()} "
            f"{_format_time(self.start_time)}-{_format_time(self.end_time)})"
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "type": self.suggestion_type,
            "label": self.label,
            "scheduled_date": self.scheduled_date.isoformat(),
            "start_time": _format_time(self.start_time),
            "end_time": _format_time(self.end_time),
        }


@dataclass
class ConflictReport:
    conflicts: List[Conflict] = field(default_factory=list)
    suggestions: List[Slot] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def as_dict(self) -> dict[str, object]:
        return {
            "has_conflicts": self.has_conflicts,
            "conflicts": [conflict.as_dict() for conflict in self.conflicts],
            "suggestions": [suggestion.as_dict() for suggestion in self.suggestions],
        }


class ConflictDetector:
    """Stateless query object; every call reads the store afresh."""

    def __init__(
        self,
        session=None,
        *,
        roster: RosterService | None = None,
        calendar: AcademicCalendar | None = None,
        clock: Clock | None = None,
        day_start: time = time(7, 0),
        day_end: time = time(21, 0),
        step_minutes: int = 30,
        suggestion_limit: int = 3,
    ) -> None:
        self.session = session or db.session
        self.roster = roster or RosterService(self.session)
        self.calendar = calendar or AcademicCalendar(self.session)
        self.clock = clock or SystemClock()
        self.day_start = day_start
        self.day_end = day_end
        self.step_minutes = max(int(step_minutes), 1)
        self.suggestion_limit = max(int(suggestion_limit), 0)

    def resources_for(self, candidate: ConflictCandidate, **kwargs) -> ClassResources:
        return self.roster.resolve(
            candidate.class_id,
            teacher_id=candidate.teacher_id,
            classroom_id=candidate.classroom_id,
            **kwargs,
        )

    def find_conflicts(
        self,
        candidate: ConflictCandidate,
        resources: ClassResources | None = None,
    ) -> List[Conflict]:
        candidate.validate()
        resources = resources or self.resources_for(candidate)
        lessons = self._lessons_on(candidate, resources)
        return self._collect_conflicts(candidate, resources, lessons)

    def check(self, candidate: ConflictCandidate) -> ConflictReport:
        candidate.validate()
        resources = self.resources_for(candidate)
        lessons = self._lessons_on(candidate, resources)
        conflicts = self._collect_conflicts(candidate, resources, lessons)
        suggestions: list[Slot] = []
        if conflicts:
            suggestions = self.suggest(candidate, resources, same_day_lessons=lessons)
        return ConflictReport(conflicts=conflicts, suggestions=suggestions)

    def suggest(
        self,
        candidate: ConflictCandidate,
        resources: ClassResources,
        *,
        same_day_lessons: Sequence[Lesson] | None = None,
    ) -> List[Slot]:
        if self.suggestion_limit == 0:
            return []
        if same_day_lessons is None:
            same_day_lessons = self._lessons_on(candidate, resources)
        duration = _minutes(candidate.end_time) - _minutes(candidate.start_time)
        original_start = _minutes(candidate.start_time)
        now = self.clock.now()

        options: list[tuple[int, int]] = []
        start = _minutes(self.day_start)
        latest_start = _minutes(self.day_end) - duration
        while start <= latest_start:
            if start != original_start:
                slot_start = _from_minutes(start)
                slot_end = _from_minutes(start + duration)
                in_past = datetime.combine(candidate.scheduled_date, slot_start) < now
                if not in_past and self._is_free(slot_start, slot_end, same_day_lessons):
                    options.append((start, start - original_start))
            start += self.step_minutes
        options.sort(key=lambda item: (abs(item[1]), item[1] < 0))

        suggestions = [
            Slot(
                scheduled_date=candidate.scheduled_date,
                start_time=_from_minutes(start),
                end_time=_from_minutes(start + duration),
            )
            for start, _delta in options[: self.suggestion_limit]
        ]
        if suggestions:
            return suggestions

        next_week = candidate.moved_to(
            candidate.scheduled_date + timedelta(days=7),
            candidate.start_time,
            candidate.end_time,
        )
        if not self.calendar.gate_for(next_week.scheduled_date, next_week.scheduled_date).is_teachable(
            next_week.scheduled_date
        ):
            return []
        if self._collect_conflicts(next_week, resources, self._lessons_on(next_week, resources)):
            return []
        return [
            Slot(
                scheduled_date=next_week.scheduled_date,
                start_time=next_week.start_time,
                end_time=next_week.end_time,
                suggestion_type=SUGGESTION_NEXT_WEEK,
            )
        ]

    def _lessons_on(self, candidate: ConflictCandidate, resources: ClassResources) -> List[Lesson]:
        class_ids = {resources.class_id}
        class_ids.update(self.roster.classes_sharing_students(resources.class_id, resources.student_ids))
        stmt = (
            select(Lesson)
            .where(Lesson.scheduled_date == candidate.scheduled_date)
            .where(Lesson.status_name != LessonStatus.CANCELLED)
            .where(
                or_(
                    Lesson.teacher_id == resources.teacher_id,
                    Lesson.classroom_id == resources.classroom_id,
                    Lesson.class_id.in_(class_ids),
                )
            )
            .order_by(Lesson.start_time, Lesson.id)
        )
        if candidate.exclude_lesson_id:
            stmt = stmt.where(Lesson.id != candidate.exclude_lesson_id)
        return list(self.session.execute(stmt).scalars())

    def _collect_conflicts(
        self,
        candidate: ConflictCandidate,
        resources: ClassResources,
        lessons: Iterable[Lesson],
    ) -> List[Conflict]:
        conflicts: list[Conflict] = []
        for lesson in lessons:
            if lesson.id == candidate.exclude_lesson_id:
                continue
            if lesson.status_name == LessonStatus.CANCELLED:
                continue
            if not overlaps(candidate.start_time, candidate.end_time, lesson.start_time, lesson.end_time):
                continue
            for conflict_type in self._classify(lesson, resources):
                conflicts.append(self._build_conflict(conflict_type, lesson))
        return conflicts

    @staticmethod
    def _classify(lesson: Lesson, resources: ClassResources) -> List[str]:
        kinds: list[str] = []
        if lesson.teacher_id == resources.teacher_id:
            kinds.append(TEACHER_CONFLICT)
        if lesson.classroom_id == resources.classroom_id:
            kinds.append(CLASSROOM_CONFLICT)
        if not kinds:
            kinds.append(EXISTING_LESSON if lesson.class_id == resources.class_id else STUDENT_CONFLICT)
        return kinds

    @staticmethod
    def _build_conflict(conflict_type: str, lesson: Lesson) -> Conflict:
        class_name = lesson.class_group.name if lesson.class_group else lesson.class_id
        teacher_name = lesson.teacher.name if lesson.teacher else lesson.teacher_name_snapshot
        classroom_name = lesson.classroom.name if lesson.classroom else lesson.classroom_name_snapshot
        when = f"{lesson.scheduled_date.isoformat()} {lesson.time_range_label}"
        if conflict_type == TEACHER_CONFLICT:
            details = f"Teacher {teacher_name} is already teaching {class_name} on {when}."
        elif conflict_type == CLASSROOM_CONFLICT:
            details = f"Classroom {classroom_name} is already booked by {class_name} on {when}."
        elif conflict_type == STUDENT_CONFLICT:
            details = f"Students of this class also attend {class_name} on {when}."
        else:
            details = f"{class_name} already has a lesson on {when}."
        return Conflict(
            conflict_type=conflict_type,
            lesson_id=lesson.id,
            class_id=lesson.class_id,
            class_name=class_name,
            teacher_name=teacher_name,
            classroom_name=classroom_name,
            scheduled_date=lesson.scheduled_date,
            start_time=lesson.start_time,
            end_time=lesson.end_time,
            status_name=lesson.status_name,
            details=details,
        )

    @staticmethod
    def _is_free(start: time, end: time, lessons: Iterable[Lesson]) -> bool:
        return not any(
            overlaps(start, end, lesson.start_time, lesson.end_time)
            for lesson in lessons
            if lesson.status_name != LessonStatus.CANCELLED
        )
