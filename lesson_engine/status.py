"""Lesson lifecycle rules: the conduct window and the status machine."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from math import ceil
from typing import Optional

from .clock import Clock
from .conflicts import ConflictCandidate, ConflictDetector
from .errors import ConflictError, InvalidTransition, ValidationError
from .models import GenerationSource, Lesson, LessonStatus

REASON_TOO_EARLY = "too early"
REASON_ALREADY_RESOLVED = "already resolved"

DEFAULT_CONDUCT_GRACE_MINUTES = 15

TRANSITIONS: dict[str, frozenset[str]] = {
    LessonStatus.SCHEDULED: frozenset({LessonStatus.CONDUCTED, LessonStatus.CANCELLED, LessonStatus.NO_SHOW}),
    LessonStatus.MAKE_UP: frozenset({LessonStatus.CONDUCTED, LessonStatus.CANCELLED, LessonStatus.NO_SHOW}),
    LessonStatus.CONDUCTED: frozenset(),
    LessonStatus.CANCELLED: frozenset(),
    LessonStatus.NO_SHOW: frozenset(),
}


def validate_slot(
    scheduled_date: date,
    start_time: time,
    end_time: time,
    *,
    today: date | None = None,
) -> None:
    """Reject out-of-order times and, when ``today`` is given, past dates."""
    if end_time <= start_time:
        raise ValidationError("The end time must be after the start time.", field="end_time")
    if today is not None and scheduled_date < today:
        raise ValidationError(
            f"Lessons cannot be scheduled in the past ({scheduled_date.isoformat()}).",
            field="scheduled_date",
        )


def validate_text(value: Optional[str], *, field: str, max_length: int, min_length: int = 0) -> Optional[str]:
    cleaned = (value or "").strip()
    if len(cleaned) < min_length:
        raise ValidationError(
            f"The {field.replace('_', ' ')} must be at least {min_length} characters long.",
            field=field,
        )
    if len(cleaned) > max_length:
        raise ValidationError(
            f"The {field.replace('_', ' ')} must not exceed {max_length} characters.",
            field=field,
        )
    return cleaned or None


@dataclass(frozen=True)
class ConductWindow:
    can_conduct: bool
    is_past_unstarted: bool
    reason: Optional[str]
    minutes_until_allowed: int

    def as_dict(self) -> dict[str, object]:
        return {
            "can_conduct": self.can_conduct,
            "is_past_unstarted": self.is_past_unstarted,
            "cannot_conduct_reason": self.reason,
            "minutes_until_allowed": self.minutes_until_allowed,
        }


class ConductWindowPolicy:
    """Decides whether a lesson can be marked conducted at the clock's now.

    A lesson may be conducted from ``grace_minutes`` before its start with no
    upper bound; once its end has passed while still upcoming it is
    "past unstarted" and needs explicit documentation.
    """

    def __init__(self, clock: Clock, grace_minutes: int = DEFAULT_CONDUCT_GRACE_MINUTES) -> None:
        self.clock = clock
        self.grace = timedelta(minutes=max(int(grace_minutes), 0))

    def window_opens_at(self, scheduled_date: date, start_time: time) -> datetime:
        return datetime.combine(scheduled_date, start_time) - self.grace

    def can_conduct(self, status_name: str, scheduled_date: date, start_time: time) -> bool:
        if status_name not in LessonStatus.UPCOMING:
            return False
        return self.clock.now() >= self.window_opens_at(scheduled_date, start_time)

    def is_past_unstarted(self, status_name: str, scheduled_date: date, end_time: time) -> bool:
        if status_name not in LessonStatus.UPCOMING:
            return False
        return self.clock.now() > datetime.combine(scheduled_date, end_time)

    def minutes_until_allowed(self, scheduled_date: date, start_time: time) -> int:
        remaining = self.window_opens_at(scheduled_date, start_time) - self.clock.now()
        if remaining <= timedelta(0):
            return 0
        return ceil(remaining.total_seconds() / 60)

    def cannot_conduct_reason(
        self,
        status_name: str,
        scheduled_date: date,
        start_time: time,
        end_time: time,
    ) -> Optional[str]:
        if self.can_conduct(status_name, scheduled_date, start_time):
            return None
        if self.is_past_unstarted(status_name, scheduled_date, end_time):
            return None
        if status_name not in LessonStatus.UPCOMING:
            return REASON_ALREADY_RESOLVED
        return REASON_TOO_EARLY

    def evaluate(self, lesson: Lesson) -> ConductWindow:
        args = (lesson.status_name, lesson.scheduled_date)
        return ConductWindow(
            can_conduct=self.can_conduct(*args, lesson.start_time),
            is_past_unstarted=self.is_past_unstarted(*args, lesson.end_time),
            reason=self.cannot_conduct_reason(*args, lesson.start_time, lesson.end_time),
            minutes_until_allowed=(
                self.minutes_until_allowed(lesson.scheduled_date, lesson.start_time)
                if lesson.is_upcoming
                else 0
            ),
        )


class LessonStatusMachine:
    """Validates and applies state changes to a single lesson row.

    The machine never commits; callers own the transaction.
    """

    def __init__(
        self,
        clock: Clock,
        policy: ConductWindowPolicy,
        *,
        detector: ConflictDetector | None = None,
        reason_min_length: int = 5,
        reason_max_length: int = 500,
        reschedule_reason_max_length: int = 500,
        notes_max_length: int = 1000,
    ) -> None:
        self.clock = clock
        self.policy = policy
        self.detector = detector
        self.reason_min_length = reason_min_length
        self.reason_max_length = reason_max_length
        self.reschedule_reason_max_length = reschedule_reason_max_length
        self.notes_max_length = notes_max_length

    @staticmethod
    def can_transition(source: str, target: str) -> bool:
        return target in TRANSITIONS.get(source, frozenset())

    def ensure_transition(self, lesson: Lesson, target: str) -> None:
        if not self.can_transition(lesson.status_name, target):
            raise InvalidTransition(lesson.status_name, target)

    def create(
        self,
        *,
        class_id: str,
        scheduled_date: date,
        start_time: time,
        end_time: time,
        teacher_id: str,
        classroom_id: str,
        generation_source: str = GenerationSource.MANUAL,
        notes: Optional[str] = None,
        original_lesson_id: Optional[str] = None,
        teacher_name: Optional[str] = None,
        classroom_name: Optional[str] = None,
        allow_past: bool = False,
    ) -> Lesson:
        validate_slot(
            scheduled_date,
            start_time,
            end_time,
            today=None if allow_past else self.clock.today(),
        )
        if generation_source not in GenerationSource.CHOICES:
            raise ValidationError(f"Unknown generation source '{generation_source}'.", field="generation_source")
        status_name = LessonStatus.SCHEDULED
        if generation_source == GenerationSource.MAKEUP:
            if not original_lesson_id:
                raise ValidationError("A makeup lesson must reference its original lesson.")
            status_name = LessonStatus.MAKE_UP
        now = self.clock.now()
        return Lesson(
            class_id=class_id,
            scheduled_date=scheduled_date,
            start_time=start_time,
            end_time=end_time,
            teacher_id=teacher_id,
            classroom_id=classroom_id,
            status_name=status_name,
            generation_source=generation_source,
            original_lesson_id=original_lesson_id,
            notes=validate_text(notes, field="notes", max_length=self.notes_max_length),
            teacher_name_snapshot=teacher_name,
            classroom_name_snapshot=classroom_name,
            created_at=now,
            updated_at=now,
        )

    def conduct(self, lesson: Lesson, notes: Optional[str] = None) -> Lesson:
        self.ensure_transition(lesson, LessonStatus.CONDUCTED)
        if not self.policy.can_conduct(lesson.status_name, lesson.scheduled_date, lesson.start_time):
            reason = self.policy.cannot_conduct_reason(
                lesson.status_name, lesson.scheduled_date, lesson.start_time, lesson.end_time
            )
            minutes = self.policy.minutes_until_allowed(lesson.scheduled_date, lesson.start_time)
            raise InvalidTransition(
                lesson.status_name,
                LessonStatus.CONDUCTED,
                f"Lesson cannot be conducted yet ({reason}); the window opens in {minutes} minute(s).",
            )
        cleaned = validate_text(notes, field="notes", max_length=self.notes_max_length)
        now = self.clock.now()
        lesson.status_name = LessonStatus.CONDUCTED
        lesson.conducted_at = now
        if cleaned is not None:
            lesson.notes = cleaned
        lesson.touch(now)
        return lesson

    def cancel(self, lesson: Lesson, reason: Optional[str]) -> Lesson:
        self.ensure_transition(lesson, LessonStatus.CANCELLED)
        cleaned = validate_text(
            reason,
            field="cancellation_reason",
            min_length=max(self.reason_min_length, 1),
            max_length=self.reason_max_length,
        )
        lesson.status_name = LessonStatus.CANCELLED
        lesson.cancellation_reason = cleaned
        lesson.touch(self.clock.now())
        return lesson

    def mark_no_show(self, lesson: Lesson, notes: Optional[str] = None) -> Lesson:
        self.ensure_transition(lesson, LessonStatus.NO_SHOW)
        now = self.clock.now()
        if now < lesson.scheduled_start:
            raise InvalidTransition(
                lesson.status_name,
                LessonStatus.NO_SHOW,
                "A lesson can only be marked as a no-show once it has started.",
            )
        cleaned = validate_text(notes, field="notes", max_length=self.notes_max_length)
        lesson.status_name = LessonStatus.NO_SHOW
        if cleaned is not None:
            lesson.notes = cleaned
        lesson.touch(now)
        return lesson

    def reschedule(
        self,
        lesson: Lesson,
        new_date: date,
        new_start: time,
        new_end: time,
        reason: Optional[str] = None,
    ) -> Lesson:
        if not lesson.is_upcoming:
            raise InvalidTransition(
                lesson.status_name,
                lesson.status_name,
                f"A lesson in status '{lesson.status_name}' cannot be rescheduled.",
            )
        validate_slot(new_date, new_start, new_end, today=self.clock.today())
        if (new_date, new_start, new_end) == (lesson.scheduled_date, lesson.start_time, lesson.end_time):
            raise ValidationError("The new date and time are identical to the current schedule.")
        cleaned = validate_text(reason, field="reschedule_reason", max_length=self.reschedule_reason_max_length)

        if self.detector is not None:
            candidate = ConflictCandidate(
                class_id=lesson.class_id,
                scheduled_date=new_date,
                start_time=new_start,
                end_time=new_end,
                exclude_lesson_id=lesson.id,
                teacher_id=lesson.teacher_id,
                classroom_id=lesson.classroom_id,
            )
            report = self.detector.check(candidate)
            if report.has_conflicts:
                raise ConflictError(
                    "The new slot conflicts with existing lessons.",
                    report.conflicts,
                    report.suggestions,
                )

        lesson.scheduled_date = new_date
        lesson.start_time = new_start
        lesson.end_time = new_end
        if cleaned is not None:
            lesson.reschedule_reason = cleaned
        lesson.touch(self.clock.now())
        return lesson
