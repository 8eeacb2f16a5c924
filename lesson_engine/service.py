"""Facade tying the lesson components to the session, clock and locks."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Iterator, List, Optional

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .academic_calendar import AcademicCalendar, NonTeachingDay
from .clock import CLOCK_EXTENSION_KEY, Clock, SystemClock
from .conflicts import ConflictCandidate, ConflictDetector, ConflictReport
from .errors import (
    AlreadyHasMakeup,
    ConflictError,
    LessonEngineError,
    NotFoundError,
    StorageError,
)
from .extensions import db
from .generation import BulkGenerator, GenerationRequest, GenerationResult
from .locks import ClassLockRegistry, class_locks
from .makeup import MakeupLinkage, MakeupSlot
from .models import Lesson, LessonStatus
from .roster import RosterService
from .status import ConductWindow, ConductWindowPolicy, LessonStatusMachine, validate_slot


def _parse_clock_time(value, default: time) -> time:
    if isinstance(value, time):
        return value
    if not value:
        return default
    hours, _, minutes = str(value).partition(":")
    return time(int(hours), int(minutes or 0))


@dataclass
class CancellationResult:
    lesson: Lesson
    makeup_lesson: Optional[Lesson] = None
    makeup_error: Optional[LessonEngineError] = None


class LessonService:
    def __init__(
        self,
        session=None,
        *,
        clock: Clock | None = None,
        config: dict | None = None,
        locks: ClassLockRegistry | None = None,
        logger=None,
    ) -> None:
        config = config or {}
        self.session = session or db.session
        self.clock = clock or SystemClock()
        self.locks = locks or class_locks
        self.logger = logger or current_app.logger

        self.calendar = AcademicCalendar(self.session)
        self.roster = RosterService(self.session)
        self.detector = ConflictDetector(
            self.session,
            roster=self.roster,
            calendar=self.calendar,
            clock=self.clock,
            day_start=_parse_clock_time(config.get("SUGGESTION_DAY_START"), time(7, 0)),
            day_end=_parse_clock_time(config.get("SUGGESTION_DAY_END"), time(21, 0)),
            step_minutes=config.get("SUGGESTION_STEP_MINUTES", 30),
            suggestion_limit=config.get("SUGGESTION_LIMIT", 3),
        )
        self.policy = ConductWindowPolicy(self.clock, config.get("CONDUCT_GRACE_MINUTES", 15))
        self.machine = LessonStatusMachine(
            self.clock,
            self.policy,
            detector=self.detector,
            reason_min_length=config.get("CANCELLATION_REASON_MIN_LENGTH", 5),
            reason_max_length=config.get("CANCELLATION_REASON_MAX_LENGTH", 500),
            reschedule_reason_max_length=config.get("RESCHEDULE_REASON_MAX_LENGTH", 500),
            notes_max_length=config.get("NOTES_MAX_LENGTH", 1000),
        )
        self.linkage = MakeupLinkage(self.detector, self.machine, self.session)
        self.generator = BulkGenerator(
            self.detector,
            self.machine,
            calendar=self.calendar,
            roster=self.roster,
            clock=self.clock,
            session=self.session,
        )

    @classmethod
    def from_app(cls, app=None) -> "LessonService":
        app = app or current_app._get_current_object()
        return cls(
            db.session,
            clock=app.extensions.get(CLOCK_EXTENSION_KEY),
            config=app.config,
            logger=app.logger,
        )

    # Transactions ---------------------------------------------------
    @contextmanager
    def _transaction(self, action: str) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except LessonEngineError as exc:
            self.session.rollback()
            self.logger.warning("Rejected %s: %s", action, exc.message)
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            self.logger.exception("Storage failure while %s", action)
            raise StorageError(f"Could not persist {action}; please retry.") from exc

    @contextmanager
    def _reading(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            self.logger.exception("Storage failure while %s", action)
            raise StorageError(f"Could not load {action}; please retry.") from exc

    # Queries --------------------------------------------------------
    def get_lesson(self, lesson_id: str) -> Lesson:
        with self._reading("lesson"):
            lesson = self.session.get(Lesson, lesson_id)
        if lesson is None:
            raise NotFoundError(f"Unknown lesson {lesson_id}.")
        return lesson

    def list_lessons(
        self,
        *,
        class_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        classroom_id: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        generation_source: Optional[str] = None,
    ) -> List[Lesson]:
        stmt = select(Lesson)
        if class_id:
            stmt = stmt.where(Lesson.class_id == class_id)
        if teacher_id:
            stmt = stmt.where(Lesson.teacher_id == teacher_id)
        if classroom_id:
            stmt = stmt.where(Lesson.classroom_id == classroom_id)
        if status:
            stmt = stmt.where(Lesson.status_name == status)
        if start_date:
            stmt = stmt.where(Lesson.scheduled_date >= start_date)
        if end_date:
            stmt = stmt.where(Lesson.scheduled_date <= end_date)
        if generation_source:
            stmt = stmt.where(Lesson.generation_source == generation_source)
        stmt = stmt.order_by(Lesson.scheduled_date, Lesson.start_time, Lesson.id)
        with self._reading("lessons"):
            return list(self.session.execute(stmt).scalars())

    def conduct_window(self, lesson: Lesson) -> ConductWindow:
        return self.policy.evaluate(lesson)

    def check_conflicts(self, candidate: ConflictCandidate) -> ConflictReport:
        with self._reading("conflicts"):
            report = self.detector.check(candidate)
        if report.has_conflicts:
            self.logger.warning(
                "%d conflict(s) for class %s on %s %s-%s",
                len(report.conflicts),
                candidate.class_id,
                candidate.scheduled_date,
                candidate.start_time.strftime("%H:%M"),
                candidate.end_time.strftime("%H:%M"),
            )
        return report

    def past_unstarted_lessons(self, class_id: Optional[str] = None) -> List[Lesson]:
        stmt = (
            select(Lesson)
            .where(Lesson.status_name.in_(sorted(LessonStatus.UPCOMING)))
            .where(Lesson.scheduled_date <= self.clock.today())
            .order_by(Lesson.scheduled_date, Lesson.start_time, Lesson.id)
        )
        if class_id:
            stmt = stmt.where(Lesson.class_id == class_id)
        with self._reading("past lessons"):
            lessons = list(self.session.execute(stmt).scalars())
        return [
            lesson
            for lesson in lessons
            if self.policy.is_past_unstarted(lesson.status_name, lesson.scheduled_date, lesson.end_time)
        ]

    def lesson_summary(self, class_id: str) -> dict[str, object]:
        with self._reading("lesson summary"):
            class_group = self.roster.get_class(class_id)
            rows = self.session.execute(
                select(Lesson.status_name, func.count(Lesson.id))
                .where(Lesson.class_id == class_id)
                .group_by(Lesson.status_name)
            ).all()
            today = self.clock.today()
            upcoming = list(
                self.session.execute(
                    select(Lesson)
                    .where(Lesson.class_id == class_id)
                    .where(Lesson.status_name.in_(sorted(LessonStatus.UPCOMING)))
                    .where(Lesson.scheduled_date >= today)
                    .order_by(Lesson.scheduled_date, Lesson.start_time)
                ).scalars()
            )
        now = self.clock.now()
        upcoming = [lesson for lesson in upcoming if lesson.scheduled_start >= now]
        horizon = today + timedelta(days=7)
        totals = {status_name: 0 for status_name in LessonStatus.CHOICES}
        for status_name, count in rows:
            totals[status_name] = count
        return {
            "class_id": class_group.id,
            "class_name": class_group.name,
            "total_lessons": sum(totals.values()),
            "by_status": totals,
            "upcoming_within_7_days": sum(1 for lesson in upcoming if lesson.scheduled_date <= horizon),
            "next_lesson_date": upcoming[0].scheduled_date.isoformat() if upcoming else None,
            "past_unstarted": len(self.past_unstarted_lessons(class_id)),
        }

    def non_teaching_days(self, start: date, end: date) -> List[NonTeachingDay]:
        with self._reading("calendar"):
            return self.calendar.get_non_teaching_days(start, end)

    # Mutations ------------------------------------------------------
    def generate_lessons(self, request: GenerationRequest) -> GenerationResult:
        with self.locks.hold(request.class_id):
            with self._transaction(f"lesson generation for class {request.class_id}"):
                result = self.generator.generate(request)
        self.logger.info(
            "Generated %d lesson(s) for class %s (%s skipped, %s conflict(s))",
            result.generated_count,
            request.class_id,
            result.skipped_count,
            result.conflict_count,
        )
        return result

    def create_lesson(
        self,
        class_id: str,
        scheduled_date: date,
        start_time: time,
        end_time: time,
        notes: Optional[str] = None,
        *,
        teacher_id: Optional[str] = None,
        classroom_id: Optional[str] = None,
    ) -> Lesson:
        with self.locks.hold(class_id):
            with self._transaction(f"new lesson for class {class_id}"):
                validate_slot(scheduled_date, start_time, end_time, today=self.clock.today())
                candidate = ConflictCandidate(
                    class_id=class_id,
                    scheduled_date=scheduled_date,
                    start_time=start_time,
                    end_time=end_time,
                    teacher_id=teacher_id,
                    classroom_id=classroom_id,
                )
                resources = self.detector.resources_for(candidate)
                report = self.detector.check(candidate)
                if report.has_conflicts:
                    raise ConflictError(
                        "The requested slot conflicts with existing lessons.",
                        report.conflicts,
                        report.suggestions,
                    )
                lesson = self.machine.create(
                    class_id=class_id,
                    scheduled_date=scheduled_date,
                    start_time=start_time,
                    end_time=end_time,
                    teacher_id=resources.teacher_id,
                    classroom_id=resources.classroom_id,
                    notes=notes,
                    teacher_name=resources.teacher_name,
                    classroom_name=resources.classroom_name,
                )
                self.session.add(lesson)
        self.logger.info("Lesson %s created for class %s on %s", lesson.id, class_id, scheduled_date)
        return lesson

    def cancel_lesson(
        self,
        lesson_id: str,
        reason: Optional[str],
        makeup_slot: Optional[MakeupSlot] = None,
        makeup_notes: Optional[str] = None,
    ) -> CancellationResult:
        lesson = self.get_lesson(lesson_id)
        with self._transaction(f"cancellation of lesson {lesson_id}"):
            self.machine.cancel(lesson, reason)
        self.logger.info("Lesson %s cancelled", lesson_id)
        result = CancellationResult(lesson=lesson)
        if makeup_slot is None:
            return result
        try:
            result.makeup_lesson = self.create_makeup(lesson_id, makeup_slot, makeup_notes)
        except LessonEngineError as exc:
            result.makeup_error = exc
            self.logger.warning("Lesson %s cancelled without makeup: %s", lesson_id, exc.message)
        return result

    def conduct_lesson(self, lesson_id: str, notes: Optional[str] = None) -> Lesson:
        lesson = self.get_lesson(lesson_id)
        with self._transaction(f"conduct of lesson {lesson_id}"):
            self.machine.conduct(lesson, notes)
        self.logger.info("Lesson %s conducted", lesson_id)
        return lesson

    def mark_no_show(self, lesson_id: str, notes: Optional[str] = None) -> Lesson:
        lesson = self.get_lesson(lesson_id)
        with self._transaction(f"no-show of lesson {lesson_id}"):
            self.machine.mark_no_show(lesson, notes)
        self.logger.info("Lesson %s marked as no-show", lesson_id)
        return lesson

    def reschedule_lesson(
        self,
        lesson_id: str,
        new_date: date,
        new_start: time,
        new_end: time,
        reason: Optional[str] = None,
    ) -> Lesson:
        lesson = self.get_lesson(lesson_id)
        with self.locks.hold(lesson.class_id):
            with self._transaction(f"reschedule of lesson {lesson_id}"):
                self.session.refresh(lesson)
                self.machine.reschedule(lesson, new_date, new_start, new_end, reason)
        self.logger.info("Lesson %s moved to %s %s", lesson_id, new_date, lesson.time_range_label)
        return lesson

    def create_makeup(
        self,
        cancelled_lesson_id: str,
        slot: MakeupSlot,
        notes: Optional[str] = None,
    ) -> Lesson:
        original = self.get_lesson(cancelled_lesson_id)
        with self.locks.hold(original.class_id):
            try:
                with self._transaction(f"makeup for lesson {cancelled_lesson_id}"):
                    self.session.refresh(original)
                    makeup = self.linkage.create_makeup(original, slot, notes)
            except StorageError as exc:
                if isinstance(exc.__cause__, IntegrityError):
                    existing = self.linkage.existing_makeup(self.get_lesson(cancelled_lesson_id))
                    if existing is not None:
                        raise AlreadyHasMakeup(cancelled_lesson_id, existing.id) from exc
                raise
        self.logger.info("Makeup lesson %s created for lesson %s", makeup.id, cancelled_lesson_id)
        return makeup
