"""The one-to-one link between a cancelled lesson and its makeup."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Optional

from sqlalchemy import select

from .conflicts import ConflictCandidate, ConflictDetector
from .errors import AlreadyHasMakeup, ConflictError, InvalidTransition
from .extensions import db
from .models import GenerationSource, Lesson, LessonStatus
from .status import LessonStatusMachine, validate_slot


@dataclass(frozen=True)
class MakeupSlot:
    scheduled_date: date
    start_time: time
    end_time: time
    teacher_id: Optional[str] = None
    classroom_id: Optional[str] = None


class MakeupLinkage:
    """Creates makeup lessons and keeps both sides of the link in step.

    Writes go through the given session without committing, so the caller
    commits the makeup row and the back-reference together or rolls both back.
    """

    def __init__(self, detector: ConflictDetector, machine: LessonStatusMachine, session=None) -> None:
        self.session = session or db.session
        self.detector = detector
        self.machine = machine

    def existing_makeup(self, original: Lesson) -> Optional[Lesson]:
        if original.makeup_lesson_id:
            return self.session.get(Lesson, original.makeup_lesson_id)
        return self.session.execute(
            select(Lesson).where(Lesson.original_lesson_id == original.id)
        ).scalar_one_or_none()

    def create_makeup(self, original: Lesson, slot: MakeupSlot, notes: Optional[str] = None) -> Lesson:
        if original.status_name != LessonStatus.CANCELLED:
            raise InvalidTransition(
                original.status_name,
                LessonStatus.MAKE_UP,
                "Only cancelled lessons can receive a makeup lesson.",
            )
        existing = self.existing_makeup(original)
        if existing is not None:
            raise AlreadyHasMakeup(original.id, existing.id)

        validate_slot(slot.scheduled_date, slot.start_time, slot.end_time, today=self.machine.clock.today())
        candidate = ConflictCandidate(
            class_id=original.class_id,
            scheduled_date=slot.scheduled_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            teacher_id=slot.teacher_id or original.teacher_id,
            classroom_id=slot.classroom_id or original.classroom_id,
        )
        resources = self.detector.resources_for(candidate)
        report = self.detector.check(candidate)
        if report.has_conflicts:
            raise ConflictError(
                "The makeup slot conflicts with existing lessons.",
                report.conflicts,
                report.suggestions,
            )

        makeup = self.machine.create(
            class_id=original.class_id,
            scheduled_date=slot.scheduled_date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            teacher_id=resources.teacher_id,
            classroom_id=resources.classroom_id,
            generation_source=GenerationSource.MAKEUP,
            original_lesson_id=original.id,
            notes=notes,
            teacher_name=resources.teacher_name,
            classroom_name=resources.classroom_name,
        )
        self.session.add(makeup)
        self.session.flush()

        original.makeup_lesson_id = makeup.id
        original.touch(self.machine.clock.now())
        self.session.flush()
        return makeup
