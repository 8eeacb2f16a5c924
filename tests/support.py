from __future__ import annotations

import unittest
from datetime import date, datetime, time
from typing import Iterable, Sequence

from lesson_engine import create_app, db
from lesson_engine.clock import FixedClock
from lesson_engine.config import TestConfig
from lesson_engine.locks import ClassLockRegistry
from lesson_engine.models import (
    ClassGroup,
    ClassSchedule,
    Classroom,
    GenerationSource,
    Lesson,
    LessonStatus,
    Student,
    Teacher,
)
from lesson_engine.service import LessonService

# Monday, one week before the September examples
DEFAULT_NOW = datetime(2025, 8, 25, 8, 0)


class DatabaseTestCase(unittest.TestCase):
    now = DEFAULT_NOW

    def setUp(self) -> None:
        self.clock = FixedClock(self.now)
        self.app = create_app(TestConfig, clock=self.clock)
        self.app_context = self.app.app_context()
        self.app_context.push()
        db.create_all()

    def tearDown(self) -> None:
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def make_service(self) -> LessonService:
        return LessonService(
            db.session,
            clock=self.clock,
            config=self.app.config,
            locks=ClassLockRegistry(),
            logger=self.app.logger,
        )

    def make_class(
        self,
        name: str,
        *,
        teacher: Teacher | None = None,
        classroom: Classroom | None = None,
        students: Iterable[Student] = (),
        schedules: Sequence[tuple[int, time, time]] = (),
    ) -> ClassGroup:
        teacher = teacher or Teacher(name=f"Teacher of {name}")
        classroom = classroom or Classroom(name=f"Room of {name}")
        class_group = ClassGroup(name=name, teacher=teacher, classroom=classroom)
        class_group.students.extend(students)
        for weekday, start, end in schedules:
            class_group.schedules.append(ClassSchedule(weekday=weekday, start_time=start, end_time=end))
        db.session.add(class_group)
        db.session.commit()
        return class_group

    def make_lesson(
        self,
        class_group: ClassGroup,
        scheduled_date: date,
        start: time,
        end: time,
        *,
        status_name: str = LessonStatus.SCHEDULED,
        teacher: Teacher | None = None,
        classroom: Classroom | None = None,
    ) -> Lesson:
        teacher = teacher or class_group.teacher
        classroom = classroom or class_group.classroom
        db.session.add_all([teacher, classroom])
        db.session.flush()
        lesson = Lesson(
            class_id=class_group.id,
            scheduled_date=scheduled_date,
            start_time=start,
            end_time=end,
            teacher_id=teacher.id,
            classroom_id=classroom.id,
            status_name=status_name,
            generation_source=GenerationSource.MANUAL,
            teacher_name_snapshot=teacher.name,
            classroom_name_snapshot=classroom.name,
            created_at=self.clock.now(),
            updated_at=self.clock.now(),
        )
        db.session.add(lesson)
        db.session.commit()
        return lesson
