"""Resolve the teacher, classroom and enrolled students behind a class."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .errors import NotFoundError
from .extensions import db
from .models import ClassGroup, Classroom, Teacher, class_enrollment


@dataclass(frozen=True)
class ClassResources:
    class_id: str
    class_name: str
    teacher_id: str
    teacher_name: str
    classroom_id: str
    classroom_name: str
    student_ids: FrozenSet[str] = field(default_factory=frozenset)


class RosterService:
    def __init__(self, session=None) -> None:
        self.session = session or db.session

    def get_class(self, class_id: str, *, error: type[Exception] = NotFoundError) -> ClassGroup:
        class_group = self.session.execute(
            select(ClassGroup)
            .options(
                selectinload(ClassGroup.students),
                selectinload(ClassGroup.schedules),
            )
            .where(ClassGroup.id == class_id)
        ).scalar_one_or_none()
        if class_group is None:
            raise error(f"Unknown class {class_id}.")
        return class_group

    def resolve(
        self,
        class_id: str,
        *,
        teacher_id: Optional[str] = None,
        classroom_id: Optional[str] = None,
        error: type[Exception] = NotFoundError,
    ) -> ClassResources:
        class_group = self.get_class(class_id, error=error)
        teacher = class_group.teacher
        classroom = class_group.classroom
        if teacher_id and teacher_id != class_group.teacher_id:
            teacher = self.session.get(Teacher, teacher_id)
            if teacher is None:
                raise error(f"Unknown teacher {teacher_id}.")
        if classroom_id and classroom_id != class_group.classroom_id:
            classroom = self.session.get(Classroom, classroom_id)
            if classroom is None:
                raise error(f"Unknown classroom {classroom_id}.")
        return ClassResources(
            class_id=class_group.id,
            class_name=class_group.name,
            teacher_id=teacher.id,
            teacher_name=teacher.name,
            classroom_id=classroom.id,
            classroom_name=classroom.name,
            student_ids=frozenset(class_group.student_ids()),
        )

    def classes_sharing_students(self, class_id: str, student_ids: FrozenSet[str]) -> set[str]:
        """Return ids of other classes with at least one student in common."""
        if not student_ids:
            return set()
        rows = self.session.execute(
            select(class_enrollment.c.class_id)
            .where(class_enrollment.c.student_id.in_(student_ids))
            .where(class_enrollment.c.class_id != class_id)
            .distinct()
        )
        return {row[0] for row in rows}
