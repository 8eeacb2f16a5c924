"""Payload parsing shared by the API namespaces."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional

from ..errors import ValidationError
from ..models import Lesson
from ..status import ConductWindow


def parse_date(value: Any, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"'{value}' is not a valid date (YYYY-MM-DD).", field=field) from exc


def parse_optional_date(value: Any, field: str) -> Optional[date]:
    if value in (None, ""):
        return None
    return parse_date(value, field)


def parse_time(value: Any, field: str) -> time:
    if isinstance(value, time):
        return value
    for pattern in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(str(value), pattern).time()
        except (TypeError, ValueError):
            continue
    raise ValidationError(f"'{value}' is not a valid time (HH:MM).", field=field)


def parse_flag(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def serialize_lesson(lesson: Lesson, window: ConductWindow | None = None) -> dict[str, Any]:
    class_group = lesson.class_group
    payload: dict[str, Any] = {
        "id": lesson.id,
        "class_id": lesson.class_id,
        "class_name": class_group.name if class_group else None,
        "scheduled_date": lesson.scheduled_date.isoformat(),
        "day_of_week": lesson.day_of_week,
        "start_time": lesson.start_time.strftime("%H:%M"),
        "end_time": lesson.end_time.strftime("%H:%M"),
        "teacher_id": lesson.teacher_id,
        "teacher_name": lesson.teacher_name_snapshot,
        "classroom_id": lesson.classroom_id,
        "classroom_name": lesson.classroom_name_snapshot,
        "status_name": lesson.status_name,
        "generation_source": lesson.generation_source,
        "makeup_lesson_id": lesson.makeup_lesson_id,
        "original_lesson_id": lesson.original_lesson_id,
        "notes": lesson.notes,
        "cancellation_reason": lesson.cancellation_reason,
        "reschedule_reason": lesson.reschedule_reason,
        "conducted_at": lesson.conducted_at,
        "created_at": lesson.created_at,
        "updated_at": lesson.updated_at,
    }
    if window is not None:
        payload.update(window.as_dict())
    return payload
