"""Error taxonomy raised by the lesson engine."""
from __future__ import annotations

from typing import Any, Sequence


class LessonEngineError(Exception):
    """Base class for every error surfaced to callers of the engine."""

    status_code = 400
    error_type = "lesson_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_type, "message": self.message}


class ValidationError(LessonEngineError):
    """Input rejected before any mutation; the caller can correct and retry."""

    error_type = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        if self.field:
            payload["field"] = self.field
        return payload


class NotFoundError(LessonEngineError):
    status_code = 404
    error_type = "not_found"


class ConflictError(LessonEngineError):
    """The requested slot collides with existing bookings."""

    status_code = 409
    error_type = "conflict"

    def __init__(
        self,
        message: str,
        conflicts: Sequence[Any] = (),
        suggestions: Sequence[Any] = (),
    ) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)
        self.suggestions = list(suggestions)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["conflicts"] = [conflict.as_dict() for conflict in self.conflicts]
        payload["suggestions"] = [suggestion.as_dict() for suggestion in self.suggestions]
        return payload


class InvalidTransition(LessonEngineError):
    status_code = 409
    error_type = "invalid_transition"

    def __init__(self, source: str, target: str, message: str | None = None) -> None:
        super().__init__(message or f"Cannot move a lesson from '{source}' to '{target}'.")
        self.source = source
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["source"] = self.source
        payload["target"] = self.target
        return payload


class AlreadyHasMakeup(LessonEngineError):
    status_code = 409
    error_type = "already_has_makeup"

    def __init__(self, lesson_id: str, makeup_lesson_id: str | None) -> None:
        super().__init__(
            f"Lesson {lesson_id} already has a makeup lesson ({makeup_lesson_id})."
        )
        self.lesson_id = lesson_id
        self.makeup_lesson_id = makeup_lesson_id

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["makeup_lesson_id"] = self.makeup_lesson_id
        return payload


class StorageError(LessonEngineError):
    """Persistence failure; the operation can be retried safely."""

    status_code = 503
    error_type = "storage_error"
