"""Injectable time sources used by every time-dependent rule."""
from __future__ import annotations

from datetime import date, datetime, timedelta

CLOCK_EXTENSION_KEY = "lesson_engine.clock"


class Clock:
    """Interface returning the current wall-clock time."""

    def now(self) -> datetime:  # pragma: no cover - interface
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now().replace(microsecond=0)


class FixedClock(Clock):
    """Clock frozen at a given instant; tests move it explicitly."""

    def __init__(self, current: datetime) -> None:
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = current

    def advance(self, **kwargs: float) -> None:
        self._current = self._current + timedelta(**kwargs)
