"""Academic calendar projection and the teachable-day gate."""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Iterator, List, Optional

from .errors import ValidationError
from .extensions import db
from .models import (
    BREAK_TYPE_HOLIDAY,
    AcademicYear,
    PublicHoliday,
    Semester,
    TeachingBreak,
)

KIND_TEACHING_BREAK = "teaching_break"
KIND_PUBLIC_HOLIDAY = "public_holiday"


def daterange(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


@dataclass(frozen=True)
class NonTeachingDay:
    day: date
    kind: str
    name: str
    break_type: str
    notes: Optional[str] = None
    source_id: Optional[str] = None
    span_start: Optional[date] = None
    span_end: Optional[date] = None
    recurring_annually: bool = False
    from_break: bool = False

    @property
    def is_holiday(self) -> bool:
        return self.kind == KIND_PUBLIC_HOLIDAY

    def as_dict(self) -> dict[str, object]:
        return {
            "date": self.day.isoformat(),
            "type": self.kind,
            "name": self.name,
            "break_type": self.break_type,
            "notes": self.notes,
        }

    def holiday_details(self) -> dict[str, object]:
        return {
            "holiday_id": self.source_id,
            "holiday_name": self.name,
            "holiday_date": self.day.isoformat(),
            "recurring_annually": self.recurring_annually,
            "holiday_notes": self.notes,
        }

    def break_details(self) -> dict[str, object]:
        start = self.span_start or self.day
        end = self.span_end or self.day
        return {
            "break_id": self.source_id,
            "break_name": self.name,
            "break_type": self.break_type,
            "break_start_date": start.isoformat(),
            "break_end_date": end.isoformat(),
            "break_notes": self.notes,
        }


class CalendarGate:
    """Answers whether a day is teachable from a set of non-teaching days.

    Holidays and breaks are one concept: a day flagged either way is not
    generatable. Public holidays and holiday-typed breaks answer to
    ``respect_holidays``; every teaching break, whatever its type, answers to
    ``respect_breaks``.
    """

    def __init__(self, days: Iterable[NonTeachingDay] = ()) -> None:
        self.days = tuple(days)
        self._by_day: dict[date, List[NonTeachingDay]] = defaultdict(list)
        for entry in self.days:
            self._by_day[entry.day].append(entry)

    def holiday_on(self, day: date) -> Optional[NonTeachingDay]:
        return next((entry for entry in self._by_day.get(day, ()) if entry.is_holiday), None)

    def break_on(self, day: date) -> Optional[NonTeachingDay]:
        return next(
            (entry for entry in self._by_day.get(day, ()) if entry.from_break),
            None,
        )

    def is_teachable(
        self,
        day: date,
        *,
        respect_holidays: bool = True,
        respect_breaks: bool = True,
    ) -> bool:
        if respect_holidays and self.holiday_on(day) is not None:
            return False
        if respect_breaks and self.break_on(day) is not None:
            return False
        return True

    def count_days(self, kind: str) -> int:
        return sum(
            1
            for entries in self._by_day.values()
            if any(entry.kind == kind for entry in entries)
        )

    @property
    def total_days(self) -> int:
        return len(self._by_day)


class AcademicCalendar:
    """Read-only access to academic years, semesters, breaks and holidays."""

    def __init__(self, session=None) -> None:
        self.session = session or db.session

    def get_academic_year(self, year_id: str) -> AcademicYear:
        year = self.session.get(AcademicYear, year_id)
        if year is None:
            raise ValidationError(f"Unknown academic year {year_id}.", field="academic_year_id")
        return year

    def get_semester(self, semester_id: str) -> Semester:
        semester = self.session.get(Semester, semester_id)
        if semester is None:
            raise ValidationError(f"Unknown semester {semester_id}.", field="semester_id")
        return semester

    def year_for(self, day: date) -> Optional[AcademicYear]:
        return AcademicYear.containing(day)

    def get_non_teaching_days(self, start: date, end: date) -> List[NonTeachingDay]:
        if start > end:
            raise ValidationError("The end date must not be before the start date.", field="end_date")
        days: list[NonTeachingDay] = []
        for teaching_break in TeachingBreak.overlapping(start, end):
            kind = KIND_PUBLIC_HOLIDAY if teaching_break.break_type == BREAK_TYPE_HOLIDAY else KIND_TEACHING_BREAK
            span_start = max(teaching_break.start_date, start)
            span_end = min(teaching_break.end_date, end)
            for day in daterange(span_start, span_end):
                days.append(
                    NonTeachingDay(
                        day=day,
                        kind=kind,
                        name=teaching_break.name,
                        break_type=teaching_break.break_type,
                        notes=teaching_break.notes,
                        source_id=teaching_break.id,
                        span_start=teaching_break.start_date,
                        span_end=teaching_break.end_date,
                        from_break=True,
                    )
                )
        for holiday in PublicHoliday.between(start, end):
            for day in holiday.occurrences(start, end):
                days.append(
                    NonTeachingDay(
                        day=day,
                        kind=KIND_PUBLIC_HOLIDAY,
                        name=holiday.name,
                        break_type=BREAK_TYPE_HOLIDAY,
                        notes=holiday.notes,
                        source_id=holiday.id,
                        recurring_annually=bool(holiday.recurring_annually),
                    )
                )
        days.sort(key=lambda entry: (entry.day, entry.kind != KIND_PUBLIC_HOLIDAY, entry.name))
        return days

    def gate_for(self, start: date, end: date) -> CalendarGate:
        return CalendarGate(self.get_non_teaching_days(start, end))
