import unittest
from datetime import date

from lesson_engine import db
from lesson_engine.academic_calendar import (
    KIND_PUBLIC_HOLIDAY,
    KIND_TEACHING_BREAK,
    AcademicCalendar,
    CalendarGate,
    NonTeachingDay,
)
from lesson_engine.errors import ValidationError
from lesson_engine.models import PublicHoliday, TeachingBreak

from support import DatabaseTestCase


class CalendarGateTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.gate = CalendarGate(
            [
                NonTeachingDay(day=date(2025, 9, 8), kind=KIND_PUBLIC_HOLIDAY, name="Holiday", break_type="holiday"),
                NonTeachingDay(
                    day=date(2025, 9, 15),
                    kind=KIND_TEACHING_BREAK,
                    name="Break",
                    break_type="vacation",
                    from_break=True,
                ),
                NonTeachingDay(
                    day=date(2025, 9, 22),
                    kind=KIND_PUBLIC_HOLIDAY,
                    name="National day",
                    break_type="holiday",
                    from_break=True,
                ),
            ]
        )

    def test_flagged_days_are_not_teachable(self) -> None:
        self.assertFalse(self.gate.is_teachable(date(2025, 9, 8)))
        self.assertFalse(self.gate.is_teachable(date(2025, 9, 15)))
        self.assertFalse(self.gate.is_teachable(date(2025, 9, 22)))
        self.assertTrue(self.gate.is_teachable(date(2025, 9, 1)))

    def test_flags_only_lift_what_they_govern(self) -> None:
        self.assertTrue(self.gate.is_teachable(date(2025, 9, 8), respect_holidays=False))
        self.assertFalse(self.gate.is_teachable(date(2025, 9, 15), respect_holidays=False))
        self.assertTrue(self.gate.is_teachable(date(2025, 9, 15), respect_breaks=False))
        self.assertFalse(self.gate.is_teachable(date(2025, 9, 8), respect_breaks=False))

    def test_holiday_typed_break_answers_to_both_flags(self) -> None:
        day = date(2025, 9, 22)

        self.assertFalse(self.gate.is_teachable(day, respect_holidays=False))
        self.assertFalse(self.gate.is_teachable(day, respect_breaks=False))
        self.assertTrue(self.gate.is_teachable(day, respect_holidays=False, respect_breaks=False))
        self.assertEqual(self.gate.break_on(day).break_type, "holiday")

    def test_counts_per_kind(self) -> None:
        self.assertEqual(self.gate.count_days(KIND_PUBLIC_HOLIDAY), 2)
        self.assertEqual(self.gate.count_days(KIND_TEACHING_BREAK), 1)
        self.assertEqual(self.gate.total_days, 3)


class AcademicCalendarTestCase(DatabaseTestCase):
    def test_break_days_are_clipped_to_range(self) -> None:
        db.session.add(
            TeachingBreak(name="Autumn break", start_date=date(2025, 10, 27), end_date=date(2025, 10, 31))
        )
        db.session.commit()

        days = AcademicCalendar().get_non_teaching_days(date(2025, 10, 29), date(2025, 11, 5))

        self.assertEqual([entry.day for entry in days], [date(2025, 10, 29), date(2025, 10, 30), date(2025, 10, 31)])
        self.assertTrue(all(entry.kind == KIND_TEACHING_BREAK for entry in days))
        self.assertEqual(days[0].break_details()["break_start_date"], "2025-10-27")

    def test_holiday_typed_break_is_a_public_holiday(self) -> None:
        db.session.add(
            TeachingBreak(
                name="National day",
                start_date=date(2025, 11, 11),
                end_date=date(2025, 11, 11),
                break_type="holiday",
            )
        )
        db.session.commit()

        days = AcademicCalendar().get_non_teaching_days(date(2025, 11, 1), date(2025, 11, 30))

        self.assertEqual(len(days), 1)
        self.assertEqual(days[0].kind, KIND_PUBLIC_HOLIDAY)
        self.assertTrue(days[0].from_break)

    def test_recurring_holidays_repeat_every_year(self) -> None:
        db.session.add(PublicHoliday(name="New Year", holiday_date=date(2020, 1, 1), recurring_annually=True))
        db.session.add(PublicHoliday(name="Leap day", holiday_date=date(2024, 2, 29), recurring_annually=True))
        db.session.commit()

        days = AcademicCalendar().get_non_teaching_days(date(2025, 9, 1), date(2026, 6, 30))

        self.assertEqual([(entry.day, entry.name) for entry in days], [(date(2026, 1, 1), "New Year")])
        self.assertTrue(days[0].holiday_details()["recurring_annually"])

    def test_one_off_holiday_outside_range_is_ignored(self) -> None:
        db.session.add(PublicHoliday(name="Old", holiday_date=date(2024, 9, 8)))
        db.session.commit()

        self.assertEqual(AcademicCalendar().get_non_teaching_days(date(2025, 9, 1), date(2025, 9, 30)), [])

    def test_reversed_range_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            AcademicCalendar().get_non_teaching_days(date(2025, 9, 30), date(2025, 9, 1))

    def test_unknown_semester_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            AcademicCalendar().get_semester("missing")
