from datetime import date, datetime, time
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from lesson_engine import db
from lesson_engine.conflicts import ConflictCandidate
from lesson_engine.errors import (
    AlreadyHasMakeup,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    StorageError,
    ValidationError,
)
from lesson_engine.makeup import MakeupSlot
from lesson_engine.models import Classroom, GenerationSource, Lesson, LessonStatus, Teacher

from support import DatabaseTestCase


class LessonServiceTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.teacher = Teacher(name="Alice")
        self.english = self.make_class("English", teacher=self.teacher, classroom=Classroom(name="A1"))
        self.maths = self.make_class("Maths", teacher=self.teacher, classroom=Classroom(name="B2"))
        self.service = self.make_service()

    def test_create_lesson_snapshots_resources(self) -> None:
        lesson = self.service.create_lesson(self.english.id, date(2025, 9, 1), time(10), time(11), "First lesson")

        stored = db.session.get(Lesson, lesson.id)
        self.assertEqual(stored.status_name, LessonStatus.SCHEDULED)
        self.assertEqual(stored.generation_source, GenerationSource.MANUAL)
        self.assertEqual(stored.teacher_name_snapshot, "Alice")
        self.assertEqual(stored.classroom_name_snapshot, "A1")
        self.assertEqual(stored.created_at, self.clock.now())

    def test_create_lesson_rejects_conflicts_without_writing(self) -> None:
        self.make_lesson(self.maths, date(2025, 9, 1), time(10), time(11))

        with self.assertRaises(ConflictError) as ctx:
            self.service.create_lesson(self.english.id, date(2025, 9, 1), time(10, 30), time(11, 30))

        self.assertEqual(len(ctx.exception.conflicts), 1)
        self.assertTrue(ctx.exception.suggestions)
        self.assertEqual(Lesson.query.filter_by(class_id=self.english.id).count(), 0)

    def test_create_lesson_rejects_past_dates_and_unknown_classes(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.create_lesson(self.english.id, date(2025, 8, 24), time(10), time(11))
        with self.assertRaises(NotFoundError):
            self.service.create_lesson("missing", date(2025, 9, 1), time(10), time(11))

    def test_check_conflicts_is_repeatable(self) -> None:
        self.make_lesson(self.maths, date(2025, 9, 1), time(10), time(11))
        candidate = ConflictCandidate(self.english.id, date(2025, 9, 1), time(10), time(11))

        first = self.service.check_conflicts(candidate)
        second = self.service.check_conflicts(candidate)

        self.assertEqual(first.as_dict(), second.as_dict())

    def test_reschedule_moves_the_same_row(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))
        self.clock.advance(minutes=5)

        moved = self.service.reschedule_lesson(
            lesson.id, date(2025, 9, 2), time(14), time(15), "Room unavailable"
        )

        self.assertEqual(moved.id, lesson.id)
        self.assertEqual(moved.scheduled_date, date(2025, 9, 2))
        self.assertEqual(moved.reschedule_reason, "Room unavailable")
        self.assertEqual(moved.updated_at, datetime(2025, 8, 25, 8, 5))
        self.assertEqual(moved.status_name, LessonStatus.SCHEDULED)

    def test_reschedule_rejects_no_op_and_conflicts(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))
        self.make_lesson(self.maths, date(2025, 9, 2), time(14), time(15))

        with self.assertRaises(ValidationError):
            self.service.reschedule_lesson(lesson.id, date(2025, 9, 1), time(10), time(11))
        with self.assertRaises(ConflictError):
            self.service.reschedule_lesson(lesson.id, date(2025, 9, 2), time(14, 30), time(15, 30))

        unchanged = db.session.get(Lesson, lesson.id)
        self.assertEqual(unchanged.scheduled_date, date(2025, 9, 1))

    def test_reschedule_within_own_slot_does_not_conflict_with_itself(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))

        moved = self.service.reschedule_lesson(lesson.id, date(2025, 9, 1), time(10, 30), time(11, 30))

        self.assertEqual(moved.start_time, time(10, 30))

    def test_conduct_and_no_show(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 8, 25), time(8, 10), time(9))
        other = self.make_lesson(self.english, date(2025, 8, 25), time(7), time(7, 45))

        conducted = self.service.conduct_lesson(lesson.id, "Went well")
        missed = self.service.mark_no_show(other.id)

        self.assertEqual(conducted.status_name, LessonStatus.CONDUCTED)
        self.assertEqual(conducted.conducted_at, self.clock.now())
        self.assertEqual(missed.status_name, LessonStatus.NO_SHOW)
        with self.assertRaises(InvalidTransition):
            self.service.conduct_lesson(lesson.id)

    def test_commit_failure_is_reported_as_storage_error(self) -> None:
        failure = OperationalError("COMMIT", {}, Exception("database is locked"))

        with patch.object(db.session, "commit", side_effect=failure):
            with self.assertRaises(StorageError) as ctx:
                self.service.create_lesson(self.english.id, date(2025, 9, 1), time(10), time(11))

        self.assertEqual(ctx.exception.status_code, 503)
        self.assertIs(ctx.exception.__cause__, failure)
        self.assertEqual(Lesson.query.filter_by(class_id=self.english.id).count(), 0)

    def test_reschedule_rejects_a_long_reason(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))
        self.service.machine.reschedule_reason_max_length = 10

        with self.assertRaises(ValidationError):
            self.service.reschedule_lesson(
                lesson.id, date(2025, 9, 2), time(10), time(11), "Room is being repainted"
            )

        self.assertEqual(db.session.get(Lesson, lesson.id).scheduled_date, date(2025, 9, 1))

    def test_unknown_lesson(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.conduct_lesson("missing")

    def test_past_unstarted_lessons(self) -> None:
        past = self.make_lesson(self.english, date(2025, 8, 22), time(10), time(11))
        self.make_lesson(self.english, date(2025, 8, 22), time(12), time(13), status_name=LessonStatus.CONDUCTED)
        self.make_lesson(self.english, date(2025, 8, 25), time(8), time(9))
        self.make_lesson(self.maths, date(2025, 8, 21), time(10), time(11))

        found = self.service.past_unstarted_lessons(self.english.id)

        self.assertEqual([lesson.id for lesson in found], [past.id])
        self.assertEqual(len(self.service.past_unstarted_lessons()), 2)

    def test_lesson_summary(self) -> None:
        self.make_lesson(self.english, date(2025, 8, 22), time(10), time(11), status_name=LessonStatus.CONDUCTED)
        self.make_lesson(self.english, date(2025, 8, 27), time(10), time(11))
        self.make_lesson(self.english, date(2025, 9, 10), time(10), time(11))
        self.make_lesson(self.english, date(2025, 8, 28), time(10), time(11), status_name=LessonStatus.CANCELLED)

        summary = self.service.lesson_summary(self.english.id)

        self.assertEqual(summary["total_lessons"], 4)
        self.assertEqual(summary["by_status"][LessonStatus.SCHEDULED], 2)
        self.assertEqual(summary["by_status"][LessonStatus.NO_SHOW], 0)
        self.assertEqual(summary["upcoming_within_7_days"], 1)
        self.assertEqual(summary["next_lesson_date"], "2025-08-27")
        with self.assertRaises(NotFoundError):
            self.service.lesson_summary("missing")


class MakeupLinkageTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.teacher = Teacher(name="Alice")
        self.english = self.make_class("English", teacher=self.teacher, classroom=Classroom(name="A1"))
        self.maths = self.make_class("Maths", teacher=self.teacher, classroom=Classroom(name="B2"))
        self.service = self.make_service()
        self.lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))

    def test_cancel_with_makeup_links_both_sides(self) -> None:
        result = self.service.cancel_lesson(
            self.lesson.id,
            "Teacher is ill",
            makeup_slot=MakeupSlot(date(2025, 9, 3), time(10), time(11)),
        )

        self.assertIsNone(result.makeup_error)
        original = db.session.get(Lesson, self.lesson.id)
        makeup = db.session.get(Lesson, result.makeup_lesson.id)
        self.assertEqual(original.status_name, LessonStatus.CANCELLED)
        self.assertEqual(original.makeup_lesson_id, makeup.id)
        self.assertEqual(makeup.original_lesson_id, original.id)
        self.assertEqual(makeup.status_name, LessonStatus.MAKE_UP)
        self.assertEqual(makeup.generation_source, GenerationSource.MAKEUP)
        self.assertEqual(makeup.teacher_id, original.teacher_id)

    def test_conflicting_makeup_leaves_lesson_cancelled_without_link(self) -> None:
        self.make_lesson(self.maths, date(2025, 9, 3), time(10), time(11))

        result = self.service.cancel_lesson(
            self.lesson.id,
            "Teacher is ill",
            makeup_slot=MakeupSlot(date(2025, 9, 3), time(10, 30), time(11, 30)),
        )

        self.assertIsInstance(result.makeup_error, ConflictError)
        self.assertIsNone(result.makeup_lesson)
        original = db.session.get(Lesson, self.lesson.id)
        self.assertEqual(original.status_name, LessonStatus.CANCELLED)
        self.assertIsNone(original.makeup_lesson_id)
        self.assertEqual(Lesson.query.filter_by(original_lesson_id=self.lesson.id).count(), 0)

    def test_second_makeup_is_rejected(self) -> None:
        self.service.cancel_lesson(self.lesson.id, "Teacher is ill")
        first = self.service.create_makeup(self.lesson.id, MakeupSlot(date(2025, 9, 3), time(10), time(11)))

        with self.assertRaises(AlreadyHasMakeup) as ctx:
            self.service.create_makeup(self.lesson.id, MakeupSlot(date(2025, 9, 4), time(10), time(11)))

        self.assertEqual(ctx.exception.makeup_lesson_id, first.id)
        self.assertEqual(Lesson.query.filter_by(generation_source=GenerationSource.MAKEUP).count(), 1)

    def _partial_makeup(self) -> Lesson:
        self.service.cancel_lesson(self.lesson.id, "Teacher is ill")
        partial = self.make_lesson(self.english, date(2025, 9, 4), time(10), time(11), status_name=LessonStatus.MAKE_UP)
        partial.generation_source = GenerationSource.MAKEUP
        partial.original_lesson_id = self.lesson.id
        db.session.commit()
        return partial

    def test_retry_after_partial_makeup_is_rejected(self) -> None:
        partial = self._partial_makeup()
        self.assertIsNone(db.session.get(Lesson, self.lesson.id).makeup_lesson_id)

        with self.assertRaises(AlreadyHasMakeup) as ctx:
            self.service.create_makeup(self.lesson.id, MakeupSlot(date(2025, 9, 3), time(10), time(11)))

        self.assertEqual(ctx.exception.makeup_lesson_id, partial.id)
        self.assertEqual(Lesson.query.filter_by(original_lesson_id=self.lesson.id).count(), 1)

    def test_unique_link_violation_maps_to_already_has_makeup(self) -> None:
        partial = self._partial_makeup()
        linkage = self.service.linkage
        lookup = linkage.existing_makeup
        calls = []

        def missed_first_lookup(original: Lesson):
            calls.append(original.id)
            return None if len(calls) == 1 else lookup(original)

        with patch.object(linkage, "existing_makeup", side_effect=missed_first_lookup):
            with self.assertRaises(AlreadyHasMakeup) as ctx:
                self.service.create_makeup(self.lesson.id, MakeupSlot(date(2025, 9, 3), time(10), time(11)))

        self.assertEqual(len(calls), 2)
        self.assertEqual(ctx.exception.makeup_lesson_id, partial.id)
        self.assertEqual(Lesson.query.filter_by(original_lesson_id=self.lesson.id).count(), 1)
        self.assertEqual(Lesson.query.filter_by(scheduled_date=date(2025, 9, 3)).count(), 0)

    def test_makeup_needs_a_cancelled_lesson(self) -> None:
        with self.assertRaises(InvalidTransition):
            self.service.create_makeup(self.lesson.id, MakeupSlot(date(2025, 9, 3), time(10), time(11)))

    def test_makeup_can_override_the_classroom(self) -> None:
        self.service.cancel_lesson(self.lesson.id, "Room flooded")
        lab = Classroom(name="Lab")
        db.session.add(lab)
        db.session.commit()

        makeup = self.service.create_makeup(
            self.lesson.id,
            MakeupSlot(date(2025, 9, 3), time(10), time(11), classroom_id=lab.id),
            notes="In the lab",
        )

        self.assertEqual(makeup.classroom_id, lab.id)
        self.assertEqual(makeup.classroom_name_snapshot, "Lab")
        self.assertEqual(makeup.notes, "In the lab")

    def test_makeup_lessons_can_be_cancelled(self) -> None:
        self.service.cancel_lesson(self.lesson.id, "Teacher is ill")
        makeup = self.service.create_makeup(self.lesson.id, MakeupSlot(date(2025, 9, 3), time(10), time(11)))

        result = self.service.cancel_lesson(makeup.id, "Teacher still ill")

        self.assertEqual(result.lesson.status_name, LessonStatus.CANCELLED)
        self.assertEqual(result.lesson.original_lesson_id, self.lesson.id)
