from datetime import date, time

from lesson_engine import db
from lesson_engine.models import Classroom, LessonStatus, PublicHoliday, Teacher

from support import DatabaseTestCase


class LessonApiTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = self.app.test_client()
        self.teacher = Teacher(name="Alice")
        self.english = self.make_class(
            "English",
            teacher=self.teacher,
            classroom=Classroom(name="A1"),
            schedules=[(0, time(10), time(11))],
        )
        self.maths = self.make_class("Maths", teacher=self.teacher, classroom=Classroom(name="B2"))

    def _create(self, **overrides):
        payload = {
            "class_id": self.english.id,
            "scheduled_date": "2025-09-02",
            "start_time": "10:00",
            "end_time": "11:00",
        }
        payload.update(overrides)
        return self.client.post("/api/lessons", json=payload)

    def test_health(self) -> None:
        response = self.client.get("/api/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"status": "ok", "database": "ok"})

    def test_create_and_fetch_lesson(self) -> None:
        response = self._create(notes="Unit 1")

        self.assertEqual(response.status_code, 201)
        created = response.get_json()
        self.assertEqual(created["status_name"], LessonStatus.SCHEDULED)
        self.assertEqual(created["teacher_name"], "Alice")
        self.assertEqual(created["day_of_week"], "Tuesday")

        detail = self.client.get(f"/api/lessons/{created['id']}").get_json()
        self.assertFalse(detail["can_conduct"])
        self.assertEqual(detail["cannot_conduct_reason"], "too early")

        listed = self.client.get("/api/lessons", query_string={"class_id": self.english.id}).get_json()
        self.assertEqual([lesson["id"] for lesson in listed], [created["id"]])

    def test_conflicting_lesson_returns_409_with_suggestions(self) -> None:
        self.make_lesson(self.maths, date(2025, 9, 2), time(10), time(11))

        response = self._create()

        self.assertEqual(response.status_code, 409)
        body = response.get_json()
        self.assertEqual(body["error"], "conflict")
        self.assertEqual(body["conflicts"][0]["conflict_type"], "teacher_conflict")
        self.assertEqual(body["suggestions"][0]["start_time"], "11:00")

    def test_invalid_payloads_return_400(self) -> None:
        self.assertEqual(self._create(start_time="25:99").status_code, 400)
        self.assertEqual(self._create(end_time="09:00").status_code, 400)
        self.assertEqual(self.client.post("/api/lessons", json={}).status_code, 400)

    def test_unknown_lesson_returns_404(self) -> None:
        response = self.client.get("/api/lessons/missing")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "not_found")

    def test_cancel_with_makeup(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))

        rejected = self.client.post(f"/api/lessons/{lesson.id}/cancel", json={"reason": "ill"})
        self.assertEqual(rejected.status_code, 400)

        response = self.client.post(
            f"/api/lessons/{lesson.id}/cancel",
            json={
                "reason": "Teacher is ill",
                "makeup": {"scheduled_date": "2025-09-03", "start_time": "10:00", "end_time": "11:00"},
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["lesson"]["status_name"], LessonStatus.CANCELLED)
        self.assertEqual(body["makeup_lesson"]["status_name"], LessonStatus.MAKE_UP)
        self.assertEqual(body["lesson"]["makeup_lesson_id"], body["makeup_lesson"]["id"])
        self.assertIsNone(body["makeup_error"])

        again = self.client.post(
            f"/api/lessons/{lesson.id}/makeup",
            json={"scheduled_date": "2025-09-04", "start_time": "10:00", "end_time": "11:00"},
        )
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "already_has_makeup")

    def test_conduct_too_early_is_rejected(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))

        response = self.client.post(f"/api/lessons/{lesson.id}/conduct")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["error"], "invalid_transition")

    def test_reschedule_and_no_show(self) -> None:
        lesson = self.make_lesson(self.english, date(2025, 9, 1), time(10), time(11))
        late = self.make_lesson(self.english, date(2025, 8, 22), time(10), time(11))

        moved = self.client.post(
            f"/api/lessons/{lesson.id}/reschedule",
            json={"scheduled_date": "2025-09-01", "start_time": "12:00", "end_time": "13:00", "reason": "Exam"},
        )
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(moved.get_json()["start_time"], "12:00")

        past = self.client.get("/api/lessons/past-unstarted").get_json()
        self.assertEqual([entry["id"] for entry in past], [late.id])
        self.assertTrue(past[0]["is_past_unstarted"])

        missed = self.client.post(f"/api/lessons/{late.id}/no-show", json={"notes": "Nobody came"})
        self.assertEqual(missed.status_code, 200)
        self.assertEqual(missed.get_json()["status_name"], LessonStatus.NO_SHOW)

    def test_conflict_check_endpoint(self) -> None:
        self.make_lesson(self.maths, date(2025, 9, 2), time(10), time(11))

        response = self.client.post(
            "/api/lessons/conflicts",
            json={
                "class_id": self.english.id,
                "scheduled_date": "2025-09-02",
                "start_time": "10:30",
                "end_time": "11:30",
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body["has_conflicts"])
        self.assertEqual(body["conflicts"][0]["conflicting_class_name"], "Maths")

    def test_generation_endpoint(self) -> None:
        db.session.add(PublicHoliday(name="Founders day", holiday_date=date(2025, 9, 8)))
        db.session.commit()

        response = self.client.post(
            f"/api/lessons/generate/{self.english.id}",
            json={"generation_mode": "CustomRange", "start_date": "2025-09-01", "end_date": "2025-09-30"},
        )

        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual(body["generated_count"], 4)
        self.assertEqual(body["public_holiday_skips"], 1)
        self.assertEqual(body["skipped_lessons"][0]["scheduled_date"], "2025-09-08")

        summary = self.client.get(f"/api/classes/{self.english.id}/lesson-summary").get_json()
        self.assertEqual(summary["total_lessons"], 4)
        self.assertEqual(summary["next_lesson_date"], "2025-09-01")

        invalid = self.client.post(f"/api/lessons/generate/{self.english.id}", json={"generation_mode": "Semester"})
        self.assertEqual(invalid.status_code, 400)

    def test_non_teaching_days(self) -> None:
        db.session.add(PublicHoliday(name="Founders day", holiday_date=date(2025, 9, 8)))
        db.session.commit()

        response = self.client.get(
            "/api/calendar/non-teaching-days",
            query_string={"start_date": "2025-09-01", "end_date": "2025-09-30"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["public_holiday_days"], 1)
        self.assertEqual(body["days"][0]["type"], "public_holiday")
