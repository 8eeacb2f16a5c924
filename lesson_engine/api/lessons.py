"""Lesson lifecycle endpoints."""
from __future__ import annotations

from typing import Any

from flask import request
from flask_restx import Namespace, Resource, fields

from ..conflicts import ConflictCandidate
from ..generation import GenerationMode, GenerationRequest
from ..makeup import MakeupSlot
from ..models import GenerationSource, LessonStatus
from ..service import LessonService
from .common import (
    parse_date,
    parse_flag,
    parse_optional_date,
    parse_time,
    serialize_lesson,
)


ns = Namespace("lessons", description="Lesson scheduling, lifecycle and generation")

lesson_model = ns.model(
    "Lesson",
    {
        "id": fields.String(readonly=True),
        "class_id": fields.String,
        "class_name": fields.String,
        "scheduled_date": fields.String,
        "day_of_week": fields.String,
        "start_time": fields.String,
        "end_time": fields.String,
        "teacher_id": fields.String,
        "teacher_name": fields.String,
        "classroom_id": fields.String,
        "classroom_name": fields.String,
        "status_name": fields.String(enum=list(LessonStatus.CHOICES)),
        "generation_source": fields.String(enum=list(GenerationSource.CHOICES)),
        "makeup_lesson_id": fields.String,
        "original_lesson_id": fields.String,
        "notes": fields.String,
        "cancellation_reason": fields.String,
        "reschedule_reason": fields.String,
        "conducted_at": fields.DateTime(dt_format="iso8601"),
        "created_at": fields.DateTime(dt_format="iso8601"),
        "updated_at": fields.DateTime(dt_format="iso8601"),
    },
)

lesson_detail_model = ns.inherit(
    "LessonDetail",
    lesson_model,
    {
        "can_conduct": fields.Boolean,
        "is_past_unstarted": fields.Boolean,
        "cannot_conduct_reason": fields.String,
        "minutes_until_allowed": fields.Integer,
    },
)

lesson_input = ns.model(
    "LessonInput",
    {
        "class_id": fields.String(required=True),
        "scheduled_date": fields.String(required=True, description="YYYY-MM-DD"),
        "start_time": fields.String(required=True, description="HH:MM"),
        "end_time": fields.String(required=True, description="HH:MM"),
        "notes": fields.String,
        "teacher_id": fields.String,
        "classroom_id": fields.String,
    },
)

slot_input = ns.model(
    "SlotInput",
    {
        "scheduled_date": fields.String(required=True),
        "start_time": fields.String(required=True),
        "end_time": fields.String(required=True),
        "teacher_id": fields.String,
        "classroom_id": fields.String,
        "notes": fields.String,
    },
)

cancel_input = ns.model(
    "CancelInput",
    {
        "reason": fields.String(required=True),
        "makeup": fields.Nested(slot_input, allow_null=True),
    },
)

notes_input = ns.model("NotesInput", {"notes": fields.String})

reschedule_input = ns.model(
    "RescheduleInput",
    {
        "scheduled_date": fields.String(required=True),
        "start_time": fields.String(required=True),
        "end_time": fields.String(required=True),
        "reason": fields.String,
    },
)

conflict_input = ns.model(
    "ConflictCheckInput",
    {
        "class_id": fields.String(required=True),
        "scheduled_date": fields.String(required=True),
        "start_time": fields.String(required=True),
        "end_time": fields.String(required=True),
        "exclude_lesson_id": fields.String,
        "teacher_id": fields.String,
        "classroom_id": fields.String,
    },
)

generation_input = ns.model(
    "GenerationInput",
    {
        "generation_mode": fields.String(enum=list(GenerationMode.CHOICES), default=GenerationMode.CUSTOM_RANGE),
        "start_date": fields.String,
        "end_date": fields.String,
        "academic_year_id": fields.String,
        "semester_id": fields.String,
        "respect_breaks": fields.Boolean(default=True),
        "respect_holidays": fields.Boolean(default=True),
    },
)

cancellation_model = ns.model(
    "Cancellation",
    {
        "lesson": fields.Nested(lesson_model),
        "makeup_lesson": fields.Nested(lesson_model, allow_null=True),
        "makeup_error": fields.Raw,
    },
)


def _slot_from(payload: dict[str, Any]) -> MakeupSlot:
    return MakeupSlot(
        scheduled_date=parse_date(payload.get("scheduled_date"), "scheduled_date"),
        start_time=parse_time(payload.get("start_time"), "start_time"),
        end_time=parse_time(payload.get("end_time"), "end_time"),
        teacher_id=payload.get("teacher_id") or None,
        classroom_id=payload.get("classroom_id") or None,
    )


@ns.route("")
class LessonList(Resource):
    @ns.marshal_list_with(lesson_model)
    def get(self) -> list[dict[str, Any]]:
        args = request.args
        lessons = LessonService.from_app().list_lessons(
            class_id=args.get("class_id"),
            teacher_id=args.get("teacher_id"),
            classroom_id=args.get("classroom_id"),
            status=args.get("status"),
            start_date=parse_optional_date(args.get("start_date"), "start_date"),
            end_date=parse_optional_date(args.get("end_date"), "end_date"),
            generation_source=args.get("generation_source"),
        )
        return [serialize_lesson(lesson) for lesson in lessons]

    @ns.expect(lesson_input, validate=True)
    @ns.marshal_with(lesson_model, code=201)
    def post(self) -> tuple[dict[str, Any], int]:
        payload = request.json or {}
        lesson = LessonService.from_app().create_lesson(
            payload["class_id"],
            parse_date(payload["scheduled_date"], "scheduled_date"),
            parse_time(payload["start_time"], "start_time"),
            parse_time(payload["end_time"], "end_time"),
            payload.get("notes"),
            teacher_id=payload.get("teacher_id") or None,
            classroom_id=payload.get("classroom_id") or None,
        )
        return serialize_lesson(lesson), 201


@ns.route("/<string:lesson_id>")
class LessonResource(Resource):
    @ns.marshal_with(lesson_detail_model)
    def get(self, lesson_id: str) -> dict[str, Any]:
        service = LessonService.from_app()
        lesson = service.get_lesson(lesson_id)
        return serialize_lesson(lesson, service.conduct_window(lesson))


@ns.route("/<string:lesson_id>/cancel")
class LessonCancel(Resource):
    @ns.expect(cancel_input, validate=True)
    @ns.marshal_with(cancellation_model)
    def post(self, lesson_id: str) -> dict[str, Any]:
        payload = request.json or {}
        makeup_payload = payload.get("makeup")
        result = LessonService.from_app().cancel_lesson(
            lesson_id,
            payload.get("reason"),
            makeup_slot=_slot_from(makeup_payload) if makeup_payload else None,
            makeup_notes=(makeup_payload or {}).get("notes"),
        )
        return {
            "lesson": serialize_lesson(result.lesson),
            "makeup_lesson": serialize_lesson(result.makeup_lesson) if result.makeup_lesson else None,
            "makeup_error": result.makeup_error.to_dict() if result.makeup_error else None,
        }


@ns.route("/<string:lesson_id>/conduct")
class LessonConduct(Resource):
    @ns.expect(notes_input)
    @ns.marshal_with(lesson_model)
    def post(self, lesson_id: str) -> dict[str, Any]:
        payload = request.get_json(silent=True) or {}
        lesson = LessonService.from_app().conduct_lesson(lesson_id, payload.get("notes"))
        return serialize_lesson(lesson)


@ns.route("/<string:lesson_id>/no-show")
class LessonNoShow(Resource):
    @ns.expect(notes_input)
    @ns.marshal_with(lesson_model)
    def post(self, lesson_id: str) -> dict[str, Any]:
        payload = request.get_json(silent=True) or {}
        lesson = LessonService.from_app().mark_no_show(lesson_id, payload.get("notes"))
        return serialize_lesson(lesson)


@ns.route("/<string:lesson_id>/reschedule")
class LessonReschedule(Resource):
    @ns.expect(reschedule_input, validate=True)
    @ns.marshal_with(lesson_model)
    def post(self, lesson_id: str) -> dict[str, Any]:
        payload = request.json or {}
        lesson = LessonService.from_app().reschedule_lesson(
            lesson_id,
            parse_date(payload["scheduled_date"], "scheduled_date"),
            parse_time(payload["start_time"], "start_time"),
            parse_time(payload["end_time"], "end_time"),
            payload.get("reason"),
        )
        return serialize_lesson(lesson)


@ns.route("/<string:lesson_id>/makeup")
class LessonMakeup(Resource):
    @ns.expect(slot_input, validate=True)
    @ns.marshal_with(lesson_model, code=201)
    def post(self, lesson_id: str) -> tuple[dict[str, Any], int]:
        payload = request.json or {}
        makeup = LessonService.from_app().create_makeup(lesson_id, _slot_from(payload), payload.get("notes"))
        return serialize_lesson(makeup), 201


@ns.route("/past-unstarted")
class PastUnstartedLessons(Resource):
    @ns.marshal_list_with(lesson_detail_model)
    def get(self) -> list[dict[str, Any]]:
        service = LessonService.from_app()
        lessons = service.past_unstarted_lessons(request.args.get("class_id") or None)
        return [serialize_lesson(lesson, service.conduct_window(lesson)) for lesson in lessons]


@ns.route("/conflicts")
class ConflictCheck(Resource):
    @ns.expect(conflict_input, validate=True)
    def post(self) -> dict[str, Any]:
        payload = request.json or {}
        candidate = ConflictCandidate(
            class_id=payload["class_id"],
            scheduled_date=parse_date(payload["scheduled_date"], "scheduled_date"),
            start_time=parse_time(payload["start_time"], "start_time"),
            end_time=parse_time(payload["end_time"], "end_time"),
            exclude_lesson_id=payload.get("exclude_lesson_id") or None,
            teacher_id=payload.get("teacher_id") or None,
            classroom_id=payload.get("classroom_id") or None,
        )
        return LessonService.from_app().check_conflicts(candidate).as_dict()


@ns.route("/generate/<string:class_id>")
class LessonGeneration(Resource):
    @ns.expect(generation_input)
    def post(self, class_id: str) -> tuple[dict[str, Any], int]:
        payload = request.get_json(silent=True) or {}
        generation_request = GenerationRequest(
            class_id=class_id,
            start_date=parse_optional_date(payload.get("start_date"), "start_date"),
            end_date=parse_optional_date(payload.get("end_date"), "end_date"),
            generation_mode=payload.get("generation_mode") or GenerationMode.CUSTOM_RANGE,
            academic_year_id=payload.get("academic_year_id") or None,
            semester_id=payload.get("semester_id") or None,
            respect_breaks=parse_flag(payload.get("respect_breaks")),
            respect_holidays=parse_flag(payload.get("respect_holidays")),
        )
        result = LessonService.from_app().generate_lessons(generation_request)
        return result.as_dict(), 201
