"""Read-only view of the academic calendar."""
from __future__ import annotations

from typing import Any

from flask import request
from flask_restx import Namespace, Resource, fields

from ..generation import non_teaching_summary
from ..service import LessonService
from .common import parse_date


ns = Namespace("calendar", description="Holidays and teaching breaks")

non_teaching_day_model = ns.model(
    "NonTeachingDay",
    {
        "date": fields.String,
        "type": fields.String(enum=["teaching_break", "public_holiday"]),
        "name": fields.String,
        "break_type": fields.String,
        "notes": fields.String,
    },
)

non_teaching_days_model = ns.model(
    "NonTeachingDays",
    {
        "start_date": fields.String,
        "end_date": fields.String,
        "days": fields.List(fields.Nested(non_teaching_day_model)),
        "teaching_break_days": fields.Integer,
        "public_holiday_days": fields.Integer,
        "total_non_teaching_days": fields.Integer,
    },
)


@ns.route("/non-teaching-days")
class NonTeachingDays(Resource):
    @ns.marshal_with(non_teaching_days_model)
    def get(self) -> dict[str, Any]:
        start = parse_date(request.args.get("start_date"), "start_date")
        end = parse_date(request.args.get("end_date"), "end_date")
        days = LessonService.from_app().non_teaching_days(start, end)
        payload: dict[str, Any] = {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "days": [entry.as_dict() for entry in days],
        }
        payload.update(non_teaching_summary(days))
        return payload
