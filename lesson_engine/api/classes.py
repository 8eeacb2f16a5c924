"""Per-class lesson reporting."""
from __future__ import annotations

from typing import Any

from flask_restx import Namespace, Resource, fields

from ..service import LessonService


ns = Namespace("classes", description="Lesson summaries per class")

summary_model = ns.model(
    "LessonSummary",
    {
        "class_id": fields.String,
        "class_name": fields.String,
        "total_lessons": fields.Integer,
        "by_status": fields.Raw,
        "upcoming_within_7_days": fields.Integer,
        "next_lesson_date": fields.String,
        "past_unstarted": fields.Integer,
    },
)


@ns.route("/<string:class_id>/lesson-summary")
class ClassLessonSummary(Resource):
    @ns.marshal_with(summary_model)
    def get(self, class_id: str) -> dict[str, Any]:
        return LessonService.from_app().lesson_summary(class_id)
