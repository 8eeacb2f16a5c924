"""REST API definition using Flask-RESTX."""
from __future__ import annotations

from flask import Blueprint, Flask
from flask_restx import Api

from ..errors import LessonEngineError
from .calendar import ns as calendar_ns
from .classes import ns as classes_ns
from .health import ns as health_ns
from .lessons import ns as lessons_ns


def register_namespaces(api: Api) -> None:
    """Register all API namespaces."""
    api.add_namespace(health_ns, path="/health")
    api.add_namespace(lessons_ns, path="/lessons")
    api.add_namespace(classes_ns, path="/classes")
    api.add_namespace(calendar_ns, path="/calendar")


def build_api_blueprint(app: Flask) -> Blueprint:
    """Build the API blueprint with its own Api bound to ``app``'s config."""
    blueprint = Blueprint("api", __name__)
    api = Api(
        blueprint,
        title=app.config.get("API_TITLE", "Lesson Engine API"),
        version=app.config.get("API_VERSION", "1.0"),
        doc="/docs",
    )

    @api.errorhandler(LessonEngineError)
    def handle_engine_error(error: LessonEngineError):
        return error.to_dict(), error.status_code

    register_namespaces(api)
    return blueprint
