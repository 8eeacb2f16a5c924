from __future__ import annotations

from datetime import datetime

import click
from flask import Flask
from flask.cli import with_appcontext

from .clock import CLOCK_EXTENSION_KEY, Clock, SystemClock
from .config import Config, _normalise_prefix
from .extensions import db, migrate


def create_app(config_class: type[Config] = Config, clock: Clock | None = None) -> Flask:
    app = Flask(__name__, static_folder=None)
    app.config.from_object(config_class)

    url_prefix = _normalise_prefix(app.config.get("URL_PREFIX", ""))
    app.config["URL_PREFIX"] = url_prefix

    db.init_app(app)
    migrate.init_app(app, db)
    app.extensions[CLOCK_EXTENSION_KEY] = clock or SystemClock()

    from . import models  # noqa: F401  # Ensure models registered for migrations

    with app.app_context():
        db.create_all()

    from .api import build_api_blueprint

    app.register_blueprint(build_api_blueprint(app), url_prefix=f"{url_prefix}/api")

    @app.cli.command("seed")
    @with_appcontext
    def seed() -> None:
        """Seed a demo academic calendar and class for development."""
        from .seed import seed_data

        class_group = seed_data()
        click.echo(f"Database seeded; demo class id: {class_group.id}")

    @app.cli.command("generate-lessons")
    @click.argument("class_id")
    @click.argument("start_date")
    @click.argument("end_date")
    @click.option("--ignore-breaks", is_flag=True, help="Generate over teaching breaks.")
    @click.option("--ignore-holidays", is_flag=True, help="Generate over public holidays.")
    @with_appcontext
    def generate_lessons(
        class_id: str,
        start_date: str,
        end_date: str,
        ignore_breaks: bool,
        ignore_holidays: bool,
    ) -> None:
        """Generate recurring lessons for CLASS_ID between two ISO dates."""
        from .errors import LessonEngineError
        from .generation import GenerationMode, GenerationRequest
        from .service import LessonService

        try:
            request = GenerationRequest(
                class_id=class_id,
                start_date=datetime.strptime(start_date, "%Y-%m-%d").date(),
                end_date=datetime.strptime(end_date, "%Y-%m-%d").date(),
                generation_mode=GenerationMode.CUSTOM_RANGE,
                respect_breaks=not ignore_breaks,
                respect_holidays=not ignore_holidays,
            )
        except ValueError as exc:
            raise click.BadParameter(str(exc)) from exc
        try:
            result = LessonService.from_app().generate_lessons(request)
        except LessonEngineError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(
            f"{result.generated_count} lesson(s) generated, "
            f"{result.skipped_count} skipped ({result.conflict_count} conflict(s))."
        )
        for skipped in result.skipped_lessons:
            click.echo(f"  {skipped.scheduled_date} {skipped.day_of_week}: {skipped.skip_reason}")

    return app


__all__ = ["create_app", "db"]
