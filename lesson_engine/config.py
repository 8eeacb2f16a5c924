from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv


BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


def _normalise_prefix(raw_prefix: str) -> str:
    raw_prefix = raw_prefix.strip()
    if not raw_prefix or raw_prefix == "/":
        return ""
    if not raw_prefix.startswith("/"):
        raw_prefix = f"/{raw_prefix}"
    return raw_prefix.rstrip("/")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Config:
    """Application configuration loaded from environment variables."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    URL_PREFIX = _normalise_prefix(os.environ.get("FLASK_URL_PREFIX", ""))

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///lessons.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ECHO = os.environ.get("DB_ECHO", "false").lower() == "true"

    API_TITLE = os.environ.get("API_TITLE", "Lesson Scheduling API")
    API_VERSION = os.environ.get("API_VERSION", "0.1.0")

    # Lesson rules
    CONDUCT_GRACE_MINUTES = _env_int("CONDUCT_GRACE_MINUTES", 15)
    CANCELLATION_REASON_MIN_LENGTH = _env_int("CANCELLATION_REASON_MIN_LENGTH", 5)
    CANCELLATION_REASON_MAX_LENGTH = 500
    RESCHEDULE_REASON_MAX_LENGTH = 500
    NOTES_MAX_LENGTH = 1000

    # Alternative slot suggestions
    SUGGESTION_DAY_START = os.environ.get("SUGGESTION_DAY_START", "07:00")
    SUGGESTION_DAY_END = os.environ.get("SUGGESTION_DAY_END", "21:00")
    SUGGESTION_STEP_MINUTES = _env_int("SUGGESTION_STEP_MINUTES", 30)
    SUGGESTION_LIMIT = _env_int("SUGGESTION_LIMIT", 3)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
