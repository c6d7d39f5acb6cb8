"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


def _csv_env(name: str, default: str = "") -> list[str]:
    """Split a comma-separated env var into a clean lowercase list."""
    raw = os.environ.get(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    # Database: SQLite (default) or hosted PostgreSQL (set DATABASE_URL=postgresql://...)
    DATABASE = os.environ.get("DATABASE_URL", str(BASE_DIR / "typetech.db"))
    WTF_CSRF_ENABLED = True

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 86400

    # Sign-in allow-list (domain match or exact email)
    ALLOWED_DOMAINS = _csv_env("ALLOWED_DOMAINS", "alueducation.com")
    ALLOWED_EMAILS = _csv_env("ALLOWED_EMAILS", "")

    # Google OAuth
    GOOGLE_OAUTH_CLIENT_ID = os.environ.get("GOOGLE_OAUTH_CLIENT_ID", "")
    GOOGLE_OAUTH_CLIENT_SECRET = os.environ.get("GOOGLE_OAUTH_CLIENT_SECRET", "")

    # Class settings
    APP_NAME = os.environ.get("APP_NAME", "Typetech")
    COURSE_NAME = os.environ.get("COURSE_NAME", "Typing Class")
    TOTAL_WEEKS = int(os.environ.get("TOTAL_WEEKS", "11"))
    PASS_WPM = int(os.environ.get("PASS_WPM", "40"))
    INVITE_EXPIRY_DAYS = int(os.environ.get("INVITE_EXPIRY_DAYS", "7"))

    # Autosave debounce window
    AUTOSAVE_DELAY_MS = int(os.environ.get("AUTOSAVE_DELAY_MS", "800"))

    # Certificates are written here, one folder per student
    CERTIFICATE_DIR = os.environ.get("CERTIFICATE_DIR", str(BASE_DIR / "certificates"))

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Email
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")  # "log" or "smtp"
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_FROM = os.environ.get("MAIL_FROM", "typing@example.com")
    BASE_URL = os.environ.get("BASE_URL", "http://localhost:5001")

    # Redis (task queue)
    REDIS_URL = os.environ.get("REDIS_URL", "")

    # Response compression
    COMPRESS_MIMETYPES = [
        "text/html", "text/css", "text/csv", "application/json",
    ]
    COMPRESS_MIN_SIZE = 500

    # Rate limiting (defaults to in-memory; set REDIS_URL for Redis-backed)
    RATELIMIT_STORAGE_URI = os.environ.get("REDIS_URL", "") or "memory://"


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    SESSION_COOKIE_SECURE = True

    @classmethod
    def validate(cls):
        """Fail fast on missing or insecure configuration in production."""
        errors: list[str] = []

        if cls.SECRET_KEY in ("dev-key-change-in-production", ""):
            errors.append("SECRET_KEY must be set to a secure value in production.")

        if not cls.GOOGLE_OAUTH_CLIENT_ID:
            errors.append("GOOGLE_OAUTH_CLIENT_ID must be set; Google is the only sign-in method.")

        if not cls.ALLOWED_DOMAINS and not cls.ALLOWED_EMAILS:
            errors.append("ALLOWED_DOMAINS or ALLOWED_EMAILS must list at least one entry.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True
    WTF_CSRF_ENABLED = False
    AUTOSAVE_DELAY_MS = 50


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
