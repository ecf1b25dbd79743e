"""
Application configuration — environment-aware settings.

All environment variables are documented here. See .env.example for a template.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).parent

load_dotenv(BASE_DIR / ".env")


class BaseConfig:
    # Core Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-key-change-in-production")
    # SQLite database file
    DATABASE = os.environ.get("DATABASE_URL", str(BASE_DIR / "greendye.db"))

    # Session security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 86400

    # Upload limits (backup archives go through the API)
    MAX_CONTENT_LENGTH = 64 * 1024 * 1024

    # Localization: every localized map is keyed by one of these
    SUPPORTED_LANGUAGES = ["en", "ar", "fr"]
    BABEL_DEFAULT_LOCALE = "en"

    # Backups / exports
    BACKUP_DIR = os.environ.get("BACKUP_DIR", str(BASE_DIR / "backups"))
    EXPORT_DIR = os.environ.get("EXPORT_DIR", str(BASE_DIR / "exports"))
    DB_DUMP_TOOL = os.environ.get("DB_DUMP_TOOL", "sqlite3")
    BACKUP_TIMEOUT = int(os.environ.get("BACKUP_TIMEOUT", "600"))  # seconds
    BACKUP_INTERVAL_HOURS = int(os.environ.get("BACKUP_INTERVAL_HOURS", "0"))  # 0 = disabled
    BACKUP_RETENTION = int(os.environ.get("BACKUP_RETENTION", "7"))

    # Notifications
    NOTIFICATION_TTL_DAYS = int(os.environ.get("NOTIFICATION_TTL_DAYS", "90"))

    # Web push (VAPID)
    VAPID_PRIVATE_KEY = os.environ.get("VAPID_PRIVATE_KEY", "")
    VAPID_PUBLIC_KEY = os.environ.get("VAPID_PUBLIC_KEY", "")
    VAPID_CLAIMS_EMAIL = os.environ.get("VAPID_CLAIMS_EMAIL", "mailto:admin@example.com")

    # Logging
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # "json" or "text"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Email
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "log")  # "log" or "smtp"
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "localhost")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_FROM = os.environ.get("MAIL_FROM", "noreply@greendye.academy")
    BASE_URL = os.environ.get("BASE_URL", "http://localhost:5000")

    # Redis (background tasks, rate limiting)
    REDIS_URL = os.environ.get("REDIS_URL", "")

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

        if cls.EMAIL_BACKEND == "smtp" and not cls.MAIL_USERNAME:
            warnings.warn("MAIL_USERNAME is not set — SMTP delivery will be unauthenticated.")

        if not cls.VAPID_PRIVATE_KEY:
            warnings.warn("VAPID_PRIVATE_KEY is not set — push notifications are disabled.")

        if errors:
            raise RuntimeError(
                "Production configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            )


class TestingConfig(BaseConfig):
    TESTING = True


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
