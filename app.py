"""
GreenDye Academy — Flask REST API

E-learning backend: courses, quizzes, progress, streaks, gamification,
bilingual notifications, support chat and admin backups.
"""

from __future__ import annotations

import logging
import os
from typing import Any

from flask import Flask, Response, request
from flask_login import current_user
from werkzeug.exceptions import HTTPException

import database
from auth import auth_bp, login_manager
from blueprints import register_blueprints
from extensions import babel, limiter
from helpers import api_error

logger = logging.getLogger(__name__)


def create_app(test_config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)

    # Load config
    from config import config_by_name
    if test_config is not None:
        app.config.from_object(config_by_name["testing"])
        app.config.update(test_config)
    else:
        env = os.environ.get("FLASK_ENV", "development")
        cfg = config_by_name.get(env, config_by_name["development"])
        app.config.from_object(cfg)
        if hasattr(cfg, "validate"):
            cfg.validate()

    app.secret_key = app.config.get("SECRET_KEY", os.environ.get("SECRET_KEY", "dev-key-change-in-production"))

    # i18n with Flask-Babel: user preference, then Accept-Language
    def get_locale():
        supported = app.config.get("SUPPORTED_LANGUAGES", ["en"])
        if current_user.is_authenticated:
            lang = getattr(current_user, "preferred_language", None)
            if lang in supported:
                return lang
        return request.accept_languages.best_match(supported, default="en")

    babel.init_app(app, locale_selector=get_locale)

    # Background task processing (RQ or synchronous fallback)
    from tasks import init_tasks
    init_tasks(app)

    # Structured logging
    from logging_config import init_logging
    init_logging(app)

    # Register database teardown
    database.init_app(app)

    # Rate limiter (disabled in testing)
    limiter.init_app(app)
    if app.config.get("TESTING"):
        limiter.enabled = False

    # Register auth blueprint and login manager
    app.register_blueprint(auth_bp)
    login_manager.init_app(app)

    # Register all application blueprints
    register_blueprints(app)

    # JSON error envelopes for the API
    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        if request.path.startswith("/api/"):
            return api_error(e.description or e.name, e.code or 500, error=e.name)
        return e

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return api_error("Server Error", 500)

    # Security headers
    @app.after_request
    def set_security_headers(response: Response) -> Response:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "SAMEORIGIN"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # Start centralized scheduler (notification purge, reminders, backups)
    if not app.config.get("TESTING"):
        from scheduler import init_scheduler
        init_scheduler(app)

    return app


if __name__ == "__main__":
    create_app().run(debug=True, port=5000)
