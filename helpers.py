"""
Shared helpers used across blueprints.

Response envelopes, role checks and pagination.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, jsonify, request
from flask_login import current_user


def current_user_id() -> int:
    """Return the current authenticated user's ID."""
    return current_user.id


def localized_text(value: Any) -> dict | None:
    """Normalize a localized field: a plain string becomes {"en": value}.

    Returns None when the value is empty or keyed by unsupported languages.
    """
    if isinstance(value, str):
        return {"en": value.strip()} if value.strip() else None
    if not isinstance(value, dict) or not value:
        return None
    supported = current_app.config.get("SUPPORTED_LANGUAGES", ["en"])
    if any(k not in supported or not isinstance(v, str) for k, v in value.items()):
        return None
    if not any(v.strip() for v in value.values()):
        return None
    return value


def api_ok(data: Any = None, message: str | None = None, status: int = 200, **extra: Any):
    """Success envelope: {"success": true, "data"?, "message"?, ...extra}."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update(extra)
    return jsonify(body), status


def api_error(message: str, status: int = 400, error: str | None = None):
    """Failure envelope: {"success": false, "message", "error"?}."""
    body: dict[str, Any] = {"success": False, "message": message}
    if error:
        body["error"] = error
    return jsonify(body), status


def role_required(*roles: str) -> Callable:
    """Decorator: 401 when anonymous, 403 when the user's role is not in *roles*."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated(*args: Any, **kwargs: Any) -> Any:
            if not current_user.is_authenticated:
                return current_app.login_manager.unauthorized()
            if getattr(current_user, "role", "student") not in roles:
                return api_error(
                    f"User role {getattr(current_user, 'role', 'student')} is not authorized to access this route",
                    403,
                )
            return f(*args, **kwargs)
        return decorated
    return decorator


trainer_required = role_required("trainer", "admin")
admin_required = role_required("admin")


def json_body() -> dict:
    """The request's JSON object, or {} when absent or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_arg(name: str) -> int | None:
    """Integer query arg, or None when missing or malformed."""
    try:
        return int(request.args[name])
    except (KeyError, TypeError, ValueError):
        return None


# ── Pagination ──────────────────────────────────────────────

def paginate_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """Extract page/limit from request.args. Returns (page, limit)."""
    try:
        page = max(1, int(request.args.get("page", 1)))
    except (ValueError, TypeError):
        page = 1
    try:
        limit = min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    except (ValueError, TypeError):
        limit = default_limit
    return page, limit


def total_pages(total: int, limit: int) -> int:
    return max(1, (total + limit - 1) // limit)
