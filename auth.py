"""
User Authentication — Flask-Login blueprint.

JSON register, login, logout and whoami endpoints under /api/auth.
Uses werkzeug.security for password hashing.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from flask import Blueprint, current_app, request
from flask_login import LoginManager, UserMixin, login_required, login_user, logout_user, current_user
from werkzeug.security import generate_password_hash, check_password_hash

from database import get_db
from extensions import limiter
from audit import log_event
from helpers import api_error, api_ok

LOCKOUT_THRESHOLD = 5
LOCKOUT_MINUTES = 15

ROLES = ("student", "trainer", "admin")

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
login_manager = LoginManager()


class User(UserMixin):
    """Wraps a DB user row for Flask-Login."""

    def __init__(self, id: int, name: str, email: str, role: str = "student",
                 preferred_language: str = "en"):
        self.id = id
        self.name = name
        self.email = email
        self.role = role
        self.preferred_language = preferred_language

    @property
    def is_trainer(self):
        return self.role in ("trainer", "admin")

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "preferredLanguage": self.preferred_language,
        }

    @staticmethod
    def get(user_id: int):
        db = get_db()
        row = db.execute(
            "SELECT id, name, email, role, preferred_language FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        if row:
            return User(row["id"], row["name"], row["email"], row["role"], row["preferred_language"])
        return None

    @staticmethod
    def get_by_email(email: str):
        db = get_db()
        row = db.execute(
            "SELECT id, name, email, password_hash, role, preferred_language, login_attempts, locked_until "
            "FROM users WHERE email = ?", (email,),
        ).fetchone()
        if row:
            return row
        return None

    @staticmethod
    def create(name: str, email: str, password: str, role: str = "student",
               preferred_language: str = "en") -> User:
        db = get_db()
        cur = db.execute(
            "INSERT INTO users (name, email, password_hash, role, preferred_language, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (name, email, generate_password_hash(password), role, preferred_language,
             datetime.now().isoformat()),
        )
        db.commit()
        return User(cur.lastrowid, name, email, role, preferred_language)


@login_manager.user_loader
def load_user(user_id):
    return User.get(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return api_error("Not authorized to access this route", 401)


def _validate_password(password: str) -> str | None:
    """Return an error message if password is too weak, else None."""
    if len(password) < 8:
        return "Password must be at least 8 characters."
    if not any(c.isupper() for c in password):
        return "Password must contain at least one uppercase letter."
    if not any(c.islower() for c in password):
        return "Password must contain at least one lowercase letter."
    if not any(c.isdigit() for c in password):
        return "Password must contain at least one digit."
    return None


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("3 per hour")
def register():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    language = data.get("preferredLanguage") or "en"

    if not name or not email or not password:
        return api_error("Name, email and password are required.", 400)

    if language not in current_app.config.get("SUPPORTED_LANGUAGES", ["en"]):
        return api_error(f"Unsupported language: {language}", 400)

    pw_error = _validate_password(password)
    if pw_error:
        return api_error(pw_error, 400)

    if User.get_by_email(email):
        return api_error("An account with this email already exists.", 400)

    user = User.create(name, email, password, preferred_language=language)
    log_event("register", user.id, f"email={email}")
    login_user(user, remember=True)
    return api_ok(user.to_dict(), status=201)


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per 15 minutes")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return api_error("Email and password are required.", 400)

    row = User.get_by_email(email)
    if not row:
        return api_error("Invalid email or password.", 401)

    # Check account lockout
    locked_until = row["locked_until"]
    if locked_until:
        try:
            lock_time = datetime.fromisoformat(locked_until)
            remaining = (lock_time - datetime.now()).total_seconds()
            if remaining > 0:
                mins = math.ceil(remaining / 60)
                log_event("login_locked", row["id"], f"email={email}")
                return api_error(f"Account temporarily locked. Try again in {mins} minute(s).", 423)
        except (ValueError, TypeError):
            pass

    if not row["password_hash"] or not check_password_hash(row["password_hash"], password):
        db = get_db()
        attempts = (row["login_attempts"] or 0) + 1
        if attempts >= LOCKOUT_THRESHOLD:
            db.execute(
                "UPDATE users SET login_attempts=?, locked_until=? WHERE id=?",
                (attempts, (datetime.now() + timedelta(minutes=LOCKOUT_MINUTES)).isoformat(), row["id"]),
            )
        else:
            db.execute("UPDATE users SET login_attempts=? WHERE id=?", (attempts, row["id"]))
        db.commit()
        log_event("login_failed", row["id"], f"email={email} attempts={attempts}")
        return api_error("Invalid email or password.", 401)

    # Success: reset lockout fields
    db = get_db()
    db.execute("UPDATE users SET login_attempts=0, locked_until=NULL WHERE id=?", (row["id"],))
    db.commit()

    user = User(row["id"], row["name"], row["email"], row["role"], row["preferred_language"])
    login_user(user, remember=True)
    log_event("login_success", row["id"])
    return api_ok(user.to_dict())


@auth_bp.route("/me")
@login_required
def me():
    return api_ok(current_user.to_dict())


@auth_bp.route("/logout", methods=["POST"])
def logout():
    uid = current_user.id if current_user.is_authenticated else None
    log_event("logout", uid)
    logout_user()
    return api_ok(message="Logged out")
