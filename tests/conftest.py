"""
Test fixtures for GreenDye Academy.

Provides app, client, role-specific logged-in clients and db fixtures with
file-based SQLite. Backups and exports go to per-test temp directories.
"""

from __future__ import annotations

import pytest
from datetime import datetime

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from werkzeug.security import generate_password_hash

STUDENT = {"id": 1, "name": "Test Student", "email": "student@test.com", "password": "StudentPass1"}
TRAINER = {"id": 2, "name": "Test Trainer", "email": "trainer@test.com", "password": "TrainerPass1"}
ADMIN = {"id": 3, "name": "Test Admin", "email": "admin@test.com", "password": "AdminPass1"}


@pytest.fixture
def app(tmp_path):
    """Create app with file-based SQLite for testing."""
    from app import create_app

    app = create_app({
        "TESTING": True,
        "DATABASE": str(tmp_path / "test.db"),
        "SECRET_KEY": "test-secret-key",
        "BACKUP_DIR": str(tmp_path / "backups"),
        "EXPORT_DIR": str(tmp_path / "exports"),
        "EMAIL_BACKEND": "log",
        "VAPID_PRIVATE_KEY": "",
        "REDIS_URL": "",
    })

    with app.app_context():
        from database import init_db, run_migrations, get_db

        init_db()
        run_migrations()

        db = get_db()
        for user, role in ((STUDENT, "student"), (TRAINER, "trainer"), (ADMIN, "admin")):
            db.execute(
                "INSERT INTO users (id, name, email, password_hash, role, preferred_language, created_at) "
                "VALUES (?, ?, ?, ?, ?, 'en', ?)",
                (user["id"], user["name"], user["email"], generate_password_hash(user["password"]),
                 role, datetime.now().isoformat()),
            )
        db.commit()

        # Requests reuse this pushed app context (and its ``g``); drop
        # Flask-Login's per-request user cache so clients stay isolated.
        @app.teardown_request
        def _reset_login_cache(exc):
            from flask import g
            g.pop("_login_user", None)

        yield app


def _login(app, user):
    client = app.test_client()
    resp = client.post("/api/auth/login", json={"email": user["email"], "password": user["password"]})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


@pytest.fixture
def auth_client(app):
    """Authenticated test client (logged in as the student)."""
    return _login(app, STUDENT)


@pytest.fixture
def trainer_client(app):
    """Authenticated test client logged in as a trainer."""
    return _login(app, TRAINER)


@pytest.fixture
def admin_client(app):
    """Authenticated test client logged in as an admin."""
    return _login(app, ADMIN)


@pytest.fixture
def db(app):
    """Direct database access for store tests."""
    with app.app_context():
        from database import get_db
        yield get_db()


@pytest.fixture
def course(app):
    """A published course owned by the trainer, with two lessons. Returns (course_id, [lesson ids])."""
    with app.app_context():
        from db_stores import CourseStoreDB

        c = CourseStoreDB.create({"en": "Sustainable Design", "ar": "التصميم المستدام"},
                                 trainer_id=TRAINER["id"], is_published=True)
        lessons = [
            CourseStoreDB.add_lesson(c.id, {"en": "Introduction"}, 1).id,
            CourseStoreDB.add_lesson(c.id, {"en": "Materials"}, 2).id,
        ]
        return c.id, lessons


@pytest.fixture
def make_quiz(app, course):
    """Factory: store a quiz on the fixture course and return its id."""
    def _make(questions, **config):
        from db_stores import QuizStoreDB

        data = {
            "title": {"en": "Checkpoint"},
            "questions": questions,
            "passingScore": 70,
            "attemptsAllowed": -1,
            "showResults": "after-submission",
            "isPublished": True,
        }
        data.update(config)
        with app.app_context():
            return QuizStoreDB.create(course[0], data, created_by=TRAINER["id"]).id
    return _make
