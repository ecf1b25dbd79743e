"""Tests for auth.py — register, login, logout, protected routes, lockout."""

import pytest
from datetime import datetime, timedelta

NEW_USER = {"name": "New User", "email": "New@Test.com", "password": "Securepass123"}


class TestRegister:
    def test_register_success(self, client):
        resp = client.post("/api/auth/register", json=NEW_USER)
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["email"] == "new@test.com"
        assert data["role"] == "student"
        assert data["preferredLanguage"] == "en"

        # Registration logs the user in
        assert client.get("/api/auth/me").get_json()["data"]["email"] == "new@test.com"

    def test_register_with_language(self, client):
        resp = client.post("/api/auth/register", json=dict(NEW_USER, preferredLanguage="ar"))
        assert resp.get_json()["data"]["preferredLanguage"] == "ar"

    @pytest.mark.parametrize("password, message", [
        ("Ab1", "at least 8"),
        ("alllowercase1", "uppercase"),
        ("ALLUPPERCASE1", "lowercase"),
        ("NoDigitsHere", "digit"),
    ])
    def test_weak_passwords(self, client, password, message):
        resp = client.post("/api/auth/register", json=dict(NEW_USER, password=password))
        assert resp.status_code == 400
        assert message in resp.get_json()["message"]

    def test_missing_fields(self, client):
        assert client.post("/api/auth/register", json={"email": "x@test.com"}).status_code == 400

    def test_duplicate_email(self, client):
        resp = client.post("/api/auth/register", json=dict(NEW_USER, email="student@test.com"))
        assert resp.status_code == 400
        assert "already exists" in resp.get_json()["message"]

    def test_unsupported_language(self, client):
        resp = client.post("/api/auth/register", json=dict(NEW_USER, preferredLanguage="de"))
        assert resp.status_code == 400


class TestLogin:
    def test_login_success(self, client):
        resp = client.post("/api/auth/login", json={"email": "Student@Test.com", "password": "StudentPass1"})
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["data"]["role"] == "student"

    def test_wrong_password(self, client):
        resp = client.post("/api/auth/login", json={"email": "student@test.com", "password": "WrongPass1"})
        assert resp.status_code == 401
        assert resp.get_json()["success"] is False

    def test_unknown_email(self, client):
        resp = client.post("/api/auth/login", json={"email": "ghost@test.com", "password": "Whatever1"})
        assert resp.status_code == 401

    def test_missing_credentials(self, client):
        assert client.post("/api/auth/login", json={}).status_code == 400

    def test_lockout_after_repeated_failures(self, client, db):
        for _ in range(5):
            resp = client.post("/api/auth/login", json={"email": "student@test.com", "password": "WrongPass1"})
            assert resp.status_code == 401

        resp = client.post("/api/auth/login", json={"email": "student@test.com", "password": "StudentPass1"})
        assert resp.status_code == 423
        assert "locked" in resp.get_json()["message"]

    def test_expired_lock_allows_login(self, client, db):
        past = (datetime.now() - timedelta(minutes=1)).isoformat()
        db.execute("UPDATE users SET login_attempts = 5, locked_until = ? WHERE id = 1", (past,))
        db.commit()
        resp = client.post("/api/auth/login", json={"email": "student@test.com", "password": "StudentPass1"})
        assert resp.status_code == 200
        row = db.execute("SELECT login_attempts, locked_until FROM users WHERE id = 1").fetchone()
        assert row["login_attempts"] == 0
        assert row["locked_until"] is None

    def test_login_is_audited(self, app, client):
        from audit import recent_events

        client.post("/api/auth/login", json={"email": "student@test.com", "password": "WrongPass1"})
        client.post("/api/auth/login", json={"email": "student@test.com", "password": "StudentPass1"})
        actions = [e["action"] for e in recent_events(user_id=1)]
        assert actions[:2] == ["login_success", "login_failed"]


class TestSession:
    def test_me(self, auth_client):
        data = auth_client.get("/api/auth/me").get_json()["data"]
        assert data == {"id": 1, "name": "Test Student", "email": "student@test.com",
                        "role": "student", "preferredLanguage": "en"}

    def test_anonymous_gets_401_envelope(self, client):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401
        body = resp.get_json()
        assert body["success"] is False
        assert body["message"] == "Not authorized to access this route"

    def test_logout(self, auth_client):
        resp = auth_client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "Logged out"
        assert auth_client.get("/api/auth/me").status_code == 401


class TestRoles:
    def test_student_cannot_create_course(self, auth_client):
        resp = auth_client.post("/api/courses", json={"title": "Mine"})
        assert resp.status_code == 403

    def test_trainer_and_admin_can_create_course(self, trainer_client, admin_client):
        assert trainer_client.post("/api/courses", json={"title": "Solar basics"}).status_code == 201
        assert admin_client.post("/api/courses", json={"title": "Wind basics"}).status_code == 201
