"""Tests for backup.py and blueprints/backup.py — dump tool, archives, export/import, path safety."""

import json
import subprocess
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

import backup

BASE = "/api/admin/backup"


def fake_dump_tool(args, **kwargs):
    """Stand-in for the sqlite3 shell: `.backup '<path>'` writes a file there."""
    command = args[2]
    if command.startswith(".backup "):
        Path(command[len(".backup "):].strip("'")).write_text("SQLite dump")
    return subprocess.CompletedProcess(args, 0, "", "")


def _write_zip(path, members):
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in members.items():
            zf.writestr(name, content)
    return path


@pytest.fixture
def backup_file(app, admin_client):
    with patch("backup.subprocess.run", side_effect=fake_dump_tool):
        resp = admin_client.post(f"{BASE}/database")
    assert resp.status_code == 201
    return resp.get_json()["data"]


class TestDatabaseBackup:
    def test_creates_zip_and_cleans_up(self, app, admin_client):
        with patch("backup.subprocess.run", side_effect=fake_dump_tool) as mock_run:
            resp = admin_client.post(f"{BASE}/database")
        data = resp.get_json()["data"]
        assert data["filename"].startswith("backup-") and data["filename"].endswith(".zip")
        assert data["path"] == f"{BASE}/download/{data['filename']}"
        assert data["size"] > 0

        args, kwargs = mock_run.call_args
        assert args[0][:2] == ["sqlite3", app.config["DATABASE"]]
        assert args[0][2].startswith(".backup ")
        assert kwargs["timeout"] == app.config["BACKUP_TIMEOUT"]
        assert kwargs["check"] is True

        backup_dir = Path(app.config["BACKUP_DIR"])
        assert [p.name for p in backup_dir.iterdir()] == [data["filename"]]
        with zipfile.ZipFile(backup_dir / data["filename"]) as zf:
            assert zf.namelist() == ["test.db"]

    def test_tool_failure_is_500(self, app, admin_client):
        failure = subprocess.CalledProcessError(1, ["sqlite3"], stderr="disk I/O error")
        with patch("backup.subprocess.run", side_effect=failure):
            resp = admin_client.post(f"{BASE}/database")
        assert resp.status_code == 500
        assert "disk I/O error" in resp.get_json()["error"]
        assert not any(Path(app.config["BACKUP_DIR"]).iterdir())

    def test_tool_timeout_is_500(self, admin_client):
        with patch("backup.subprocess.run", side_effect=subprocess.TimeoutExpired(["sqlite3"], 600)):
            resp = admin_client.post(f"{BASE}/database")
        assert resp.status_code == 500
        assert "timed out" in resp.get_json()["error"]

    def test_non_admin_forbidden(self, trainer_client, auth_client):
        assert trainer_client.post(f"{BASE}/database").status_code == 403
        assert auth_client.get(f"{BASE}/list").status_code == 403

    def test_audit_entry_written(self, app, backup_file):
        from audit import recent_events
        with app.app_context():
            events = recent_events(10)
        assert any(e["action"] == "backup_create" and e["detail"] == backup_file["filename"] for e in events)


class TestRestore:
    def test_requires_filename(self, admin_client):
        assert admin_client.post(f"{BASE}/restore", json={}).status_code == 400

    def test_missing_archive(self, admin_client):
        assert admin_client.post(f"{BASE}/restore", json={"filename": "backup-nope.zip"}).status_code == 404

    def test_restore_runs_tool_and_removes_extraction(self, app, admin_client, backup_file):
        with patch("backup.subprocess.run", side_effect=fake_dump_tool) as mock_run:
            resp = admin_client.post(f"{BASE}/restore", json={"filename": backup_file["filename"]})
        assert resp.status_code == 200
        command = mock_run.call_args[0][0]
        assert command[:2] == ["sqlite3", app.config["DATABASE"]]
        assert command[2].startswith(".restore ") and "extract-" in command[2]
        leftovers = [p.name for p in Path(app.config["BACKUP_DIR"]).iterdir() if p.name.startswith("extract-")]
        assert leftovers == []

    def test_restore_failure_still_cleans_up(self, app, admin_client, backup_file):
        with patch("backup.subprocess.run", side_effect=subprocess.CalledProcessError(1, ["sqlite3"])):
            resp = admin_client.post(f"{BASE}/restore", json={"filename": backup_file["filename"]})
        assert resp.status_code == 500
        assert not any(p.name.startswith("extract-") for p in Path(app.config["BACKUP_DIR"]).iterdir())

    def test_zip_slip_rejected(self, app, admin_client, tmp_path):
        _write_zip(Path(app.config["BACKUP_DIR"]) / "backup-evil.zip", {"../../escaped.txt": "pwned"})
        with patch("backup.subprocess.run") as mock_run:
            resp = admin_client.post(f"{BASE}/restore", json={"filename": "backup-evil.zip"})
        assert resp.status_code == 403
        mock_run.assert_not_called()
        assert not (tmp_path / "escaped.txt").exists()


class TestDownloadsAndListing:
    def test_download(self, admin_client, backup_file):
        resp = admin_client.get(backup_file["path"])
        assert resp.status_code == 200
        assert resp.headers["Content-Disposition"].startswith("attachment")

    def test_traversal_never_leaves_backup_dir(self, app, admin_client, tmp_path):
        (tmp_path / "secret.zip").write_bytes(b"top secret")
        resp = admin_client.get(f"{BASE}/download/%2E%2E%2Fsecret.zip")
        assert resp.status_code != 200
        assert b"top secret" not in resp.data

    def test_safe_path_reduces_to_basename(self, app):
        with app.app_context():
            directory = backup.backup_dir()
            assert backup.safe_path(directory, "../../etc/passwd") == directory.resolve() / "passwd"
            with pytest.raises(backup.UnsafePathError):
                backup.safe_path(directory, "..")
            with pytest.raises(backup.UnsafePathError):
                backup.safe_path(directory, "")

    def test_list_and_delete(self, admin_client, backup_file):
        listing = admin_client.get(f"{BASE}/list").get_json()["data"]
        assert [b["filename"] for b in listing["backups"]] == [backup_file["filename"]]
        assert listing["exports"] == []

        assert admin_client.delete(f"{BASE}/logs/{backup_file['filename']}").status_code == 400
        resp = admin_client.delete(f"{BASE}/backup/{backup_file['filename']}")
        assert resp.status_code == 200
        assert admin_client.get(f"{BASE}/list").get_json()["data"]["backups"] == []
        assert admin_client.delete(f"{BASE}/backup/{backup_file['filename']}").status_code == 404


class TestExportImport:
    def test_export_archive_contents(self, app, admin_client, course):
        resp = admin_client.post(f"{BASE}/export")
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["path"] == f"{BASE}/download-export/{data['filename']}"

        archive = Path(app.config["EXPORT_DIR"]) / data["filename"]
        with zipfile.ZipFile(archive) as zf:
            names = set(zf.namelist())
            metadata = json.loads(zf.read("metadata.json"))
            courses = json.loads(zf.read("courses.json"))
            combined = json.loads(zf.read("complete-export.json"))
        assert {"metadata.json", "complete-export.json", "courses.json", "users.json"} <= names
        assert metadata["modelCount"] == len(backup.EXPORT_MODELS)
        assert metadata["models"] == list(backup.EXPORT_MODELS)
        assert metadata["totalRecords"] == sum(len(rows) for rows in combined.values())
        assert len(courses) == 1
        assert [p.name for p in Path(app.config["EXPORT_DIR"]).iterdir()] == [data["filename"]]

    def test_merge_import_skips_bad_record(self, app, admin_client, db):
        _write_zip(Path(app.config["EXPORT_DIR"]) / "export-manual.zip", {
            "metadata.json": json.dumps({"models": ["courses", "bogus"]}),
            "courses.json": json.dumps([
                {"id": 10, "title": '{"en": "Solar 101"}', "is_published": 1},
                {"id": 11, "title": '{"en": "Wind 101"}', "is_published": 0},
                {"id": 12, "title": '{"en": "Broken"}', "no_such_column": True},
            ]),
        })
        resp = admin_client.post(f"{BASE}/import", json={"filename": "export-manual.zip"})
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["results"]["courses"] == {"success": True, "count": 2, "skipped": 1}
        assert data["results"]["bogus"]["success"] is False
        assert data["message"] == "Data import completed: 1 models successful, 1 failed"
        titles = [r["title"] for r in db.execute("SELECT title FROM courses ORDER BY id")]
        assert titles == ['{"en": "Solar 101"}', '{"en": "Wind 101"}']
        assert not any(p.name.startswith("extract-") for p in Path(app.config["EXPORT_DIR"]).iterdir())

    def test_merge_upserts_existing_rows(self, app, admin_client, course, db):
        _write_zip(Path(app.config["EXPORT_DIR"]) / "export-update.zip", {
            "metadata.json": json.dumps({"models": ["courses"]}),
            "courses.json": json.dumps([{"id": course[0], "title": '{"en": "Renamed"}'}]),
        })
        admin_client.post(f"{BASE}/import", json={"filename": "export-update.zip", "mode": "merge"})
        row = db.execute("SELECT title, is_published FROM courses WHERE id = ?", (course[0],)).fetchone()
        assert row["title"] == '{"en": "Renamed"}'
        assert row["is_published"] == 1

    def test_replace_mode_clears_table_first(self, app, admin_client, course, db):
        _write_zip(Path(app.config["EXPORT_DIR"]) / "export-replace.zip", {
            "metadata.json": json.dumps({"models": ["courses"]}),
            "courses.json": json.dumps([{"id": 50, "title": '{"en": "Only course"}'}]),
        })
        resp = admin_client.post(f"{BASE}/import", json={"filename": "export-replace.zip", "mode": "replace"})
        assert resp.get_json()["data"]["results"]["courses"]["count"] == 1
        assert [r["id"] for r in db.execute("SELECT id FROM courses")] == [50]

    def test_replace_keeps_tables_not_in_archive(self, app, admin_client, course, db):
        course_id, lessons = course
        _write_zip(Path(app.config["EXPORT_DIR"]) / "export-courses.zip", {
            "metadata.json": json.dumps({"models": ["courses"]}),
            "courses.json": json.dumps([{"id": course_id, "title": '{"en": "Restored"}'}]),
        })
        resp = admin_client.post(f"{BASE}/import", json={"filename": "export-courses.zip", "mode": "replace"})
        assert resp.get_json()["data"]["results"]["courses"]["success"] is True
        rows = db.execute("SELECT id FROM lessons WHERE course_id = ? ORDER BY id", (course_id,)).fetchall()
        assert [r["id"] for r in rows] == sorted(lessons)
        assert db.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_export_then_merge_import_roundtrip(self, app, admin_client, course):
        filename = admin_client.post(f"{BASE}/export").get_json()["data"]["filename"]
        data = admin_client.post(f"{BASE}/import", json={"filename": filename}).get_json()["data"]
        assert all(r["success"] for r in data["results"].values())
        assert data["results"]["courses"]["count"] == 1

    def test_import_validation(self, admin_client):
        assert admin_client.post(f"{BASE}/import", json={}).status_code == 400
        assert admin_client.post(f"{BASE}/import", json={"filename": "x.zip", "mode": "append"}).status_code == 400
        assert admin_client.post(f"{BASE}/import", json={"filename": "missing.zip"}).status_code == 404


class TestScheduledBackup:
    def test_scheduled_backup_prunes_old_archives(self, app):
        from scheduler import run_scheduled_backup

        app.config.update(BACKUP_RETENTION=1)
        with patch("backup.subprocess.run", side_effect=fake_dump_tool):
            first = run_scheduled_backup(app)
            second = run_scheduled_backup(app)
        assert first and second
        assert len(list(Path(app.config["BACKUP_DIR"]).glob("backup-*.zip"))) == 1

    def test_scheduled_backup_failure_is_logged(self, app):
        from scheduler import run_scheduled_backup

        with patch("backup.subprocess.run", side_effect=OSError("sqlite3 not found")):
            assert run_scheduled_backup(app) is None
