"""
Database backup, restore, export and import.

Backups are produced by an external dump tool (the sqlite3 shell by default)
and stored as zip archives under BACKUP_DIR. Exports serialize every
registered table to JSON and are stored as zip archives under EXPORT_DIR;
imports read those archives back in merge or replace mode.

Every filename that arrives from a request goes through ``safe_path`` before
it touches the filesystem.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import sqlite3
import subprocess
import time
import zipfile
from datetime import datetime, timezone
from pathlib import Path

from flask import current_app

from database import close_db, get_db, table_columns

logger = logging.getLogger(__name__)

# Tables included in exports, parents before children so imports satisfy
# foreign keys. Value is the conflict target used for merge upserts.
EXPORT_MODELS: dict[str, tuple[str, ...]] = {
    "users": ("id",),
    "courses": ("id",),
    "lessons": ("id",),
    "quizzes": ("id",),
    "questions": ("id",),
    "enrollments": ("id",),
    "enrollment_quiz_scores": ("id",),
    "submissions": ("id",),
    "progress": ("id",),
    "lesson_progress": ("id",),
    "daily_learning_records": ("id",),
    "badges": ("id",),
    "user_achievements": ("id",),
    "leaderboard_entries": ("id",),
    "notifications": ("id",),
    "notification_preferences": ("user_id",),
    "push_subscriptions": ("id",),
    "chat_conversations": ("id",),
    "chat_participants": ("conversation_id", "user_id"),
    "chat_messages": ("id",),
    "audit_log": ("id",),
}

IMPORT_MODES = ("merge", "replace")


class BackupError(Exception):
    """A backup, restore, export or import step failed."""


class BackupNotFoundError(BackupError):
    """The requested archive does not exist."""


class UnsafePathError(BackupError):
    """A filename or archive member resolves outside its directory."""


# ── Paths ────────────────────────────────────────────────────────────


def backup_dir() -> Path:
    path = Path(current_app.config["BACKUP_DIR"])
    path.mkdir(parents=True, exist_ok=True)
    return path


def export_dir() -> Path:
    path = Path(current_app.config["EXPORT_DIR"])
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_path(directory: Path, filename: str) -> Path:
    """Reduce *filename* to its basename and confirm it resolves inside *directory*."""
    name = os.path.basename(filename or "")
    if name in ("", ".", ".."):
        raise UnsafePathError("Invalid filename")
    root = directory.resolve()
    resolved = (root / name).resolve()
    if resolved.parent != root:
        raise UnsafePathError("Access denied")
    return resolved


def existing_archive(directory: Path, filename: str) -> Path:
    path = safe_path(directory, filename)
    if not path.is_file():
        raise BackupNotFoundError(f"{path.name} not found")
    return path


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def _archive_info(path: Path, kind: str) -> dict:
    stat = path.stat()
    route = "download" if kind == "backup" else "download-export"
    return {
        "filename": path.name,
        "type": kind,
        "size": stat.st_size,
        "created": datetime.fromtimestamp(stat.st_mtime).isoformat(),
        "path": f"/api/admin/backup/{route}/{path.name}",
    }


# ── Zip helpers ──────────────────────────────────────────────────────


def zip_directory(source: Path, target: Path) -> None:
    """Zip the contents of *source* (not the directory itself) into *target*."""
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        for path in sorted(source.rglob("*")):
            if path.is_file():
                zf.write(path, path.relative_to(source).as_posix())


def extract_archive(archive: Path, target: Path) -> None:
    """Extract *archive* into *target*, refusing members that would land outside it."""
    root = target.resolve()
    with zipfile.ZipFile(archive) as zf:
        for member in zf.infolist():
            dest = (root / member.filename).resolve()
            if dest != root and root not in dest.parents:
                raise UnsafePathError(f"Archive member escapes extraction directory: {member.filename}")
        zf.extractall(root)


# ── Dump tool ────────────────────────────────────────────────────────


def _run_tool(args: list[str]) -> None:
    timeout = current_app.config.get("BACKUP_TIMEOUT", 600)
    try:
        subprocess.run(args, check=True, timeout=timeout, capture_output=True, text=True)
    except subprocess.TimeoutExpired:
        raise BackupError(f"{args[0]} timed out after {timeout}s")
    except subprocess.CalledProcessError as e:
        raise BackupError(f"{args[0]} exited with status {e.returncode}: {(e.stderr or '').strip()}")
    except OSError as e:
        raise BackupError(f"Could not run {args[0]}: {e}")


def _sqlite_literal(path: Path) -> str:
    return "'" + str(path).replace("'", "''") + "'"


def create_backup() -> dict:
    """Dump the database into backup-<timestamp>/ and zip it."""
    directory = backup_dir()
    name = f"backup-{_timestamp()}"
    work = directory / name
    archive = directory / f"{name}.zip"
    db_path = current_app.config["DATABASE"]
    tool = current_app.config.get("DB_DUMP_TOOL", "sqlite3")

    work.mkdir(parents=True, exist_ok=True)
    try:
        dump = work / Path(db_path).name
        _run_tool([tool, db_path, f".backup {_sqlite_literal(dump)}"])
        zip_directory(work, archive)
    finally:
        shutil.rmtree(work, ignore_errors=True)

    logger.info("Database backup written to %s", archive)
    info = _archive_info(archive, "backup")
    info["timestamp"] = datetime.now().isoformat()
    return info


def restore_backup(filename: str) -> dict:
    """Extract a backup archive and load its dump with the restore tool."""
    directory = backup_dir()
    archive = existing_archive(directory, filename)
    work = directory / f"extract-{int(time.time() * 1000)}"
    db_path = current_app.config["DATABASE"]
    tool = current_app.config.get("DB_DUMP_TOOL", "sqlite3")

    try:
        work.mkdir(parents=True, exist_ok=True)
        extract_archive(archive, work)
        dump = _first_entry(work)
        if dump is None:
            raise BackupError("Backup archive is empty")
        # The restore tool needs the database to itself.
        close_db()
        _run_tool([tool, db_path, f".restore {_sqlite_literal(dump)}"])
    finally:
        shutil.rmtree(work, ignore_errors=True)

    logger.info("Database restored from %s", archive.name)
    return {"filename": archive.name, "timestamp": datetime.now().isoformat()}


def _first_entry(work: Path) -> Path | None:
    entries = sorted(work.iterdir())
    if not entries:
        return None
    first = entries[0]
    if first.is_dir():
        files = sorted(p for p in first.rglob("*") if p.is_file())
        return files[0] if files else None
    return first


def prune_backups(keep: int) -> list[str]:
    """Delete all but the newest *keep* backup archives."""
    archives = sorted(backup_dir().glob("backup-*.zip"), key=lambda p: p.stat().st_mtime, reverse=True)
    removed = []
    for path in archives[keep:]:
        path.unlink(missing_ok=True)
        removed.append(path.name)
    if removed:
        logger.info("Pruned %d old backups", len(removed))
    return removed


# ── Export / Import ──────────────────────────────────────────────────


def export_data() -> dict:
    """Write every registered table to JSON plus a combined file and metadata, then zip."""
    directory = export_dir()
    name = f"export-{_timestamp()}"
    work = directory / name
    archive = directory / f"{name}.zip"
    db = get_db()

    work.mkdir(parents=True, exist_ok=True)
    try:
        combined: dict[str, list[dict]] = {}
        for table in EXPORT_MODELS:
            rows = [dict(r) for r in db.execute(f"SELECT * FROM {table}").fetchall()]
            combined[table] = rows
            (work / f"{table}.json").write_text(json.dumps(rows, indent=2, ensure_ascii=False))

        (work / "complete-export.json").write_text(json.dumps(combined, indent=2, ensure_ascii=False))
        metadata = {
            "exportDate": datetime.now(timezone.utc).isoformat(),
            "modelCount": len(combined),
            "models": list(combined),
            "totalRecords": sum(len(rows) for rows in combined.values()),
        }
        (work / "metadata.json").write_text(json.dumps(metadata, indent=2))
        zip_directory(work, archive)
    finally:
        shutil.rmtree(work, ignore_errors=True)

    logger.info("Data export written to %s (%d records)", archive, metadata["totalRecords"])
    info = _archive_info(archive, "export")
    info["timestamp"] = datetime.now().isoformat()
    info["metadata"] = metadata
    return info


def _upsert_sql(table: str, columns: list[str], keys: tuple[str, ...]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
    updates = [c for c in columns if c not in keys]
    if all(k in columns for k in keys):
        if updates:
            sets = ", ".join(f"{c} = excluded.{c}" for c in updates)
            sql += f" ON CONFLICT({', '.join(keys)}) DO UPDATE SET {sets}"
        else:
            sql += f" ON CONFLICT({', '.join(keys)}) DO NOTHING"
    return sql


def import_model(table: str, records: list[dict], mode: str) -> dict:
    """Write *records* into *table* one by one; failing records are counted as skipped."""
    db = get_db()
    keys = EXPORT_MODELS[table]
    known = set(table_columns(table))

    if mode == "replace":
        db.execute(f"DELETE FROM {table}")

    imported = 0
    skipped = 0
    for record in records:
        if not isinstance(record, dict):
            skipped += 1
            continue
        columns = [c for c in record if c in known]
        if not columns or len(columns) != len(record):
            skipped += 1
            continue
        try:
            db.execute(_upsert_sql(table, columns, keys), [record[c] for c in columns])
            imported += 1
        except sqlite3.Error as e:
            logger.debug("Skipped %s record: %s", table, e)
            skipped += 1
    db.commit()
    return {"success": True, "count": imported, "skipped": skipped}


def import_data(filename: str, mode: str = "merge") -> dict:
    """Load an export archive back into the database."""
    if mode not in IMPORT_MODES:
        raise ValueError(f"mode must be one of {', '.join(IMPORT_MODES)}")
    directory = export_dir()
    archive = existing_archive(directory, filename)
    work = directory / f"extract-{int(time.time() * 1000)}"

    results: dict[str, dict] = {}
    try:
        work.mkdir(parents=True, exist_ok=True)
        extract_archive(archive, work)
        try:
            metadata = json.loads((work / "metadata.json").read_text())
        except (OSError, ValueError) as e:
            raise BackupError(f"Export metadata is missing or unreadable: {e}")

        # Cascades stay off so a replace only touches the tables in the archive.
        # The pragma is ignored inside an open transaction.
        db = get_db()
        db.commit()
        db.execute("PRAGMA foreign_keys=OFF")
        try:
            for model in metadata.get("models", []):
                if model not in EXPORT_MODELS:
                    results[model] = {"success": False, "error": f"Unknown model: {model}"}
                    continue
                try:
                    records = json.loads((work / f"{model}.json").read_text())
                    results[model] = import_model(model, records, mode)
                except (OSError, ValueError, sqlite3.Error) as e:
                    db.rollback()
                    results[model] = {"success": False, "error": str(e)}
        finally:
            db.commit()
            db.execute("PRAGMA foreign_keys=ON")
    finally:
        shutil.rmtree(work, ignore_errors=True)

    ok = sum(1 for r in results.values() if r["success"])
    failed = len(results) - ok
    logger.info("Import of %s (%s): %d models ok, %d failed", archive.name, mode, ok, failed)
    return {
        "message": f"Data import completed: {ok} models successful, {failed} failed",
        "filename": archive.name,
        "mode": mode,
        "timestamp": datetime.now().isoformat(),
        "results": results,
    }


# ── Listing / deletion ───────────────────────────────────────────────


def list_archives() -> dict:
    def _collect(directory: Path, kind: str) -> list[dict]:
        items = [_archive_info(p, kind) for p in directory.glob("*.zip") if p.is_file()]
        return sorted(items, key=lambda i: i["created"], reverse=True)

    return {"backups": _collect(backup_dir(), "backup"), "exports": _collect(export_dir(), "export")}


def delete_archive(kind: str, filename: str) -> str:
    directory = backup_dir() if kind == "backup" else export_dir()
    path = existing_archive(directory, filename)
    path.unlink()
    logger.info("Deleted %s %s", kind, path.name)
    return path.name
