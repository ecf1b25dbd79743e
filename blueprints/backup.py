"""Admin backup, restore, export and import routes."""

from __future__ import annotations

import logging
from functools import wraps

from flask import Blueprint, send_file

import backup
from audit import log_event
from helpers import admin_required, api_error, api_ok, current_user_id, json_body

logger = logging.getLogger(__name__)

bp = Blueprint("backup", __name__)

PREFIX = "/api/admin/backup"


def backup_errors(f):
    """Map backup exceptions onto error envelopes."""
    @wraps(f)
    def decorated(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except backup.UnsafePathError as e:
            logger.warning("Rejected unsafe backup path: %s", e)
            return api_error("Access denied", 403, error=str(e))
        except backup.BackupNotFoundError as e:
            return api_error("File not found", 404, error=str(e))
        except backup.BackupError as e:
            logger.error("Backup operation failed: %s", e)
            return api_error("Backup operation failed", 500, error=str(e))
        except ValueError as e:
            return api_error(str(e), 400)
    return decorated


@bp.route(f"{PREFIX}/database", methods=["POST"])
@admin_required
@backup_errors
def api_backup_database():
    info = backup.create_backup()
    log_event("backup_create", current_user_id(), info["filename"])
    return api_ok(info, message="Database backup created successfully", status=201)


@bp.route(f"{PREFIX}/restore", methods=["POST"])
@admin_required
@backup_errors
def api_backup_restore():
    filename = json_body().get("filename")
    if not isinstance(filename, str) or not filename:
        return api_error("Please provide backup filename", 400)
    info = backup.restore_backup(filename)
    log_event("backup_restore", current_user_id(), info["filename"])
    return api_ok(info, message="Database restored successfully")


@bp.route(f"{PREFIX}/export", methods=["POST"])
@admin_required
@backup_errors
def api_backup_export():
    info = backup.export_data()
    log_event("data_export", current_user_id(), info["filename"])
    return api_ok(info, message="Data exported successfully", status=201)


@bp.route(f"{PREFIX}/import", methods=["POST"])
@admin_required
@backup_errors
def api_backup_import():
    data = json_body()
    filename = data.get("filename")
    if not isinstance(filename, str) or not filename:
        return api_error("Please provide export filename", 400)
    result = backup.import_data(filename, data.get("mode", "merge"))
    log_event("data_import", current_user_id(), f"{result['filename']} mode={result['mode']}")
    return api_ok(result, message=result["message"])


@bp.route(f"{PREFIX}/list")
@admin_required
@backup_errors
def api_backup_list():
    archives = backup.list_archives()
    log_event("backup_list", current_user_id())
    return api_ok(archives)


@bp.route(f"{PREFIX}/download/<path:filename>")
@admin_required
@backup_errors
def api_backup_download(filename):
    path = backup.existing_archive(backup.backup_dir(), filename)
    log_event("backup_download", current_user_id(), path.name)
    return send_file(path, as_attachment=True, download_name=path.name)


@bp.route(f"{PREFIX}/download-export/<path:filename>")
@admin_required
@backup_errors
def api_export_download(filename):
    path = backup.existing_archive(backup.export_dir(), filename)
    log_event("export_download", current_user_id(), path.name)
    return send_file(path, as_attachment=True, download_name=path.name)


@bp.route(f"{PREFIX}/<kind>/<path:filename>", methods=["DELETE"])
@admin_required
@backup_errors
def api_backup_delete(kind, filename):
    if kind not in ("backup", "export"):
        return api_error("Invalid type. Must be 'backup' or 'export'", 400)
    name = backup.delete_archive(kind, filename)
    log_event("backup_delete", current_user_id(), f"{kind}:{name}")
    return api_ok({"filename": name}, message=f"{kind.capitalize()} deleted successfully")
