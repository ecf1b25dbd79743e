"""
Centralized Scheduler — Registers all periodic background jobs.

Jobs:
  - Expired notification purge (hourly)
  - Streak-at-risk push reminders (daily at 6 PM)
  - Scheduled database backup (every BACKUP_INTERVAL_HOURS, when set)
"""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler


def purge_expired_notifications(app) -> int:
    with app.app_context():
        from db_stores import NotificationStoreDB
        removed = NotificationStoreDB.purge_expired()
        if removed:
            app.logger.info("Purged %d expired notifications", removed)
        return removed


def run_scheduled_backup(app) -> str | None:
    """Create a backup and prune old ones. Failures are logged, not raised."""
    with app.app_context():
        from audit import log_event
        from backup import BackupError, create_backup, prune_backups
        try:
            info = create_backup()
            prune_backups(app.config.get("BACKUP_RETENTION", 7))
        except BackupError as e:
            app.logger.error("Scheduled backup failed: %s", e)
            return None
        log_event("backup_scheduled", None, f"filename={info['filename']}")
        return info["filename"]


def init_scheduler(app):
    """Start a centralized background scheduler for all periodic jobs.

    Returns the scheduler instance.
    """
    scheduler = BackgroundScheduler(daemon=True)

    # 1. Notification TTL, hourly purge
    scheduler.add_job(
        func=purge_expired_notifications,
        args=[app],
        trigger="interval",
        hours=1,
        id="notification_purge",
        replace_existing=True,
    )

    # 2. Streak reminders, cron at 6 PM
    from push import send_streak_reminders
    scheduler.add_job(
        func=send_streak_reminders,
        args=[app],
        trigger="cron",
        hour=18,
        id="streak_reminders",
        replace_existing=True,
    )

    # 3. Database backups, optional
    interval = app.config.get("BACKUP_INTERVAL_HOURS", 0)
    if interval:
        scheduler.add_job(
            func=run_scheduled_backup,
            args=[app],
            trigger="interval",
            hours=interval,
            id="database_backup",
            replace_existing=True,
        )

    scheduler.start()
    app.logger.info("Centralized scheduler started (notification purge, reminders%s)",
                    ", backups" if interval else "")
    return scheduler
