"""
Web Push Notification sender.

Uses pywebpush with VAPID authentication to send push notifications
to subscribed users. Also holds the streak-at-risk reminder job that the
scheduler runs.
"""

from __future__ import annotations

import json
import logging
from datetime import date

from flask import current_app
from pywebpush import webpush, WebPushException

from database import get_db
from db_stores import NotificationPreferencesDB, NotificationStoreDB, PushSubscriptionStoreDB
from models import Notification, localize

logger = logging.getLogger(__name__)


def send_push(user_id: int, title: str, body: str, url: str = "", data: dict | None = None) -> int:
    """Send push notification to all subscriptions for a user.

    Returns the number of successful deliveries. Subscriptions the push
    service reports as gone (404/410) are removed.
    """
    private_key = current_app.config.get("VAPID_PRIVATE_KEY", "")
    claims_email = current_app.config.get("VAPID_CLAIMS_EMAIL", "mailto:admin@example.com")

    if not private_key:
        return 0

    payload = json.dumps({
        "title": title,
        "body": body,
        "url": url,
        "data": data or {},
    })

    sent = 0
    for sub in PushSubscriptionStoreDB.get_for_user(user_id):
        subscription_info = {
            "endpoint": sub["endpoint"],
            "keys": {
                "p256dh": sub["p256dh"],
                "auth": sub["auth"],
            },
        }
        try:
            webpush(
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=private_key,
                vapid_claims={"sub": claims_email},
            )
            sent += 1
        except WebPushException as e:
            # If subscription is expired, remove it
            if e.response is not None and e.response.status_code in (404, 410):
                PushSubscriptionStoreDB.unsubscribe(sub["endpoint"])
                logger.info("Pruned expired push subscription for user %s", user_id)
            else:
                logger.warning("Push delivery failed for user %s: %s", user_id, e)

    return sent


def deliver_notification_push(notification: Notification) -> bool:
    """Push a notification if the user allows it; stamps pushSent when any device got it.

    Never raises: delivery problems are logged and reported as False.
    """
    try:
        prefs = NotificationPreferencesDB.get_or_create(notification.user_id)
        if not prefs.push_enabled:
            return False
        lang = prefs.preferred_language or "en"
        sent = send_push(
            notification.user_id,
            localize(notification.title, lang),
            localize(notification.message, lang),
            notification.link,
            {"notificationId": notification.id, "type": notification.type},
        )
        if not sent:
            return False
        NotificationStoreDB.mark_push_sent(notification.id)
        return True
    except Exception:
        logger.exception("Push delivery failed for notification %s", notification.id)
        return False


# ── Streak Reminders ─────────────────────────────────────────────────


def _do_send_streak_reminders(app) -> int:
    """Remind subscribed users whose streak will break if they skip today.

    Batch-fetches streak/activity data to avoid N+1 queries.
    """
    total_sent = 0
    with app.app_context():
        db = get_db()
        users = db.execute("SELECT DISTINCT user_id FROM push_subscriptions").fetchall()
        if not users:
            return 0

        user_ids = [u["user_id"] for u in users]
        placeholders = ",".join("?" * len(user_ids))
        streak_rows = db.execute(
            f"SELECT user_id, streak_current FROM leaderboard_entries "
            f"WHERE period = 'all_time' AND user_id IN ({placeholders})",
            user_ids,
        ).fetchall()
        streaks = {r["user_id"]: r["streak_current"] for r in streak_rows}

        active_rows = db.execute(
            f"SELECT user_id FROM daily_learning_records WHERE date = ? AND user_id IN ({placeholders})",
            [date.today().isoformat(), *user_ids],
        ).fetchall()
        active_today = {r["user_id"] for r in active_rows}

        for uid in user_ids:
            streak = streaks.get(uid, 0)
            if streak >= 2 and uid not in active_today:
                total_sent += send_push(
                    uid,
                    "Your streak is at risk!",
                    f"You are on a {streak}-day learning streak. A short lesson today keeps it alive.",
                    "/dashboard",
                )
    return total_sent


def send_streak_reminders(app) -> int:
    """Run the reminder job in the background when RQ is available.

    Returns total notifications sent (or 0 if enqueued).
    """
    from tasks import enqueue, is_async_available
    if is_async_available():
        enqueue(_do_send_streak_reminders, app)
        return 0
    return _do_send_streak_reminders(app)
