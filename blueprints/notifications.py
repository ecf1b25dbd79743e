"""Notification, delivery preference and push subscription routes."""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, request
from flask_babel import get_locale
from flask_login import login_required

from audit import log_event
from auth import User
from db_stores import NotificationPreferencesDB, NotificationStoreDB, PushSubscriptionStoreDB
from email_service import deliver_notification_email
from helpers import (
    admin_required,
    api_error,
    api_ok,
    current_user_id,
    json_body,
    localized_text,
    paginate_args,
    total_pages,
)
from models import NOTIFICATION_PRIORITIES, NOTIFICATION_TYPES, Notification
from push import deliver_notification_push

logger = logging.getLogger(__name__)

bp = Blueprint("notifications", __name__)


def _request_lang() -> str:
    locale = get_locale()
    return locale.language if locale is not None else "en"


def create_notification(user_id: int, ntype: str, title: dict, message: dict,
                        data: dict | None = None, link: str = "", priority: str = "medium",
                        send_email: bool = False, send_push: bool = False) -> Notification:
    """Store a notification and optionally deliver it by email and/or push.

    Delivery honours the user's preferences and never raises.
    """
    notification = NotificationStoreDB(user_id).add(
        ntype, title, message, data=data, link=link, priority=priority,
        ttl_days=current_app.config.get("NOTIFICATION_TTL_DAYS", 90),
    )
    if send_email:
        user = User.get(user_id)
        deliver_notification_email(notification, user.email if user else "")
    if send_push:
        deliver_notification_push(notification)
    return NotificationStoreDB.get(notification.id)


@bp.route("/api/notifications")
@login_required
def api_notifications():
    uid = current_user_id()
    page, limit = paginate_args(default_limit=20, max_limit=100)
    unread_only = request.args.get("unreadOnly", "").lower() in ("1", "true", "yes")
    store = NotificationStoreDB(uid)
    items, total = store.page(page, limit, unread_only=unread_only)
    lang = _request_lang()
    return api_ok(
        [n.to_dict(lang) for n in items],
        count=len(items),
        total=total,
        unreadCount=store.unread_count(),
        totalPages=total_pages(total, limit),
        currentPage=page,
    )


def _owned_notification(notif_id: int):
    """(notification, error_response) for the caller's notification."""
    notification = NotificationStoreDB.get(notif_id)
    if notification is None:
        return None, api_error("Notification not found", 404)
    if notification.user_id != current_user_id():
        return None, api_error("Not authorized to access this notification", 403)
    return notification, None


@bp.route("/api/notifications/<int:notif_id>/read", methods=["PUT"])
@login_required
def api_notification_read(notif_id):
    notification, err = _owned_notification(notif_id)
    if err:
        return err
    NotificationStoreDB.mark_read(notification.id)
    return api_ok(NotificationStoreDB.get(notification.id).to_dict(_request_lang()))


@bp.route("/api/notifications/read-all", methods=["PUT"])
@login_required
def api_notifications_read_all():
    updated = NotificationStoreDB(current_user_id()).mark_all_read()
    return api_ok({"updated": updated}, message="All notifications marked as read")


@bp.route("/api/notifications/<int:notif_id>", methods=["DELETE"])
@login_required
def api_notification_delete(notif_id):
    notification, err = _owned_notification(notif_id)
    if err:
        return err
    NotificationStoreDB.delete(notification.id)
    return api_ok({}, message="Notification deleted")


@bp.route("/api/notifications/read", methods=["DELETE"])
@login_required
def api_notifications_delete_read():
    deleted = NotificationStoreDB(current_user_id()).delete_read()
    return api_ok({"deleted": deleted}, message=f"{deleted} read notification(s) deleted")


@bp.route("/api/notifications", methods=["POST"])
@admin_required
def api_notification_create():
    data = json_body()
    user_id = data.get("userId")
    if not isinstance(user_id, int) or User.get(user_id) is None:
        return api_error("A valid userId is required", 400)
    ntype = data.get("type")
    if ntype not in NOTIFICATION_TYPES:
        return api_error(f"type must be one of {', '.join(NOTIFICATION_TYPES)}", 400)
    title = localized_text(data.get("title"))
    message = localized_text(data.get("message"))
    if title is None or message is None:
        return api_error("title and message are required", 400)
    priority = data.get("priority", "medium")
    if priority not in NOTIFICATION_PRIORITIES:
        return api_error(f"priority must be one of {', '.join(NOTIFICATION_PRIORITIES)}", 400)
    extra = data.get("data") or {}
    if not isinstance(extra, dict):
        return api_error("data must be an object", 400)

    notification = create_notification(
        user_id, ntype, title, message,
        data=extra,
        link=str(data.get("link") or ""),
        priority=priority,
        send_email=bool(data.get("sendEmail")),
        send_push=bool(data.get("sendPush")),
    )
    log_event("notification_create", current_user_id(), f"notification={notification.id} user={user_id}")
    return api_ok(notification.to_dict(_request_lang()), status=201)


@bp.route("/api/notifications/preferences")
@login_required
def api_preferences():
    return api_ok(NotificationPreferencesDB.get_or_create(current_user_id()).to_dict())


@bp.route("/api/notifications/preferences", methods=["PUT"])
@login_required
def api_preferences_update():
    data = json_body()
    lang = data.get("preferredLanguage")
    if lang is not None and lang not in current_app.config.get("SUPPORTED_LANGUAGES", ["en"]):
        return api_error("Unsupported language", 400)
    prefs = NotificationPreferencesDB.update(
        current_user_id(),
        email_enabled=data.get("emailEnabled"),
        push_enabled=data.get("pushEnabled"),
        preferred_language=lang,
    )
    return api_ok(prefs.to_dict())


@bp.route("/api/push/subscribe", methods=["POST"])
@login_required
def api_push_subscribe():
    data = json_body()
    sub = data.get("subscription")
    if not isinstance(sub, dict):
        sub = {}
    keys = sub.get("keys") if isinstance(sub.get("keys"), dict) else {}
    endpoint = sub.get("endpoint", "")
    if not endpoint or not keys.get("p256dh") or not keys.get("auth"):
        return api_error("subscription endpoint and keys are required", 400)
    PushSubscriptionStoreDB.subscribe(
        user_id=current_user_id(),
        endpoint=endpoint,
        p256dh=keys["p256dh"],
        auth=keys["auth"],
    )
    return api_ok(message="Subscribed", status=201)


@bp.route("/api/push/unsubscribe", methods=["POST"])
@login_required
def api_push_unsubscribe():
    endpoint = json_body().get("endpoint", "")
    if not endpoint:
        return api_error("endpoint is required", 400)
    removed = PushSubscriptionStoreDB.unsubscribe(endpoint, user_id=current_user_id())
    return api_ok({"removed": removed})


@bp.route("/api/push/vapid-key")
def api_vapid_key():
    return api_ok({"publicKey": current_app.config.get("VAPID_PUBLIC_KEY", "")})
