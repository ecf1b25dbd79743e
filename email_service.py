"""
Email service — sends email via SMTP or logs to console.

Uses EMAIL_BACKEND config to choose transport:
  - "log" (default): prints email to console/log
  - "smtp": sends via SMTP using MAIL_* settings, retried on transient errors
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from flask import current_app, render_template_string
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from db_stores import NotificationPreferencesDB, NotificationStoreDB
from models import Notification, localize

logger = logging.getLogger(__name__)

BUTTON_TEXT = {"en": "View Details", "ar": "عرض التفاصيل", "fr": "Voir les détails"}

NOTIFICATION_TEMPLATE = """\
<!doctype html>
<html lang="{{ lang }}" dir="{{ 'rtl' if lang == 'ar' else 'ltr' }}">
  <body style="font-family: Arial, sans-serif;">
    <h2 style="color: #2e7d32;">{{ title }}</h2>
    <p>{{ message }}</p>
    {% if link %}
    <p><a href="{{ link }}" style="background: #2e7d32; color: #ffffff; padding: 10px 18px;
       text-decoration: none; border-radius: 4px;">{{ button }}</a></p>
    {% endif %}
    <hr style="border-color: #eeeeee;">
    <p style="font-size: 12px; color: #666666;">
      This is an automated message from GreenDye Academy. Please do not reply.
    </p>
  </body>
</html>
"""


class EmailService:
    @staticmethod
    def send(to: str, subject: str, body_html: str) -> bool:
        """Send an email (background if RQ available, else inline).

        Returns True on success (or True if enqueued).
        """
        backend = current_app.config.get("EMAIL_BACKEND", "log")

        if backend == "log":
            logger.info(
                "EMAIL [to=%s] subject=%s\n%s",
                to, subject, body_html,
            )
            return True

        # Extract config for context-free background execution
        config = {
            "mail_from": current_app.config.get("MAIL_FROM", "noreply@greendye.academy"),
            "mail_server": current_app.config.get("MAIL_SERVER", "localhost"),
            "mail_port": current_app.config.get("MAIL_PORT", 587),
            "mail_username": current_app.config.get("MAIL_USERNAME", ""),
            "mail_password": current_app.config.get("MAIL_PASSWORD", ""),
        }

        from tasks import enqueue
        result = enqueue(EmailService._do_send, to, subject, body_html, config)
        return result is not False

    @staticmethod
    def _do_send(to: str, subject: str, body_html: str, config: dict) -> bool:
        """Actual SMTP send — no Flask context required."""
        try:
            EmailService._deliver(to, subject, body_html, config)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP send failed: %s", e)
            return False

    @staticmethod
    @retry(
        retry=retry_if_exception_type((smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, ConnectionError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    def _deliver(to: str, subject: str, body_html: str, config: dict) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f'"GreenDye Academy" <{config.get("mail_from", "noreply@greendye.academy")}>'
        msg["To"] = to
        msg.attach(MIMEText(body_html, "html", "utf-8"))

        server = config.get("mail_server", "localhost")
        port = config.get("mail_port", 587)
        username = config.get("mail_username", "")
        password = config.get("mail_password", "")

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


def render_notification_email(notification: Notification, lang: str) -> tuple[str, str]:
    """Return (subject, html) for a notification in the given language."""
    title = localize(notification.title, lang)
    message = localize(notification.message, lang)
    html = render_template_string(
        NOTIFICATION_TEMPLATE,
        lang=lang,
        title=title,
        message=message,
        link=notification.link,
        button=BUTTON_TEXT.get(lang, BUTTON_TEXT["en"]),
    )
    return title, html


def deliver_notification_email(notification: Notification, email: str) -> bool:
    """Email a notification if the user allows it; stamps emailSent on success.

    Never raises: delivery problems are logged and reported as False.
    """
    try:
        prefs = NotificationPreferencesDB.get_or_create(notification.user_id)
        if not prefs.email_enabled or not email:
            return False
        subject, html = render_notification_email(notification, prefs.preferred_language or "en")
        if not EmailService.send(email, subject, html):
            return False
        NotificationStoreDB.mark_email_sent(notification.id)
        return True
    except Exception:
        logger.exception("Email delivery failed for notification %s", notification.id)
        return False
