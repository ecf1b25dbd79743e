"""Support chat routes."""

from __future__ import annotations

from flask import Blueprint
from flask_login import current_user, login_required

from db_stores import ChatStoreDB, CourseStoreDB
from helpers import api_error, api_ok, current_user_id, json_body, paginate_args, total_pages
from models import CHAT_CHANNELS, NOTIFICATION_PRIORITIES

bp = Blueprint("chat", __name__)

MAX_MESSAGE_LENGTH = 5000


def _accessible_conversation(conversation_id: int):
    """(conversation, error_response) for a conversation the caller may use."""
    conversation = ChatStoreDB.get(conversation_id)
    if conversation is None:
        return None, api_error("Conversation not found", 404)
    if current_user_id() not in conversation.participants and current_user.role != "admin":
        return None, api_error("Not authorized to access this conversation", 403)
    return conversation, None


@bp.route("/api/chat/sessions", methods=["POST"])
@login_required
def api_chat_session():
    data = json_body()
    channel = data.get("channel", "support")
    if channel not in CHAT_CHANNELS:
        return api_error(f"channel must be one of {', '.join(CHAT_CHANNELS)}", 400)
    priority = data.get("priority", "medium")
    if priority not in NOTIFICATION_PRIORITIES:
        return api_error(f"priority must be one of {', '.join(NOTIFICATION_PRIORITIES)}", 400)
    course_id = data.get("courseId")
    if course_id is not None and (not isinstance(course_id, int) or not CourseStoreDB.get(course_id)):
        return api_error("Course not found", 404)
    conversation = ChatStoreDB.create_conversation(
        current_user_id(), channel=channel, course_id=course_id, priority=priority,
    )
    return api_ok(conversation.to_dict(), status=201)


@bp.route("/api/chat/<int:conversation_id>/messages", methods=["POST"])
@login_required
def api_chat_send(conversation_id):
    content = json_body().get("content")
    if not isinstance(content, str) or not content.strip():
        return api_error("Message content is required", 400)
    if len(content) > MAX_MESSAGE_LENGTH:
        return api_error(f"Message must be at most {MAX_MESSAGE_LENGTH} characters", 400)
    conversation, err = _accessible_conversation(conversation_id)
    if err:
        return err
    message = ChatStoreDB.add_message(conversation.id, current_user_id(), content.strip())
    return api_ok(message.to_dict(), status=201)


@bp.route("/api/chat/<int:conversation_id>/messages")
@login_required
def api_chat_messages(conversation_id):
    conversation, err = _accessible_conversation(conversation_id)
    if err:
        return err
    page, limit = paginate_args(default_limit=50, max_limit=200)
    messages, total = ChatStoreDB.messages(conversation.id, page, limit)
    return api_ok(
        [m.to_dict() for m in messages],
        count=len(messages),
        total=total,
        totalPages=total_pages(total, limit),
        currentPage=page,
    )


@bp.route("/api/chat/conversations")
@login_required
def api_chat_conversations():
    conversations = ChatStoreDB.for_user(current_user_id())
    return api_ok([c.to_dict() for c in conversations], count=len(conversations))
