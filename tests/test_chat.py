"""Tests for blueprints/chat.py — support conversations and messages."""

import pytest


@pytest.fixture
def conversation(auth_client):
    resp = auth_client.post("/api/chat/sessions", json={"channel": "support"})
    assert resp.status_code == 201
    return resp.get_json()["data"]


class TestSessions:
    def test_open_session(self, conversation):
        assert conversation["participants"] == [1]
        assert conversation["status"] == "open"
        assert conversation["lastMessageAt"] is None

    def test_course_channel(self, auth_client, course):
        data = auth_client.post("/api/chat/sessions", json={"channel": "course", "courseId": course[0]}).get_json()
        assert data["data"]["courseId"] == course[0]

    def test_invalid_channel_and_course(self, auth_client):
        assert auth_client.post("/api/chat/sessions", json={"channel": "gossip"}).status_code == 400
        assert auth_client.post("/api/chat/sessions", json={"courseId": 999}).status_code == 404

    def test_requires_login(self, client):
        assert client.post("/api/chat/sessions", json={}).status_code == 401


class TestMessages:
    def test_send_and_read_messages(self, auth_client, conversation):
        cid = conversation["id"]
        for text in ("Hello", "I cannot open lesson 2"):
            assert auth_client.post(f"/api/chat/{cid}/messages", json={"content": text}).status_code == 201
        body = auth_client.get(f"/api/chat/{cid}/messages").get_json()
        assert [m["text"] for m in body["data"]] == ["Hello", "I cannot open lesson 2"]
        assert body["total"] == 2
        assert body["currentPage"] == 1

        conversations = auth_client.get("/api/chat/conversations").get_json()["data"]
        assert conversations[0]["lastMessageAt"] is not None

    def test_pagination_keeps_oldest_first(self, auth_client, conversation):
        cid = conversation["id"]
        for i in range(5):
            auth_client.post(f"/api/chat/{cid}/messages", json={"content": f"m{i}"})
        body = auth_client.get(f"/api/chat/{cid}/messages?page=2&limit=2").get_json()
        assert [m["text"] for m in body["data"]] == ["m2", "m3"]
        assert body["totalPages"] == 3

    def test_empty_content_rejected(self, auth_client, conversation):
        resp = auth_client.post(f"/api/chat/{conversation['id']}/messages", json={"content": "   "})
        assert resp.status_code == 400

    def test_missing_conversation(self, auth_client):
        assert auth_client.post("/api/chat/999/messages", json={"content": "hi"}).status_code == 404

    def test_non_participant_forbidden(self, trainer_client, conversation):
        cid = conversation["id"]
        assert trainer_client.post(f"/api/chat/{cid}/messages", json={"content": "hi"}).status_code == 403
        assert trainer_client.get(f"/api/chat/{cid}/messages").status_code == 403

    def test_admin_may_reply(self, admin_client, conversation):
        resp = admin_client.post(f"/api/chat/{conversation['id']}/messages", json={"content": "How can I help?"})
        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert (data["senderId"], data["senderType"]) == (3, "user")


class TestConversations:
    def test_most_recent_activity_first(self, auth_client):
        first = auth_client.post("/api/chat/sessions", json={}).get_json()["data"]["id"]
        second = auth_client.post("/api/chat/sessions", json={"channel": "billing"}).get_json()["data"]["id"]
        auth_client.post(f"/api/chat/{first}/messages", json={"content": "bump"})
        ids = [c["id"] for c in auth_client.get("/api/chat/conversations").get_json()["data"]]
        assert ids == [first, second]

    def test_only_own_conversations(self, auth_client, trainer_client, conversation):
        assert trainer_client.get("/api/chat/conversations").get_json()["count"] == 0
