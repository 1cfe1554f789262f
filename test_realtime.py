"""
Tests for the /ws realtime socket.

Tests cover:
- join-user registration and identity checks
- Chat message push to the recipient and ack to the sender
- Per-pair ordering
- Typing indicators
- Notification fan-out to every device of the owner
- Rejections for unregistered or malformed traffic
"""

import os
import hmac
import hashlib
import json
import pytest
from fastapi.testclient import TestClient

from skillswap.main import app
from skillswap.storage import Base, engine


TEST_AUTH_SECRET = os.environ["AUTH_SECRET"]
TEST_WEBHOOK_SECRET = os.environ["WEBHOOK_SECRET"]


def compute_signature(body: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        body.encode("utf-8"),
        hashlib.sha256
    ).hexdigest()


def auth_headers(user_id: str) -> dict:
    return {"X-User-Id": user_id, "X-User-Signature": compute_signature(user_id, TEST_AUTH_SECRET)}


def join(ws, user_id: str) -> None:
    """Register the socket as user_id and wait for the confirmation."""
    ws.send_json({
        "event": "join-user",
        "data": {"userId": user_id, "signature": compute_signature(user_id, TEST_AUTH_SECRET)},
    })
    frame = ws.receive_json()
    assert frame == {"event": "user-joined", "data": {"userId": user_id}}


def emit(ws, event: str, **data) -> None:
    ws.send_json({"event": event, "data": data})


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


class TestJoin:
    def test_join_with_valid_signature(self, client):
        with client.websocket_connect("/ws") as ws:
            join(ws, "alice")
            assert app.state.presence.is_online("alice")

    def test_join_with_bad_signature(self, client):
        with client.websocket_connect("/ws") as ws:
            emit(ws, "join-user", userId="alice", signature="forged")
            frame = ws.receive_json()

            assert frame["event"] == "message-error"
            assert frame["data"]["retryable"] is False
            assert not app.state.presence.is_online("alice")

    def test_join_without_fields(self, client):
        with client.websocket_connect("/ws") as ws:
            emit(ws, "join-user")
            assert ws.receive_json()["event"] == "message-error"

    def test_closing_socket_clears_presence(self, client):
        with client.websocket_connect("/ws") as phone:
            join(phone, "bob")
            with client.websocket_connect("/ws") as laptop:
                join(laptop, "bob")

            assert app.state.presence.is_online("bob")
            assert len(app.state.presence.connections_for("bob")) == 1

        assert not app.state.presence.is_online("bob")
        assert len(app.state.transport) == 0


class TestChatMessages:
    def test_hello_reaches_recipient_and_sender_gets_ack(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            join(alice, "alice")
            join(bob, "bob")

            emit(alice, "send-message", recipient="bob", content="hello")

            pushed = bob.receive_json()
            ack = alice.receive_json()

        assert pushed["event"] == "new-message"
        assert pushed["data"]["sender"] == "alice"
        assert pushed["data"]["content"] == "hello"
        assert pushed["data"]["type"] == "text"
        assert pushed["data"]["status"] == "sent"
        assert pushed["data"]["threadId"] == "alice-bob"
        assert ack == {"event": "message-sent", "data": {"id": pushed["data"]["id"], "status": "sent"}}

    def test_messages_arrive_in_send_order(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            join(alice, "alice")
            join(bob, "bob")

            for text in ("first", "second", "third"):
                emit(alice, "send-message", recipient="bob", content=text)

            received = [bob.receive_json()["data"]["content"] for _ in range(3)]

        assert received == ["first", "second", "third"]

    def test_every_device_of_recipient_gets_message(self, client):
        with client.websocket_connect("/ws") as alice, \
                client.websocket_connect("/ws") as bob_phone, \
                client.websocket_connect("/ws") as bob_laptop:
            join(alice, "alice")
            join(bob_phone, "bob")
            join(bob_laptop, "bob")

            emit(alice, "send-message", recipient="bob", content="hi")

            phone = bob_phone.receive_json()
            laptop = bob_laptop.receive_json()

        assert phone == laptop
        assert phone["event"] == "new-message"

    def test_offline_recipient_message_is_stored(self, client):
        with client.websocket_connect("/ws") as alice:
            join(alice, "alice")
            emit(alice, "send-message", recipient="bob", content="are you there?")
            ack = alice.receive_json()

        assert ack["event"] == "message-sent"
        thread = client.get("/api/messages/alice", headers=auth_headers("bob")).json()["data"]
        assert [m["content"] for m in thread] == ["are you there?"]

    def test_http_send_pushes_only_to_recipient(self, client):
        with client.websocket_connect("/ws") as bob:
            join(bob, "bob")

            response = client.post(
                "/api/messages",
                json={"recipient": "bob", "content": "via http"},
                headers=auth_headers("alice"),
            )
            frame = bob.receive_json()

        assert response.status_code == 200
        assert frame["event"] == "new-message"
        assert frame["data"]["id"] == response.json()["id"]

    def test_send_before_join_rejected(self, client):
        with client.websocket_connect("/ws") as ws:
            emit(ws, "send-message", recipient="bob", content="hello")
            frame = ws.receive_json()

        assert frame["event"] == "message-error"
        assert frame["data"]["retryable"] is False

    def test_spoofed_sender_rejected(self, client):
        with client.websocket_connect("/ws") as ws:
            join(ws, "mallory")
            emit(ws, "send-message", sender="alice", recipient="bob", content="hello")
            frame = ws.receive_json()

        assert frame["event"] == "message-error"

    def test_missing_content_rejected_and_socket_survives(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            join(alice, "alice")
            join(bob, "bob")

            emit(alice, "send-message", recipient="bob")
            assert alice.receive_json()["event"] == "message-error"

            emit(alice, "send-message", recipient="bob", content="second try")
            assert bob.receive_json()["data"]["content"] == "second try"

    def test_malformed_frame(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["event"] == "message-error"

    def test_binary_frame_rejected_and_socket_survives(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            join(alice, "alice")
            join(bob, "bob")

            alice.send_bytes(b"\x00\x01")
            rejected = alice.receive_json()

            emit(alice, "send-message", recipient="bob", content="after binary")
            pushed = bob.receive_json()
            ack = alice.receive_json()

        assert rejected == {"event": "message-error", "data": {"error": "malformed frame", "retryable": False}}
        assert pushed["data"]["content"] == "after binary"
        assert ack["event"] == "message-sent"

    def test_message_to_self_reaches_own_devices(self, client):
        with client.websocket_connect("/ws") as phone, client.websocket_connect("/ws") as laptop:
            join(phone, "alice")
            join(laptop, "alice")

            emit(phone, "send-message", recipient="alice", content="note to self")
            on_laptop = laptop.receive_json()
            ack = phone.receive_json()

        assert on_laptop["event"] == "new-message"
        assert on_laptop["data"]["threadId"] == "alice-alice"
        assert ack == {"event": "message-sent", "data": {"id": on_laptop["data"]["id"], "status": "sent"}}

    def test_recipient_with_separator_rejected(self, client):
        with client.websocket_connect("/ws") as ws:
            join(ws, "alice")
            emit(ws, "send-message", recipient="b-c", content="hello")
            frame = ws.receive_json()

        assert frame["event"] == "message-error"
        assert frame["data"]["retryable"] is False

    def test_unknown_event(self, client):
        with client.websocket_connect("/ws") as ws:
            join(ws, "alice")
            emit(ws, "shout", content="hi")
            assert ws.receive_json()["event"] == "message-error"


class TestTyping:
    def test_typing_start_and_stop(self, client):
        with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
            join(alice, "alice")
            join(bob, "bob")

            emit(alice, "typing-start", recipient="bob")
            started = bob.receive_json()
            emit(alice, "typing-stop", recipient="bob")
            stopped = bob.receive_json()

        assert started == {"event": "user-typing", "data": {"sender": "alice", "isTyping": True}}
        assert stopped == {"event": "user-typing", "data": {"sender": "alice", "isTyping": False}}


class TestNotificationFanOut:
    def test_match_accepted_reaches_both_devices(self, client):
        body = json.dumps({
            "userId": "carol",
            "type": "match_accepted",
            "title": "Match Accepted!",
            "message": "dave accepted your match request",
            "data": {"type": "match_accepted"},
        })
        with client.websocket_connect("/ws") as phone, client.websocket_connect("/ws") as laptop:
            join(phone, "carol")
            join(laptop, "carol")

            response = client.post(
                "/webhook/notifications",
                content=body,
                headers={
                    "Content-Type": "application/json",
                    "X-Signature": compute_signature(body, TEST_WEBHOOK_SECRET),
                },
            )
            on_phone = phone.receive_json()
            on_laptop = laptop.receive_json()

        assert response.status_code == 200
        assert on_phone == on_laptop
        assert on_phone["event"] == "new-notification"
        assert on_phone["data"]["id"] == response.json()["id"]
        assert on_phone["data"]["type"] == "match_accepted"
        assert set(on_phone["data"]) == {"id", "type", "title", "message", "data", "createdAt"}
