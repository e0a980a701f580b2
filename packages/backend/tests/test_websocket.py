"""WebSocket gateway — authentication, subscriptions, forwarding.

Learn: These use Starlette's TestClient as a context manager, so the app's
lifespan runs (installing the in-memory transport) and HTTP publishes and
the WebSocket session share one event loop. Absence of an event is proven
by publishing a second, allowed event and checking it arrives first.
"""

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.websockets import WebSocketDisconnect
from structlog.testing import capture_logs

from factories import message, task
from taskboard.auth.jwt import create_access_token
from taskboard.config import settings
from taskboard.main import app
from taskboard.realtime.transport import InMemorySubscriber, get_transport

A, B, C = 1, 2, 3
KEY = {"X-Api-Key": settings.broadcast_api_key}


@pytest.fixture()
def gateway(directory):
    directory.add_project(9, owner_id=A, members=[B])
    for uid in (A, B):
        directory.add_participant(5, uid)
    with TestClient(app) as tc:
        yield tc


def connect(tc, user_id):
    return tc.websocket_connect(f"/ws?token={create_access_token(user_id)}")


def subscribe(ws, channel):
    ws.send_json({"action": "subscribe", "channel": channel})
    return ws.receive_json()


def publish_task(tc, task_id, socket_id=None):
    headers = dict(KEY)
    if socket_id:
        headers["X-Socket-ID"] = socket_id
    body = {"kind": "task.updated", "action": "updated",
            "task": task(id=task_id).model_dump(mode="json")}
    r = tc.post("/api/v1/broadcast", json=body, headers=headers)
    assert r.status_code == 202
    return r.json()


# ═══════════════════════════════════════════════════════════
# Connection
# ═══════════════════════════════════════════════════════════


def test_connection_established_carries_socket_id(gateway):
    with connect(gateway, B) as ws:
        hello = ws.receive_json()
        assert hello["event"] == "connection.established"
        assert len(hello["data"]["socket_id"]) == 32


def test_missing_token_closes_4001(gateway):
    with pytest.raises(WebSocketDisconnect) as exc:
        with gateway.websocket_connect("/ws"):
            pass
    assert exc.value.code == 4001


def test_invalid_token_closes_4001(gateway):
    with pytest.raises(WebSocketDisconnect) as exc:
        with gateway.websocket_connect("/ws?token=garbage"):
            pass
    assert exc.value.code == 4001


def test_ping_pong(gateway):
    with connect(gateway, B) as ws:
        ws.receive_json()
        ws.send_json({"action": "ping"})
        assert ws.receive_json() == {"event": "pong"}


# ═══════════════════════════════════════════════════════════
# Subscriptions
# ═══════════════════════════════════════════════════════════


def test_member_receives_project_events(gateway):
    with connect(gateway, B) as ws:
        ws.receive_json()
        assert subscribe(ws, "private-project.9") == {
            "event": "subscription.succeeded",
            "channel": "private-project.9",
        }

        publish_task(gateway, 40)
        frame = ws.receive_json()
        assert frame["event"] == "task.updated"
        assert frame["channel"] == "private-project.9"
        assert frame["data"]["task"]["id"] == 40


def test_unauthorized_subscription_is_refused_and_silent(gateway, directory):
    """C is not a member of project 9: refused, and no project data ever arrives."""
    directory.add_participant(5, C)
    with connect(gateway, C) as ws:
        ws.receive_json()
        assert subscribe(ws, "private-project.9") == {
            "event": "subscription.refused",
            "channel": "private-project.9",
        }
        assert subscribe(ws, "private-conversation.5")["event"] == "subscription.succeeded"

        publish_task(gateway, 40)
        gateway.post(
            "/api/v1/broadcast",
            json={"kind": "ai.thinking", "conversation_id": 5, "is_thinking": True},
            headers=KEY,
        )
        frame = ws.receive_json()
        assert frame["event"] == "ai.thinking"


def test_left_participant_is_refused(gateway, directory):
    directory.leave_conversation(5, B)
    with connect(gateway, B) as ws:
        ws.receive_json()
        assert subscribe(ws, "private-conversation.5")["event"] == "subscription.refused"


def test_actor_socket_is_excluded(gateway):
    """The actor's own socket skips the event; other sockets get it."""
    with connect(gateway, A) as ws_a, connect(gateway, B) as ws_b:
        socket_a = ws_a.receive_json()["data"]["socket_id"]
        ws_b.receive_json()
        subscribe(ws_a, "private-project.9")
        subscribe(ws_b, "private-project.9")

        publish_task(gateway, 40, socket_id=socket_a)
        publish_task(gateway, 41)

        assert ws_b.receive_json()["data"]["task"]["id"] == 40
        assert ws_b.receive_json()["data"]["task"]["id"] == 41
        # A never sees its own change, only the next one
        assert ws_a.receive_json()["data"]["task"]["id"] == 41


def test_unsubscribe_stops_delivery(gateway):
    with connect(gateway, B) as ws:
        ws.receive_json()
        subscribe(ws, "private-project.9")
        subscribe(ws, "private-conversation.5")

        ws.send_json({"action": "unsubscribe", "channel": "private-project.9"})
        assert ws.receive_json() == {"event": "unsubscribed", "channel": "private-project.9"}

        publish_task(gateway, 40)
        body = {"kind": "message.sent", "actor_id": A,
                "message": message(sender_id=A).model_dump(mode="json"),
                "participant_ids": [A, B]}
        gateway.post("/api/v1/broadcast", json=body, headers=KEY)

        frame = ws.receive_json()
        assert frame["event"] == "message.sent"
        assert frame["channel"] == "private-conversation.5"


def test_personal_channel(gateway):
    with connect(gateway, B) as ws:
        ws.receive_json()
        assert subscribe(ws, "private-user.1.conversations")["event"] == "subscription.refused"
        assert subscribe(ws, "private-user.2.conversations")["event"] == "subscription.succeeded"

        body = {"kind": "message.sent", "actor_id": A,
                "message": message(sender_id=A, content="hi").model_dump(mode="json"),
                "participant_ids": [A, B]}
        receipt = gateway.post("/api/v1/broadcast", json=body, headers=KEY).json()
        assert "user.2.conversations" in receipt["channels"]

        frame = ws.receive_json()
        assert frame["channel"] == "private-user.2.conversations"
        assert frame["data"]["message"]["content"] == "hi"


def test_mention_reaches_the_notifications_channel(gateway):
    with connect(gateway, B) as ws:
        ws.receive_json()
        assert subscribe(ws, "private-user.1.notifications")["event"] == "subscription.refused"
        assert subscribe(ws, "private-user.2.notifications")["event"] == "subscription.succeeded"

        body = {"kind": "mention.notification", "actor_id": A, "notification_id": "n1",
                "message": message(sender_id=A, content="@bo look").model_dump(mode="json"),
                "mentioned_user_id": B, "conversation_name": "General"}
        gateway.post("/api/v1/broadcast", json=body, headers=KEY)

        frame = ws.receive_json()
        assert frame["event"] == "mention.notification"
        assert frame["channel"] == "private-user.2.notifications"
        assert frame["data"]["data"]["content_preview"] == "@bo look"


# ═══════════════════════════════════════════════════════════
# Transport failures
# ═══════════════════════════════════════════════════════════


class BrokenSubscriber(InMemorySubscriber):
    async def add(self, channel):
        raise RedisConnectionError("Connection reset by peer")


def test_transport_error_on_subscribe_closes_1011(gateway, monkeypatch):
    transport = get_transport()
    monkeypatch.setattr(transport, "subscriber", lambda: BrokenSubscriber(transport))

    with capture_logs() as logs:
        with connect(gateway, B) as ws:
            ws.receive_json()
            ws.send_json({"action": "subscribe", "channel": "private-project.9"})
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()

    assert exc.value.code == 1011
    failures = [e for e in logs if e["event"] == "ws.listener_failed"]
    assert len(failures) == 1
    assert failures[0]["listener"] == "client_listener"
    assert "Connection reset" in failures[0]["error"]
