"""Client subscription manager — state machine, dedup, own-echo.

Learn: The RealtimeClient is driven through a fake socket that answers
subscribe frames the way the gateway does, so no server is needed.
Tests cover:
1. IDLE → SUBSCRIBING → SUBSCRIBED → UNSUBSCRIBING → IDLE
2. Refusal returns to IDLE silently
3. unsubscribe() is idempotent and safe without a connection
4. Duplicate deliveries and own echoes never reach handlers
"""

import asyncio
import json

import pytest
from structlog.testing import capture_logs

from factories import message
from taskboard.auth.jwt import create_access_token
from taskboard.client.subscriptions import (
    DedupCache,
    RealtimeClient,
    SubscriptionState,
    actor_id,
    dedup_key,
)
from taskboard.client.views import ConversationView
from taskboard.events import mutations as m
from taskboard.events.encoder import encode

ME, OTHER = 2, 1


class FakeSocket:
    """Records frames; answers subscribe like the gateway."""

    def __init__(self, client, refuse=()):
        self.client = client
        self.refuse = set(refuse)
        self.sent = []
        self.closed = False

    async def send(self, raw):
        frame = json.loads(raw)
        self.sent.append(frame)
        if frame["action"] == "subscribe":
            event = (
                "subscription.refused"
                if frame["channel"] in self.refuse
                else "subscription.succeeded"
            )
            reply = {"event": event, "channel": frame["channel"]}
            asyncio.get_running_loop().create_task(self.client.handle_frame(reply))

    async def close(self):
        self.closed = True


def make_client(refuse=()):
    client = RealtimeClient("ws://test/ws", create_access_token(ME))
    client.ws = FakeSocket(client, refuse)
    client.socket_id = "sock-me"
    return client


def sent_frame(sender_id=OTHER, message_id=100, content="hi"):
    """A message.sent frame as it would arrive on conversation.5."""
    event = encode(
        m.MessageSent(message=message(id=message_id, sender_id=sender_id, content=content))
    )
    return {**event.envelope("private-conversation.5")}


# ═══════════════════════════════════════════════════════════
# State machine
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_user_id_comes_from_token():
    assert make_client().user_id == ME


@pytest.mark.asyncio
async def test_subscribe_then_unsubscribe():
    client = make_client()
    sub = client.subscribe("private-conversation.5")
    assert sub.state == SubscriptionState.IDLE

    assert await sub.subscribe() is True
    assert sub.state == SubscriptionState.SUBSCRIBED
    assert client.subscriptions == {"private-conversation.5": sub}

    await sub.unsubscribe()
    assert sub.state == SubscriptionState.IDLE
    assert client.subscriptions == {}
    assert [f["action"] for f in client.ws.sent] == ["subscribe", "unsubscribe"]


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent():
    client = make_client()
    sub = client.subscribe("private-project.9")
    await sub.subscribe()

    await sub.unsubscribe()
    await sub.unsubscribe()
    assert [f["action"] for f in client.ws.sent].count("unsubscribe") == 1


@pytest.mark.asyncio
async def test_unsubscribe_without_connection_never_raises():
    client = RealtimeClient("ws://test/ws", create_access_token(ME))
    sub = client.subscribe("private-project.9")

    await sub.unsubscribe()
    assert await sub.subscribe() is False
    assert sub.state == SubscriptionState.IDLE
    await sub.unsubscribe()
    await client.close()


@pytest.mark.asyncio
async def test_refused_subscription_returns_to_idle():
    client = make_client(refuse={"private-project.9"})
    sub = client.subscribe("private-project.9", {"task.updated": lambda data: None})

    assert await sub.subscribe() is False
    assert sub.state == SubscriptionState.IDLE
    assert sub.refused
    assert client.subscriptions == {}


@pytest.mark.asyncio
async def test_events_only_processed_while_subscribed():
    client = make_client()
    received = []
    sub = client.subscribe("private-conversation.5", {"message.sent": received.append})

    sub.state = SubscriptionState.SUBSCRIBING
    assert not await sub.deliver("message.sent", sent_frame()["data"])

    sub.state = SubscriptionState.IDLE
    await sub.subscribe()
    assert await sub.deliver("message.sent", sent_frame()["data"])

    sub.state = SubscriptionState.UNSUBSCRIBING
    assert not await sub.deliver("message.sent", sent_frame(message_id=101)["data"])
    assert len(received) == 1


@pytest.mark.asyncio
async def test_frames_after_unsubscribe_are_dropped():
    client = make_client()
    received = []
    sub = client.subscribe("private-conversation.5", {"message.sent": received.append})
    await sub.subscribe()
    await sub.unsubscribe()

    await client.handle_frame(sent_frame())
    assert received == []


@pytest.mark.asyncio
async def test_scoped_subscription_releases_on_error():
    client = make_client()
    with pytest.raises(RuntimeError):
        async with client.subscribe("private-project.9") as sub:
            assert sub.state == SubscriptionState.SUBSCRIBED
            raise RuntimeError("view crashed")
    assert sub.state == SubscriptionState.IDLE
    assert client.ws.sent[-1] == {"action": "unsubscribe", "channel": "private-project.9"}


@pytest.mark.asyncio
async def test_close_unsubscribes_everything():
    client = make_client()
    socket = client.ws
    await client.subscribe("private-project.9").subscribe()
    await client.subscribe("private-conversation.5").subscribe()

    await client.close()
    assert client.subscriptions == {}
    assert socket.closed
    assert not client.connected


# ═══════════════════════════════════════════════════════════
# Filters
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_duplicate_event_applied_once():
    """Feeding the same payload twice yields the state of feeding it once."""
    client = make_client()
    view = ConversationView(5, current_user_id=ME)
    sub = client.subscribe(view.channel, view.handlers())
    await sub.subscribe()

    frame = sent_frame()
    await client.handle_frame(frame)
    snapshot = [dict(msg) for msg in view.ordered()]
    with capture_logs() as logs:
        await client.handle_frame(frame)

    assert logs[0]["event"] == "client.duplicate_dropped"
    assert sub.state == SubscriptionState.SUBSCRIBED

    assert [dict(msg) for msg in view.ordered()] == snapshot
    assert len(view.messages) == 1


@pytest.mark.asyncio
async def test_own_echo_is_skipped():
    client = make_client()
    received = []
    sub = client.subscribe("private-conversation.5", {"message.sent": received.append})
    await sub.subscribe()

    await client.handle_frame(sent_frame(sender_id=ME))
    await client.handle_frame(sent_frame(sender_id=OTHER, message_id=101))
    assert [d["message"]["id"] for d in received] == [101]


@pytest.mark.asyncio
async def test_wildcard_and_async_handlers():
    client = make_client()
    seen = []

    async def on_any(event, data):
        seen.append(event)

    sub = client.subscribe("private-conversation.5", {"*": on_any})
    await sub.subscribe()
    await client.handle_frame(sent_frame())
    await client.handle_frame(
        {"event": "ai.thinking", "channel": "private-conversation.5",
         "data": {"conversation_id": 5, "is_thinking": True, "active_count": 1}}
    )
    assert seen == ["message.sent", "ai.thinking"]


@pytest.mark.asyncio
async def test_handler_error_does_not_break_the_loop():
    client = make_client()

    def boom(data):
        raise ValueError("bad render")

    sub = client.subscribe("private-conversation.5", {"message.sent": boom})
    await sub.subscribe()
    with capture_logs() as logs:
        assert not await sub.deliver("message.sent", sent_frame()["data"])
        await client.handle_frame(sent_frame(message_id=101))

    assert [(e["event"], e["event_name"]) for e in logs] == [
        ("client.handler_failed", "message.sent"),
        ("client.handler_failed", "message.sent"),
    ]
    assert sub.state == SubscriptionState.SUBSCRIBED


def test_dedup_cache_evicts_least_recent():
    cache = DedupCache(capacity=2)
    assert not cache.seen("a")
    assert not cache.seen("b")
    assert cache.seen("a")  # refreshes "a"
    assert not cache.seen("c")  # evicts "b"
    assert "b" not in cache
    assert "a" in cache and len(cache) == 2


def test_dedup_keys_per_kind():
    data = sent_frame()["data"]
    assert dedup_key("message.sent", data) == (
        "message.sent", 100, data["message"]["created_at"],
    )
    task_data = {"task": {"id": 40, "updated_at": "t1"}, "action": "moved"}
    assert dedup_key("task.updated", task_data) == ("task.updated", 40, "moved", "t1")
    assert dedup_key("mention.notification", {"id": "n1"}) == ("mention.notification", "n1")
    # State events are never deduplicated
    assert dedup_key("user.typing", {"user": {"id": 1}}) is None


def test_actor_ids_per_kind():
    assert actor_id("message.sent", sent_frame(sender_id=7)["data"]) == 7
    assert actor_id("messages.read", {"reader_id": 3}) == 3
    assert actor_id("task_attachment.uploaded", {"uploader_id": 4}) == 4
    assert actor_id("task_attachment.deleted", {"deleter_id": 5}) == 5
    assert actor_id("mention.notification", {"id": "n1", "data": {"sender_id": 6}}) == 6
    assert actor_id("task.updated", {"task": {"id": 1}}) is None
