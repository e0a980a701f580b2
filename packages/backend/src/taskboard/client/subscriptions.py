"""Client subscription manager — subscribe, dedup, skip own echoes.

Learn: Each channel a client listens to is a Subscription with a small
state machine:

    IDLE ──subscribe()──▶ SUBSCRIBING ──succeeded──▶ SUBSCRIBED
      ▲                        │                          │
      │                     refused                 unsubscribe()
      │                        ▼                          ▼
      └────────────────────── IDLE ◀──────────────── UNSUBSCRIBING

Only SUBSCRIBED hands events to handlers. Anything arriving while
SUBSCRIBING, or after unsubscribe() has started, is dropped.

Two filters sit in front of the handlers:
1. Own-echo: events whose actor is the current user are skipped; the UI
   that made the change already applied it.
2. Dedup: a bounded LRU of per-kind keys (e.g. message id + created_at)
   drops replays after a reconnect or a double publish.

Usage:
    async with RealtimeClient("ws://localhost:8080/ws", token) as client:
        async with client.subscribe("private-project.9", view.handlers()):
            ...
"""

import asyncio
import enum
import inspect
import json
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Hashable, Optional, Union

import jwt
import structlog
import websockets

from taskboard.config import settings
from taskboard.events.types import (
    CONNECTION_ESTABLISHED,
    SUBSCRIPTION_REFUSED,
    SUBSCRIPTION_SUCCEEDED,
    EventKind,
)
from taskboard.realtime.channels import Channel

logger = structlog.get_logger()

# Handlers take the event data; a "*" handler takes (event, data)
Handler = Callable[..., Union[None, Awaitable[None]]]


class SubscriptionState(str, enum.Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBING = "unsubscribing"


class DedupCache:
    """Bounded LRU of keys already handled."""

    def __init__(self, capacity: int = 500):
        self.capacity = capacity
        self._keys: OrderedDict[Hashable, None] = OrderedDict()

    def seen(self, key: Hashable) -> bool:
        """Record ``key``; True if it was already recorded."""
        if key in self._keys:
            self._keys.move_to_end(key)
            return True
        self._keys[key] = None
        if len(self._keys) > self.capacity:
            self._keys.popitem(last=False)
        return False

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys


# ═══════════════════════════════════════════════════════════
# Per-kind keys
# ═══════════════════════════════════════════════════════════


def _get(data: dict, *path: str) -> Any:
    for part in path:
        if not isinstance(data, dict):
            return None
        data = data.get(part)
    return data


def dedup_key(event: str, data: dict) -> Optional[tuple]:
    """Identity of one logical change, or None for state events.

    Typing, AI-thinking, read receipts and reaction snapshots are
    idempotent state updates, so they are never deduplicated.
    """
    if event == EventKind.MESSAGE_SENT:
        return (event, _get(data, "message", "id"), _get(data, "message", "created_at"))
    if event == EventKind.MESSAGE_EDITED:
        msg = data.get("message") or {}
        return (event, msg.get("id"), msg.get("content"), msg.get("edited_at"))
    if event == EventKind.MESSAGE_DELETED:
        return (event, data.get("message_id"))
    if event == EventKind.CONVERSATION_CREATED:
        return (event, _get(data, "conversation", "id"))
    if event in (
        EventKind.PROJECT_UPDATED,
        EventKind.TASK_UPDATED,
        EventKind.LIST_UPDATED,
        EventKind.LABEL_UPDATED,
    ):
        entity = event.split(".")[0]
        return (
            event,
            _get(data, entity, "id"),
            data.get("action"),
            _get(data, entity, "updated_at"),
        )
    if event == EventKind.COMMENT_CREATED:
        return (event, _get(data, "comment", "id"), _get(data, "comment", "created_at"))
    if event == EventKind.COMMENT_UPDATED:
        return (event, _get(data, "comment", "id"), _get(data, "comment", "edited_at"))
    if event == EventKind.COMMENT_DELETED:
        return (event, data.get("comment_id"))
    if event == EventKind.ATTACHMENT_UPLOADED:
        return (
            event,
            _get(data, "attachment", "id"),
            _get(data, "attachment", "created_at"),
        )
    if event == EventKind.ATTACHMENT_DELETED:
        return (event, data.get("attachment_id"))
    if event == EventKind.MENTION_NOTIFICATION:
        return (event, data.get("id"))
    return None


def actor_id(event: str, data: dict) -> Optional[int]:
    """The user who caused an event, where the payload names one."""
    if event == EventKind.MESSAGE_SENT:
        return _get(data, "message", "sender", "id")
    if event in (EventKind.MESSAGE_EDITED, EventKind.COMMENT_UPDATED):
        return data.get("editor_id")
    if event in (EventKind.MESSAGE_DELETED, EventKind.COMMENT_DELETED):
        return data.get("deleted_by")
    if event == EventKind.MESSAGES_READ:
        return data.get("reader_id")
    if event == EventKind.USER_TYPING:
        return _get(data, "user", "id")
    if event == EventKind.COMMENT_CREATED:
        return _get(data, "comment", "user", "id")
    if event == EventKind.COMMENT_REACTION_TOGGLED:
        return data.get("user_id")
    if event == EventKind.ATTACHMENT_UPLOADED:
        return data.get("uploader_id")
    if event == EventKind.ATTACHMENT_DELETED:
        return data.get("deleter_id")
    if event == EventKind.MENTION_NOTIFICATION:
        return _get(data, "data", "sender_id")
    return None


# ═══════════════════════════════════════════════════════════
# Subscription
# ═══════════════════════════════════════════════════════════


class Subscription:
    """One channel's listener on a RealtimeClient."""

    def __init__(
        self,
        client: "RealtimeClient",
        channel: Channel,
        handlers: Optional[dict[str, Handler]] = None,
    ):
        self.client = client
        self.channel = channel
        self.handlers: dict[str, Handler] = dict(handlers or {})
        self.state = SubscriptionState.IDLE
        self.refused = False
        self.dedup = DedupCache(client.dedup_capacity)
        self._settled = asyncio.Event()

    @property
    def name(self) -> str:
        return self.channel.wire_name

    async def subscribe(self, timeout: float = 10.0) -> bool:
        """Ask the gateway for this channel. True once SUBSCRIBED.

        A refusal or a missing connection leaves the subscription IDLE.
        """
        if self.state in (SubscriptionState.SUBSCRIBING, SubscriptionState.SUBSCRIBED):
            await self._wait_settled(timeout)
            return self.state == SubscriptionState.SUBSCRIBED

        self.refused = False
        self._settled.clear()
        self.state = SubscriptionState.SUBSCRIBING
        self.client._register(self)
        if not await self.client.send({"action": "subscribe", "channel": self.name}):
            self._reset()
            return False
        await self._wait_settled(timeout)
        return self.state == SubscriptionState.SUBSCRIBED

    async def unsubscribe(self) -> None:
        """Stop listening. Safe to call any number of times, connected or not."""
        if self.state in (SubscriptionState.IDLE, SubscriptionState.UNSUBSCRIBING):
            return
        self.state = SubscriptionState.UNSUBSCRIBING
        try:
            await self.client.send({"action": "unsubscribe", "channel": self.name})
        finally:
            self._reset()

    async def deliver(self, event: str, data: dict) -> bool:
        """Run the handler for one event. False when it was filtered out."""
        if self.state != SubscriptionState.SUBSCRIBED:
            return False
        me = self.client.user_id
        if me is not None and actor_id(event, data) == me:
            return False
        key = dedup_key(event, data)
        if key is not None and self.dedup.seen(key):
            logger.debug("client.duplicate_dropped", channel=self.name, event_name=event)
            return False

        handler = self.handlers.get(event) or self.handlers.get("*")
        if handler is None:
            return False
        try:
            result = handler(data) if event in self.handlers else handler(event, data)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("client.handler_failed", channel=self.name, event_name=event)
            return False
        return True

    # ─── Gateway replies ─────────────────────────────────

    def _confirm(self) -> None:
        if self.state == SubscriptionState.SUBSCRIBING:
            self.state = SubscriptionState.SUBSCRIBED
        self._settled.set()

    def _refuse(self) -> None:
        logger.info("client.subscription_refused", channel=self.name)
        self.refused = True
        self._reset()

    def _reset(self) -> None:
        self.state = SubscriptionState.IDLE
        self.client._unregister(self)
        self._settled.set()

    async def _wait_settled(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._settled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("client.subscribe_timeout", channel=self.name)

    # ─── Scoped use ──────────────────────────────────────

    async def __aenter__(self) -> "Subscription":
        await self.subscribe()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.unsubscribe()


# ═══════════════════════════════════════════════════════════
# Connection
# ═══════════════════════════════════════════════════════════


def _user_id_from_token(token: str) -> Optional[int]:
    """Read ``sub`` without verifying; the gateway does the verifying."""
    try:
        return int(jwt.decode(token, options={"verify_signature": False})["sub"])
    except (jwt.InvalidTokenError, KeyError, TypeError, ValueError):
        return None


class RealtimeClient:
    """A WebSocket connection to the gateway plus its subscriptions."""

    def __init__(
        self,
        url: str,
        token: str,
        user_id: Optional[int] = None,
        dedup_capacity: Optional[int] = None,
    ):
        self.url = url
        self.token = token
        self.user_id = user_id if user_id is not None else _user_id_from_token(token)
        self.dedup_capacity = dedup_capacity or settings.dedup_capacity
        self.socket_id: Optional[str] = None
        self.ws = None
        self.subscriptions: dict[str, Subscription] = {}
        self._recv_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self.ws is not None

    async def connect(self, timeout: float = 10.0) -> None:
        """Open the socket and wait for connection.established."""
        if self.connected:
            return
        try:
            ws = await asyncio.wait_for(
                websockets.connect(f"{self.url}?token={self.token}", ping_interval=30),
                timeout=timeout,
            )
            hello = json.loads(await asyncio.wait_for(ws.recv(), timeout=timeout))
        except asyncio.TimeoutError:
            raise ConnectionError(f"Gateway connection timed out after {timeout}s")
        except websockets.ConnectionClosed as e:
            raise ConnectionError(f"Gateway refused connection: {e}")

        if hello.get("event") != CONNECTION_ESTABLISHED:
            await ws.close()
            raise ConnectionError(f"Unexpected first frame: {hello.get('event')!r}")

        self.ws = ws
        self.socket_id = hello["data"]["socket_id"]
        self._recv_task = asyncio.create_task(self._recv_loop(), name="realtime-recv")
        logger.info("client.connected", socket_id=self.socket_id, user_id=self.user_id)

    def subscribe(
        self,
        channel: Union[Channel, str],
        handlers: Optional[dict[str, Handler]] = None,
    ) -> Subscription:
        """Get the Subscription for a channel (not yet subscribed).

        Use as ``async with client.subscribe(...)`` or call subscribe().
        """
        if isinstance(channel, str):
            channel = Channel.parse(channel)
        existing = self.subscriptions.get(channel.wire_name)
        if existing is not None:
            existing.handlers.update(handlers or {})
            return existing
        return Subscription(self, channel, handlers)

    async def send(self, frame: dict) -> bool:
        """Send a frame. False (never an exception) when not connected."""
        if self.ws is None:
            return False
        try:
            await self.ws.send(json.dumps(frame))
            return True
        except websockets.ConnectionClosed:
            logger.warning("client.connection_closed", action=frame.get("action"))
            self.ws = None
            return False

    async def handle_frame(self, frame: dict) -> None:
        """Route one gateway frame to its subscription."""
        event = frame.get("event")
        sub = self.subscriptions.get(frame.get("channel"))
        if sub is None:
            return
        if event == SUBSCRIPTION_SUCCEEDED:
            sub._confirm()
        elif event == SUBSCRIPTION_REFUSED:
            sub._refuse()
        else:
            await sub.deliver(event, frame.get("data") or {})

    async def close(self) -> None:
        for sub in list(self.subscriptions.values()):
            await sub.unsubscribe()
        ws = self.ws
        if self._recv_task and not self._recv_task.done():
            self._recv_task.cancel()
            try:
                await self._recv_task
            except asyncio.CancelledError:
                pass
        self._recv_task = None
        self.ws = None
        if ws is not None:
            await ws.close()

    async def __aenter__(self) -> "RealtimeClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ─── Internals ───────────────────────────────────────

    def _register(self, sub: Subscription) -> None:
        self.subscriptions[sub.name] = sub

    def _unregister(self, sub: Subscription) -> None:
        if self.subscriptions.get(sub.name) is sub:
            del self.subscriptions[sub.name]

    async def _recv_loop(self) -> None:
        try:
            async for message in self.ws:
                try:
                    frame = json.loads(message)
                except (json.JSONDecodeError, TypeError):
                    continue
                if isinstance(frame, dict):
                    await self.handle_frame(frame)
        except websockets.ConnectionClosed:
            logger.info("client.disconnected", socket_id=self.socket_id)
        finally:
            self.ws = None
            for sub in list(self.subscriptions.values()):
                sub._reset()
