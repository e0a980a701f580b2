"""Pub/sub transport — where encoded events go after fan-out.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for real-time UI updates (the client reloads state
from the application when it reconnects). Delivery, retry and reconnect
are the transport's problem, not the dispatcher's.

Topic naming: {prefix}{channel.name}, e.g. taskboard:channel:project.9

Every envelope carries the publisher's socket id (if any) so that each
WebSocket connection can drop events its own user caused (toOthers).

Two implementations share one shape:
- RedisTransport: production, multi-process
- InMemoryTransport: single process, for development and tests
"""

import asyncio
import json
from typing import Any, AsyncIterator, Optional, Protocol

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from taskboard.config import settings
from taskboard.errors import TransportUnavailable
from taskboard.events.encoder import Event
from taskboard.realtime.channels import Channel

logger = structlog.get_logger()


def build_envelope(
    channel: Channel, event: Event, exclude_socket: Optional[str]
) -> dict[str, Any]:
    envelope = event.envelope(channel.wire_name)
    envelope["socket"] = exclude_socket
    return envelope


class Subscriber(Protocol):
    """One connection's view of the transport."""

    async def add(self, channel: Channel) -> None:
        ...

    async def remove(self, channel: Channel) -> None:
        ...

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


class Transport(Protocol):
    async def publish(
        self, channel: Channel, event: Event, exclude_socket: Optional[str] = None
    ) -> None:
        ...

    def subscriber(self) -> Subscriber:
        ...

    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        ...


# ═══════════════════════════════════════════════════════════
# Redis
# ═══════════════════════════════════════════════════════════


class RedisSubscriber:
    def __init__(self, client: aioredis.Redis, prefix: str):
        self.prefix = prefix
        self._pubsub = client.pubsub()
        self._keys: set[str] = set()
        self._has_keys = asyncio.Event()
        self._closed = False

    async def add(self, channel: Channel) -> None:
        key = channel.redis_key(self.prefix)
        await self._pubsub.subscribe(key)
        self._keys.add(key)
        self._has_keys.set()

    async def remove(self, channel: Channel) -> None:
        key = channel.redis_key(self.prefix)
        if key not in self._keys:
            return
        self._keys.discard(key)
        if not self._keys:
            self._has_keys.clear()
        await self._pubsub.unsubscribe(key)

    async def __aiter__(self):
        while not self._closed:
            # get_message() needs at least one live subscription
            if not self._keys:
                await self._has_keys.wait()
                continue
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=1.0
            )
            if message is None or message.get("type") != "message":
                continue
            try:
                yield json.loads(message["data"])
            except (TypeError, json.JSONDecodeError):
                logger.warning("transport.bad_envelope", topic=message.get("channel"))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._has_keys.set()
        try:
            if self._keys:
                await self._pubsub.unsubscribe(*self._keys)
        finally:
            self._keys.clear()
            await self._pubsub.aclose()


class RedisTransport:
    def __init__(self, client: aioredis.Redis, prefix: str):
        self.client = client
        self.prefix = prefix

    @classmethod
    async def connect(cls, url: str, prefix: str) -> "RedisTransport":
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        # Verify connection
        await client.ping()
        return cls(client, prefix)

    async def publish(
        self, channel: Channel, event: Event, exclude_socket: Optional[str] = None
    ) -> None:
        payload = json.dumps(build_envelope(channel, event, exclude_socket))
        try:
            await self.client.publish(channel.redis_key(self.prefix), payload)
        except (RedisError, OSError) as e:
            raise TransportUnavailable(f"Redis publish to {channel.name} failed: {e}") from e

    def subscriber(self) -> RedisSubscriber:
        return RedisSubscriber(self.client, self.prefix)

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            return False

    async def close(self) -> None:
        await self.client.aclose()


# ═══════════════════════════════════════════════════════════
# In-memory
# ═══════════════════════════════════════════════════════════


class InMemorySubscriber:
    def __init__(self, transport: "InMemoryTransport"):
        self.transport = transport
        self.channels: set[Channel] = set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    async def add(self, channel: Channel) -> None:
        self.channels.add(channel)
        self.transport._subscribers.setdefault(channel, set()).add(self)

    async def remove(self, channel: Channel) -> None:
        self.channels.discard(channel)
        self.transport._subscribers.get(channel, set()).discard(self)

    async def __aiter__(self):
        while not self._closed:
            envelope = await self.queue.get()
            if envelope is None:
                break
            yield envelope

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for channel in list(self.channels):
            await self.remove(channel)
        self.queue.put_nowait(None)


class InMemoryTransport:
    """Single-process broker. ``published`` keeps every accepted publish."""

    def __init__(self):
        self.available = True
        self.published: list[tuple[Channel, Event, Optional[str]]] = []
        self._subscribers: dict[Channel, set[InMemorySubscriber]] = {}

    async def publish(
        self, channel: Channel, event: Event, exclude_socket: Optional[str] = None
    ) -> None:
        if not self.available:
            raise TransportUnavailable(f"In-memory transport is down ({channel.name})")
        self.published.append((channel, event, exclude_socket))
        envelope = build_envelope(channel, event, exclude_socket)
        for sub in list(self._subscribers.get(channel, ())):
            sub.queue.put_nowait(envelope)

    def subscriber(self) -> InMemorySubscriber:
        return InMemorySubscriber(self)

    def channels_for(self, event_name: str) -> list[str]:
        """Channel names a given event was published to, in order."""
        return [c.name for c, e, _ in self.published if e.name == event_name]

    async def ping(self) -> bool:
        return self.available

    async def close(self) -> None:
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                await sub.close()
        self._subscribers.clear()


# ═══════════════════════════════════════════════════════════
# Process-wide instance (initialized in lifespan)
# ═══════════════════════════════════════════════════════════

_transport: Optional[Transport] = None


async def init_transport() -> Transport:
    """Create the configured transport and make it the global one."""
    global _transport
    if settings.transport == "memory":
        _transport = InMemoryTransport()
    else:
        _transport = await RedisTransport.connect(settings.redis_url, settings.channel_prefix)
    return _transport


def set_transport(transport: Optional[Transport]) -> None:
    global _transport
    _transport = transport


async def close_transport() -> None:
    global _transport
    if _transport:
        await _transport.close()
        _transport = None


def get_transport() -> Transport:
    """Get the transport (must be initialized first)."""
    if _transport is None:
        raise TransportUnavailable("Transport not initialized. Call init_transport() first.")
    return _transport
