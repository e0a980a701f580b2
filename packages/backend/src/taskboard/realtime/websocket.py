"""WebSocket endpoint — real-time event delivery to clients.

Learn: Each client connects to /ws?token=JWT. The handler:
1. Authenticates via JWT query param (close code 4001 on failure)
2. Assigns a socket id and sends it in connection.established
3. Lets the client subscribe/unsubscribe to channels, checking each one
   with the ChannelAuthorizer
4. Forwards transport events for subscribed channels, skipping events
   published with this socket's own id (toOthers)

A refused subscription is answered with subscription.refused and nothing
else — the socket stays open and never sees that channel's data.

Client frames:
    {"action": "subscribe",   "channel": "private-project.9"}
    {"action": "unsubscribe", "channel": "private-project.9"}
    {"action": "ping"}
"""

import asyncio
import json
import uuid

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from taskboard.auth.jwt import TokenError, user_id_from_token
from taskboard.errors import AuthorizationDenied, TransportUnavailable
from taskboard.events.types import (
    CONNECTION_ESTABLISHED,
    PONG,
    SUBSCRIPTION_REFUSED,
    SUBSCRIPTION_SUCCEEDED,
    UNSUBSCRIBED,
)
from taskboard.realtime.authorizer import ChannelAuthorizer
from taskboard.realtime.channels import Channel
from taskboard.realtime.transport import get_transport
from taskboard.services.membership import MembershipDirectory, get_directory

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def realtime_websocket(
    websocket: WebSocket,
    directory: MembershipDirectory = Depends(get_directory),
):
    """WebSocket endpoint for private channel subscriptions.

    Learn: Two concurrent tasks run:
    1. Transport listener — reads published envelopes, sends to the client
    2. Client listener — handles subscribe/unsubscribe/ping frames

    When either side finishes, both tasks are cancelled and every
    subscription is released in the finally block. A listener that died
    with an exception (e.g. Redis dropped mid-subscribe) is logged and the
    socket is closed with 1011 so the client reconnects.
    """
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Authentication required")
        return
    try:
        user_id = user_id_from_token(token)
    except TokenError:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return

    try:
        subscriber = get_transport().subscriber()
    except TransportUnavailable:
        await websocket.close(code=1011, reason="Real-time transport unavailable")
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    socket_id = uuid.uuid4().hex
    log = logger.bind(socket_id=socket_id, user_id=user_id)
    authorizer = ChannelAuthorizer(directory)
    subscribed: set[str] = set()  # wire names

    await websocket.send_json(
        {"event": CONNECTION_ESTABLISHED, "data": {"socket_id": socket_id}}
    )
    log.info("ws.connected")

    async def transport_listener():
        """Forward transport envelopes to the WebSocket client."""
        try:
            async for envelope in subscriber:
                if envelope.get("socket") == socket_id:
                    continue  # the actor's own connection
                if envelope.get("channel") not in subscribed:
                    continue
                await websocket.send_json(
                    {
                        "event": envelope["event"],
                        "channel": envelope["channel"],
                        "data": envelope.get("data", {}),
                    }
                )
        except asyncio.CancelledError:
            pass

    async def handle_frame(msg: dict):
        action = msg.get("action")
        channel_name = msg.get("channel")

        if action == "ping":
            await websocket.send_json({"event": PONG})
            return

        if action == "subscribe":
            try:
                channel = await authorizer.require(user_id, channel_name)
            except AuthorizationDenied:
                log.info("ws.subscription_refused", channel=channel_name)
                await websocket.send_json(
                    {"event": SUBSCRIPTION_REFUSED, "channel": channel_name}
                )
                return
            if channel.wire_name not in subscribed:
                await subscriber.add(channel)
            # Confirmation goes out before any channel data can be forwarded
            await websocket.send_json(
                {"event": SUBSCRIPTION_SUCCEEDED, "channel": channel.wire_name}
            )
            subscribed.add(channel.wire_name)
            log.info("ws.subscribed", channel=channel.wire_name)
            return

        if action == "unsubscribe":
            try:
                channel = Channel.parse(channel_name)
            except ValueError:
                return
            if channel.wire_name in subscribed:
                subscribed.discard(channel.wire_name)
                await subscriber.remove(channel)
            await websocket.send_json({"event": UNSUBSCRIBED, "channel": channel.wire_name})

    async def client_listener():
        """Handle incoming subscribe/unsubscribe/ping frames."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict):
                    await handle_frame(msg)
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    transport_task = asyncio.create_task(transport_listener(), name="transport_listener")
    client_task = asyncio.create_task(client_listener(), name="client_listener")
    close_code = 1000

    try:
        # Wait for either to finish (usually client disconnect)
        done, pending = await asyncio.wait(
            [transport_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            if task.cancelled() or task.exception() is None:
                continue
            close_code = 1011
            log.error(
                "ws.listener_failed",
                listener=task.get_name(),
                error=str(task.exception()),
                exc_info=task.exception(),
            )
    finally:
        await subscriber.close()
        log.info("ws.disconnected", channels=len(subscribed), code=close_code)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=close_code)
