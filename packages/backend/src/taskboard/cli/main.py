"""Taskboard realtime CLI — run the gateway, watch channels, publish events.

Usage:
    taskboard serve                                   # Run the gateway (uvicorn)
    taskboard token 4                                 # Mint a dev access token for user 4
    taskboard tail private-project.9 --token $T       # Print a channel's events as JSON lines
    taskboard publish mutation.json                   # POST a mutation to /api/v1/broadcast
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8080"


def _api_url() -> str:
    return os.environ.get("TASKBOARD_API_URL", DEFAULT_API_URL).rstrip("/")


def _ws_url() -> str:
    base = _api_url()
    if base.startswith("https://"):
        return "wss://" + base[len("https://"):] + "/ws"
    return "ws://" + base.removeprefix("http://") + "/ws"


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the gateway."""
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. Click's CliRunner inside an async
    test) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="taskboard")
def main():
    """Taskboard realtime — fan committed changes out to live subscribers."""


# ---------------------------------------------------------------------------
# taskboard serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: TASKBOARD_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: TASKBOARD_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the gateway with uvicorn."""
    import uvicorn

    from taskboard.config import settings

    uvicorn.run(
        "taskboard.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# taskboard token
# ---------------------------------------------------------------------------


@main.command()
@click.argument("user_id", type=int)
@click.option("--minutes", type=int, default=None, help="Lifetime in minutes")
def token(user_id: int, minutes: Optional[int]):
    """Mint an access token for USER_ID (uses TASKBOARD_JWT_SECRET)."""
    from taskboard.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, expires_minutes=minutes))


# ---------------------------------------------------------------------------
# taskboard tail
# ---------------------------------------------------------------------------


@main.command()
@click.argument("channel")
@click.option("--token", "-t", "access_token", envvar="TASKBOARD_TOKEN", required=True,
              help="Access token (or set TASKBOARD_TOKEN)")
@click.option("--include-own", is_flag=True, help="Also print events you caused")
def tail(channel: str, access_token: str, include_own: bool):
    """Subscribe to CHANNEL and print each event as one JSON line."""
    try:
        _run(_tail_impl(channel, access_token, include_own))
    except KeyboardInterrupt:
        pass


async def _tail_impl(channel: str, access_token: str, include_own: bool):
    from taskboard.client.subscriptions import RealtimeClient
    from taskboard.errors import InvalidChannel

    def on_event(event: str, data: dict):
        click.echo(json.dumps({"event": event, "channel": channel, "data": data}))

    client = RealtimeClient(_ws_url(), access_token)
    if include_own:
        client.user_id = None

    try:
        await client.connect()
    except ConnectionError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)

    try:
        try:
            sub = client.subscribe(channel, {"*": on_event})
        except InvalidChannel as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)

        if not await sub.subscribe():
            reason = "refused" if sub.refused else "not confirmed"
            click.secho(f"Subscription to {channel} {reason}", fg="red", err=True)
            sys.exit(1)

        click.secho(f"Listening on {sub.name} (socket {client.socket_id})", fg="green", err=True)
        while client.connected:
            await asyncio.sleep(1)
        click.secho("Connection closed", fg="yellow", err=True)
    finally:
        await client.close()


# ---------------------------------------------------------------------------
# taskboard publish
# ---------------------------------------------------------------------------


@main.command()
@click.argument("mutation_file", type=click.File("r"))
@click.option("--api-key", envvar="TASKBOARD_BROADCAST_API_KEY", default="dev-broadcast-key",
              help="Broadcast API key (or set TASKBOARD_BROADCAST_API_KEY)")
@click.option("--socket-id", help="Exclude this socket from delivery")
def publish(mutation_file, api_key: str, socket_id: Optional[str]):
    """POST the mutation in MUTATION_FILE (JSON, "-" for stdin) to the gateway."""
    _run(_publish_impl(json.load(mutation_file), api_key, socket_id))


async def _publish_impl(body: dict, api_key: str, socket_id: Optional[str]):
    headers = {"X-Api-Key": api_key}
    if socket_id:
        headers["X-Socket-ID"] = socket_id

    async with _client() as c:
        r = await c.post("/api/v1/broadcast", json=body, headers=headers)
        if r.status_code >= 400:
            click.secho(f"Error {r.status_code}: {r.text}", fg="red", err=True)
            sys.exit(1)
        receipt = r.json()

    click.echo(_pretty_json(receipt))
    if not receipt["delivered"]:
        click.secho("Accepted but not delivered (transport unavailable)", fg="yellow", err=True)
