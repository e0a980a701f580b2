"""CLI — token minting and publishing through the broadcast endpoint."""

import json

from click.testing import CliRunner
from httpx import ASGITransport, AsyncClient

from factories import message
from taskboard.auth.jwt import user_id_from_token
from taskboard.cli import main as cli
from taskboard.config import settings


def test_version():
    result = CliRunner().invoke(cli.main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_token_is_verifiable():
    result = CliRunner().invoke(cli.main, ["token", "4", "--minutes", "5"])
    assert result.exit_code == 0
    assert user_id_from_token(result.output.strip()) == 4


def test_ws_url_follows_api_url(monkeypatch):
    monkeypatch.setenv("TASKBOARD_API_URL", "https://rt.example.com/")
    assert cli._ws_url() == "wss://rt.example.com/ws"
    monkeypatch.setenv("TASKBOARD_API_URL", "http://localhost:8080")
    assert cli._ws_url() == "ws://localhost:8080/ws"


def _asgi_client(monkeypatch):
    from taskboard.main import app

    monkeypatch.setattr(
        cli,
        "_client",
        lambda: AsyncClient(transport=ASGITransport(app=app), base_url="http://test"),
    )


def test_publish_prints_receipt(monkeypatch, transport, directory):
    _asgi_client(monkeypatch)
    body = {
        "kind": "message.sent",
        "actor_id": 1,
        "message": message(sender_id=1).model_dump(mode="json"),
        "participant_ids": [1, 2],
    }

    result = CliRunner().invoke(
        cli.main,
        ["publish", "-", "--api-key", settings.broadcast_api_key, "--socket-id", "sock-1"],
        input=json.dumps(body),
    )

    assert result.exit_code == 0, result.output
    receipt = json.loads(result.stdout)
    assert receipt["channels"] == ["conversation.5", "user.2.conversations"]
    assert {excluded for _, _, excluded in transport.published} == {"sock-1"}


def test_publish_reports_rejection(monkeypatch, transport, directory):
    _asgi_client(monkeypatch)
    result = CliRunner().invoke(
        cli.main,
        ["publish", "-", "--api-key", "wrong"],
        input=json.dumps({"kind": "ai.thinking", "conversation_id": 5}),
    )
    assert result.exit_code == 1
    assert transport.published == []
