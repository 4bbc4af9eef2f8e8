"""
Lightweight WebSocket integration tests for /ws/signaling.
Tests the token handshake (including the account check), ping/pong, and
relaying between two live sockets.

The TestClient is entered as a context manager so every socket shares one
event loop with the database; startup is pointed at a fresh in-memory schema.
"""
import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from tortoise import Tortoise

import livecall.main as main_module
from livecall.core import db as db_module
from livecall.core.security import create_access_token, hash_password
from livecall.main import app
from livecall.models.user import User


OFFER = {"type": "offer", "sdp": "v=0\r\no=- 1 1 IN IP4 0.0.0.0"}


async def _init_schema() -> None:
    if Tortoise._inited:
        await Tortoise.close_connections()
    await Tortoise.init(config=db_module.TORTOISE_ORM)
    await Tortoise.generate_schemas()


async def _make_user(active: bool) -> str:
    user = await User.create(
        username=f"ws_{uuid.uuid4().hex[:8]}",
        password_hash=hash_password("WsPass!23"),
        role="user",
        is_active=active,
    )
    return str(user.id)


@pytest.fixture
def ws_client(monkeypatch):
    monkeypatch.setattr(main_module, "init_db", _init_schema)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def make_user(ws_client):
    def _make(active: bool = True) -> str:
        return ws_client.portal.call(_make_user, active)
    return _make


def _url(user_id: str) -> str:
    return f"/ws/signaling?token={create_access_token(user_id, 'user')}"


def _assert_rejected(client, url: str) -> None:
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(url) as websocket:
            websocket.receive_text()
    assert exc.value.code == 4001


class TestWebSocketConnection:
    """Tests for the token handshake."""

    def test_missing_token_is_rejected(self, ws_client):
        _assert_rejected(ws_client, "/ws/signaling")

    def test_bad_token_is_rejected(self, ws_client):
        _assert_rejected(ws_client, "/ws/signaling?token=not-a-jwt")

    def test_token_for_unknown_account_is_rejected(self, ws_client):
        _assert_rejected(ws_client, _url(str(uuid.uuid4())))

    def test_token_for_deactivated_account_is_rejected(self, ws_client, make_user):
        _assert_rejected(ws_client, _url(make_user(active=False)))

    def test_ping_pong(self, ws_client, make_user):
        with ws_client.websocket_connect(_url(make_user())) as websocket:
            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"


class TestWebSocketBasicFlow:
    """Tests for relaying between two connected users."""

    def test_offer_to_offline_user(self, ws_client, make_user):
        with ws_client.websocket_connect(_url(make_user())) as websocket:
            websocket.send_json({"event": "call:offer", "data": {"to": "nobody", "offer": OFFER, "callId": "c-1"}})
            msg = websocket.receive_json()
            assert msg["event"] == "call:error"
            assert msg["data"]["code"] == "RECIPIENT_OFFLINE"

    def test_offer_is_relayed(self, ws_client, make_user):
        alice, bob = make_user(), make_user()
        with ws_client.websocket_connect(_url(alice)) as ws_alice:
            with ws_client.websocket_connect(_url(bob)) as ws_bob:
                assert ws_alice.receive_json() == {"event": "user:online", "data": {"userId": bob}}

                ws_alice.send_json({"event": "call:offer", "data": {"to": bob, "offer": OFFER, "callId": "c-2"}})
                msg = ws_bob.receive_json()
                assert msg["event"] == "call:offer"
                assert msg["data"]["from"] == alice
                assert msg["data"]["offer"] == OFFER

                ws_bob.send_json({"event": "call:reject", "data": {"to": alice, "callId": "c-2"}})
                assert ws_alice.receive_json()["event"] == "call:rejected"

            assert ws_alice.receive_json() == {"event": "user:offline", "data": {"userId": bob}}

    def test_second_connection_replaces_first(self, ws_client, make_user):
        alice = make_user()
        with ws_client.websocket_connect(_url(alice)) as first:
            with ws_client.websocket_connect(_url(alice)) as second:
                with pytest.raises(WebSocketDisconnect) as exc:
                    first.receive_text()
                assert exc.value.code == 4000

                second.send_text("ping")
                assert second.receive_text() == "pong"
