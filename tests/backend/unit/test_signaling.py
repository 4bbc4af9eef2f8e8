"""
Unit tests for the signaling relay.
Uses an in-memory PresenceRegistry and mock sockets; all identities have
role "user", so nothing touches the database.
"""
import json

import pytest

from livecall.core.presence import PresenceRegistry
from livecall.core.security import TokenIdentity
from livecall.services.signaling import SignalingRouter


class MockWebSocket:
    def __init__(self):
        self.sent_texts = []

    async def send_text(self, text: str):
        self.sent_texts.append(text)

    def events(self):
        return [json.loads(t) for t in self.sent_texts if t != "pong"]

    def last(self):
        return self.events()[-1]


ALICE = TokenIdentity(user_id="alice", role="user")
BOB = TokenIdentity(user_id="bob", role="user")
OFFER = {"type": "offer", "sdp": "v=0\r\no=- 1 1 IN IP4 0.0.0.0"}
ANSWER = {"type": "answer", "sdp": "v=0\r\no=- 2 2 IN IP4 0.0.0.0"}

pytestmark = pytest.mark.asyncio


@pytest.fixture
def registry():
    return PresenceRegistry()


@pytest.fixture
def router(registry):
    return SignalingRouter(registry)


async def _connect(router, identity):
    ws = MockWebSocket()
    await router.connected(identity, ws)
    ws.sent_texts.clear()
    return ws


async def _send(router, identity, ws, event, data):
    await router.handle_text(identity, ws, json.dumps({"event": event, "data": data}))


class TestRelay:

    async def test_offer_is_forwarded_with_sender(self, router):
        alice = await _connect(router, ALICE)
        bob = await _connect(router, BOB)

        await _send(router, ALICE, alice, "call:offer",
                    {"to": "bob", "offer": OFFER, "callId": "call-1", "caller": {"name": "Alice"}})

        assert bob.last() == {"event": "call:offer", "data": {
            "from": "alice", "offer": OFFER, "callId": "call-1", "caller": {"name": "Alice"},
        }}
        assert alice.events() == []

    async def test_offer_to_offline_user_reports_error(self, router):
        alice = await _connect(router, ALICE)
        await _send(router, ALICE, alice, "call:offer", {"to": "bob", "offer": OFFER, "callId": "call-1"})

        error = alice.last()
        assert error["event"] == "call:error"
        assert error["data"]["code"] == "RECIPIENT_OFFLINE"
        assert error["data"]["callId"] == "call-1"

    async def test_answer_and_ice_are_forwarded(self, router):
        alice = await _connect(router, ALICE)
        bob = await _connect(router, BOB)

        await _send(router, BOB, bob, "call:answer", {"to": "alice", "answer": ANSWER})
        candidate = {"candidate": "candidate:1 1 UDP 2122 192.0.2.1 5000 typ host", "sdpMid": "0"}
        await _send(router, BOB, bob, "call:ice-candidate", {"to": "alice", "candidate": candidate})

        assert alice.events() == [
            {"event": "call:answer", "data": {"from": "bob", "answer": ANSWER}},
            {"event": "call:ice-candidate", "data": {"from": "bob", "candidate": candidate}},
        ]

    async def test_reject_and_end_are_renamed(self, router):
        alice = await _connect(router, ALICE)
        bob = await _connect(router, BOB)

        await _send(router, BOB, bob, "call:reject", {"to": "alice", "callId": "call-1", "reason": "busy"})
        await _send(router, ALICE, alice, "call:end", {"to": "bob", "callId": "call-1"})

        assert alice.last() == {"event": "call:rejected", "data": {"from": "bob", "callId": "call-1", "reason": "busy"}}
        assert bob.last() == {"event": "call:ended", "data": {"from": "alice", "callId": "call-1"}}


class TestValidation:

    @pytest.mark.parametrize("offer", [
        None,
        "v=0",
        {"type": "offer"},
        {"type": "offer", "sdp": ""},
        {"type": "pranswer", "sdp": "v=0"},
    ])
    async def test_malformed_offer_is_not_forwarded(self, router, offer):
        alice = await _connect(router, ALICE)
        bob = await _connect(router, BOB)

        await _send(router, ALICE, alice, "call:offer", {"to": "bob", "offer": offer})

        assert alice.last()["data"]["code"] == "VALIDATION_ERROR"
        assert bob.events() == []

    async def test_malformed_answer_is_not_forwarded(self, router):
        alice = await _connect(router, ALICE)
        bob = await _connect(router, BOB)

        await _send(router, BOB, bob, "call:answer", {"to": "alice", "answer": {"sdp": "v=0"}})

        assert bob.last()["data"]["code"] == "VALIDATION_ERROR"
        assert alice.events() == []

    async def test_bad_ice_candidate_is_dropped_silently(self, router):
        alice = await _connect(router, ALICE)
        bob = await _connect(router, BOB)

        await _send(router, BOB, bob, "call:ice-candidate", {"to": "alice"})
        await _send(router, BOB, bob, "call:ice-candidate", {"to": "alice", "candidate": "nope"})

        assert alice.events() == []
        assert bob.events() == []

    async def test_unknown_event(self, router):
        alice = await _connect(router, ALICE)
        await _send(router, ALICE, alice, "call:teleport", {"to": "bob"})
        assert alice.last()["data"]["code"] == "UNKNOWN_EVENT"

    async def test_non_json_frame(self, router):
        alice = await _connect(router, ALICE)
        await router.handle_text(ALICE, alice, "{not json")
        assert alice.last()["data"]["code"] == "VALIDATION_ERROR"

    async def test_ping_pong(self, router):
        alice = await _connect(router, ALICE)
        await router.handle_text(ALICE, alice, "ping")
        assert alice.sent_texts == ["pong"]


class TestPresenceEvents:

    async def test_connect_and_disconnect_are_broadcast(self, router, registry):
        alice = await _connect(router, ALICE)
        bob = MockWebSocket()
        await router.connected(BOB, bob)

        assert alice.last() == {"event": "user:online", "data": {"userId": "bob"}}
        assert bob.events() == []

        await router.disconnected(BOB, bob)
        assert alice.last() == {"event": "user:offline", "data": {"userId": "bob"}}
        assert not registry.is_online("bob")

    async def test_replaced_connection_teardown_is_silent(self, router, registry):
        alice = await _connect(router, ALICE)
        old = await _connect(router, BOB)
        new = MockWebSocket()
        await router.connected(BOB, new)
        alice.sent_texts.clear()

        await router.disconnected(BOB, old)

        assert registry.get("bob") is new
        assert alice.events() == []
