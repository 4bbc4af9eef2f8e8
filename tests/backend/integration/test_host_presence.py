"""
Host presence driven by the signaling connection: pings keep `last_seen`
fresh, and dropping the socket takes the host offline.
"""
import datetime as dt
import json

import pytest

from livecall.core.presence import PresenceRegistry
from livecall.core.security import TokenIdentity
from livecall.models.host import Host
from livecall.services.signaling import SignalingRouter


pytestmark = pytest.mark.asyncio


class MockWebSocket:
    def __init__(self):
        self.sent_texts = []

    async def send_text(self, text: str):
        self.sent_texts.append(text)

    def events(self):
        return [json.loads(t) for t in self.sent_texts if t != "pong"]


async def test_host_disconnect_marks_offline(db, create_host, create_user):
    host_user, host, _ = await create_host(online=True)
    watcher, _ = await create_user()
    router = SignalingRouter(PresenceRegistry())
    host_identity = TokenIdentity(user_id=str(host_user.id), role="host")

    watcher_ws = MockWebSocket()
    await router.connected(TokenIdentity(user_id=str(watcher.id), role="user"), watcher_ws)
    host_ws = MockWebSocket()
    await router.connected(host_identity, host_ws)
    watcher_ws.sent_texts.clear()

    await router.disconnected(host_identity, host_ws)

    assert (await Host.get(id=host.id)).is_online is False
    assert watcher_ws.events() == [
        {"event": "user:offline", "data": {"userId": str(host_user.id)}},
        {"event": "host:offline", "data": {"hostId": str(host.id), "userId": str(host_user.id)}},
    ]


async def test_replaced_host_connection_keeps_host_online(db, create_host):
    host_user, host, _ = await create_host(online=True)
    router = SignalingRouter(PresenceRegistry())
    identity = TokenIdentity(user_id=str(host_user.id), role="host")

    old, new = MockWebSocket(), MockWebSocket()
    await router.connected(identity, old)
    await router.connected(identity, new)
    await router.disconnected(identity, old)

    assert (await Host.get(id=host.id)).is_online is True


async def test_host_ping_refreshes_last_seen(db, create_host):
    host_user, host, _ = await create_host()
    stale = dt.datetime.now(dt.timezone.utc) - dt.timedelta(hours=1)
    await Host.filter(id=host.id).update(last_seen=stale)
    router = SignalingRouter(PresenceRegistry())
    identity = TokenIdentity(user_id=str(host_user.id), role="host")
    ws = MockWebSocket()
    await router.connected(identity, ws)

    await router.handle_text(identity, ws, "ping")

    assert ws.sent_texts[-1] == "pong"
    assert (await Host.get(id=host.id)).last_seen > stale
