import asyncio
import datetime as dt

import pytest

from livecall.config import settings
from livecall.core.presence import PresenceRegistry
from livecall.models.call import Call
from livecall.models.host import Host
from livecall.models.user import User
from livecall.services.calls import CallLedger
from livecall.services.free_target import FreeTargetService
from livecall.services.sweeper import CallSweeper


pytestmark = pytest.mark.asyncio


def _sweeper(clock, **overrides) -> CallSweeper:
    ledger = CallLedger(clock=clock, free_target=FreeTargetService(clock=clock))
    options = {
        "interval": 0.01, "idle_timeout": 60, "ring_timeout": 30, "host_stale_after": 300,
        "registry": PresenceRegistry(),
    }
    options.update(overrides)
    return CallSweeper(ledger=ledger, **options)


async def test_idle_call_is_billed_to_last_heartbeat(db, clock, create_user, create_host):
    caller, _ = await create_user(coins=1000)
    host_user, host, _ = await create_host(rate=50)
    sweeper = _sweeper(clock)
    ledger = sweeper.ledger

    call = await ledger.initiate(caller, host.id)
    await ledger.accept(call.id, host_user)
    started = clock()
    clock.advance(seconds=90)
    await ledger.heartbeat(call.id, host_user)

    # Nothing to do while heartbeats are fresh
    clock.advance(seconds=30)
    assert (await sweeper.sweep_once())["expired"] == 0

    clock.advance(seconds=31)
    result = await sweeper.sweep_once()
    assert result["expired"] == 1

    call = await Call.get(id=call.id)
    assert call.status == "completed"
    assert call.ended_by == "system"
    assert call.was_disconnected is True
    assert call.duration == 90
    assert call.coins_spent == 100
    assert call.end_time == started + dt.timedelta(seconds=90)
    assert (await User.get(id=caller.id)).coin_balance == 900


async def test_idle_call_the_caller_cannot_pay_still_counts(db, clock, create_user, create_host):
    caller, _ = await create_user(coins=50)
    host_user, host, _ = await create_host(rate=50)
    sweeper = _sweeper(clock)

    call = await sweeper.ledger.initiate(caller, host.id)
    await sweeper.ledger.accept(call.id, host_user)
    clock.advance(seconds=120)
    await sweeper.ledger.heartbeat(call.id, host_user)
    clock.advance(seconds=61)

    assert (await sweeper.sweep_once())["expired"] == 1
    assert (await Call.get(id=call.id)).status == "failed"
    assert (await User.get(id=caller.id)).coin_balance == 50


async def test_sweeper_is_opt_in():
    assert settings.call_sweeper_enabled is False


async def test_call_without_heartbeats_is_left_to_the_parties(db, clock, create_user, create_host):
    caller, _ = await create_user(coins=1000)
    host_user, host, _ = await create_host(rate=50)
    # Shipped timeouts
    sweeper = CallSweeper(
        ledger=CallLedger(clock=clock, free_target=FreeTargetService(clock=clock)),
        registry=PresenceRegistry(),
    )

    call = await sweeper.ledger.initiate(caller, host.id)
    await sweeper.ledger.accept(call.id, host_user)
    clock.advance(minutes=10)

    assert (await sweeper.sweep_once())["expired"] == 0
    assert (await Call.get(id=call.id)).status == "ongoing"

    summary = await sweeper.ledger.end(call.id, caller)
    assert summary["coinsSpent"] == 500
    row = await Call.get(id=call.id)
    assert row.status == "completed"
    assert row.duration == 600
    assert row.coins_spent == 500
    assert row.was_disconnected is False
    assert (await User.get(id=caller.id)).coin_balance == 500


async def test_unanswered_call_is_cancelled(db, clock, create_user, create_host):
    caller, _ = await create_user(coins=1000)
    _, host, _ = await create_host()
    sweeper = _sweeper(clock)

    call = await sweeper.ledger.initiate(caller, host.id)
    clock.advance(seconds=29)
    assert (await sweeper.sweep_once())["cancelled"] == 0

    clock.advance(seconds=2)
    assert (await sweeper.sweep_once())["cancelled"] == 1

    call = await Call.get(id=call.id)
    assert call.status == "cancelled"
    assert call.ended_by == "system"
    assert call.coins_spent == 0
    assert (await User.get(id=caller.id)).coin_balance == 1000


async def test_stale_hosts_go_offline(db, clock, create_host):
    _, fresh, _ = await create_host()
    _, stale, _ = await create_host()
    _, silent, _ = await create_host()
    await Host.filter(id=fresh.id).update(last_seen=clock() - dt.timedelta(seconds=60))
    await Host.filter(id=stale.id).update(last_seen=clock() - dt.timedelta(seconds=301))
    await Host.filter(id=silent.id).update(last_seen=None)

    assert (await _sweeper(clock).sweep_once())["staleHosts"] == 2

    assert (await Host.get(id=fresh.id)).is_online is True
    assert (await Host.get(id=stale.id)).is_online is False
    assert (await Host.get(id=silent.id)).is_online is False


async def test_connected_host_stays_online_without_pings(db, clock, create_host):
    host_user, host, _ = await create_host()
    await Host.filter(id=host.id).update(last_seen=clock() - dt.timedelta(minutes=30))
    registry = PresenceRegistry()
    await registry.register(str(host_user.id), object())

    assert (await _sweeper(clock, registry=registry).sweep_once())["staleHosts"] == 0
    assert (await Host.get(id=host.id)).is_online is True

    await registry.unregister(str(host_user.id), registry.get(str(host_user.id)))
    assert (await _sweeper(clock, registry=registry).sweep_once())["staleHosts"] == 1
    assert (await Host.get(id=host.id)).is_online is False


async def test_background_loop_starts_and_stops(db, clock, create_host):
    _, host, _ = await create_host()
    await Host.filter(id=host.id).update(last_seen=None)
    sweeper = _sweeper(clock)

    sweeper.start()
    for _ in range(50):
        await asyncio.sleep(0.01)
        if not (await Host.get(id=host.id)).is_online:
            break
    await sweeper.stop()

    assert (await Host.get(id=host.id)).is_online is False
    assert sweeper._task is None
