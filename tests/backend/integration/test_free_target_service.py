"""
FreeTargetService against the database with a settable clock.
"""
import asyncio
import datetime as dt

import pytest

from livecall.models.free_target import FreeTarget
from livecall.services.free_target import FreeTargetService


pytestmark = pytest.mark.asyncio

UTC = dt.timezone.utc


async def test_call_waiting_on_lock_across_midnight_lands_on_new_day(db, clock, create_host):
    clock.now = dt.datetime(2024, 5, 8, 23, 59, 50, tzinfo=UTC)  # Wednesday night
    service = FreeTargetService(clock=clock)
    _, host, _ = await create_host()
    await service.toggle(host.id, True)

    async with service._locks.hold(host.id):
        pending = asyncio.create_task(service.record_call(host.id, "call-1", 120, False))
        await asyncio.sleep(0)
        clock.advance(seconds=30)
    result = await pending

    assert result["todayTarget"]["date"] == "2024-05-09"
    assert result["todayTarget"]["totalCallDuration"] == 120
    assert result["timeCompleted"] == 120

    ft = await FreeTarget.get(host_id=host.id)
    days = {d["date"]: d for d in ft.current_week["days"]}
    assert days["2024-05-08"]["totalCallDuration"] == 0
    assert days["2024-05-09"]["totalCallDuration"] == 120


async def test_rollover_archives_week_and_override_reaches_it(db, clock, create_host):
    service = FreeTargetService(clock=clock, daily_bonus=1000)
    _, host, _ = await create_host()
    await service.toggle(host.id, True)

    clock.advance(days=5)  # Next Monday
    stats = await service.weekly_stats(host.id)
    assert stats["totalWeeksFailed"] == 1
    assert stats["recentHistory"][0]["startDate"].startswith("2024-05-06")
    assert stats["currentWeek"]["startDate"].startswith("2024-05-13")

    ft, day = await service.override_day(host.id, dt.date(2024, 5, 7), "completed", None, "admin-1")
    assert day["status"] == "completed"
    assert ft.week_history[0]["completedDays"] == 1
    assert ft.current_week["completedDays"] == 0
