"""
Weekly leaderboard accumulators.

Settlement adds each completed call's duration to both parties' rows for the
ISO week (Monday start) the call ended in.
"""
import datetime as dt

from tortoise.expressions import F

from livecall.models.leaderboard import WeeklyLeaderboard


def week_bounds(moment: dt.datetime) -> tuple[dt.date, dt.date]:
    """Monday and Sunday of the ISO week containing `moment`."""
    day = moment.date()
    start = day - dt.timedelta(days=day.weekday())
    return start, start + dt.timedelta(days=6)


async def record_call(user_id, user_type: str, duration_seconds: int, moment: dt.datetime, using_db=None) -> None:
    start, end = week_bounds(moment)
    entry, _ = await WeeklyLeaderboard.get_or_create(
        user_id=user_id,
        user_type=user_type,
        week_start_date=start,
        defaults={"week_end_date": end},
        using_db=using_db,
    )
    qs = WeeklyLeaderboard.filter(id=entry.id)
    if using_db is not None:
        qs = qs.using_db(using_db)
    await qs.update(
        total_call_duration=F("total_call_duration") + duration_seconds,
        total_calls=F("total_calls") + 1,
    )


async def standing(user_id, user_type: str, moment: dt.datetime) -> dict:
    """The user's totals and rank for the week containing `moment`."""
    start, end = week_bounds(moment)
    entry = await WeeklyLeaderboard.get_or_none(user_id=user_id, user_type=user_type, week_start_date=start)
    if entry is None:
        return {"weekStart": start.isoformat(), "weekEnd": end.isoformat(),
                "totalCallDuration": 0, "totalCalls": 0, "rank": None}
    ahead = await WeeklyLeaderboard.filter(
        user_type=user_type,
        week_start_date=start,
        total_call_duration__gt=entry.total_call_duration,
    ).count()
    return {
        "weekStart": start.isoformat(),
        "weekEnd": end.isoformat(),
        "totalCallDuration": entry.total_call_duration,
        "totalCalls": entry.total_calls,
        "rank": ahead + 1,
    }
