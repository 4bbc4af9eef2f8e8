"""
Free Target Service

Per-host daily/weekly quota program. Hosts earn a bonus for every day on
which their accumulated call time reaches the daily target; too many
disconnects inside a rolling window fail the day.

Layout:
- DayTarget / WeekTarget: plain dataclasses mirroring the JSON stored on
  the FreeTarget row
- FreeTargetAutomaton: the state machine, pure and clock-injected
- FreeTargetService: loads a row under a per-host lock and DB transaction,
  runs the automaton, saves, and credits bonuses
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from livecall.config import settings
from livecall.core.errors import InvalidState, NotFound, ValidationError
from livecall.core.locks import KeyedLock
from livecall.models.free_target import FreeTarget
from livecall.models.host import Host

logger = logging.getLogger(__name__)

PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"
ADMIN_OVERRIDE = "admin_override"
DAY_STATUSES = (PENDING, COMPLETED, FAILED, ADMIN_OVERRIDE)
OVERRIDE_STATUSES = (COMPLETED, FAILED, ADMIN_OVERRIDE)

WEEK_ACTIVE = "active"
WEEK_COMPLETED = "completed"
WEEK_FAILED = "failed"

PAST_DAY_NOTE = "Auto-marked as host joined after this date"


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value) -> Optional[dt.datetime]:
    if not value:
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        parsed = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _parse_date(value) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(str(value)[:10])


# ==============================================================================
# Week structure
# ==============================================================================
@dataclass
class DayTarget:
    date: dt.date
    status: str = PENDING
    total_call_duration: int = 0  # seconds
    disconnect_count: int = 0
    is_timer_active: bool = False
    timer_started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    admin_override: bool = False
    admin_note: Optional[str] = None
    override_by: Optional[str] = None
    override_at: Optional[dt.datetime] = None
    call_ids: List[str] = field(default_factory=list)  # Calls already accrued on this day

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "status": self.status,
            "totalCallDuration": self.total_call_duration,
            "disconnectCount": self.disconnect_count,
            "isTimerActive": self.is_timer_active,
            "timerStartedAt": _iso(self.timer_started_at),
            "completedAt": _iso(self.completed_at),
            "adminOverride": self.admin_override,
            "adminNote": self.admin_note,
            "overrideBy": self.override_by,
            "overrideAt": _iso(self.override_at),
            "callIds": list(self.call_ids),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DayTarget":
        return cls(
            date=_parse_date(data["date"]),
            status=data.get("status", PENDING),
            total_call_duration=int(data.get("totalCallDuration", 0)),
            disconnect_count=int(data.get("disconnectCount", 0)),
            is_timer_active=bool(data.get("isTimerActive", False)),
            timer_started_at=_parse_dt(data.get("timerStartedAt")),
            completed_at=_parse_dt(data.get("completedAt")),
            admin_override=bool(data.get("adminOverride", False)),
            admin_note=data.get("adminNote"),
            override_by=data.get("overrideBy"),
            override_at=_parse_dt(data.get("overrideAt")),
            call_ids=list(data.get("callIds", [])),
        )


@dataclass
class WeekTarget:
    week_number: int
    year: int
    start_date: dt.datetime  # Monday 00:00 UTC
    end_date: dt.datetime  # Sunday 23:59:59.999999 UTC
    days: List[DayTarget]
    completed_days: int = 0
    status: str = WEEK_ACTIVE

    @classmethod
    def containing(cls, moment: dt.datetime) -> "WeekTarget":
        """Fresh Monday..Sunday week around `moment`, every day pending."""
        monday = moment.date() - dt.timedelta(days=moment.weekday())
        start = dt.datetime.combine(monday, dt.time.min, tzinfo=dt.timezone.utc)
        end = dt.datetime.combine(monday + dt.timedelta(days=6), dt.time.max, tzinfo=dt.timezone.utc)
        iso_year, iso_week, _ = monday.isocalendar()
        days = [DayTarget(date=monday + dt.timedelta(days=i)) for i in range(7)]
        return cls(week_number=iso_week, year=iso_year, start_date=start, end_date=end, days=days)

    def day_for(self, date: dt.date) -> Optional[DayTarget]:
        for day in self.days:
            if day.date == date:
                return day
        return None

    def refresh_status(self, archived: bool) -> None:
        if self.completed_days >= len(self.days):
            self.status = WEEK_COMPLETED
        else:
            self.status = WEEK_FAILED if archived else WEEK_ACTIVE

    def to_dict(self) -> dict:
        return {
            "weekNumber": self.week_number,
            "year": self.year,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "days": [d.to_dict() for d in self.days],
            "completedDays": self.completed_days,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WeekTarget":
        return cls(
            week_number=int(data["weekNumber"]),
            year=int(data["year"]),
            start_date=_parse_dt(data["startDate"]),
            end_date=_parse_dt(data["endDate"]),
            days=[DayTarget.from_dict(d) for d in data.get("days", [])],
            completed_days=int(data.get("completedDays", 0)),
            status=data.get("status", WEEK_ACTIVE),
        )


@dataclass
class CallOutcome:
    """What applying one finished call did to today's target."""
    applied: bool = False  # False when the program is off or today is not pending
    day_failed: bool = False
    accrued: int = 0
    completed_days: int = 0  # Days that flipped to completed (0 or 1)


# ==============================================================================
# State machine
# ==============================================================================
class FreeTargetAutomaton:
    """
    In-memory view of one FreeTarget document.

    Every method takes `now` explicitly; callers run ensure_current_week(now)
    first. Methods returning completed-day counts let the service pay the
    daily bonus exactly once per transition into `completed`.
    """

    def __init__(
        self,
        *,
        is_enabled: bool,
        target_duration_per_day: int,
        max_disconnects_allowed: int,
        disconnect_time_window: int,
        current_week: Optional[WeekTarget] = None,
        week_history: Optional[List[WeekTarget]] = None,
        total_weeks_completed: int = 0,
        total_weeks_failed: int = 0,
        last_disconnects: Optional[List[dict]] = None,
        stats: Optional[dict] = None,
    ):
        self.is_enabled = is_enabled
        self.target_duration_per_day = target_duration_per_day
        self.max_disconnects_allowed = max_disconnects_allowed
        self.disconnect_time_window = disconnect_time_window
        self.current_week = current_week
        self.week_history = week_history or []
        self.total_weeks_completed = total_weeks_completed
        self.total_weeks_failed = total_weeks_failed
        self.last_disconnects = last_disconnects or []
        self.stats = {
            "totalCallsCompleted": 0,
            "totalCallDuration": 0,
            "activeDays": 0,
            "averageDailyDuration": 0,
        }
        self.stats.update(stats or {})

    # -------- (de)serialization --------
    @classmethod
    def from_model(cls, ft: FreeTarget) -> "FreeTargetAutomaton":
        return cls(
            is_enabled=ft.is_enabled,
            target_duration_per_day=ft.target_duration_per_day,
            max_disconnects_allowed=ft.max_disconnects_allowed,
            disconnect_time_window=ft.disconnect_time_window,
            current_week=WeekTarget.from_dict(ft.current_week) if ft.current_week else None,
            week_history=[WeekTarget.from_dict(w) for w in (ft.week_history or [])],
            total_weeks_completed=ft.total_weeks_completed,
            total_weeks_failed=ft.total_weeks_failed,
            last_disconnects=list(ft.last_disconnects or []),
            stats=dict(ft.stats or {}),
        )

    def apply_to(self, ft: FreeTarget) -> None:
        ft.is_enabled = self.is_enabled
        ft.current_week = self.current_week.to_dict() if self.current_week else None
        ft.week_history = [w.to_dict() for w in self.week_history]
        ft.total_weeks_completed = self.total_weeks_completed
        ft.total_weeks_failed = self.total_weeks_failed
        ft.last_disconnects = list(self.last_disconnects)
        ft.stats = dict(self.stats)

    # -------- week bookkeeping --------
    def ensure_current_week(self, now: dt.datetime) -> bool:
        """
        Roll the week over if `now` is past its end. Idempotent.

        The finished week is archived (failed unless it already completed)
        and replaced by the week containing `now`. Returns True on change.
        """
        if self.current_week is None:
            self.current_week = WeekTarget.containing(now)
            return True
        if now <= self.current_week.end_date:
            return False

        finished = self.current_week
        for day in finished.days:
            day.is_timer_active = False
        if finished.status != WEEK_COMPLETED:
            finished.status = WEEK_FAILED
        self.week_history.append(finished)
        if finished.status == WEEK_COMPLETED:
            self.total_weeks_completed += 1
        else:
            self.total_weeks_failed += 1
        self.current_week = WeekTarget.containing(now)
        logger.info("[free-target] week %s/%s archived as %s", finished.year, finished.week_number, finished.status)
        return True

    def mark_past_days(self, now: dt.datetime) -> int:
        """Fail pending days of the current week that are already over."""
        if self.current_week is None:
            return 0
        marked = 0
        for day in self.current_week.days:
            if day.date < now.date() and day.status == PENDING:
                day.status = FAILED
                day.admin_note = PAST_DAY_NOTE
                marked += 1
        return marked

    def today(self, now: dt.datetime) -> Optional[DayTarget]:
        if self.current_week is None:
            return None
        return self.current_week.day_for(now.date())

    def days_left_in_week(self) -> int:
        if self.current_week is None:
            return 0
        return sum(1 for d in self.current_week.days if d.status == PENDING)

    def _complete(self, day: DayTarget, now: dt.datetime) -> int:
        day.status = COMPLETED
        day.completed_at = now
        day.is_timer_active = False
        self.current_week.completed_days += 1
        self.current_week.refresh_status(archived=False)
        return 1

    # -------- timer --------
    def start_timer(self, now: dt.datetime) -> DayTarget:
        day = self.today(now)
        if day is None:
            raise InvalidState("No target found for today")
        if day.status != PENDING or day.is_timer_active:
            raise InvalidState(f"Cannot start timer: today is {day.status}"
                               + (" and the timer is already running" if day.is_timer_active else ""))
        day.is_timer_active = True
        day.timer_started_at = now
        return day

    def stop_timer(self, now: dt.datetime) -> int:
        """Stop today's timer. Returns 1 if the day completed as a result."""
        day = self.today(now)
        if day is None:
            raise InvalidState("No target found for today")
        if not day.is_timer_active:
            raise InvalidState("Timer is not running")
        day.is_timer_active = False
        if day.status == PENDING and day.total_call_duration >= self.target_duration_per_day:
            return self._complete(day, now)
        return 0

    # -------- call-driven transitions --------
    def record_disconnect(self, call_id, now: dt.datetime) -> bool:
        """
        Log a dropped call. Returns True if the day just failed.

        Entries older than the window are pruned before counting.
        """
        day = self.today(now)
        if day is None or day.status != PENDING:
            return False

        self.last_disconnects.append({"timestamp": now.isoformat(), "callId": str(call_id) if call_id else None})
        window_start = now - dt.timedelta(seconds=self.disconnect_time_window)
        self.last_disconnects = [
            d for d in self.last_disconnects if _parse_dt(d["timestamp"]) >= window_start
        ]
        day.disconnect_count += 1

        if len(self.last_disconnects) >= self.max_disconnects_allowed:
            day.status = FAILED
            day.is_timer_active = False
            return True
        return False

    def add_call_duration(self, seconds: int, now: dt.datetime, call_id=None) -> int:
        """
        Accrue call time on today. Returns 1 if the day just completed.

        Ignored when today is not pending or the call was already counted.
        """
        day = self.today(now)
        if day is None or day.status != PENDING or seconds <= 0:
            return 0
        if call_id is not None:
            key = str(call_id)
            if key in day.call_ids:
                return 0
            day.call_ids.append(key)

        if day.total_call_duration == 0:
            self.stats["activeDays"] += 1
        day.total_call_duration += seconds
        self.stats["totalCallsCompleted"] += 1
        self.stats["totalCallDuration"] += seconds
        self.stats["averageDailyDuration"] = self.stats["totalCallDuration"] // max(1, self.stats["activeDays"])

        if day.total_call_duration >= self.target_duration_per_day:
            return self._complete(day, now)
        return 0

    def apply_call(self, call_id, duration: int, was_disconnected: bool, now: dt.datetime) -> CallOutcome:
        """
        Apply one finished call: disconnect rule first, then accrual.

        If the disconnect fails the day, this call's duration is not added.
        """
        outcome = CallOutcome()
        day = self.today(now)
        if not self.is_enabled or day is None or day.status != PENDING:
            return outcome
        outcome.applied = True
        if was_disconnected and self.record_disconnect(call_id, now):
            outcome.day_failed = True
            return outcome
        before = day.total_call_duration
        outcome.completed_days = self.add_call_duration(duration, now, call_id=call_id)
        outcome.accrued = day.total_call_duration - before
        return outcome

    # -------- admin --------
    def _locate(self, date: dt.date) -> tuple[Optional[WeekTarget], Optional[DayTarget], bool]:
        if self.current_week is not None:
            day = self.current_week.day_for(date)
            if day is not None:
                return self.current_week, day, False
        for week in reversed(self.week_history):
            day = week.day_for(date)
            if day is not None:
                return week, day, True
        return None, None, False

    def override_day(self, date, status: str, note: Optional[str], by, now: dt.datetime) -> tuple[DayTarget, int]:
        """
        Force a day's status, in the current or an archived week.

        Returns the day and 1 if it moved into `completed` (0 otherwise).
        """
        if status not in OVERRIDE_STATUSES:
            raise ValidationError("Status must be one of: " + ", ".join(OVERRIDE_STATUSES))
        week, day, archived = self._locate(_parse_date(date))
        if day is None:
            raise NotFound("Day not found in free target records", code="DAY_NOT_FOUND")

        previous = day.status
        day.status = status
        day.is_timer_active = False
        day.admin_override = True
        day.admin_note = note or "Admin override"
        day.override_by = str(by) if by else None
        day.override_at = now

        gained = 0
        if status == COMPLETED and previous != COMPLETED:
            week.completed_days += 1
            day.completed_at = now
            gained = 1
        elif status != COMPLETED and previous == COMPLETED:
            week.completed_days -= 1

        before = week.status
        week.refresh_status(archived=archived)
        if archived and before != week.status:
            if week.status == WEEK_COMPLETED:
                self.total_weeks_completed += 1
                self.total_weeks_failed -= 1
            else:
                self.total_weeks_completed -= 1
                self.total_weeks_failed += 1
        return day, gained

    # -------- views --------
    def summary(self, now: dt.datetime) -> dict:
        day = self.today(now)
        done = day.total_call_duration if day else 0
        return {
            "todayTarget": day.to_dict() if day else None,
            "timeCompleted": done,
            "timeRemaining": max(0, self.target_duration_per_day - done),
            "targetDuration": self.target_duration_per_day,
            "daysLeftInWeek": self.days_left_in_week(),
        }


# ==============================================================================
# Persistence
# ==============================================================================
def free_target_to_dict(ft: FreeTarget) -> dict:
    return {
        "id": str(ft.id),
        "hostId": str(ft.host_id),
        "isEnabled": ft.is_enabled,
        "targetDurationPerDay": ft.target_duration_per_day,
        "maxDisconnectsAllowed": ft.max_disconnects_allowed,
        "disconnectTimeWindow": ft.disconnect_time_window,
        "currentWeek": ft.current_week,
        "weekHistory": ft.week_history,
        "totalWeeksCompleted": ft.total_weeks_completed,
        "totalWeeksFailed": ft.total_weeks_failed,
        "stats": ft.stats,
    }


class FreeTargetService:
    """
    Serialized access to FreeTarget rows.

    Each operation holds the host's lock, opens a transaction, locks the
    row, rolls the week over if due, mutates, saves, and pays any daily
    bonus, in that order.
    """

    def __init__(self, clock: Callable[[], dt.datetime] = utc_now, daily_bonus: Optional[int] = None):
        self.clock = clock
        self.daily_bonus = settings.free_target_daily_bonus if daily_bonus is None else daily_bonus
        self._locks = KeyedLock()

    async def _mutate(self, host_id, fn, *, require_enabled: bool = False, missing_ok: bool = False):
        """
        Run `fn(automaton, now)` on the host's target under its lock.

        The clock is read once, after the lock is acquired, and returned so
        callers summarize against the same instant the mutation used.
        """
        async with self._locks.hold(host_id):
            now = self.clock()
            async with in_transaction() as conn:
                ft = await FreeTarget.filter(host_id=host_id).select_for_update().using_db(conn).first()
                if ft is None or (require_enabled and not ft.is_enabled):
                    if missing_ok:
                        return None, None, None, now
                    if require_enabled:
                        raise InvalidState("Free target not enabled", code="FREE_TARGET_DISABLED")
                    raise NotFound("Free target not found", code="FREE_TARGET_NOT_FOUND")

                automaton = FreeTargetAutomaton.from_model(ft)
                automaton.ensure_current_week(now)
                result, completions = fn(automaton, now)
                automaton.apply_to(ft)
                await ft.save(using_db=conn)

                if completions and self.daily_bonus:
                    await Host.filter(id=host_id).using_db(conn).update(
                        total_earnings=F("total_earnings") + completions * self.daily_bonus
                    )
                    logger.info("[free-target] awarded %s bonus to host %s", completions * self.daily_bonus, host_id)
        return ft, automaton, result, now

    # -------- admin --------
    async def toggle(self, host_id, is_enabled: bool) -> FreeTarget:
        """Enable or disable the program for a host, creating the document on first enable."""
        host = await Host.get_or_none(id=host_id)
        if host is None:
            raise NotFound("Host not found", code="HOST_NOT_FOUND")

        async with self._locks.hold(host_id):
            now = self.clock()
            async with in_transaction() as conn:
                ft = await FreeTarget.filter(host_id=host_id).select_for_update().using_db(conn).first()
                if ft is None:
                    automaton = FreeTargetAutomaton(
                        is_enabled=is_enabled,
                        target_duration_per_day=settings.free_target_daily_seconds,
                        max_disconnects_allowed=settings.free_target_max_disconnects,
                        disconnect_time_window=settings.free_target_disconnect_window,
                    )
                    automaton.ensure_current_week(now)
                    automaton.mark_past_days(now)
                    ft = FreeTarget(
                        host_id=host_id,
                        target_duration_per_day=automaton.target_duration_per_day,
                        max_disconnects_allowed=automaton.max_disconnects_allowed,
                        disconnect_time_window=automaton.disconnect_time_window,
                    )
                else:
                    automaton = FreeTargetAutomaton.from_model(ft)
                    automaton.ensure_current_week(now)
                    automaton.is_enabled = is_enabled
                automaton.apply_to(ft)
                await ft.save(using_db=conn)

        logger.info("[free-target] %s for host %s", "enabled" if is_enabled else "disabled", host_id)
        return ft

    async def override_day(self, host_id, date, status: str, note: Optional[str], admin_id) -> tuple[FreeTarget, dict]:
        def _apply(automaton: FreeTargetAutomaton, now):
            day, gained = automaton.override_day(date, status, note, admin_id, now)
            return day.to_dict(), gained

        ft, _, day, _ = await self._mutate(host_id, _apply)
        logger.info("[free-target] admin %s set %s of host %s to %s", admin_id, date, host_id, status)
        return ft, day

    async def list_all(self, page: int = 1, limit: int = 20, status: Optional[str] = None):
        rows = await FreeTarget.all().order_by("-updated_at")
        if status:
            rows = [ft for ft in rows if (ft.current_week or {}).get("status") == status]
        total = len(rows)
        start = (page - 1) * limit
        return rows[start:start + limit], total

    # -------- host --------
    async def get(self, host_id, require_enabled: bool = True) -> tuple[FreeTarget, dict]:
        """Current document plus today's summary. For hosts, a disabled program reads as not found."""
        ft = await FreeTarget.get_or_none(host_id=host_id)
        if ft is None or (require_enabled and not ft.is_enabled):
            raise NotFound("Free target not enabled for this host", code="FREE_TARGET_NOT_FOUND")
        ft, automaton, _, now = await self._mutate(host_id, lambda a, now: (None, 0))
        return ft, automaton.summary(now)

    async def weekly_stats(self, host_id) -> dict:
        ft, _, _, _ = await self._mutate(host_id, lambda a, now: (None, 0))
        return {
            "currentWeek": ft.current_week,
            "totalWeeksCompleted": ft.total_weeks_completed,
            "totalWeeksFailed": ft.total_weeks_failed,
            "recentHistory": list(reversed(ft.week_history[-4:])),
            "overallStats": ft.stats,
        }

    async def start_timer(self, host_id) -> dict:
        def _apply(automaton: FreeTargetAutomaton, now):
            return automaton.start_timer(now).to_dict(), 0

        _, _, day, _ = await self._mutate(host_id, _apply, require_enabled=True)
        logger.info("[free-target] timer started for host %s", host_id)
        return day

    async def stop_timer(self, host_id) -> tuple[dict, bool]:
        def _apply(automaton: FreeTargetAutomaton, now):
            completed = automaton.stop_timer(now)
            return automaton.today(now).to_dict(), completed

        _, _, day, _ = await self._mutate(host_id, _apply, require_enabled=True)
        logger.info("[free-target] timer stopped for host %s", host_id)
        return day, day["status"] == COMPLETED

    async def record_call(self, host_id, call_id, duration: int, was_disconnected: bool) -> Optional[dict]:
        """
        Feed one finished call into the host's target.

        Returns None when the host has no enabled program, otherwise the
        outcome together with today's summary.
        """
        def _apply(automaton: FreeTargetAutomaton, now):
            outcome = automaton.apply_call(call_id, duration, was_disconnected, now)
            return outcome, outcome.completed_days

        ft, automaton, outcome, now = await self._mutate(host_id, _apply, require_enabled=True, missing_ok=True)
        if ft is None:
            return None
        if outcome.day_failed:
            logger.warning("[free-target] day failed due to disconnects for host %s", host_id)
        elif outcome.completed_days:
            logger.info("[free-target] host %s completed today's target", host_id)
        return {
            "applied": outcome.applied,
            "dayFailed": outcome.day_failed,
            "accrued": outcome.accrued,
            **automaton.summary(now),
        }


free_target_service = FreeTargetService()
