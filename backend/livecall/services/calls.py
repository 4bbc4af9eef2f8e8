"""
Call Ledger

Owns the call state machine and its settlement:
    initiated -> ongoing -> completed
    initiated -> cancelled
    initiated/ongoing -> failed

Settlement (End on an ongoing call) runs in one DB transaction under a
per-call lock. The caller debit is a conditional UPDATE on the balance and
the call row flips ongoing -> completed with a compare-and-swap as the last
write, so a call is charged at most once.
"""
import datetime as dt
import logging
import math
from typing import Callable, Optional

from tortoise.expressions import F, Q
from tortoise.transactions import in_transaction

from livecall.config import settings
from livecall.core.errors import Forbidden, InsufficientBalance, InvalidState, NotFound, Unavailable, ValidationError
from livecall.core.locks import KeyedLock
from livecall.models.call import (
    CANCELLED,
    COMPLETED,
    FAILED,
    INITIATED,
    ONGOING,
    TERMINAL_STATUSES,
    Call,
)
from livecall.models.host import Host
from livecall.models.level import Level
from livecall.models.user import User
from livecall.services import leaderboard
from livecall.services.free_target import FreeTargetService, free_target_service
from livecall.services.rates import resolve_rate_source
from livecall.services.settlement import SettlementLedger, settlement_ledger

logger = logging.getLogger(__name__)


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """Treat naive datetimes coming back from the DB as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def billable(duration_seconds: int, rate_per_minute: int) -> tuple[int, int]:
    """(minutes, coins): any started minute is billed in full."""
    minutes = math.ceil(duration_seconds / 60)
    return minutes, minutes * rate_per_minute


def host_share_of(coins: int, share: float) -> int:
    """Host cut of `coins`, floored. The share is applied in basis points to keep float error out."""
    return coins * round(share * 10_000) // 10_000


def call_to_dict(call: Call) -> dict:
    def _ts(value):
        value = as_utc(value)
        return value.isoformat() if value else None

    return {
        "id": str(call.id),
        "callerId": str(call.caller_id),
        "hostId": str(call.host_id),
        "status": call.status,
        "startTime": _ts(call.start_time),
        "endTime": _ts(call.end_time),
        "duration": call.duration,
        "coinsSpent": call.coins_spent,
        "rateUsed": call.rate_used,
        "hostEarnings": call.host_earnings,
        "rating": call.rating,
        "feedback": call.feedback,
        "endedBy": call.ended_by,
        "wasDisconnected": call.was_disconnected,
        "lastHeartbeatAt": _ts(call.last_heartbeat_at),
        "createdAt": _ts(call.created_at),
    }


class CallLedger:
    def __init__(
        self,
        clock: Callable[[], dt.datetime] = utc_now,
        ledger: Optional[SettlementLedger] = None,
        free_target: Optional[FreeTargetService] = None,
        host_share: Optional[float] = None,
    ):
        self.clock = clock
        self.ledger = ledger or settlement_ledger
        self.free_target = free_target or free_target_service
        self.host_share = settings.host_revenue_share if host_share is None else host_share
        self._call_locks = KeyedLock()
        self._host_locks = KeyedLock()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _load(self, call_id) -> Call:
        call = await Call.filter(id=call_id).select_related("host").first()
        if call is None:
            raise NotFound("Call not found", code="CALL_NOT_FOUND")
        return call

    @staticmethod
    def _party_role(call: Call, requester: User) -> Optional[str]:
        """'user' for the caller, 'host' for the host owner, 'admin' for admins, else None."""
        if call.caller_id == requester.id:
            return "user"
        if call.host.user_id == requester.id:
            return "host"
        if requester.role == "admin":
            return "admin"
        return None

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------
    async def initiate(self, caller: User, host_id) -> Call:
        host = await Host.get_or_none(id=host_id)
        if host is None:
            raise NotFound("Host not found", code="HOST_NOT_FOUND")
        if host.user_id == caller.id:
            raise ValidationError("Cannot call your own host profile")
        if host.status != "approved" or not host.is_online:
            raise Unavailable("Host is not available")

        caller = await User.get(id=caller.id)
        if caller.coin_balance < host.rate_per_minute:
            logger.warning("[calls] caller %s cannot afford one minute (%s < %s)",
                           caller.id, caller.coin_balance, host.rate_per_minute)
            raise InsufficientBalance("Insufficient coins for at least one minute")

        call = await Call.create(caller_id=caller.id, host_id=host.id, status=INITIATED, start_time=self.clock())
        logger.info("[calls] initiated %s caller=%s host=%s", call.id, caller.id, host.id)
        return call

    async def accept(self, call_id, requester: User) -> Call:
        async with self._call_locks.hold(call_id):
            call = await self._load(call_id)
            if call.host.user_id != requester.id:
                raise Forbidden("Only the called host can accept this call")
            now = self.clock()
            # Billing clock starts at acceptance
            updated = await Call.filter(id=call.id, status=INITIATED).update(status=ONGOING, start_time=now)
            if not updated:
                raise InvalidState(f"Call cannot be accepted from status {call.status}")
        logger.info("[calls] accepted %s", call.id)
        return await self._load(call.id)

    async def end(
        self,
        call_id,
        requester: Optional[User],
        was_disconnected: bool = False,
        ended_at: Optional[dt.datetime] = None,
    ) -> dict:
        """
        End a call and settle it.

        `requester=None` means the system (sweeper). `ended_at` overrides the
        end instant; otherwise the clock is read once here and that single
        value drives duration, cost and the stored end time.

        Returns a summary dict; raises InsufficientBalance after the call has
        been committed as failed when the caller can't cover the cost.
        """
        async with self._call_locks.hold(call_id):
            call = await self._load(call_id)
            if requester is None:
                ended_by = "system"
            else:
                ended_by = self._party_role(call, requester)
                if ended_by is None:
                    raise Forbidden("Not a party to this call")
            if call.status in TERMINAL_STATUSES:
                raise InvalidState(f"Call already {call.status}")

            end_time = ended_at or self.clock()

            if call.status == INITIATED:
                summary = await self._cancel(call, end_time, ended_by, was_disconnected)
            else:
                summary = await self._settle(call, end_time, ended_by, was_disconnected)

        try:
            summary["freeTarget"] = await self.free_target.record_call(
                call.host_id, call.id, summary["duration"], was_disconnected
            )
        except Exception:
            logger.exception("[calls] free target update failed for call %s", call.id)
            summary["freeTarget"] = None

        if summary.pop("insufficient", False):
            raise InsufficientBalance("Insufficient balance to pay for this call", code="INSUFFICIENT_BALANCE")
        return summary

    async def _cancel(self, call: Call, end_time: dt.datetime, ended_by: str, was_disconnected: bool) -> dict:
        updated = await Call.filter(id=call.id, status=INITIATED).update(
            status=CANCELLED, end_time=end_time, ended_by=ended_by, was_disconnected=was_disconnected
        )
        if not updated:
            raise InvalidState("Call state changed concurrently")
        logger.info("[calls] cancelled %s before acceptance (by %s)", call.id, ended_by)
        caller = await User.get(id=call.caller_id)
        return self._summary(await self._load(call.id), 0, 0, caller.coin_balance, None)

    async def _settle(self, call: Call, end_time: dt.datetime, ended_by: str, was_disconnected: bool) -> dict:
        start = as_utc(call.start_time)
        duration = max(0, math.floor((end_time - start).total_seconds()))
        insufficient = False

        async with in_transaction() as conn:
            host = await Host.filter(id=call.host_id).select_for_update().using_db(conn).get()
            rate = (await resolve_rate_source(host, using_db=conn)).rate_per_minute()
            minutes, cost = billable(duration, rate)

            debited = await User.filter(id=call.caller_id, coin_balance__gte=cost).using_db(conn).update(
                coin_balance=F("coin_balance") - cost
            )
            if not debited:
                insufficient = True
                updated = await Call.filter(id=call.id, status=ONGOING).using_db(conn).update(
                    status=FAILED, end_time=end_time, duration=duration, rate_used=rate,
                    ended_by=ended_by, was_disconnected=was_disconnected,
                )
                if not updated:
                    raise InvalidState("Call state changed concurrently")
                earnings = 0
            else:
                earnings = host_share_of(cost, self.host_share)
                await self.ledger.append(
                    user_id=call.caller_id, type="call_debit", amount=cost, call_id=call.id,
                    description=f"Call charge for {minutes} minute(s)", using_db=conn,
                )
                await Host.filter(id=host.id).using_db(conn).update(
                    total_earnings=F("total_earnings") + earnings,
                    total_calls=F("total_calls") + 1,
                )
                await self.ledger.append(
                    user_id=host.user_id, type="call_credit", amount=earnings, call_id=call.id,
                    description=f"Earnings from {minutes} minute call", using_db=conn,
                )

                level, _ = await Level.get_or_create(user_id=host.user_id, using_db=conn)
                level.add_beans(earnings)
                await level.save(using_db=conn)

                await leaderboard.record_call(call.caller_id, "user", duration, end_time, using_db=conn)
                await leaderboard.record_call(host.user_id, "host", duration, end_time, using_db=conn)

                updated = await Call.filter(id=call.id, status=ONGOING).using_db(conn).update(
                    status=COMPLETED, end_time=end_time, duration=duration, coins_spent=cost,
                    rate_used=rate, host_earnings=earnings, ended_by=ended_by,
                    was_disconnected=was_disconnected,
                )
                if not updated:
                    # Rolls back the debit and credits above
                    raise InvalidState("Call state changed concurrently")

        caller = await User.get(id=call.caller_id)
        if insufficient:
            logger.warning("[calls] %s failed: caller %s cannot pay %s coins (%ss at %s/min)",
                           call.id, call.caller_id, cost, duration, rate)
        else:
            logger.info("[calls] completed %s: %ss, %s coins, host earned %s", call.id, duration, cost, earnings)

        summary = self._summary(
            await self._load(call.id), 0 if insufficient else cost, earnings, caller.coin_balance, rate
        )
        summary["insufficient"] = insufficient
        return summary

    @staticmethod
    def _summary(call: Call, coins_spent: int, host_earnings: int, new_balance: int, rate) -> dict:
        return {
            "call": call_to_dict(call),
            "coinsSpent": coins_spent,
            "duration": call.duration,
            "durationMinutes": math.ceil(call.duration / 60),
            "newBalance": new_balance,
            "hostEarnings": host_earnings,
            "rateUsed": rate,
        }

    async def rate(self, call_id, rater: User, rating: int, feedback: Optional[str] = None) -> Call:
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")
        if feedback is not None and len(feedback) > 500:
            raise ValidationError("Feedback must be at most 500 characters")

        call = await self._load(call_id)
        if call.caller_id != rater.id:
            raise Forbidden("Only the caller can rate this call")
        if call.status != COMPLETED:
            raise InvalidState("Can only rate completed calls")

        async with self._host_locks.hold(call.host_id):
            async with in_transaction() as conn:
                updated = await Call.filter(id=call.id, status=COMPLETED, rating__isnull=True).using_db(conn).update(
                    rating=rating, feedback=feedback
                )
                if not updated:
                    raise InvalidState("Call already rated")
                host = await Host.filter(id=call.host_id).select_for_update().using_db(conn).get()
                count = host.total_ratings + 1
                host.rating = round((host.rating * host.total_ratings + rating) / count, 1)
                host.total_ratings = count
                await host.save(using_db=conn)

        logger.info("[calls] %s rated %s", call.id, rating)
        return await self._load(call.id)

    async def heartbeat(self, call_id, requester: User) -> Call:
        """Stamp liveness on an ongoing call. Either party may send it."""
        call = await self._load(call_id)
        role = self._party_role(call, requester)
        if role not in ("user", "host"):
            raise Forbidden("Not a party to this call")
        now = self.clock()
        updated = await Call.filter(id=call.id, status=ONGOING).update(last_heartbeat_at=now)
        if not updated:
            raise InvalidState(f"Call is {call.status}, not ongoing")
        if role == "host":
            await Host.filter(id=call.host_id).update(last_seen=now)
        return await self._load(call.id)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    async def history(self, user: User, page: int = 1, limit: int = 20, status: Optional[str] = None):
        """Calls the user placed or, for host owners, received. Newest first."""
        host = await Host.get_or_none(user_id=user.id)
        if host is not None:
            qs = Call.filter(Q(caller_id=user.id) | Q(host_id=host.id))
        else:
            qs = Call.filter(caller_id=user.id)
        if status:
            qs = qs.filter(status=status)
        total = await qs.count()
        rows = await qs.order_by("-created_at").offset((page - 1) * limit).limit(limit)
        return rows, {"total": total, "page": page, "pages": math.ceil(total / limit) if limit else 0}

    async def detail(self, call_id, requester: User) -> Call:
        call = await self._load(call_id)
        if self._party_role(call, requester) is None:
            raise Forbidden("Not authorized to view this call")
        return call

    # ------------------------------------------------------------------
    # sweeps
    # ------------------------------------------------------------------
    async def expire_idle_calls(self, idle_after: int) -> int:
        """
        End ongoing calls whose last heartbeat is older than `idle_after` seconds,
        billed up to that heartbeat.

        Calls that never sent a heartbeat are left to the parties to end.
        """
        cutoff = self.clock() - dt.timedelta(seconds=idle_after)
        stale = await Call.filter(status=ONGOING, last_heartbeat_at__isnull=False, last_heartbeat_at__lt=cutoff)
        ended = 0
        for call in stale:
            try:
                await self.end(call.id, None, was_disconnected=True, ended_at=as_utc(call.last_heartbeat_at))
                ended += 1
            except InvalidState:
                # Ended by a party between the query and the lock
                continue
            except InsufficientBalance:
                ended += 1
        if ended:
            logger.info("[calls] expired %s idle call(s)", ended)
        return ended

    async def cancel_unanswered(self, ring_timeout: int) -> int:
        """Cancel calls left ringing for longer than `ring_timeout` seconds."""
        cutoff = self.clock() - dt.timedelta(seconds=ring_timeout)
        pending = await Call.filter(status=INITIATED, start_time__lt=cutoff)
        cancelled = 0
        for call in pending:
            try:
                await self.end(call.id, None)
                cancelled += 1
            except InvalidState:
                continue
        if cancelled:
            logger.info("[calls] cancelled %s unanswered call(s)", cancelled)
        return cancelled


call_ledger = CallLedger()
