"""
Background sweep for calls and hosts that stopped reporting.

Every CALL_SWEEP_INTERVAL_SECONDS:
- ongoing calls whose last heartbeat is older than CALL_IDLE_TIMEOUT_SECONDS
  are ended as `system` with wasDisconnected=True, billed to that heartbeat;
  calls that never sent one are left alone
- initiated calls ringing longer than CALL_RING_TIMEOUT_SECONDS are cancelled
- online hosts unseen for HOST_STALE_AFTER_SECONDS and without a live
  signaling connection are marked offline

Off by default (CALL_SWEEPER_ENABLED).
"""
import asyncio
import datetime as dt
import logging
from typing import Optional

from tortoise.expressions import Q

from livecall.config import settings
from livecall.core.presence import PresenceRegistry, presence
from livecall.models.host import Host
from livecall.services.calls import CallLedger, call_ledger

logger = logging.getLogger(__name__)


class CallSweeper:
    def __init__(
        self,
        ledger: Optional[CallLedger] = None,
        interval: Optional[float] = None,
        idle_timeout: Optional[int] = None,
        ring_timeout: Optional[int] = None,
        host_stale_after: Optional[int] = None,
        registry: Optional[PresenceRegistry] = None,
    ):
        self.ledger = ledger or call_ledger
        self.interval = interval if interval is not None else settings.call_sweep_interval_seconds
        self.idle_timeout = idle_timeout if idle_timeout is not None else settings.call_idle_timeout_seconds
        self.ring_timeout = ring_timeout if ring_timeout is not None else settings.call_ring_timeout_seconds
        self.host_stale_after = host_stale_after if host_stale_after is not None else settings.host_stale_after_seconds
        self.registry = registry if registry is not None else presence
        self._task: Optional[asyncio.Task] = None

    async def sweep_once(self) -> dict:
        """Run one pass. Returns how many rows each rule touched."""
        expired = await self.ledger.expire_idle_calls(self.idle_timeout)
        cancelled = await self.ledger.cancel_unanswered(self.ring_timeout)
        stale_hosts = await self.mark_stale_hosts()
        return {"expired": expired, "cancelled": cancelled, "staleHosts": stale_hosts}

    async def mark_stale_hosts(self) -> int:
        cutoff = self.ledger.clock() - dt.timedelta(seconds=self.host_stale_after)
        candidates = await Host.filter(
            Q(last_seen__lt=cutoff) | Q(last_seen__isnull=True), is_online=True
        ).values_list("id", "user_id")
        # An open signaling socket counts as presence even without pings
        stale_ids = [host_id for host_id, user_id in candidates if not self.registry.is_online(str(user_id))]
        if not stale_ids:
            return 0
        count = await Host.filter(id__in=stale_ids, is_online=True).update(is_online=False)
        if count:
            logger.warning("[sweeper] marked %s stale host(s) offline", count)
        return count

    async def _run(self) -> None:
        logger.info("[sweeper] started (every %ss)", self.interval)
        while True:
            try:
                await self.sweep_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[sweeper] sweep failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[sweeper] stopped")


sweeper = CallSweeper()
