# livecall/core/locks.py
"""
Per-key asyncio locks.

Gives a single-writer guarantee per call id / host id inside one process.
Cross-process safety comes from the conditional UPDATEs and row locks in
the services; this layer keeps same-process coroutines from interleaving
their read-modify-write sequences.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLock:
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key) -> AsyncIterator[None]:
        key = str(key)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                # Last user of this key: drop it so the map doesn't grow forever
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
