# livecall/core/presence.py
"""
Presence registry for signaling connections.
Maps an authenticated user id to at most one live WebSocket and delivers
JSON events to one user or broadcasts them to everyone connected.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """
    In-memory, lock-protected user <-> connection map.

    Architecture:
    - The router owns ws.accept()/close(); this class only tracks handles
    - One connection per user: a reconnect overwrites the previous handle
    - Sending never raises; a dead handle just reports False

    Data structure:
    - _by_user: Dict[user_id, connection]
    - _by_conn: Dict[id(connection), user_id]
    """
    def __init__(self):
        self._by_user: Dict[str, Any] = {}
        self._by_conn: Dict[int, str] = {}
        self._lock = asyncio.Lock()

    # -------- lifecycle --------
    async def register(self, user_id: str, conn) -> Optional[Any]:
        """
        Register `conn` as the live connection for `user_id`.

        Returns the connection it replaced, if any, so the caller can close it.
        """
        async with self._lock:
            previous = self._by_user.get(user_id)
            if previous is not None:
                self._by_conn.pop(id(previous), None)
            self._by_user[user_id] = conn
            self._by_conn[id(conn)] = user_id
        if previous is not None and previous is not conn:
            logger.info("[presence] %s reconnected, replacing previous connection", user_id)
            return previous
        return None

    async def unregister(self, user_id: str, conn) -> bool:
        """
        Remove the mapping only if `conn` is still the registered handle.

        A replaced connection tearing down late must not evict its successor.
        Returns True if the user went offline as a result.
        """
        async with self._lock:
            self._by_conn.pop(id(conn), None)
            if self._by_user.get(user_id) is conn:
                del self._by_user[user_id]
                return True
            return False

    # -------- lookup --------
    def get(self, user_id: str):
        return self._by_user.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._by_user

    def user_for(self, conn) -> Optional[str]:
        return self._by_conn.get(id(conn))

    def online_users(self) -> list[str]:
        return list(self._by_user.keys())

    def __len__(self) -> int:
        return len(self._by_user)

    # -------- delivery --------
    async def send_to(self, user_id: str, event: str, data: dict) -> bool:
        """
        Deliver one event to a user's live connection.

        Returns False if the user has no connection or the send failed.
        """
        conn = self._by_user.get(user_id)
        if conn is None:
            return False
        return await self._send(conn, event, data)

    async def broadcast(self, event: str, data: dict, exclude: Optional[str] = None) -> int:
        """Send an event to every connected user except `exclude`. Returns the delivery count."""
        targets = [(uid, c) for uid, c in list(self._by_user.items()) if uid != exclude]
        delivered = 0
        for _, conn in targets:
            if await self._send(conn, event, data):
                delivered += 1
        return delivered

    @staticmethod
    async def _send(conn, event: str, data: dict) -> bool:
        msg = json.dumps({"event": event, "data": data}, default=str)
        try:
            await conn.send_text(msg)
            return True
        except Exception as e:
            # Connection may already be closed; its own handler will unregister it
            logger.debug("[presence] send of %s failed: %r", event, e)
            return False


# Global registry instance shared by the signaling endpoint
presence = PresenceRegistry()
