"""
Signaling Router

Relays WebRTC negotiation events between two connected users. The server
never inspects media; it validates the envelope, looks the recipient up in
the presence registry, and forwards a rewritten event stamped with the
sender's id.

Inbound frames are JSON {"event": ..., "data": {...}}. The literal text
"ping" is answered with "pong".
"""
import datetime as dt
import json
import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from livecall.core.presence import PresenceRegistry
from livecall.core.security import TokenIdentity
from livecall.models.host import Host

logger = logging.getLogger(__name__)


# ==============================================================================
# Payloads
# ==============================================================================
class SessionDescription(BaseModel):
    type: Literal["offer", "answer"]
    sdp: str = Field(min_length=1)


class OfferEvent(BaseModel):
    to: str = Field(min_length=1)
    offer: SessionDescription
    callId: Optional[str] = None
    caller: Optional[dict] = None


class AnswerEvent(BaseModel):
    to: str = Field(min_length=1)
    answer: SessionDescription


class IceCandidateEvent(BaseModel):
    to: str = Field(min_length=1)
    candidate: dict


class RejectEvent(BaseModel):
    to: str = Field(min_length=1)
    callId: Optional[str] = None
    reason: Optional[str] = None


class EndEvent(BaseModel):
    to: str = Field(min_length=1)
    callId: Optional[str] = None


# ==============================================================================
# Router
# ==============================================================================
class SignalingRouter:
    """
    Stateless relay over an injected PresenceRegistry.

    Malformed or unknown events are answered with `call:error` on the
    sender's own connection; nothing here closes a socket.
    """

    def __init__(self, registry: PresenceRegistry):
        self.registry = registry
        self._handlers = {
            "call:offer": self._offer,
            "call:answer": self._answer,
            "call:ice-candidate": self._ice_candidate,
            "call:reject": self._reject,
            "call:end": self._end,
        }

    # -------- connection lifecycle --------
    async def connected(self, identity: TokenIdentity, conn):
        """Register the connection and announce the user. Returns a replaced connection, if any."""
        replaced = await self.registry.register(identity.user_id, conn)
        await self.registry.broadcast("user:online", {"userId": identity.user_id}, exclude=identity.user_id)
        logger.info("[signaling] %s connected (%s online)", identity.user_id, len(self.registry))
        return replaced

    async def disconnected(self, identity: TokenIdentity, conn) -> None:
        went_offline = await self.registry.unregister(identity.user_id, conn)
        if not went_offline:
            # A newer connection for this user is live
            return
        await self.registry.broadcast("user:offline", {"userId": identity.user_id})
        if identity.role == "host":
            await self._mark_host_offline(identity.user_id)
        logger.info("[signaling] %s disconnected", identity.user_id)

    async def _mark_host_offline(self, user_id: str) -> None:
        host = await Host.get_or_none(user_id=user_id)
        if host is None:
            return
        await Host.filter(id=host.id).update(is_online=False, last_seen=dt.datetime.now(dt.timezone.utc))
        await self.registry.broadcast("host:offline", {"hostId": str(host.id), "userId": user_id})
        logger.info("[signaling] host %s marked offline on disconnect", host.id)

    # -------- inbound --------
    async def handle_text(self, identity: TokenIdentity, conn, raw: str) -> None:
        if raw == "ping":
            await conn.send_text("pong")
            if identity.role == "host":
                await Host.filter(user_id=identity.user_id).update(last_seen=dt.datetime.now(dt.timezone.utc))
            return
        try:
            msg = json.loads(raw)
        except ValueError:
            await self._error(conn, "VALIDATION_ERROR", "Frame is not valid JSON")
            return
        if not isinstance(msg, dict):
            await self._error(conn, "VALIDATION_ERROR", "Frame must be a JSON object")
            return
        await self.dispatch(identity, conn, msg.get("event"), msg.get("data") or {})

    async def dispatch(self, identity: TokenIdentity, conn, event, data) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            await self._error(conn, "UNKNOWN_EVENT", f"Unknown event: {event}")
            return
        if not isinstance(data, dict):
            await self._error(conn, "VALIDATION_ERROR", "Event data must be an object")
            return
        await handler(identity, conn, data)

    # -------- handlers --------
    async def _offer(self, identity: TokenIdentity, conn, data: dict) -> None:
        try:
            ev = OfferEvent.model_validate(data)
        except PydanticValidationError:
            await self._error(conn, "VALIDATION_ERROR", "Invalid offer SDP", data.get("callId"))
            return
        delivered = await self.registry.send_to(ev.to, "call:offer", {
            "from": identity.user_id,
            "offer": ev.offer.model_dump(),
            "callId": ev.callId,
            "caller": ev.caller,
        })
        if not delivered:
            await self._error(conn, "RECIPIENT_OFFLINE", "Recipient is not connected", ev.callId)
            return
        logger.info("[signaling] offer %s -> %s (call=%s)", identity.user_id, ev.to, ev.callId)

    async def _answer(self, identity: TokenIdentity, conn, data: dict) -> None:
        try:
            ev = AnswerEvent.model_validate(data)
        except PydanticValidationError:
            await self._error(conn, "VALIDATION_ERROR", "Invalid answer SDP")
            return
        await self.registry.send_to(ev.to, "call:answer", {"from": identity.user_id, "answer": ev.answer.model_dump()})

    async def _ice_candidate(self, identity: TokenIdentity, conn, data: dict) -> None:
        try:
            ev = IceCandidateEvent.model_validate(data)
        except PydanticValidationError:
            return
        await self.registry.send_to(ev.to, "call:ice-candidate", {"from": identity.user_id, "candidate": ev.candidate})

    async def _reject(self, identity: TokenIdentity, conn, data: dict) -> None:
        try:
            ev = RejectEvent.model_validate(data)
        except PydanticValidationError:
            await self._error(conn, "VALIDATION_ERROR", "Reject needs a recipient")
            return
        await self.registry.send_to(ev.to, "call:rejected", {
            "from": identity.user_id, "callId": ev.callId, "reason": ev.reason,
        })

    async def _end(self, identity: TokenIdentity, conn, data: dict) -> None:
        try:
            ev = EndEvent.model_validate(data)
        except PydanticValidationError:
            await self._error(conn, "VALIDATION_ERROR", "End needs a recipient")
            return
        await self.registry.send_to(ev.to, "call:ended", {"from": identity.user_id, "callId": ev.callId})

    @staticmethod
    async def _error(conn, code: str, message: str, call_id: Optional[str] = None) -> None:
        payload = {"code": code, "message": message}
        if call_id is not None:
            payload["callId"] = call_id
        await conn.send_text(json.dumps({"event": "call:error", "data": payload}))
