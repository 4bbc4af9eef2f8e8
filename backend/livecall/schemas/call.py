# livecall/schemas/call.py
"""
Pydantic schemas for call endpoints.
Request bodies use camelCase field names, matching the client.
"""
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class InitiateCallIn(BaseModel):
    """Request body for placing a call to a host."""
    hostId: UUID  # Host profile id (not the host's user id)


class CallRefIn(BaseModel):
    """Request body for accept and heartbeat."""
    callId: UUID


class EndCallIn(BaseModel):
    """
    Request body for ending a call.
    `wasDisconnected` marks a dropped connection; it feeds the host's free
    target disconnect rule.
    """
    callId: UUID
    wasDisconnected: bool = False


class RateCallIn(BaseModel):
    """Request body for rating a completed call (once)."""
    callId: UUID
    rating: int = Field(ge=1, le=5)  # Stars, 1..5
    feedback: Optional[str] = Field(default=None, max_length=500)


class HostStatusIn(BaseModel):
    isOnline: bool
