# livecall/schemas/free_target.py
"""
Pydantic schemas for free target endpoints.
"""
import datetime as dt
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RecordCallIn(BaseModel):
    """
    Request body for reporting a finished call against today's target.
    Calls already counted for today are ignored.
    """
    callId: UUID
    duration: int = Field(ge=0)  # Seconds
    wasDisconnected: bool = False


class ToggleIn(BaseModel):
    isEnabled: bool


class OverrideDayIn(BaseModel):
    """Admin request to force one day's status (current or archived week)."""
    date: dt.date  # YYYY-MM-DD, UTC
    status: Literal["completed", "failed", "admin_override"]
    note: Optional[str] = Field(default=None, max_length=500)
