# livecall/models/call.py
"""
Database model for calls.
One row per attempted or completed video session between a caller and a host.
"""
import uuid
from tortoise import fields, models

INITIATED = "initiated"
ONGOING = "ongoing"
COMPLETED = "completed"
CANCELLED = "cancelled"
FAILED = "failed"

CALL_STATUSES = (INITIATED, ONGOING, COMPLETED, CANCELLED, FAILED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED, FAILED)


class Call(models.Model):
    """
    Call database model.

    State only moves forward: initiated -> ongoing -> completed, with exits
    initiated -> cancelled and initiated/ongoing -> failed. `coins_spent` is
    written once, when the call settles.

    Relationships:
    - Belongs to a caller User (many-to-one)
    - Belongs to a Host profile (many-to-one)
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    caller = fields.ForeignKeyField("models.User", related_name="calls_made", on_delete=fields.CASCADE)
    host = fields.ForeignKeyField("models.Host", related_name="calls", on_delete=fields.CASCADE)
    status = fields.CharField(max_length=16, default=INITIATED, index=True)
    start_time = fields.DatetimeField()  # Ring time, then reset to the acceptance instant
    end_time = fields.DatetimeField(null=True)
    duration = fields.IntField(default=0)  # Whole seconds
    coins_spent = fields.BigIntField(default=0)
    rate_used = fields.IntField(null=True)
    host_earnings = fields.BigIntField(default=0)
    rating = fields.IntField(null=True)  # 1..5, settable once
    feedback = fields.CharField(max_length=500, null=True)
    ended_by = fields.CharField(max_length=16, null=True)  # "user", "host", "admin" or "system"
    was_disconnected = fields.BooleanField(default=False)
    last_heartbeat_at = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "calls"
