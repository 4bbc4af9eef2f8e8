# livecall/models/free_target.py
"""
Database model for the Free Target bonus program.
One document per host. The week structure is stored as JSON and
manipulated through livecall.services.free_target.
"""
import uuid
from tortoise import fields, models


class FreeTarget(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    host = fields.OneToOneField("models.Host", related_name="free_target", on_delete=fields.CASCADE)
    is_enabled = fields.BooleanField(default=False)  # Admin toggle
    target_duration_per_day = fields.IntField(default=28800)  # seconds (8h)
    max_disconnects_allowed = fields.IntField(default=3)
    disconnect_time_window = fields.IntField(default=600)  # seconds

    current_week = fields.JSONField(null=True)  # Week dict with 7 day entries
    week_history = fields.JSONField(default=list)  # Archived week dicts, oldest first
    total_weeks_completed = fields.IntField(default=0)
    total_weeks_failed = fields.IntField(default=0)
    last_disconnects = fields.JSONField(default=list)  # [{"timestamp": iso, "callId": str}]
    stats = fields.JSONField(default=dict)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "free_targets"
