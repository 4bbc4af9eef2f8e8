# livecall/models/leaderboard.py
import uuid
from tortoise import fields, models


class WeeklyLeaderboard(models.Model):
    """Per-user call totals for one ISO week (Monday start), split by caller/host role."""
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.ForeignKeyField("models.User", related_name="leaderboard_entries", on_delete=fields.CASCADE)
    user_type = fields.CharField(max_length=8)  # "user" or "host"
    week_start_date = fields.DateField()
    week_end_date = fields.DateField()
    total_call_duration = fields.BigIntField(default=0)  # seconds
    total_calls = fields.IntField(default=0)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "weekly_leaderboard"
        unique_together = (("user", "user_type", "week_start_date"),)
