# livecall/models/host.py
"""
Database model for host profiles.
A host profile is separate from its owning user account: calls reference
the host profile, earnings and rating live here.
"""
import uuid
from tortoise import fields, models

HOST_STATUSES = ("pending", "approved", "rejected", "suspended")


class Host(models.Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.OneToOneField("models.User", related_name="host_profile", on_delete=fields.CASCADE)
    status = fields.CharField(max_length=16, default="pending")  # One of HOST_STATUSES
    is_online = fields.BooleanField(default=False)  # Gate for call eligibility
    rate_per_minute = fields.IntField(default=50)  # Static rate, used when no charm level exists
    total_earnings = fields.BigIntField(default=0)  # Call settlements + free target bonuses
    total_calls = fields.IntField(default=0)
    rating = fields.FloatField(default=0.0)  # Running average, one decimal
    total_ratings = fields.IntField(default=0)
    last_seen = fields.DatetimeField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "hosts"
