# livecall/models/user.py
"""
Database model for user accounts.
A user is a caller, the owner of a host profile, or an administrator.
"""
import uuid
from tortoise import fields, models

class User(models.Model):
    """
    User database model.

    Relationships:
    - Has at most one Host profile (via related_name="host_profile")
    - Has many Calls as caller (via related_name="calls_made")
    - Has many Transactions (via related_name="transactions")

    `coin_balance` is only changed by the settlement path (conditional
    UPDATE with an F expression), never by read-modify-save.
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    username = fields.CharField(max_length=256, unique=True, index=True)
    email = fields.CharField(max_length=256, null=True)
    password_hash = fields.CharField(max_length=255)
    role = fields.CharField(max_length=16, default="user")  # "user", "host" or "admin"
    coin_balance = fields.BigIntField(default=0)  # Spendable coins, never negative
    is_active = fields.BooleanField(default=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "users"
