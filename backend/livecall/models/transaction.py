# livecall/models/transaction.py
import uuid
from tortoise import fields, models

TRANSACTION_TYPES = (
    "purchase",
    "call_debit",
    "call_credit",
    "withdrawal",
    "refund",
    "gift_debit",
    "gift_credit",
)
TRANSACTION_STATUSES = ("pending", "completed", "failed", "refunded")


class Transaction(models.Model):
    """
    Settlement ledger entry.
    - Append-only: rows are never edited except pending -> completed/failed
    - amount: coins moved (positive); direction is given by `type`
    - call: the call that caused the entry, for call_debit / call_credit
    """
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    user = fields.ForeignKeyField("models.User", related_name="transactions", on_delete=fields.CASCADE)
    type = fields.CharField(max_length=16, index=True)
    amount = fields.BigIntField()
    status = fields.CharField(max_length=16, default="pending")
    call = fields.ForeignKeyField("models.Call", related_name="transactions", null=True, on_delete=fields.SET_NULL)
    description = fields.CharField(max_length=255, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "transactions"
        ordering = ["-created_at"]
