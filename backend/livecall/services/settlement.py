"""
Settlement Ledger

Append-only log of every balance mutation caused by the call core. Entries
are written inside the caller's DB transaction; the only permitted change
afterwards is pending -> completed/failed.
"""
import logging
from typing import Optional

from livecall.core.errors import InvalidState, NotFound, ValidationError
from livecall.models.transaction import Transaction, TRANSACTION_TYPES

logger = logging.getLogger(__name__)

FINAL_FROM_PENDING = ("completed", "failed")


class SettlementLedger:

    async def append(
        self,
        *,
        user_id,
        type: str,
        amount: int,
        status: str = "completed",
        call_id=None,
        description: Optional[str] = None,
        using_db=None,
    ) -> Transaction:
        """Write one ledger entry."""
        if type not in TRANSACTION_TYPES:
            raise ValidationError(f"Unknown transaction type: {type}")
        if amount < 0:
            raise ValidationError("Transaction amount must be non-negative")
        tx = await Transaction.create(
            user_id=user_id,
            type=type,
            amount=amount,
            status=status,
            call_id=call_id,
            description=description,
            using_db=using_db,
        )
        logger.info("[ledger] %s %s coins for user %s (call=%s)", type, amount, user_id, call_id)
        return tx

    async def finalize(self, tx_id, status: str) -> Transaction:
        """Move a pending entry to completed or failed. Anything else is rejected."""
        if status not in FINAL_FROM_PENDING:
            raise ValidationError("Status must be completed or failed")
        updated = await Transaction.filter(id=tx_id, status="pending").update(status=status)
        if not updated:
            tx = await Transaction.get_or_none(id=tx_id)
            if tx is None:
                raise NotFound("Transaction not found", code="TRANSACTION_NOT_FOUND")
            raise InvalidState(f"Transaction is already {tx.status}")
        return await Transaction.get(id=tx_id)

    async def for_call(self, call_id) -> list[Transaction]:
        return await Transaction.filter(call_id=call_id).order_by("created_at")

    async def for_user(self, user_id, offset: int = 0, limit: int = 50, type: Optional[str] = None):
        qs = Transaction.filter(user_id=user_id)
        if type:
            qs = qs.filter(type=type)
        total = await qs.count()
        rows = await qs.order_by("-created_at").offset(offset).limit(limit)
        return rows, total


settlement_ledger = SettlementLedger()
