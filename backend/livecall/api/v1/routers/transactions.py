# livecall/api/v1/routers/transactions.py
from fastapi import APIRouter, Depends, Query

from livecall.api.v1.deps import get_current_user
from livecall.models.transaction import Transaction
from livecall.models.user import User
from livecall.services.settlement import settlement_ledger

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _tx_to_dict(tx: Transaction) -> dict:
    return {
        "id": str(tx.id),
        "type": tx.type,
        "amount": tx.amount,
        "status": tx.status,
        "callId": str(tx.call_id) if tx.call_id else None,
        "description": tx.description,
        "createdAt": tx.created_at.isoformat() if tx.created_at else None,
    }


@router.get("", response_model=dict)
async def list_transactions(
    user: User = Depends(get_current_user),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    type: str | None = Query(default=None),
):
    """
    The authenticated user's ledger entries, newest first.

    Returns:
        dict: data with items, offset, limit, total
    """
    rows, total = await settlement_ledger.for_user(user.id, offset=offset, limit=limit, type=type)
    return {"success": True, "data": {"items": [_tx_to_dict(t) for t in rows],
                                      "offset": offset, "limit": limit, "total": total}}
