# livecall/api/v1/routers/calls.py
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from livecall.api.v1.deps import get_current_user
from livecall.models.call import CALL_STATUSES
from livecall.models.user import User
from livecall.schemas.call import CallRefIn, EndCallIn, InitiateCallIn, RateCallIn
from livecall.services.calls import call_ledger, call_to_dict

router = APIRouter(prefix="/calls", tags=["calls"])


@router.post("/initiate", response_model=dict)
async def initiate_call(body: InitiateCallIn, user: User = Depends(get_current_user)):
    """
    Place a call to a host.

    The host must be approved and online, and the caller must hold at least
    one minute's worth of coins at the host's rate.

    Errors:
        404 HOST_NOT_FOUND, 400 HOST_UNAVAILABLE, 400 INSUFFICIENT_BALANCE
    """
    call = await call_ledger.initiate(user, body.hostId)
    return {"success": True, "data": {"call": call_to_dict(call)}}


@router.post("/accept", response_model=dict)
async def accept_call(body: CallRefIn, user: User = Depends(get_current_user)):
    """
    Accept a ringing call (host owner only). Billing starts now.

    Errors:
        404 CALL_NOT_FOUND, 403 FORBIDDEN, 400 INVALID_STATE
    """
    call = await call_ledger.accept(body.callId, user)
    return {"success": True, "data": {"call": call_to_dict(call)}}


@router.post("/end", response_model=dict)
async def end_call(body: EndCallIn, user: User = Depends(get_current_user)):
    """
    End a call and settle it.

    Either party (or an admin) may end. An unanswered call is cancelled
    without charge. An ongoing call is billed per started minute at the
    host's effective rate; the host receives 70% (floored).

    Returns:
        dict: data with call, coinsSpent, duration (seconds), durationMinutes,
              newBalance, hostEarnings, rateUsed

    Errors:
        404 CALL_NOT_FOUND, 403 FORBIDDEN, 400 INVALID_STATE,
        400 INSUFFICIENT_BALANCE (the call is stored as failed)
    """
    summary = await call_ledger.end(body.callId, user, was_disconnected=body.wasDisconnected)
    return {"success": True, "data": summary}


@router.post("/rate", response_model=dict)
async def rate_call(body: RateCallIn, user: User = Depends(get_current_user)):
    call = await call_ledger.rate(body.callId, user, body.rating, body.feedback)
    return {"success": True, "data": {"call": call_to_dict(call)}}


@router.post("/heartbeat", response_model=dict)
async def heartbeat(body: CallRefIn, user: User = Depends(get_current_user)):
    """Keep an ongoing call alive; calls without heartbeats are ended by the sweeper."""
    call = await call_ledger.heartbeat(body.callId, user)
    return {"success": True, "data": {"callId": str(call.id), "lastHeartbeatAt": call_to_dict(call)["lastHeartbeatAt"]}}


@router.get("/history", response_model=dict)
async def call_history(
    user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = Query(default=None, description=f"One of {', '.join(CALL_STATUSES)}"),
):
    rows, pagination = await call_ledger.history(user, page=page, limit=limit, status=status)
    return {"success": True, "data": {"calls": [call_to_dict(c) for c in rows], "pagination": pagination}}


@router.get("/{call_id}", response_model=dict)
async def call_detail(call_id: UUID, user: User = Depends(get_current_user)):
    call = await call_ledger.detail(call_id, user)
    return {"success": True, "data": {"call": call_to_dict(call)}}
