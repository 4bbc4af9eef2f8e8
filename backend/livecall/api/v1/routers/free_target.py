# livecall/api/v1/routers/free_target.py
from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from livecall.api.v1.deps import require_admin, require_host
from livecall.core.errors import InvalidState
from livecall.models.host import Host
from livecall.models.user import User
from livecall.schemas.free_target import OverrideDayIn, RecordCallIn, ToggleIn
from livecall.services.free_target import free_target_service, free_target_to_dict

router = APIRouter(prefix="/free-target", tags=["free-target"])


# ==============================================================================
# I. Host endpoints
# ==============================================================================
@router.get("/my-target", response_model=dict)
async def my_target(host: Host = Depends(require_host)):
    """
    The host's free target with today's progress.

    Returns:
        dict: data with freeTarget, todayTarget, timeCompleted, timeRemaining,
              targetDuration, daysLeftInWeek

    Errors:
        404 FREE_TARGET_NOT_FOUND if no enabled target exists for this host
    """
    ft, summary = await free_target_service.get(host.id)
    return {"success": True, "data": {"freeTarget": free_target_to_dict(ft), **summary}}


@router.get("/weekly-stats", response_model=dict)
async def weekly_stats(host: Host = Depends(require_host)):
    data = await free_target_service.weekly_stats(host.id)
    return {"success": True, "data": data}


@router.post("/start-timer", response_model=dict)
async def start_timer(host: Host = Depends(require_host)):
    """Start today's timer. Today must be pending and not already running."""
    day = await free_target_service.start_timer(host.id)
    return {"success": True, "data": {"todayTarget": day}}


@router.post("/stop-timer", response_model=dict)
async def stop_timer(host: Host = Depends(require_host)):
    """Stop today's timer; completes the day if the target has been reached."""
    day, completed = await free_target_service.stop_timer(host.id)
    return {"success": True, "data": {"todayTarget": day, "targetCompleted": completed}}


@router.post("/record-call", response_model=dict)
async def record_call(body: RecordCallIn, host: Host = Depends(require_host)):
    """
    Report a finished call against today's target.

    A disconnected call counts toward the disconnect limit first; if that
    fails the day, the call's duration is not added.
    """
    result = await free_target_service.record_call(host.id, body.callId, body.duration, body.wasDisconnected)
    if result is None:
        raise InvalidState("Free target not enabled", code="FREE_TARGET_DISABLED")
    return {"success": True, "data": result}


# ==============================================================================
# II. Admin endpoints
#     Prefix: /api/v1/free-target/admin
# ==============================================================================
@router.get("/admin/all", response_model=dict, dependencies=[Depends(require_admin)])
async def list_targets(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[Literal["active", "completed", "failed"]] = Query(default=None),
):
    """
    All free targets, most recently updated first (admin only).

    `status` filters on the current week's status.
    """
    rows, total = await free_target_service.list_all(page=page, limit=limit, status=status)
    return {"success": True, "data": {
        "items": [free_target_to_dict(ft) for ft in rows],
        "pagination": {"total": total, "page": page, "pages": -(-total // limit)},
    }}


@router.get("/admin/{host_id}", response_model=dict, dependencies=[Depends(require_admin)])
async def get_host_target(host_id: UUID):
    ft, summary = await free_target_service.get(host_id, require_enabled=False)
    return {"success": True, "data": {"freeTarget": free_target_to_dict(ft), **summary}}


@router.get("/admin/{host_id}/stats", response_model=dict, dependencies=[Depends(require_admin)])
async def get_host_stats(host_id: UUID):
    data = await free_target_service.weekly_stats(host_id)
    return {"success": True, "data": data}


@router.patch("/admin/{host_id}/toggle", response_model=dict)
async def toggle_target(host_id: UUID, body: ToggleIn, admin: User = Depends(require_admin)):
    """
    Enable or disable the free target for a host (admin only).

    The first enable creates the target; days of the current week that are
    already over are marked failed.
    """
    ft = await free_target_service.toggle(host_id, body.isEnabled)
    return {"success": True, "data": {"freeTarget": free_target_to_dict(ft)}}


@router.patch("/admin/{host_id}/override-day", response_model=dict)
async def override_day(host_id: UUID, body: OverrideDayIn, admin: User = Depends(require_admin)):
    """
    Force the status of one day, in the current or an archived week (admin only).

    Moving a day into `completed` credits the daily bonus; moving it out
    adjusts the week's counter without reclaiming the bonus.
    """
    ft, day = await free_target_service.override_day(host_id, body.date, body.status, body.note, admin.id)
    return {"success": True, "data": {"freeTarget": free_target_to_dict(ft), "day": day}}
