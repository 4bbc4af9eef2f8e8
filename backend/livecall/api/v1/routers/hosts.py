# livecall/api/v1/routers/hosts.py
import datetime as dt

from fastapi import APIRouter, Depends

from livecall.api.v1.deps import require_host
from livecall.core.errors import Unavailable
from livecall.core.presence import presence
from livecall.models.host import Host
from livecall.schemas.call import HostStatusIn

router = APIRouter(prefix="/hosts", tags=["hosts"])


@router.post("/status", response_model=dict)
async def set_online_status(body: HostStatusIn, host: Host = Depends(require_host)):
    """
    Toggle the caller's host profile online/offline.

    Only approved hosts can go online. The change is broadcast to everyone
    connected to signaling as `host:online` / `host:offline`.
    """
    if body.isOnline and host.status != "approved":
        raise Unavailable("Host profile is not approved", code="HOST_NOT_APPROVED")

    now = dt.datetime.now(dt.timezone.utc)
    await Host.filter(id=host.id).update(is_online=body.isOnline, last_seen=now)
    event = "host:online" if body.isOnline else "host:offline"
    await presence.broadcast(event, {"hostId": str(host.id), "userId": str(host.user_id)})
    return {"success": True, "data": {"hostId": str(host.id), "isOnline": body.isOnline}}
