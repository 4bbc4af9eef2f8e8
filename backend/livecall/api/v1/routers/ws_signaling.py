import logging

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from livecall.core.presence import presence
from livecall.core.security import TokenIdentity, verify_access_token
from livecall.models.user import User
from livecall.services.signaling import SignalingRouter

logger = logging.getLogger(__name__)

router = APIRouter()
signaling = SignalingRouter(presence)

AUTH_FAILED_CLOSE_CODE = 4001
REPLACED_CLOSE_CODE = 4000


@router.websocket("/ws/signaling")
async def ws_signaling(ws: WebSocket):
    """
    WebSocket endpoint for call signaling and presence.

    Message flow:
    1. Client connects with ?token=<access token> (or the accessToken cookie)
    2. Server verifies the token and that the account still exists and is
       active; on failure the socket is closed with 4001
    3. Server registers the user and broadcasts `user:online`
    4. Client sends {"event": "call:offer" | "call:answer" | "call:ice-candidate"
       | "call:reject" | "call:end", "data": {"to": <userId>, ...}}
    5. Server relays to the recipient, or answers with `call:error`
    6. On disconnect the user is unregistered and `user:offline` is broadcast

    A second connection for the same user replaces the first, which is
    closed with 4000.
    """
    token = ws.query_params.get("token") or ws.cookies.get("accessToken")
    identity = verify_access_token(token)
    user = await User.get_or_none(id=identity.user_id) if identity else None
    if user is None or not user.is_active:
        await ws.close(code=AUTH_FAILED_CLOSE_CODE)
        return
    # Role comes from the account, not the token
    identity = TokenIdentity(user_id=str(user.id), role=user.role)

    await ws.accept()
    replaced = await signaling.connected(identity, ws)
    if replaced is not None:
        try:
            await replaced.close(code=REPLACED_CLOSE_CODE)
        except RuntimeError:
            # Already closed by the client
            pass

    try:
        while True:
            raw = await ws.receive_text()
            await signaling.handle_text(identity, ws, raw)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("[signaling] connection error for %s", identity.user_id)
    finally:
        await signaling.disconnected(identity, ws)
