# livecall/api/v1/deps.py
from fastapi import Depends, Header, HTTPException, Request, status
from livecall.core.security import verify_access_token
from livecall.models.host import Host
from livecall.models.user import User

async def get_current_user(
    request: Request,
    authorization: str | None = Header(default=None),
):
    """
    FastAPI dependency to get the current authenticated user.

    The access token is taken from:
    1. Authorization header (Bearer token) - preferred method
    2. HttpOnly cookie (accessToken) - fallback method

    Raises:
        HTTPException (401): AUTH_REQUIRED if no token is provided
        HTTPException (401): AUTH_INVALID_TOKEN if the token is invalid or expired
        HTTPException (401): AUTH_USER_NOT_FOUND if the account is gone or deactivated
    """
    token = None
    # 1) Prioritize Authorization: Bearer xxx
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    # 2) Secondly HttpOnly Cookie: accessToken
    if not token:
        token = request.cookies.get("accessToken")

    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_REQUIRED")

    identity = verify_access_token(token)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_INVALID_TOKEN")

    user = await User.get_or_none(id=identity.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_USER_NOT_FOUND")
    return user

async def require_admin(current: User = Depends(get_current_user)) -> User:
    """Only lets administrators through (403 FORBIDDEN_ADMIN_ONLY otherwise)."""
    if getattr(current, "role", "user") != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="FORBIDDEN_ADMIN_ONLY")
    return current

async def require_host(current: User = Depends(get_current_user)) -> Host:
    """Resolves the caller's host profile (404 HOST_PROFILE_NOT_FOUND if they have none)."""
    host = await Host.get_or_none(user_id=current.id)
    if host is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="HOST_PROFILE_NOT_FOUND")
    return host
