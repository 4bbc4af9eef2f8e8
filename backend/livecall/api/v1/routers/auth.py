from fastapi import APIRouter, HTTPException, Response, status, Depends
from tortoise.transactions import in_transaction
from livecall.config import settings
from livecall.core.security import verify_password, create_access_token, hash_password
from livecall.api.v1.deps import get_current_user
from livecall.models.host import Host
from livecall.models.user import User
from livecall.schemas.auth import LoginRequest, RegisterIn, UserOut

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_out(user: User) -> dict:
    return UserOut(
        id=str(user.id),
        username=user.username,
        email=user.email,
        role=user.role,
        coinBalance=user.coin_balance,
    ).model_dump()


@router.post("/register")
async def register(body: RegisterIn):
    """
    Register a new account.

    Creates a user with the given username, optional email and password
    (hashed before storage). With `role="host"` a host profile is created
    alongside it in `pending` status; an admin approves it later.

    Returns:
        dict: {"success": True, "data": {...}} on success, or
              {"success": False, "error": {"code", "message"}} with one of
              BAD_REQUEST, USERNAME_EXISTS, EMAIL_EXISTS
    """
    # Basic validation, avoid pydantic error becoming 500
    if not body.username or not body.password:
        return {"success": False, "error": {"code": "BAD_REQUEST", "message": "username/password required"}}
    # Check duplicates
    if await User.get_or_none(username=body.username):
        return {"success": False, "error": {"code": "USERNAME_EXISTS", "message": "Username already exists"}}
    if body.email and await User.get_or_none(email=body.email):
        return {"success": False, "error": {"code": "EMAIL_EXISTS", "message": "Email already registered"}}

    async with in_transaction() as conn:
        u = await User.create(
            username=body.username,
            email=(body.email or None),
            password_hash=hash_password(body.password),
            role=body.role,
            using_db=conn,
        )
        host_id = None
        if body.role == "host":
            host = await Host.create(user_id=u.id, rate_per_minute=settings.default_rate_per_minute, using_db=conn)
            host_id = str(host.id)
    return {"success": True, "data": {**_user_out(u), "hostId": host_id}}

@router.post("/login")
async def login(payload: LoginRequest, response: Response):
    """
    Authenticate and issue an access token.

    The token is returned in the body and also set as the HttpOnly
    `accessToken` cookie, which the signaling WebSocket accepts too.

    Raises:
        HTTPException (401): AUTH_INVALID_CREDENTIALS
    """
    user = await User.get_or_none(username=payload.username)
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail={"code": "AUTH_INVALID_CREDENTIALS", "message": "Incorrect username or password"})
    token = create_access_token(str(user.id), user.role)
    response.set_cookie("accessToken", token, httponly=True, secure=False, samesite="lax")
    return {"success": True, "data": {"user": _user_out(user), "accessToken": token}}

@router.get("/me")
async def me(user: User = Depends(get_current_user)):
    """Current user, including coin balance."""
    return {"success": True, "data": _user_out(user)}

@router.post("/logout")
async def logout(response: Response):
    # Only clears the cookie; the token itself stays valid until it expires
    response.delete_cookie("accessToken")
    return {"success": True}
