# livecall/api/v1/routers/leaderboard.py
import datetime as dt
from typing import Literal

from fastapi import APIRouter, Depends, Query

from livecall.api.v1.deps import get_current_user
from livecall.models.user import User
from livecall.services import leaderboard

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("/me", response_model=dict)
async def my_standing(
    user: User = Depends(get_current_user),
    userType: Literal["user", "host"] = Query("user"),
):
    """This week's call totals and rank for the current user, as caller or as host."""
    data = await leaderboard.standing(user.id, userType, dt.datetime.now(dt.timezone.utc))
    return {"success": True, "data": data}
