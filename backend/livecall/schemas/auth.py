# livecall/schemas/auth.py
"""
Pydantic schemas for authentication endpoints.
Defines request/response models for register, login and user information.
"""
from typing import Literal, Optional

from pydantic import BaseModel


class LoginRequest(BaseModel):
    """
    Request model for user login endpoint.
    Contains credentials for authentication.
    """
    username: str  # User login name
    password: str  # User password (plain text, will be hashed server-side)


class RegisterIn(BaseModel):
    """
    Request model for registration.
    `role="host"` also creates a pending host profile.
    """
    username: str
    email: Optional[str] = None
    password: str
    role: Literal["user", "host"] = "user"


class UserOut(BaseModel):
    """
    User information returned in authentication responses.
    Contains basic user details without sensitive information.
    """
    id: str  # User unique identifier
    username: str  # User login name
    email: Optional[str] = None
    role: str = "user"  # "user", "host" or "admin"
    coinBalance: int = 0
