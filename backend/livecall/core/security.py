# livecall/core/security.py
"""
Security module for authentication and authorization.
Handles password hashing and the access-token contract shared by the REST
API and the signaling WebSocket.
"""
import os
import datetime as dt
from dataclasses import dataclass

import jwt  # PyJWT
from passlib.context import CryptContext
from dotenv import load_dotenv
from pathlib import Path

# Load environment variables from project root
ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(dotenv_path=ENV_PATH)

pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)

# JWT configuration
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret")  # Use a strong secret in production
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
JWT_ALG = "HS256"


@dataclass(frozen=True)
class TokenIdentity:
    """Who a verified access token belongs to."""
    user_id: str
    role: str


def hash_password(plain: str) -> str:
    """Hash a plain text password using Argon2."""
    return pwd_context.hash(plain)

def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plain password matches the stored hash."""
    return pwd_context.verify(plain, hashed)

def create_access_token(user_id: str, role: str) -> str:
    """
    Create a JWT access token.

    The role travels in the token so the signaling layer can tell hosts
    apart from callers at handshake time without a database round trip.

    Token payload:
        - sub: user ID
        - role: "user", "host" or "admin"
        - iat / exp: issue and expiry timestamps
    """
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "iat": now,
        "exp": now + dt.timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)

def decode_access_token(token: str) -> dict:
    """
    Decode and validate a JWT access token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid or malformed
    """
    return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])

def verify_access_token(token: str | None) -> TokenIdentity | None:
    """
    Verify a token and return the identity it carries, or None.

    Used by the signaling handshake, which must reject the connection
    rather than raise.
    """
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return TokenIdentity(user_id=str(user_id), role=payload.get("role", "user"))
