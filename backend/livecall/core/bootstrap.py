# livecall/core/bootstrap.py
"""
Startup tasks.
Creates the first administrator so free targets and host approvals can be
managed on a fresh database.
"""
import os
import logging
from livecall.models.user import User
from livecall.core.security import hash_password

logger = logging.getLogger("uvicorn.error")

async def ensure_default_admin() -> User | None:
    """
    Create an admin from ADMIN_USERNAME / ADMIN_EMAIL / ADMIN_PASSWORD when
    the database has none.

    Nothing is created without ADMIN_PASSWORD. If the requested username is
    taken by a regular account, a numeric suffix is appended.

    Returns the created admin, or None if nothing was done.
    """
    if await User.filter(role="admin").exists():
        return None

    password = os.getenv("ADMIN_PASSWORD")
    if not password:
        logger.warning("[bootstrap] no admin account and ADMIN_PASSWORD is unset; skipping")
        return None

    base = os.getenv("ADMIN_USERNAME", "admin")
    username, n = base, 1
    while await User.filter(username=username).exists():
        n += 1
        username = f"{base}{n}"

    admin = await User.create(
        username=username,
        email=os.getenv("ADMIN_EMAIL", "admin@example.com"),
        password_hash=hash_password(password),
        role="admin",
    )
    logger.warning("[bootstrap] created default admin username=%s id=%s", admin.username, admin.id)
    return admin
