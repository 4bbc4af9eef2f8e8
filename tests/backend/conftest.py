import datetime as dt
import os
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from tortoise import Tortoise

from livecall.core import db as db_module
from livecall.core.security import hash_password
from livecall.main import app
from livecall.models.host import Host
from livecall.models.user import User


TEST_DB_URL = "sqlite://:memory:?cache=shared"
os.environ["DATABASE_URL"] = TEST_DB_URL
db_module.DB_URL = TEST_DB_URL
db_module.TORTOISE_ORM["connections"]["default"] = TEST_DB_URL


async def _init_test_db() -> None:
    """
    Initialize a clean in-memory SQLite database for every test.
    Ensures tables are recreated from scratch.
    """
    if Tortoise._inited:
        await Tortoise.close_connections()
    await Tortoise.init(config=db_module.TORTOISE_ORM)
    await Tortoise.generate_schemas()


class FakeClock:
    """Settable UTC clock for services that take a `clock` callable."""

    def __init__(self, start: dt.datetime | None = None):
        self.now = start or dt.datetime(2024, 5, 8, 12, 0, tzinfo=dt.timezone.utc)  # A Wednesday

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> dt.datetime:
        self.now += dt.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def db():
    """Fresh database for service-level tests that don't go through HTTP."""
    await _init_test_db()
    yield
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def client():
    """
    Provide an HTTPX AsyncClient bound to the FastAPI app with a fresh DB.
    Lifespan is off, so the sweeper never runs during tests.
    """
    await _init_test_db()
    try:
        transport = ASGITransport(app=app, lifespan="off")
    except TypeError:
        # Fallback for httpx versions that don't support lifespan parameter
        transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client
    await Tortoise.close_connections()


@pytest_asyncio.fixture
async def create_admin():
    """
    Factory fixture to create admin users directly via ORM for privileged endpoints.
    """

    async def _create_admin(password: str = "AdminPass!23") -> tuple[User, str]:
        user = await User.create(
            username=f"admin_{uuid.uuid4().hex[:6]}",
            email="admin@example.com",
            password_hash=hash_password(password),
            role="admin",
        )
        return user, password

    return _create_admin


@pytest_asyncio.fixture
async def create_user():
    """
    Factory fixture to create callers with a given coin balance.
    """

    async def _create_user(coins: int = 0, password: str = "UserPass!23") -> tuple[User, str]:
        user = await User.create(
            username=f"user_{uuid.uuid4().hex[:6]}",
            email=f"{uuid.uuid4().hex[:6]}@example.com",
            password_hash=hash_password(password),
            role="user",
            coin_balance=coins,
        )
        return user, password

    return _create_user


@pytest_asyncio.fixture
async def create_host():
    """
    Factory fixture to create a host account together with its host profile.
    Defaults to an approved, online host at 50 coins/min.
    """

    async def _create_host(
        rate: int = 50,
        online: bool = True,
        status: str = "approved",
        password: str = "HostPass!23",
    ) -> tuple[User, Host, str]:
        user = await User.create(
            username=f"host_{uuid.uuid4().hex[:6]}",
            email=f"{uuid.uuid4().hex[:6]}@example.com",
            password_hash=hash_password(password),
            role="host",
        )
        host = await Host.create(
            user=user,
            status=status,
            is_online=online,
            rate_per_minute=rate,
            last_seen=dt.datetime.now(dt.timezone.utc),
        )
        return user, host, password

    return _create_host


@pytest_asyncio.fixture
async def auth_header_factory(client):
    """
    Helper fixture to obtain Authorization headers via the login endpoint.
    """

    async def _get_headers(username: str, password: str) -> dict[str, str]:
        resp = await client.post(
            "/api/v1/auth/login",
            json={"username": username, "password": password},
        )
        assert resp.status_code == 200, resp.text
        token = resp.json()["data"]["accessToken"]
        return {"Authorization": f"Bearer {token}"}

    return _get_headers
