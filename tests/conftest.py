import os
from typing import AsyncGenerator, Awaitable, Callable, Dict

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./qari-test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from qari.core.change_feed import ChangeFeed
from qari.db.session import create_all, make_session_factory
from qari.main import app

PASSWORD = "secret123"


def _enforce_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file per test, with foreign keys enforced like the production store."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'qari.db'}", echo=False, future=True)
    event.listen(test_engine.sync_engine, "connect", _enforce_foreign_keys)
    await create_all(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture()
def change_feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture()
def session_factory(engine: AsyncEngine, change_feed: ChangeFeed) -> async_sessionmaker:
    return make_session_factory(engine, change_feed)


@pytest.fixture()
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory: async_sessionmaker, change_feed: ChangeFeed) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app, backed by the test database."""
    app.state.session_factory = session_factory
    app.state.change_feed = change_feed
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def register(client: AsyncClient) -> Callable[..., Awaitable[Dict]]:
    """Register an account over the API and return the response body (asserts 201)."""

    async def _register(email: str, role: str, name: str = "Test User", password: str = PASSWORD, **extra) -> Dict:
        payload = {"email": email, "password": password, "role": role, "name": name, **extra}
        response = await client.post("/api/v1/auth/register", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture()
def auth_headers() -> Callable[[Dict], Dict[str, str]]:
    def _headers(registration: Dict) -> Dict[str, str]:
        return {"Authorization": f"Bearer {registration['access_token']}"}

    return _headers


@pytest.fixture()
async def admin(register) -> Dict:
    """The bootstrap teacher: first teacher ever, approved administrator."""
    return await register("sheikh@example.com", "teacher", name="Sheikh Ahmad")


@pytest.fixture()
def approve(client: AsyncClient, auth_headers):
    """Accept the pending join request of `registration` as `reviewer`."""

    async def _approve(registration: Dict, reviewer: Dict, decision: str = "accept") -> Dict:
        response = await client.post(
            f"/api/v1/join-requests/{registration['join_request_id']}/review",
            json={"decision": decision},
            headers=auth_headers(reviewer),
        )
        assert response.status_code == 200, response.text
        return response.json()

    return _approve
