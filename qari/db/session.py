from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from starlette.requests import HTTPConnection

from qari.core.change_feed import ChangeFeed
from qari.core.config import settings

# pool_pre_ping: check connection is alive before use (avoids "connection is closed" errors
# when DB or network closed idle connections).
# pool_recycle: discard connections after this many seconds to avoid stale connections.
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    pool_pre_ping=True,
    pool_recycle=300,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


def make_session_factory(
    bind: AsyncEngine, feed: Optional[ChangeFeed] = None
) -> async_sessionmaker:
    """Session factory whose sessions publish committed changes to `feed`."""
    info = {"change_feed": feed} if feed is not None else {}
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        info=info,
    )


def get_session_factory(connection: HTTPConnection) -> async_sessionmaker:
    return getattr(connection.app.state, "session_factory", AsyncSessionLocal)


def get_change_feed(connection: HTTPConnection) -> ChangeFeed:
    return connection.app.state.change_feed


async def get_db(connection: HTTPConnection) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory(connection)() as session:
        yield session


async def create_all(bind: AsyncEngine) -> None:
    """Create every table known to the metadata (idempotent)."""
    import qari.core.models  # noqa: F401  (register models on Base.metadata)
    import qari.auth.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
