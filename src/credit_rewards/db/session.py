from collections.abc import AsyncIterator
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from credit_rewards.core.settings import settings

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]

engine = create_async_engine(settings.database_url, future=True, pool_pre_ping=True)
async_session = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def open_session(session_factory: SessionFactory) -> AsyncSession:
    """Call a session factory that may be sync or async."""

    maybe_session = session_factory()
    if isinstance(maybe_session, AsyncSession):
        return maybe_session
    return await maybe_session


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""

    async with async_session() as session:
        yield session
