import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from credit_rewards.api.dependencies.rewards import get_registry  # noqa: E402
from credit_rewards.app import create_app  # noqa: E402
from credit_rewards.db.base import Base  # noqa: E402
from credit_rewards.db.session import get_session  # noqa: E402
import credit_rewards.models  # noqa: E402,F401
from credit_rewards.observability.rewards import get_reward_store  # noqa: E402
from credit_rewards.observability.scheduler import get_reward_scheduler_store  # noqa: E402
from credit_rewards.services.rewards import InMemoryIdempotencyCache, RewardRuntime  # noqa: E402
from credit_rewards.services.rewards.catalog import build_reward_registry  # noqa: E402


@pytest.fixture(autouse=True)
def reset_observability():
    get_reward_store().reset()
    get_reward_scheduler_store().reset()
    yield


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def reward_cache():
    return InMemoryIdempotencyCache()


@pytest.fixture
def reward_runtime(session_factory, reward_cache):
    return RewardRuntime(session_factory=session_factory, cache=reward_cache)


@pytest_asyncio.fixture
async def app_with_db(session_factory, reward_runtime):
    app = create_app()
    registry = build_reward_registry(reward_runtime)

    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_get_registry():
        return registry

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_registry] = override_get_registry

    try:
        yield app, registry
    finally:
        app.dependency_overrides.clear()
