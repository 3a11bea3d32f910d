from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from credit_rewards.core.settings import settings
from credit_rewards.db.session import async_session
from .api.v1 import router as api_v1_router
from .core.logging import configure_logging
from .scheduling import RewardJobScheduler


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _schedule_path() -> Path:
    schedule_path = Path(settings.reward_job_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    schedule_path = _schedule_path()
    job_scheduler = RewardJobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
    )
    app.state.reward_job_scheduler = job_scheduler

    scheduler_enabled = settings.reward_job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError:
            logger.exception("Reward job scheduler failed to start", schedule_path=str(schedule_path))
        else:
            logger.info("Reward job scheduler enabled", schedule_path=str(schedule_path))
    else:
        logger.info(
            "Reward job scheduler disabled",
            reason="reward_job_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()


def create_app() -> FastAPI:
    """Application factory for the credit rewards service."""
    configure_logging(
        service_name="credit-rewards",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
        json_logs=settings.log_json,
    )

    app = FastAPI(
        title="Credit Rewards API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.include_router(api_v1_router, prefix="/api/v1")
    return app
