from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_rewards.core.settings import settings
from credit_rewards.db.session import get_session
from credit_rewards.observability.scheduler import get_reward_scheduler_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail=str(exc))
        status = "error"
    else:
        components["database"] = ComponentStatus(status="ready")

    scheduler = getattr(request.app.state, "reward_job_scheduler", None)
    if settings.reward_job_scheduler_enabled and scheduler is not None:
        running = bool(getattr(scheduler, "is_running", False))
        scheduler_status: Literal["ready", "starting", "error"] = "ready" if running else "starting"
        detail = None if running else "Reward scheduler not running"
        failing_jobs = [
            job_id
            for job_id, job in get_reward_scheduler_store().snapshot().jobs.items()
            if job.totals.get("consecutive_failures", 0) > 0
        ]
        if failing_jobs:
            scheduler_status = "error"
            detail = f"Jobs failing: {', '.join(failing_jobs)}"
            status = "error"
        elif not running and status == "ready":
            status = "degraded"
        components["reward_scheduler"] = ComponentStatus(status=scheduler_status, detail=detail)
    else:
        components["reward_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Reward scheduler disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)
