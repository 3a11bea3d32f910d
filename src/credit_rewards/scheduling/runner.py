"""APScheduler runtime for recurring reward jobs."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable, Mapping

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from credit_rewards.db.session import SessionFactory
from credit_rewards.observability.scheduler import get_reward_scheduler_store
from .config import JobDefinition, ScheduleConfig, load_job_definitions

JobCallable = Callable[..., Awaitable[Any]]


class RewardJobScheduler:
    """Register cron jobs from the schedule file and run them with retries."""

    def __init__(self, *, session_factory: SessionFactory, config_path: Path) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._runners: dict[str, Callable[[], Awaitable[Any]]] = {}
        self._observability = get_reward_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_job_definitions(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)

        runners: dict[str, Callable[[], Awaitable[Any]]] = {}
        for job in config.enabled_jobs():
            runner = self._wrap_callable(self._resolve_callable(job), job)
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            # One sweep at a time per job; a late tick is merged into the next.
            scheduler.add_job(
                runner,
                trigger=trigger,
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            runners[job.id] = runner
            logger.info("Registered reward job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        self._runners = runners
        logger.info("Reward job scheduler started", jobs=len(runners))

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Reward job scheduler stopped")

    async def run_now(self, job_id: str) -> Any:
        """Run a registered job immediately, outside its cron schedule."""

        runner = self._runners.get(job_id)
        if runner is None:
            raise KeyError(f"Unknown job {job_id}")
        return await runner()

    def _resolve_callable(self, job: JobDefinition) -> JobCallable:
        module_name, _, attr = job.task.rpartition(".")
        if not module_name:
            raise ValueError(f"Invalid task path: {job.task}")
        module: ModuleType = import_module(module_name)
        func = getattr(module, attr, None)
        if func is None:
            raise AttributeError(f"Task {job.task} not found")
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"Task {job.task} must be an async function")
        return func

    def _wrap_callable(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        async def _runner() -> Any:
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()

            for attempt in range(1, job.max_attempts + 1):
                try:
                    result = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    error_message = str(exc)
                    self._observability.record_attempt_failure(job.id, job.task, attempts=attempt, error=error_message)
                    if attempt >= job.max_attempts:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error_message,
                        )
                        logger.exception(
                            "Scheduled reward job failed after retries",
                            job_id=job.id,
                            task=job.task,
                            attempts=attempt,
                        )
                        return None

                    delay = job.backoff_delay(attempt)
                    if job.jitter_seconds:
                        delay += random.uniform(0, job.jitter_seconds)
                    self._observability.record_retry(job.id, job.task, delay_seconds=delay, attempts=attempt + 1)
                    logger.warning(
                        "Scheduled reward job retrying",
                        job_id=job.id,
                        task=job.task,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                        error=error_message,
                    )
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=runtime_seconds,
                    attempts=attempt,
                    result=result if isinstance(result, Mapping) else None,
                )
                logger.info(
                    "Scheduled reward job completed",
                    job_id=job.id,
                    task=job.task,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                )
                return result
            return None

        return _runner

    def health(self) -> dict[str, object]:
        """Scheduler state plus per-job metrics for the readiness probe."""

        snapshot = self._observability.snapshot()
        config_jobs = self._config.jobs if self._config else []
        jobs: list[dict[str, object]] = []
        for job in config_jobs:
            metrics = snapshot.jobs.get(job.id)
            jobs.append(
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "enabled": job.enabled,
                    "max_attempts": job.max_attempts,
                    "metrics": metrics.as_dict() if metrics else None,
                }
            )

        return {
            "running": self.is_running,
            "configured_jobs": len(config_jobs),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


__all__ = ["RewardJobScheduler"]
