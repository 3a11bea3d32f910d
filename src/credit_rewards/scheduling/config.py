"""TOML schedule loader for recurring reward jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib
from loguru import logger


@dataclass(slots=True)
class JobDefinition:
    """One cron-driven job and its retry policy."""

    id: str
    task: str
    cron: str
    kwargs: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    max_attempts: int = 1
    base_backoff_seconds: float = 5.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    jitter_seconds: float = 1.0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after failed ``attempt`` (jitter excluded)."""

        delay = self.base_backoff_seconds * (self.backoff_multiplier ** max(attempt - 1, 0))
        if self.max_backoff_seconds:
            delay = min(delay, self.max_backoff_seconds)
        return max(delay, 0.0)


@dataclass(slots=True)
class ScheduleConfig:
    timezone: str
    jobs: list[JobDefinition]

    def enabled_jobs(self) -> list[JobDefinition]:
        return [job for job in self.jobs if job.enabled]


def _job_from_payload(key: str, payload: dict[str, Any]) -> JobDefinition | None:
    task = payload.get("task")
    cron = payload.get("cron")
    if not isinstance(task, str) or not isinstance(cron, str):
        logger.warning("Skipping schedule entry without task or cron", job_id=key)
        return None

    kwargs = payload.get("kwargs", {})
    if not isinstance(kwargs, dict):
        logger.warning("Ignoring non-table kwargs in schedule entry", job_id=key)
        kwargs = {}

    return JobDefinition(
        id=str(payload.get("id") or key),
        task=task,
        cron=cron,
        kwargs=kwargs,
        enabled=bool(payload.get("enabled", True)),
        max_attempts=max(int(payload.get("max_attempts", 1) or 1), 1),
        base_backoff_seconds=max(float(payload.get("base_backoff_seconds", 5.0) or 0), 0.0),
        backoff_multiplier=max(float(payload.get("backoff_multiplier", 2.0) or 1), 1.0),
        max_backoff_seconds=max(float(payload.get("max_backoff_seconds", 60.0) or 0), 0.0),
        jitter_seconds=max(float(payload.get("jitter_seconds", 1.0) or 0), 0.0),
    )


def load_job_definitions(config_path: Path) -> ScheduleConfig:
    """Read ``[jobs.<id>]`` tables from a TOML schedule file."""

    if not config_path.exists():
        raise FileNotFoundError(f"Schedule config not found: {config_path}")

    data = tomllib.loads(config_path.read_text())
    jobs: list[JobDefinition] = []
    for key, payload in data.get("jobs", {}).items():
        if not isinstance(payload, dict):
            continue
        job = _job_from_payload(key, payload)
        if job is not None:
            jobs.append(job)

    return ScheduleConfig(timezone=str(data.get("timezone", "UTC")), jobs=jobs)


__all__ = ["JobDefinition", "ScheduleConfig", "load_job_definitions"]
