"""Observability store for the reward job scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Mapping


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class RewardJobSnapshot:
    """Serializable view of one scheduled reward job."""

    job_id: str
    task: str
    totals: Dict[str, int]
    runtime_seconds: float
    last_started_at: datetime | None
    last_success_at: datetime | None
    last_error_at: datetime | None
    last_error: str | None
    last_attempts: int
    last_retry_delay_seconds: float | None
    last_result: Dict[str, Any] | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "job_id": self.job_id,
            "task": self.task,
            "totals": dict(self.totals),
            "runtime_seconds": self.runtime_seconds,
            "last_started_at": _iso(self.last_started_at),
            "last_success_at": _iso(self.last_success_at),
            "last_error_at": _iso(self.last_error_at),
            "last_error": self.last_error,
            "last_attempts": self.last_attempts,
            "last_retry_delay_seconds": self.last_retry_delay_seconds,
            "last_result": self.last_result,
        }


@dataclass
class RewardSchedulerSnapshot:
    totals: Dict[str, int]
    jobs: Dict[str, RewardJobSnapshot]

    def as_dict(self) -> Dict[str, object]:
        return {
            "totals": dict(self.totals),
            "jobs": {job_id: job.as_dict() for job_id, job in self.jobs.items()},
        }


_COUNTERS = ("runs", "success", "run_failures", "attempt_failures", "retries")


@dataclass
class _JobState:
    job_id: str
    task: str
    counters: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in _COUNTERS})
    consecutive_failures: int = 0
    runtime_seconds: float = 0.0
    last_started_at: datetime | None = None
    last_success_at: datetime | None = None
    last_error_at: datetime | None = None
    last_error: str | None = None
    last_attempts: int = 0
    last_retry_delay_seconds: float | None = None
    last_result: Dict[str, Any] | None = None

    def snapshot(self) -> RewardJobSnapshot:
        totals = dict(self.counters)
        totals["consecutive_failures"] = self.consecutive_failures
        return RewardJobSnapshot(
            job_id=self.job_id,
            task=self.task,
            totals=totals,
            runtime_seconds=self.runtime_seconds,
            last_started_at=self.last_started_at,
            last_success_at=self.last_success_at,
            last_error_at=self.last_error_at,
            last_error=self.last_error,
            last_attempts=self.last_attempts,
            last_retry_delay_seconds=self.last_retry_delay_seconds,
            last_result=dict(self.last_result) if self.last_result is not None else None,
        )


class RewardSchedulerObservabilityStore:
    """Counts dispatches, retries and outcomes of scheduled reward jobs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._jobs: Dict[str, _JobState] = {}

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()

    def _state(self, job_id: str, task: str) -> _JobState:
        state = self._jobs.get(job_id)
        if state is None:
            state = self._jobs[job_id] = _JobState(job_id=job_id, task=task)
        state.task = task
        return state

    def record_dispatch(self, job_id: str, task: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["runs"] += 1
            state.last_started_at = _utcnow()
            state.last_attempts = 0
            state.last_retry_delay_seconds = None

    def record_attempt_failure(self, job_id: str, task: str, *, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["attempt_failures"] += 1
            state.consecutive_failures += 1
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def record_retry(self, job_id: str, task: str, *, delay_seconds: float, attempts: int) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["retries"] += 1
            state.last_attempts = attempts
            state.last_retry_delay_seconds = delay_seconds

    def record_success(
        self,
        job_id: str,
        task: str,
        *,
        runtime_seconds: float,
        attempts: int,
        result: Mapping[str, Any] | None = None,
    ) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["success"] += 1
            state.consecutive_failures = 0
            state.runtime_seconds += runtime_seconds
            state.last_success_at = _utcnow()
            state.last_attempts = attempts
            state.last_error = None
            state.last_error_at = None
            state.last_result = dict(result) if result is not None else None

    def record_run_failure(self, job_id: str, task: str, *, runtime_seconds: float, attempts: int, error: str) -> None:
        with self._lock:
            state = self._state(job_id, task)
            state.counters["run_failures"] += 1
            state.runtime_seconds += runtime_seconds
            state.last_attempts = attempts
            state.last_error = error
            state.last_error_at = _utcnow()

    def snapshot(self) -> RewardSchedulerSnapshot:
        with self._lock:
            jobs = {job_id: state.snapshot() for job_id, state in self._jobs.items()}
        totals = {name: sum(job.totals[name] for job in jobs.values()) for name in _COUNTERS}
        return RewardSchedulerSnapshot(totals=totals, jobs=jobs)


_SCHEDULER_STORE = RewardSchedulerObservabilityStore()


def get_reward_scheduler_store() -> RewardSchedulerObservabilityStore:
    return _SCHEDULER_STORE


__all__ = [
    "RewardJobSnapshot",
    "RewardSchedulerObservabilityStore",
    "RewardSchedulerSnapshot",
    "get_reward_scheduler_store",
]
