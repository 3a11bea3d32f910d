from pathlib import Path

import pytest

from credit_rewards.observability.scheduler import get_reward_scheduler_store
from credit_rewards.scheduling.config import JobDefinition, load_job_definitions
from credit_rewards.scheduling.runner import RewardJobScheduler


def _job(job_id: str, max_attempts: int) -> JobDefinition:
    return JobDefinition(
        id=job_id,
        task="tests.job",
        cron="* * * * *",
        max_attempts=max_attempts,
        base_backoff_seconds=0.0,
        backoff_multiplier=1.0,
        max_backoff_seconds=0.0,
        jitter_seconds=0.0,
    )


@pytest.mark.asyncio
async def test_scheduler_retries_and_records_result(tmp_path: Path) -> None:
    store = get_reward_scheduler_store()
    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def flaky_job(*, session_factory) -> dict:
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise RuntimeError("boom")
        return {"groups": {"goodContent": {"awarded": 3}}}

    job = _job("reward-settlement", max_attempts=3)
    result = await scheduler._wrap_callable(flaky_job, job)()

    assert result == {"groups": {"goodContent": {"awarded": 3}}}
    snapshot = store.snapshot()
    assert snapshot.totals["runs"] == 1
    assert snapshot.totals["success"] == 1
    assert snapshot.totals["attempt_failures"] == 1
    assert snapshot.totals["retries"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.last_error is None
    assert job_snapshot.last_result == result
    assert job_snapshot.totals["consecutive_failures"] == 0
    assert attempts == 2


@pytest.mark.asyncio
async def test_scheduler_records_final_failure(tmp_path: Path) -> None:
    store = get_reward_scheduler_store()
    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    async def failing_job(*, session_factory) -> None:
        raise RuntimeError("boom")

    job = _job("reward-failure", max_attempts=2)
    assert await scheduler._wrap_callable(failing_job, job)() is None

    snapshot = store.snapshot()
    assert snapshot.totals["run_failures"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.totals["consecutive_failures"] == 2
    assert job_snapshot.last_error == "boom"


def test_backoff_delay_grows_and_caps() -> None:
    job = JobDefinition(
        id="job",
        task="tests.job",
        cron="* * * * *",
        base_backoff_seconds=10,
        backoff_multiplier=2,
        max_backoff_seconds=30,
    )
    assert [job.backoff_delay(attempt) for attempt in (1, 2, 3)] == [10, 20, 30]


def test_load_job_definitions_reads_repository_schedule() -> None:
    config_path = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"
    config = load_job_definitions(config_path)

    assert config.timezone == "UTC"
    [job] = config.enabled_jobs()
    assert job.task == "credit_rewards.jobs.rewards.settle_reward_events"
    assert job.max_attempts == 3
    assert job.max_backoff_seconds == 120


def test_load_job_definitions_skips_invalid_entries(tmp_path: Path) -> None:
    config_path = tmp_path / "schedules.toml"
    config_path.write_text(
        """
timezone = "Europe/Berlin"

[jobs.valid]
task = "credit_rewards.jobs.rewards.settle_reward_events"
cron = "0 * * * *"
kwargs = { groups = ["goodContent"] }

[jobs.paused]
task = "credit_rewards.jobs.rewards.settle_reward_events"
cron = "0 * * * *"
enabled = false

[jobs.broken]
cron = "0 * * * *"
"""
    )

    config = load_job_definitions(config_path)

    assert config.timezone == "Europe/Berlin"
    assert [job.id for job in config.jobs] == ["valid", "paused"]
    assert [job.id for job in config.enabled_jobs()] == ["valid"]
    assert config.jobs[0].kwargs == {"groups": ["goodContent"]}


def test_missing_schedule_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "missing.toml")


@pytest.mark.asyncio
async def test_run_now_requires_registered_job(tmp_path: Path) -> None:
    scheduler = RewardJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")
    with pytest.raises(KeyError):
        await scheduler.run_now("reward_settlement")
    assert scheduler.health()["running"] is False
