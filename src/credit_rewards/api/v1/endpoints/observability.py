"""Observability endpoints for reward outcomes and Prometheus scraping."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from credit_rewards.api.dependencies.security import require_observability_api_key
from credit_rewards.observability.rewards import get_reward_store
from credit_rewards.observability.scheduler import get_reward_scheduler_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_observability_api_key)],
)

_SCHEDULER_TOTALS = {
    "runs": "Total reward scheduler dispatches",
    "success": "Successful reward scheduler runs",
    "run_failures": "Reward scheduler runs that exhausted retries",
    "attempt_failures": "Reward scheduler attempts that failed",
    "retries": "Reward scheduler retries triggered",
}


@router.get("/rewards", summary="Reward engine observability snapshot")
async def get_reward_snapshot() -> dict[str, object]:
    snapshot = get_reward_store().snapshot()
    payload = snapshot.as_dict()
    payload["totals"] = snapshot.totals()
    payload["scheduler"] = get_reward_scheduler_store().snapshot().as_dict()
    return payload


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    reward_snapshot = get_reward_store().snapshot()
    scheduler_snapshot = get_reward_scheduler_store().snapshot()

    lines: list[str] = []

    for reward_type, counts in sorted(reward_snapshot.outcomes.items()):
        for outcome, value in sorted(counts.items()):
            lines.extend(
                _format_metric(
                    "credit_rewards_outcomes_total",
                    "Reward apply outcomes grouped by type",
                    value,
                    labels={"reward_type": reward_type, "outcome": outcome},
                )
            )

    for reward_type, counts in sorted(reward_snapshot.failures.items()):
        for phase, value in sorted(counts.items()):
            lines.extend(
                _format_metric(
                    "credit_rewards_failures_total",
                    "Reward failures grouped by type and phase",
                    value,
                    labels={"reward_type": reward_type, "phase": phase},
                )
            )

    for reward_type, state in sorted(reward_snapshot.settlements.items()):
        labels = {"reward_type": reward_type}
        lines.extend(
            _format_metric(
                "credit_rewards_settlement_runs_total",
                "Completed settlement sweeps",
                state.get("runs", 0),
                labels=labels,
            )
        )
        for counter in ("awarded", "capped", "unqualified", "amount_awarded"):
            lines.extend(
                _format_metric(
                    f"credit_rewards_settlement_{counter}_total",
                    f"Settled events counted as {counter.replace('_', ' ')}",
                    state.get(f"total_{counter}", 0),
                    labels=labels,
                )
            )

    for key, description in _SCHEDULER_TOTALS.items():
        lines.extend(
            _format_metric(
                f"credit_rewards_scheduler_{key}_total",
                description,
                scheduler_snapshot.totals.get(key, 0),
            )
        )

    for job_id, job in scheduler_snapshot.jobs.items():
        labels = {"job_id": job_id, "task": job.task}
        lines.extend(
            _format_metric(
                "credit_rewards_scheduler_job_consecutive_failures",
                "Consecutive scheduler run failures per job",
                job.totals.get("consecutive_failures", 0),
                labels=labels,
            )
        )
        lines.extend(
            _format_metric(
                "credit_rewards_scheduler_job_runtime_seconds_total",
                "Total runtime seconds per scheduler job",
                job.runtime_seconds,
                labels=labels,
            )
        )
        if job.last_success_at:
            lines.extend(
                _format_metric(
                    "credit_rewards_scheduler_job_last_success_timestamp",
                    "Last successful scheduler run timestamp",
                    job.last_success_at.timestamp(),
                    labels=labels,
                )
            )

    body = "\n".join(lines) + "\n"
    return PlainTextResponse(content=body, media_type="text/plain; version=0.0.4")
