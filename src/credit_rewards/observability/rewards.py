from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Mapping


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RewardSnapshot:
    outcomes: Dict[str, Dict[str, int]]
    failures: Dict[str, Dict[str, int]]
    settlements: Dict[str, Dict[str, object]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "outcomes": {key: dict(value) for key, value in self.outcomes.items()},
            "failures": {key: dict(value) for key, value in self.failures.items()},
            "settlements": {key: dict(value) for key, value in self.settlements.items()},
        }

    def totals(self) -> Dict[str, int]:
        totals: Dict[str, int] = defaultdict(int)
        for counts in self.outcomes.values():
            for outcome, value in counts.items():
                totals[outcome] += value
        for counts in self.failures.values():
            for phase, value in counts.items():
                totals[f"failed_{phase}"] += value
        return dict(totals)


class RewardObservabilityStore:
    """Collect reward engine telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._outcomes: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._failures: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._settlements: Dict[str, Dict[str, object]] = {}

    def record_outcome(self, reward_type: str, outcome: str) -> None:
        """Count an apply outcome: awarded, capped, pending, duplicate, not_qualified."""

        with self._lock:
            self._outcomes[reward_type][outcome] += 1

    def record_failure(self, reward_type: str, phase: str) -> None:
        with self._lock:
            self._failures[reward_type][phase] += 1

    def record_settlement(self, reward_type: str, summary: Mapping[str, int]) -> None:
        with self._lock:
            state = self._settlements.setdefault(reward_type, {"runs": 0})
            state["runs"] = int(state.get("runs", 0)) + 1
            for key, value in summary.items():
                state[f"last_{key}"] = value
                state[f"total_{key}"] = int(state.get(f"total_{key}", 0)) + int(value)
            state["last_completed_at"] = _utcnow().isoformat()

    def snapshot(self) -> RewardSnapshot:
        with self._lock:
            outcomes = {key: dict(value) for key, value in self._outcomes.items()}
            failures = {key: dict(value) for key, value in self._failures.items()}
            settlements = {key: dict(value) for key, value in self._settlements.items()}
        return RewardSnapshot(outcomes=outcomes, failures=failures, settlements=settlements)

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._failures.clear()
            self._settlements.clear()


_STORE = RewardObservabilityStore()


def get_reward_store() -> RewardObservabilityStore:
    return _STORE


__all__ = ["get_reward_store", "RewardObservabilityStore", "RewardSnapshot"]
