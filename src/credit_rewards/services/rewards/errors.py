"""Exceptions raised by the reward engines."""

from __future__ import annotations

from typing import Literal

SettlementPhase = Literal["update", "send"]


class RewardError(Exception):
    """Base class for reward engine failures."""


class RewardRegistrationError(RewardError):
    """Raised at startup when a reward definition cannot be registered."""


class InvalidRewardTransition(RewardError):
    """Raised when a reward event is moved between incompatible statuses."""


class DuplicateRewardEvent(RewardError):
    """Raised by the event store when the key/version already exists."""


class RewardRecordError(RewardError):
    """The reward event could not be written to the event store."""


class RewardSendError(RewardError):
    """The reward was recorded but the ledger transfer failed."""


class RewardSettlementError(RewardError):
    """A settlement chunk failed; earlier chunks remain committed."""

    def __init__(self, reward_type: str, phase: SettlementPhase, chunk_index: int) -> None:
        self.reward_type = reward_type
        self.phase = phase
        self.chunk_index = chunk_index
        super().__init__(
            f"Failed to {phase} reward events for {reward_type} (chunk {chunk_index})"
        )


__all__ = [
    "DuplicateRewardEvent",
    "InvalidRewardTransition",
    "RewardError",
    "RewardRecordError",
    "RewardRegistrationError",
    "RewardSendError",
    "RewardSettlementError",
    "SettlementPhase",
]
