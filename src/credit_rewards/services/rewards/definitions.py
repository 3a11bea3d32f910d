"""Reward definitions and the in-memory shapes the engines pass around."""

from __future__ import annotations

import datetime as dt
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from sqlalchemy.ext.asyncio import AsyncSession

from credit_rewards.models.reward_event import RewardEventStatus
from .caps import CapInterval, CapRule
from .errors import InvalidRewardTransition

T = TypeVar("T")

_ALLOWED_TRANSITIONS: dict[RewardEventStatus, set[RewardEventStatus]] = {
    RewardEventStatus.PENDING: {
        RewardEventStatus.AWARDED,
        RewardEventStatus.CAPPED,
        RewardEventStatus.UNQUALIFIED,
    },
    # Only reachable when a settlement chunk fails to send and is reset.
    RewardEventStatus.AWARDED: {RewardEventStatus.PENDING},
    RewardEventStatus.CAPPED: {RewardEventStatus.PENDING},
    RewardEventStatus.UNQUALIFIED: set(),
}


@dataclass(frozen=True)
class RewardKey:
    """Semantic identity returned by a definition's ``get_key``.

    ``type`` refines the definition type when set (``goodContent:image``).
    """

    to_user_id: int
    by_user_id: int
    for_id: int | str
    type: str | None = None


@dataclass(frozen=True)
class EventKey:
    """Fully resolved identity of a reward occurrence."""

    type: str
    to_user_id: int
    by_user_id: int
    for_id: str

    @classmethod
    def from_reward_key(cls, base_type: str, key: RewardKey) -> "EventKey":
        return cls(
            type=key.type or base_type,
            to_user_id=int(key.to_user_id),
            by_user_id=int(key.by_user_id),
            for_id=str(key.for_id),
        )

    def hash(self) -> str:
        payload = json.dumps(
            {
                "type": self.type,
                "toUserId": self.to_user_id,
                "byUserId": self.by_user_id,
                "forId": self.for_id,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class RewardEventLog:
    """Working copy of the latest version of a reward event."""

    type: str
    to_user_id: int
    by_user_id: int
    for_id: str
    award_amount: int
    status: RewardEventStatus = RewardEventStatus.PENDING
    multiplier: float = 1.0
    ip: str | None = None
    transaction_details: dict[str, Any] = field(default_factory=dict)
    version: int = 0
    time: dt.datetime | None = None

    @classmethod
    def for_key(
        cls,
        key: EventKey,
        *,
        award_amount: int,
        status: RewardEventStatus = RewardEventStatus.PENDING,
        multiplier: float = 1.0,
        ip: str | None = None,
        transaction_details: dict[str, Any] | None = None,
    ) -> "RewardEventLog":
        return cls(
            type=key.type,
            to_user_id=key.to_user_id,
            by_user_id=key.by_user_id,
            for_id=key.for_id,
            award_amount=award_amount,
            status=status,
            multiplier=multiplier,
            ip=ip,
            transaction_details=dict(transaction_details or {}),
        )

    @property
    def key(self) -> EventKey:
        return EventKey(
            type=self.type,
            to_user_id=self.to_user_id,
            by_user_id=self.by_user_id,
            for_id=self.for_id,
        )

    def transition(self, status: RewardEventStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidRewardTransition(
                f"Reward event {self.type}:{self.for_id} cannot move from "
                f"{self.status.value} to {status.value}"
            )
        self.status = status

    def mark_unqualified(self) -> None:
        self.transition(RewardEventStatus.UNQUALIFIED)
        self.award_amount = 0


@dataclass
class KeyContext:
    """Collaborators available to ``get_key`` and transaction detail hooks."""

    session: AsyncSession
    now: dt.datetime


@dataclass
class ProcessingContext:
    """Batch handed to a processable definition's ``preprocess`` hook."""

    to_process: list[RewardEventLog]
    last_update: dt.datetime | None
    session: AsyncSession
    now: dt.datetime


GetKey = Callable[[T, KeyContext], Awaitable[RewardKey | None]]
GetTransactionDetails = Callable[[T, KeyContext], Awaitable[dict[str, Any] | None]]
Preprocess = Callable[[ProcessingContext], Awaitable[None]]


@dataclass(frozen=True)
class _RewardDefinitionBase(Generic[T]):
    type: str
    description: str
    award_amount: int
    get_key: GetKey[T]
    trigger_description: str | None = None
    tooltip: str | None = None
    visible: bool = True
    get_transaction_details: GetTransactionDetails[T] | None = None
    # Ledger idempotency keyed on the caller IP instead of the user pair.
    ip_scoped: bool = False

    def __post_init__(self) -> None:
        if not self.type:
            raise ValueError("Reward definitions require a type")
        if self.award_amount < 0:
            raise ValueError("Reward award amount must be non-negative")


@dataclass(frozen=True)
class OnDemandRewardDefinition(_RewardDefinitionBase[T]):
    """Reward decided and paid synchronously when it is applied."""

    cap: int | None = None


@dataclass(frozen=True)
class ProcessableRewardDefinition(_RewardDefinitionBase[T]):
    """Reward recorded as pending and decided by the settlement sweep."""

    include_types: tuple[str, ...] = ()
    caps: tuple[CapRule, ...] = ()
    preprocess: Preprocess | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "include_types", tuple(self.include_types))
        object.__setattr__(self, "caps", tuple(self.caps))

    @property
    def types(self) -> list[str]:
        return [self.type, *self.include_types]

    @property
    def display_cap(self) -> tuple[int | None, CapInterval | None]:
        """First windowed cap, which is what users are shown."""

        for rule in self.caps:
            if rule.interval is not None:
                return rule.amount, rule.interval
        return None, None


RewardDefinition = Union[OnDemandRewardDefinition[Any], ProcessableRewardDefinition[Any]]


__all__ = [
    "EventKey",
    "GetKey",
    "KeyContext",
    "OnDemandRewardDefinition",
    "Preprocess",
    "ProcessableRewardDefinition",
    "ProcessingContext",
    "RewardDefinition",
    "RewardEventLog",
    "RewardKey",
]
