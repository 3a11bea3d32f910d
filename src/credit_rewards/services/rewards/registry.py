"""Registry of reward types and the handles callers use to apply them."""

from __future__ import annotations

import datetime as dt
from typing import Any, Generic, Iterable, TypeVar

from loguru import logger

from credit_rewards.db.session import open_session
from .definitions import (
    OnDemandRewardDefinition,
    ProcessableRewardDefinition,
    RewardDefinition,
    RewardEventLog,
)
from .engine import RewardApplicationEngine, RewardDetails, RewardRuntime
from .errors import RewardError, RewardRegistrationError
from .settlement import RewardSettlementEngine, SettlementSummary

T = TypeVar("T")


class RewardHandle(Generic[T]):
    """Entry point for one registered reward type."""

    def __init__(self, definition: RewardDefinition, runtime: RewardRuntime) -> None:
        self._definition = definition
        self._runtime = runtime
        self._engine = RewardApplicationEngine(runtime)

    @property
    def definition(self) -> RewardDefinition:
        return self._definition

    @property
    def type(self) -> str:
        return self._definition.type

    @property
    def visible(self) -> bool:
        return self._definition.visible

    @property
    def on_demand(self) -> bool:
        return isinstance(self._definition, OnDemandRewardDefinition)

    @property
    def types(self) -> list[str]:
        if isinstance(self._definition, ProcessableRewardDefinition):
            return self._definition.types
        return [self._definition.type]

    async def apply(self, payload: T, ip: str | None = None) -> RewardEventLog | None:
        return await self._engine.apply(self._definition, payload, ip=ip)

    async def get_user_reward_details(self, user_id: int) -> RewardDetails:
        return await self._engine.get_user_reward_details(self._definition, user_id)

    async def settle(
        self,
        *,
        now: dt.datetime | None = None,
        last_update: dt.datetime | None = None,
        chunk_size: int | None = None,
    ) -> SettlementSummary:
        """Run the settlement sweep for this reward group."""

        if not isinstance(self._definition, ProcessableRewardDefinition):
            raise RewardError(f"Reward type {self.type} is settled on demand")

        session = await open_session(self._runtime.session_factory)
        async with session as managed_session:
            engine = RewardSettlementEngine(
                managed_session,
                ledger=self._runtime.ledger_factory(managed_session),
                chunk_size=chunk_size,
                clock=self._runtime.clock,
            )
            return await engine.settle(self._definition, now=now, last_update=last_update)

    def __repr__(self) -> str:
        mode = "on_demand" if self.on_demand else "processable"
        return f"RewardHandle(type={self.type!r}, mode={mode})"


class RewardRegistry:
    """Holds every reward definition the process knows about."""

    def __init__(self, runtime: RewardRuntime) -> None:
        self._runtime = runtime
        self._handles: dict[str, RewardHandle[Any]] = {}

    @property
    def runtime(self) -> RewardRuntime:
        return self._runtime

    def register(self, definition: RewardDefinition) -> RewardHandle[Any]:
        if definition.type in self._handles:
            raise RewardRegistrationError(f"Reward type {definition.type} is already registered")
        if isinstance(definition, ProcessableRewardDefinition):
            for included in definition.include_types:
                owner = self.group(included)
                if owner is not None:
                    raise RewardRegistrationError(
                        f"Reward type {included} is already settled by {owner.type}"
                    )

        handle: RewardHandle[Any] = RewardHandle(definition, self._runtime)
        self._handles[definition.type] = handle
        logger.debug("Registered reward type", reward_type=definition.type, on_demand=handle.on_demand)
        return handle

    def register_all(self, definitions: Iterable[RewardDefinition]) -> list[RewardHandle[Any]]:
        return [self.register(definition) for definition in definitions]

    def get(self, reward_type: str) -> RewardHandle[Any]:
        try:
            return self._handles[reward_type]
        except KeyError as exc:
            raise RewardError(f"Unknown reward type {reward_type}") from exc

    def handles(self) -> list[RewardHandle[Any]]:
        return list(self._handles.values())

    def processable(self) -> list[RewardHandle[Any]]:
        return [handle for handle in self._handles.values() if not handle.on_demand]

    def group(self, reward_type: str) -> RewardHandle[Any] | None:
        """Return the processable handle whose sweep settles ``reward_type``."""

        for handle in self.processable():
            if reward_type in handle.types:
                return handle
        return None

    def __contains__(self, reward_type: object) -> bool:
        return reward_type in self._handles

    def __len__(self) -> int:
        return len(self._handles)


__all__ = ["RewardHandle", "RewardRegistry"]
