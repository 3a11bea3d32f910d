"""Application engine: resolves, caps and records a single reward request."""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from credit_rewards.db.session import SessionFactory, open_session
from credit_rewards.models.reward_event import RewardEventStatus
from credit_rewards.observability.rewards import get_reward_store
from credit_rewards.services.ledger import BalanceLedger, SqlBalanceLedger
from .caps import progressive_award
from .definitions import (
    EventKey,
    KeyContext,
    OnDemandRewardDefinition,
    ProcessableRewardDefinition,
    RewardDefinition,
    RewardEventLog,
)
from .errors import DuplicateRewardEvent, RewardRecordError, RewardSendError
from .event_store import RewardEventStore
from .idempotency_cache import IdempotencyCache, InMemoryIdempotencyCache
from .transfers import build_credit_instruction, normalize_ip

MultiplierProvider = Callable[[int], Awaitable[float]]
LedgerFactory = Callable[[AsyncSession], BalanceLedger]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class RewardRuntime:
    """Collaborators shared by every reward handle in a registry."""

    session_factory: SessionFactory
    cache: IdempotencyCache = field(default_factory=InMemoryIdempotencyCache)
    ledger_factory: LedgerFactory = SqlBalanceLedger
    multipliers: MultiplierProvider | None = None
    clock: Callable[[], dt.datetime] = _utcnow

    async def multiplier_for(self, user_id: int) -> float:
        if self.multipliers is None:
            return 1.0
        return float(await self.multipliers(user_id))


@dataclass
class RewardDetails:
    """User-facing summary of a reward type."""

    type: str
    description: str
    award_amount: int
    on_demand: bool
    cap: int | None
    interval: str | None
    trigger_description: str | None
    tooltip: str | None
    # -1 when the awarded total is only known after settlement.
    awarded: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "awardAmount": self.award_amount,
            "onDemand": self.on_demand,
            "cap": self.cap,
            "interval": self.interval,
            "triggerDescription": self.trigger_description,
            "tooltip": self.tooltip,
            "awarded": self.awarded,
        }


class RewardApplicationEngine:
    """Runs one ``apply`` call end to end."""

    def __init__(self, runtime: RewardRuntime) -> None:
        self._runtime = runtime
        self._observability = get_reward_store()

    async def apply(
        self,
        definition: RewardDefinition,
        payload: Any,
        ip: str | None = None,
    ) -> RewardEventLog | None:
        """Apply ``definition`` to ``payload``.

        Returns the recorded event, or ``None`` when the payload does not
        qualify or the occurrence was already rewarded.
        """

        now = self._runtime.clock()
        session = await open_session(self._runtime.session_factory)
        async with session as managed_session:
            context = KeyContext(session=managed_session, now=now)
            reward_key = await definition.get_key(payload, context)
            if reward_key is None:
                self._observability.record_outcome(definition.type, "not_qualified")
                return None

            key = EventKey.from_reward_key(definition.type, reward_key)
            transaction_details: dict[str, Any] = {}
            if definition.get_transaction_details is not None:
                transaction_details = await definition.get_transaction_details(payload, context) or {}

            event = RewardEventLog.for_key(
                key,
                award_amount=definition.award_amount,
                multiplier=await self._runtime.multiplier_for(key.to_user_id),
                ip=normalize_ip(ip),
                transaction_details=transaction_details,
            )
            store = RewardEventStore(managed_session, clock=self._runtime.clock)

            if isinstance(definition, ProcessableRewardDefinition):
                return await self._record_pending(definition, store, event)
            return await self._apply_on_demand(definition, store, event, now=now)

    async def _record_pending(
        self,
        definition: ProcessableRewardDefinition[Any],
        store: RewardEventStore,
        event: RewardEventLog,
    ) -> RewardEventLog | None:
        try:
            await store.append(event)
        except DuplicateRewardEvent:
            self._observability.record_outcome(definition.type, "duplicate")
            logger.debug("Reward event already queued", reward_type=event.type, for_id=event.for_id)
            return None
        except Exception as exc:
            self._fail(definition, event, "record", "Failed to record reward event")
            raise RewardRecordError(f"Failed to record reward event: {exc}") from exc

        self._observability.record_outcome(definition.type, "pending")
        return event

    async def _apply_on_demand(
        self,
        definition: OnDemandRewardDefinition[Any],
        store: RewardEventStore,
        event: RewardEventLog,
        *,
        now: dt.datetime,
    ) -> RewardEventLog | None:
        cache = self._runtime.cache
        key_hash = event.key.hash()
        claim = await cache.claim(event.to_user_id, definition.type, key_hash, now=now)
        if not claim.claimed:
            self._observability.record_outcome(definition.type, "duplicate")
            return None

        to_award = progressive_award(definition.award_amount, claim.prior_count, definition.cap)
        event.award_amount = to_award
        event.status = RewardEventStatus.AWARDED if to_award > 0 else RewardEventStatus.CAPPED

        try:
            await store.append(event)
        except DuplicateRewardEvent:
            # Paid on an earlier day; the cache entry must not count against today's cap.
            await cache.release(event.to_user_id, definition.type, key_hash)
            self._observability.record_outcome(definition.type, "duplicate")
            return None
        except Exception as exc:
            await cache.release(event.to_user_id, definition.type, key_hash)
            self._fail(definition, event, "record", "Failed to record reward event")
            raise RewardRecordError(f"Failed to record reward event: {exc}") from exc

        if event.status is RewardEventStatus.CAPPED:
            self._observability.record_outcome(definition.type, "capped")
            return event

        ledger = self._runtime.ledger_factory(store.session)
        try:
            await ledger.credit(build_credit_instruction(definition, event))
        except Exception as exc:
            self._fail(definition, event, "send", "Failed to send award for reward event")
            raise RewardSendError(
                f"Failed to send award for reward event {event.type}:{event.for_id} "
                f"to user {event.to_user_id}: {exc}"
            ) from exc

        self._observability.record_outcome(definition.type, "awarded")
        logger.info(
            "Awarded on-demand reward",
            reward_type=event.type,
            to_user_id=event.to_user_id,
            amount=event.award_amount,
        )
        return event

    def _fail(self, definition: RewardDefinition, event: RewardEventLog, phase: str, message: str) -> None:
        self._observability.record_failure(definition.type, phase)
        logger.bind(
            reward_type=event.type,
            to_user_id=event.to_user_id,
            by_user_id=event.by_user_id,
            for_id=event.for_id,
            award_amount=event.award_amount,
            status=event.status.value,
        ).exception(message)

    async def get_user_reward_details(self, definition: RewardDefinition, user_id: int) -> RewardDetails:
        on_demand = isinstance(definition, OnDemandRewardDefinition)
        if on_demand:
            cap, interval = definition.cap, None
        else:
            cap, cap_interval = definition.display_cap
            interval = cap_interval.value if cap_interval else None

        details = RewardDetails(
            type=definition.type,
            description=definition.description,
            award_amount=definition.award_amount,
            on_demand=on_demand,
            cap=cap,
            interval=interval,
            trigger_description=definition.trigger_description,
            tooltip=definition.tooltip,
            awarded=-1,
        )

        multiplier = await self._runtime.multiplier_for(user_id)
        if multiplier != 1:
            details.award_amount = math.ceil(multiplier * details.award_amount)
            if details.cap is not None:
                details.cap = math.ceil(multiplier * details.cap)

        if on_demand:
            entries = await self._runtime.cache.entries(user_id, definition.type, now=self._runtime.clock())
            awarded = len(entries) * details.award_amount
            details.awarded = min(awarded, details.cap) if details.cap is not None else awarded

        return details


__all__ = [
    "LedgerFactory",
    "MultiplierProvider",
    "RewardApplicationEngine",
    "RewardDetails",
    "RewardRuntime",
]
