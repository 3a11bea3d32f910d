"""Settlement engine: decides pending batch rewards and pays them in chunks."""

from __future__ import annotations

import datetime as dt
from dataclasses import asdict, dataclass
from typing import Any, Callable, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from credit_rewards.core.settings import settings
from credit_rewards.models.reward_event import RewardEventStatus
from credit_rewards.observability.rewards import get_reward_store
from credit_rewards.services.ledger import BalanceLedger, SqlBalanceLedger
from .caps import CapTracker, cap_key, interval_start
from .definitions import ProcessableRewardDefinition, ProcessingContext, RewardEventLog
from .errors import RewardSettlementError, SettlementPhase
from .event_store import RewardEventStore
from .transfers import build_credit_instruction


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class SettlementSummary:
    """Counts for one settlement sweep of a reward group."""

    processed: int = 0
    awarded: int = 0
    capped: int = 0
    unqualified: int = 0
    amount_awarded: int = 0
    chunks: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class RewardSettlementEngine:
    """Settle every pending event of one processable reward group.

    Only one sweep per group may run at a time: two concurrent sweeps would
    read the same prior totals and could jointly exceed a cap.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        ledger: BalanceLedger | None = None,
        chunk_size: int | None = None,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or _utcnow
        self._store = RewardEventStore(session, clock=self._clock)
        self._ledger = ledger or SqlBalanceLedger(session)
        self._chunk_size = max(int(chunk_size or settings.reward_settlement_chunk_size), 1)
        self._observability = get_reward_store()

    async def settle(
        self,
        definition: ProcessableRewardDefinition[Any],
        *,
        now: dt.datetime | None = None,
        last_update: dt.datetime | None = None,
    ) -> SettlementSummary:
        now = now or self._clock()
        summary = SettlementSummary()

        events = await self._store.list_pending(definition.types)
        if not events:
            logger.debug("No pending reward events", reward_type=definition.type)
            return summary

        if definition.preprocess is not None:
            await definition.preprocess(
                ProcessingContext(
                    to_process=events,
                    last_update=last_update,
                    session=self._session,
                    now=now,
                )
            )

        for event in events:
            if event.status is RewardEventStatus.UNQUALIFIED:
                event.award_amount = 0
        targeted = [event for event in events if event.status is RewardEventStatus.PENDING]

        tracker = await self._load_prior_awards(definition, targeted, now)
        for event in targeted:
            event.award_amount = tracker.clamp(event, event.award_amount)
            if event.award_amount > 0:
                event.transition(RewardEventStatus.AWARDED)
                tracker.consume(event, event.award_amount)
            else:
                event.transition(RewardEventStatus.CAPPED)

        await self._commit(definition, events, summary, now)

        self._observability.record_settlement(definition.type, summary.as_dict())
        logger.bind(reward_type=definition.type, summary=summary.as_dict()).info(
            "Reward settlement completed"
        )
        return summary

    async def _load_prior_awards(
        self,
        definition: ProcessableRewardDefinition[Any],
        targeted: Sequence[RewardEventLog],
        now: dt.datetime,
    ) -> CapTracker:
        tracker = CapTracker(rules=definition.caps)
        if not targeted:
            return tracker

        for rule in definition.caps:
            groups = {rule.values_for(event) for event in targeted}
            totals = await self._store.sum_awarded(
                types=definition.types,
                key_parts=rule.key_parts,
                groups=groups,
                since=interval_start(rule.interval, now),
            )
            for values, total in totals.items():
                tracker.seed(cap_key(rule.key_parts, rule.interval, values), total)
        return tracker

    async def _commit(
        self,
        definition: ProcessableRewardDefinition[Any],
        events: Sequence[RewardEventLog],
        summary: SettlementSummary,
        now: dt.datetime,
    ) -> None:
        chunks = [events[index : index + self._chunk_size] for index in range(0, len(events), self._chunk_size)]
        for chunk_index, chunk in enumerate(chunks):
            phase: SettlementPhase = "update"
            try:
                await self._store.update(chunk, recorded_at=now)

                phase = "send"
                instructions = [
                    build_credit_instruction(definition, event)
                    for event in chunk
                    if event.award_amount > 0
                ]
                if instructions:
                    await self._ledger.credit_many(instructions)
            except Exception as exc:
                self._observability.record_failure(definition.type, phase)
                logger.bind(
                    reward_type=definition.type,
                    phase=phase,
                    chunk_index=chunk_index,
                    chunk_size=len(chunk),
                ).exception("Reward settlement chunk failed")
                if phase == "send":
                    try:
                        await self._reset_chunk(definition, chunk, now)
                    except Exception:
                        logger.bind(reward_type=definition.type, chunk_index=chunk_index).exception(
                            "Failed to reset reward events after send failure"
                        )
                raise RewardSettlementError(definition.type, phase, chunk_index) from exc

            summary.chunks += 1
            for event in chunk:
                summary.processed += 1
                if event.status is RewardEventStatus.AWARDED:
                    summary.awarded += 1
                    summary.amount_awarded += event.award_amount
                elif event.status is RewardEventStatus.CAPPED:
                    summary.capped += 1
                elif event.status is RewardEventStatus.UNQUALIFIED:
                    summary.unqualified += 1

    async def _reset_chunk(
        self,
        definition: ProcessableRewardDefinition[Any],
        chunk: Sequence[RewardEventLog],
        now: dt.datetime,
    ) -> None:
        """Return a chunk whose transfers failed to the unsettled pool."""

        # Drop any partial ledger writes left on the shared session.
        await self._session.rollback()
        for event in chunk:
            if event.status is RewardEventStatus.UNQUALIFIED:
                continue
            if event.status is not RewardEventStatus.PENDING:
                event.transition(RewardEventStatus.PENDING)
            event.award_amount = definition.award_amount
        await self._store.update(chunk, recorded_at=now)
        logger.warning(
            "Reset reward events to pending after send failure",
            reward_type=definition.type,
            count=len(chunk),
        )


__all__ = ["RewardSettlementEngine", "SettlementSummary"]
