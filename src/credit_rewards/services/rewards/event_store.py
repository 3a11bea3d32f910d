"""Append-only persistence for reward events."""

from __future__ import annotations

import datetime as dt
from typing import Any, Callable, Iterable, Sequence

from loguru import logger
from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from credit_rewards.models.reward_event import RewardEvent, RewardEventStatus
from .caps import KeyPart
from .definitions import EventKey, RewardEventLog
from .errors import DuplicateRewardEvent

Clock = Callable[[], dt.datetime]

_KEY_COLUMNS = ("type", "to_user_id", "by_user_id", "for_id")


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _ensure_aware(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


class RewardEventStore:
    """Versioned reward event log backed by the ``reward_events`` table.

    Rows are only ever inserted. ``update`` writes the next version of each
    event and every read resolves the latest version per key. Writes commit
    immediately so an event is durable before any ledger call is made.
    """

    def __init__(self, session: AsyncSession, *, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or _utcnow

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def append(self, event: RewardEventLog) -> RewardEventLog:
        """Insert the first version of an event."""

        recorded_time = _ensure_aware(event.time or self._clock())
        self._session.add(self._to_row(event, version=1, time=recorded_time, recorded_at=recorded_time))
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise DuplicateRewardEvent(
                f"Reward event {event.type}:{event.for_id} already recorded "
                f"for user {event.to_user_id}"
            ) from exc

        event.version = 1
        event.time = recorded_time
        return event

    async def update(
        self,
        events: Sequence[RewardEventLog],
        *,
        recorded_at: dt.datetime | None = None,
    ) -> None:
        """Record a new version of each event.

        ``time`` keeps the first-insert arrival time; ``recorded_at`` stamps
        the new version and is what cap windows are measured against.
        """

        if not events:
            return

        stamped_at = _ensure_aware(recorded_at or self._clock())

        for event in events:
            if event.version < 1:
                raise ValueError(f"Reward event {event.type}:{event.for_id} was never appended")
            self._session.add(
                self._to_row(
                    event,
                    version=event.version + 1,
                    time=_ensure_aware(event.time or stamped_at),
                    recorded_at=stamped_at,
                )
            )
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise DuplicateRewardEvent("Concurrent reward event update detected") from exc

        for event in events:
            event.version += 1
        logger.debug("Recorded reward event versions", count=len(events))

    async def latest(self, key: EventKey) -> RewardEventLog | None:
        events = await self._select_latest(
            key_filters=[
                RewardEvent.type == key.type,
                RewardEvent.to_user_id == key.to_user_id,
                RewardEvent.by_user_id == key.by_user_id,
                RewardEvent.for_id == key.for_id,
            ]
        )
        return events[0] if events else None

    async def query(
        self,
        *,
        types: Iterable[str] | None = None,
        statuses: Iterable[RewardEventStatus] | None = None,
        to_user_id: int | None = None,
        since: dt.datetime | None = None,
        limit: int | None = None,
    ) -> list[RewardEventLog]:
        """Latest version of every matching event, in arrival order."""

        key_filters: list[Any] = []
        if types is not None:
            key_filters.append(RewardEvent.type.in_(list(types)))
        if to_user_id is not None:
            key_filters.append(RewardEvent.to_user_id == to_user_id)

        row_filters: list[Any] = []
        if statuses is not None:
            row_filters.append(RewardEvent.status.in_(list(statuses)))
        if since is not None:
            row_filters.append(RewardEvent.time >= _ensure_aware(since))

        return await self._select_latest(key_filters=key_filters, row_filters=row_filters, limit=limit)

    async def list_pending(self, types: Iterable[str]) -> list[RewardEventLog]:
        return await self.query(types=types, statuses=[RewardEventStatus.PENDING])

    async def sum_awarded(
        self,
        *,
        types: Iterable[str],
        key_parts: Sequence[KeyPart],
        groups: Iterable[tuple[Any, ...]],
        since: dt.datetime | None = None,
    ) -> dict[tuple[Any, ...], int]:
        """Total awarded amount per ``key_parts`` group among ``groups``."""

        wanted = {tuple(group) for group in groups}
        if not wanted:
            return {}

        # Narrow per column in SQL; the exact tuple match happens below.
        key_filters: list[Any] = [RewardEvent.type.in_(list(types))]
        for index, part in enumerate(key_parts):
            values = sorted({group[index] for group in wanted}, key=str)
            key_filters.append(getattr(RewardEvent, part).in_(values))

        latest = self._latest_subquery(key_filters)
        group_columns = [getattr(RewardEvent, part) for part in key_parts]
        stmt = (
            select(*group_columns, func.sum(RewardEvent.award_amount).label("total"))
            .join(latest, self._join_condition(latest))
            .where(RewardEvent.status == RewardEventStatus.AWARDED)
            .group_by(*group_columns)
        )
        if since is not None:
            # Windows follow when the awarding version was written, not when the
            # action first arrived.
            stmt = stmt.where(RewardEvent.recorded_at >= _ensure_aware(since))

        result = await self._session.execute(stmt)
        totals: dict[tuple[Any, ...], int] = {}
        for row in result.all():
            values = tuple(row[: len(key_parts)])
            if values in wanted:
                totals[values] = int(row.total or 0)
        return totals

    def _latest_subquery(self, key_filters: Sequence[Any]):
        return (
            select(
                RewardEvent.type,
                RewardEvent.to_user_id,
                RewardEvent.by_user_id,
                RewardEvent.for_id,
                func.max(RewardEvent.version).label("version"),
                func.min(RewardEvent.id).label("first_id"),
            )
            .where(*key_filters)
            .group_by(
                RewardEvent.type,
                RewardEvent.to_user_id,
                RewardEvent.by_user_id,
                RewardEvent.for_id,
            )
            .subquery()
        )

    @staticmethod
    def _join_condition(latest: Any) -> Any:
        return and_(
            *(getattr(RewardEvent, column) == getattr(latest.c, column) for column in _KEY_COLUMNS),
            RewardEvent.version == latest.c.version,
        )

    async def _select_latest(
        self,
        *,
        key_filters: Sequence[Any],
        row_filters: Sequence[Any] = (),
        limit: int | None = None,
    ) -> list[RewardEventLog]:
        latest = self._latest_subquery(key_filters)
        stmt = (
            select(RewardEvent)
            .join(latest, self._join_condition(latest))
            .where(*row_filters)
            .order_by(latest.c.first_id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [self._from_row(row) for row in result.scalars().all()]

    @staticmethod
    def _to_row(
        event: RewardEventLog,
        *,
        version: int,
        time: dt.datetime,
        recorded_at: dt.datetime,
    ) -> RewardEvent:
        return RewardEvent(
            type=event.type,
            to_user_id=event.to_user_id,
            by_user_id=event.by_user_id,
            for_id=event.for_id,
            award_amount=event.award_amount,
            multiplier=event.multiplier,
            status=event.status,
            ip=event.ip,
            transaction_details=dict(event.transaction_details or {}),
            version=version,
            time=time,
            recorded_at=recorded_at,
        )

    @staticmethod
    def _from_row(row: RewardEvent) -> RewardEventLog:
        return RewardEventLog(
            type=row.type,
            to_user_id=row.to_user_id,
            by_user_id=row.by_user_id,
            for_id=row.for_id,
            award_amount=int(row.award_amount or 0),
            status=row.status,
            multiplier=float(row.multiplier if row.multiplier is not None else 1.0),
            ip=row.ip,
            transaction_details=dict(row.transaction_details or {}),
            version=int(row.version),
            time=_ensure_aware(row.time) if row.time else None,
        )


__all__ = ["RewardEventStore"]
