import datetime as dt

import pytest
from sqlalchemy import func, select

from credit_rewards.models.reward_event import RewardEvent, RewardEventStatus
from credit_rewards.services.rewards import (
    DuplicateRewardEvent,
    EventKey,
    InvalidRewardTransition,
    RewardEventLog,
    RewardEventStore,
)
from tests.doubles import FixedClock

NOW = dt.datetime(2026, 10, 18, 12, 0, tzinfo=dt.timezone.utc)


def _event(for_id: str, *, to_user_id: int = 1, amount: int = 5, reward_type: str = "goodContent") -> RewardEventLog:
    return RewardEventLog(
        type=reward_type,
        to_user_id=to_user_id,
        by_user_id=2,
        for_id=for_id,
        award_amount=amount,
    )


@pytest.mark.asyncio
async def test_append_sets_first_version_and_time(session_factory) -> None:
    async with session_factory() as session:
        store = RewardEventStore(session, clock=FixedClock(NOW))
        event = await store.append(_event("post-1"))

        assert event.version == 1
        assert event.time == NOW

        stored = await store.latest(EventKey(type="goodContent", to_user_id=1, by_user_id=2, for_id="post-1"))
        assert stored is not None
        assert stored.status is RewardEventStatus.PENDING
        assert stored.time == NOW


@pytest.mark.asyncio
async def test_append_rejects_duplicate_key(session_factory) -> None:
    async with session_factory() as session:
        store = RewardEventStore(session)
        await store.append(_event("post-1"))

        with pytest.raises(DuplicateRewardEvent):
            await store.append(_event("post-1"))

        # The session stays usable after the rollback.
        await store.append(_event("post-2"))
        assert len(await store.list_pending(["goodContent"])) == 2


@pytest.mark.asyncio
async def test_update_inserts_new_version_without_touching_old_rows(session_factory) -> None:
    async with session_factory() as session:
        store = RewardEventStore(session, clock=FixedClock(NOW))
        event = await store.append(_event("post-1"))

        event.transition(RewardEventStatus.AWARDED)
        event.award_amount = 3
        await store.update([event])

        assert event.version == 2
        rows = (await session.execute(select(RewardEvent).order_by(RewardEvent.version))).scalars().all()
        assert [(row.version, row.status, row.award_amount) for row in rows] == [
            (1, RewardEventStatus.PENDING, 5),
            (2, RewardEventStatus.AWARDED, 3),
        ]

        latest = await store.latest(event.key)
        assert latest is not None
        assert latest.status is RewardEventStatus.AWARDED
        assert latest.version == 2
        assert latest.time == NOW
        assert await store.list_pending(["goodContent"]) == []


@pytest.mark.asyncio
async def test_update_requires_appended_event(session_factory) -> None:
    async with session_factory() as session:
        store = RewardEventStore(session)
        with pytest.raises(ValueError):
            await store.update([_event("never-stored")])


@pytest.mark.asyncio
async def test_pending_keeps_arrival_order_across_versions(session_factory) -> None:
    async with session_factory() as session:
        store = RewardEventStore(session)
        first = await store.append(_event("a"))
        await store.append(_event("b"))
        await store.append(_event("c", reward_type="goodContent:image"))
        await store.append(_event("d", reward_type="userReferred"))

        # A newer version of "a" must not move it behind later arrivals.
        first.transition(RewardEventStatus.CAPPED)
        await store.update([first])
        first.transition(RewardEventStatus.PENDING)
        await store.update([first])

        pending = await store.list_pending(["goodContent", "goodContent:image"])
        assert [event.for_id for event in pending] == ["a", "b", "c"]
        assert pending[0].version == 3


@pytest.mark.asyncio
async def test_sum_awarded_groups_latest_awarded_versions(session_factory) -> None:
    async with session_factory() as session:
        store = RewardEventStore(session, clock=FixedClock(NOW))
        events = [
            await store.append(_event("a", to_user_id=1, amount=5)),
            await store.append(_event("b", to_user_id=1, amount=7)),
            await store.append(_event("c", to_user_id=2, amount=4)),
            await store.append(_event("d", to_user_id=3, amount=9)),
        ]
        for event in events:
            event.transition(RewardEventStatus.AWARDED)
        await store.update(events)

        # Reset "b" to pending: its awarded version no longer counts.
        events[1].transition(RewardEventStatus.PENDING)
        await store.update([events[1]])

        totals = await store.sum_awarded(
            types=["goodContent"],
            key_parts=("to_user_id",),
            groups=[(1,), (2,)],
        )
        assert totals == {(1,): 5, (2,): 4}

        per_item = await store.sum_awarded(
            types=["goodContent"],
            key_parts=("to_user_id", "for_id"),
            groups=[(1, "a"), (2, "a")],
        )
        assert per_item == {(1, "a"): 5}

        later = await store.sum_awarded(
            types=["goodContent"],
            key_parts=("to_user_id",),
            groups=[(1,)],
            since=NOW + dt.timedelta(hours=1),
        )
        assert later == {}


@pytest.mark.asyncio
async def test_query_filters_by_user_and_status(session_factory) -> None:
    async with session_factory() as session:
        store = RewardEventStore(session)
        awarded = await store.append(_event("a", to_user_id=1))
        await store.append(_event("b", to_user_id=2))
        awarded.transition(RewardEventStatus.AWARDED)
        await store.update([awarded])

        results = await store.query(statuses=[RewardEventStatus.AWARDED], to_user_id=1)
        assert [event.for_id for event in results] == ["a"]

        count = await session.scalar(select(func.count()).select_from(RewardEvent))
        assert count == 3


def test_status_transitions_follow_lifecycle() -> None:
    event = _event("post-9")
    event.transition(RewardEventStatus.AWARDED)
    event.transition(RewardEventStatus.PENDING)
    event.mark_unqualified()

    assert event.status is RewardEventStatus.UNQUALIFIED
    assert event.award_amount == 0

    with pytest.raises(InvalidRewardTransition):
        event.transition(RewardEventStatus.AWARDED)

    capped = _event("post-10")
    capped.transition(RewardEventStatus.CAPPED)
    with pytest.raises(InvalidRewardTransition):
        capped.transition(RewardEventStatus.UNQUALIFIED)
