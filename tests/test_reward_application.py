import asyncio

import pytest
from sqlalchemy import func, select

from credit_rewards.models.reward_event import RewardEvent, RewardEventStatus
from credit_rewards.observability.rewards import get_reward_store
from credit_rewards.services.rewards import (
    CapInterval,
    CapRule,
    InMemoryIdempotencyCache,
    OnDemandRewardDefinition,
    ProcessableRewardDefinition,
    RewardEventStore,
    RewardKey,
    RewardRecordError,
    RewardRegistry,
    RewardRuntime,
    RewardSendError,
)
from tests.doubles import RecordingLedger


async def _key(payload, ctx):
    if not payload.get("qualified", True):
        return None
    return RewardKey(to_user_id=payload["user"], by_user_id=payload.get("by", 99), for_id=payload["id"])


async def _details(payload, ctx):
    return {"source": "test"}


def _on_demand(**overrides) -> OnDemandRewardDefinition:
    params = dict(
        type="reportAccepted",
        description="Accepted report",
        award_amount=5,
        cap=10,
        get_key=_key,
        get_transaction_details=_details,
    )
    params.update(overrides)
    return OnDemandRewardDefinition(**params)


def _processable() -> ProcessableRewardDefinition:
    return ProcessableRewardDefinition(
        type="goodContent",
        description="Featured content",
        award_amount=20,
        get_key=_key,
        caps=(CapRule(key_parts=("to_user_id",), amount=100, interval=CapInterval.DAY),),
    )


def _registry(session_factory, ledger, **runtime_kwargs) -> tuple[RewardRegistry, RewardRuntime]:
    runtime = RewardRuntime(
        session_factory=session_factory,
        cache=runtime_kwargs.pop("cache", InMemoryIdempotencyCache()),
        ledger_factory=lambda session: ledger,
        **runtime_kwargs,
    )
    return RewardRegistry(runtime), runtime


async def _count_events(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(RewardEvent))


@pytest.mark.asyncio
async def test_on_demand_awards_until_daily_cap(session_factory) -> None:
    ledger = RecordingLedger()
    registry, _ = _registry(session_factory, ledger)
    handle = registry.register(_on_demand())

    results = [await handle.apply({"user": 1, "id": f"report-{index}"}) for index in range(3)]

    assert [event.award_amount for event in results] == [5, 5, 0]
    assert [event.status for event in results] == [
        RewardEventStatus.AWARDED,
        RewardEventStatus.AWARDED,
        RewardEventStatus.CAPPED,
    ]
    assert [instruction.amount for instruction in ledger.instructions] == [5, 5]
    first = ledger.instructions[0]
    assert first.to_account_id == 1
    assert first.external_transaction_id == "reportAccepted:report-0-1-99"
    assert first.description == "Credit Reward: Accepted report"
    assert first.details == {"type": "reportAccepted", "forId": "report-0", "byUserId": 99, "source": "test"}

    outcomes = get_reward_store().snapshot().outcomes["reportAccepted"]
    assert outcomes == {"awarded": 2, "capped": 1}


@pytest.mark.asyncio
async def test_repeated_apply_is_a_no_op(session_factory) -> None:
    ledger = RecordingLedger()
    registry, _ = _registry(session_factory, ledger)
    handle = registry.register(_on_demand())

    first = await handle.apply({"user": 1, "id": "report-1"})
    second = await handle.apply({"user": 1, "id": "report-1"})

    assert first is not None
    assert second is None
    assert len(ledger.instructions) == 1
    assert await _count_events(session_factory) == 1


@pytest.mark.asyncio
async def test_not_qualified_has_no_side_effects(session_factory) -> None:
    ledger = RecordingLedger()
    cache = InMemoryIdempotencyCache()
    registry, _ = _registry(session_factory, ledger, cache=cache)
    handle = registry.register(_on_demand())

    assert await handle.apply({"user": 1, "id": "report-1", "qualified": False}) is None

    assert ledger.calls == 0
    assert await cache.entries(1, "reportAccepted") == {}
    assert await _count_events(session_factory) == 0
    assert get_reward_store().snapshot().outcomes["reportAccepted"] == {"not_qualified": 1}


@pytest.mark.asyncio
async def test_ledger_failure_raises_send_error_and_keeps_event(session_factory) -> None:
    ledger = RecordingLedger(fail_on_call=1)
    registry, _ = _registry(session_factory, ledger)
    handle = registry.register(_on_demand())

    with pytest.raises(RewardSendError):
        await handle.apply({"user": 1, "id": "report-1"})

    async with session_factory() as session:
        pending = await RewardEventStore(session).query(types=["reportAccepted"])
    assert [event.status for event in pending] == [RewardEventStatus.AWARDED]
    assert get_reward_store().snapshot().failures["reportAccepted"] == {"send": 1}


@pytest.mark.asyncio
async def test_store_failure_releases_claim(session_factory, monkeypatch) -> None:
    ledger = RecordingLedger()
    cache = InMemoryIdempotencyCache()
    registry, _ = _registry(session_factory, ledger, cache=cache)
    handle = registry.register(_on_demand())

    async def broken_append(self, event):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(RewardEventStore, "append", broken_append)

    with pytest.raises(RewardRecordError) as excinfo:
        await handle.apply({"user": 1, "id": "report-1"})

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert await cache.entries(1, "reportAccepted") == {}
    assert ledger.calls == 0


@pytest.mark.asyncio
async def test_key_paid_on_earlier_day_is_not_paid_again(session_factory) -> None:
    ledger = RecordingLedger()
    cache = InMemoryIdempotencyCache()
    registry, _ = _registry(session_factory, ledger, cache=cache)
    handle = registry.register(_on_demand())

    await handle.apply({"user": 1, "id": "report-1"})
    # Simulate the daily cache expiring.
    fresh_cache = InMemoryIdempotencyCache()
    registry_next_day, _ = _registry(session_factory, ledger, cache=fresh_cache)
    next_day = registry_next_day.register(_on_demand())

    assert await next_day.apply({"user": 1, "id": "report-1"}) is None
    assert len(ledger.instructions) == 1
    assert await fresh_cache.entries(1, "reportAccepted") == {}


@pytest.mark.asyncio
async def test_concurrent_applies_never_exceed_cap(session_factory) -> None:
    ledger = RecordingLedger()
    registry, _ = _registry(session_factory, ledger)
    handle = registry.register(_on_demand(award_amount=5, cap=10))

    results = await asyncio.gather(
        *(handle.apply({"user": 4, "id": f"report-{index}"}) for index in range(8))
    )

    awarded = [event for event in results if event.status is RewardEventStatus.AWARDED]
    assert len(awarded) == 2
    assert sum(event.award_amount for event in results) == 10
    assert ledger.total_for(4) == 10


@pytest.mark.asyncio
async def test_multiplier_scales_transfer_but_not_cap_accounting(session_factory) -> None:
    ledger = RecordingLedger()

    async def multipliers(user_id: int) -> float:
        return 1.5

    registry, _ = _registry(session_factory, ledger, multipliers=multipliers)
    handle = registry.register(_on_demand())

    event = await handle.apply({"user": 1, "id": "report-1"}, ip="::1")

    assert event.award_amount == 5
    assert event.multiplier == 1.5
    assert event.ip is None
    assert ledger.instructions[0].amount == 8


@pytest.mark.asyncio
async def test_processable_apply_records_pending_once(session_factory) -> None:
    ledger = RecordingLedger()
    registry, _ = _registry(session_factory, ledger)
    handle = registry.register(_processable())

    event = await handle.apply({"user": 1, "id": "post-1"}, ip="10.0.0.1")
    duplicate = await handle.apply({"user": 1, "id": "post-1"})

    assert event.status is RewardEventStatus.PENDING
    assert event.award_amount == 20
    assert event.ip == "10.0.0.1"
    assert duplicate is None
    assert ledger.calls == 0
    assert await _count_events(session_factory) == 1


@pytest.mark.asyncio
async def test_user_reward_details(session_factory) -> None:
    ledger = RecordingLedger()

    async def multipliers(user_id: int) -> float:
        return 2.0 if user_id == 2 else 1.0

    registry, _ = _registry(session_factory, ledger, multipliers=multipliers)
    on_demand = registry.register(_on_demand(trigger_description="Each accepted report"))
    processable = registry.register(_processable())

    for index in range(3):
        await on_demand.apply({"user": 1, "id": f"report-{index}"})

    details = await on_demand.get_user_reward_details(1)
    assert details.awarded == 10
    assert details.cap == 10
    assert details.on_demand is True
    assert details.as_dict()["triggerDescription"] == "Each accepted report"

    boosted = await on_demand.get_user_reward_details(2)
    assert (boosted.award_amount, boosted.cap, boosted.awarded) == (10, 20, 0)

    batch = await processable.get_user_reward_details(1)
    assert batch.awarded == -1
    assert (batch.cap, batch.interval) == (100, "day")
