import datetime as dt

import pytest

from credit_rewards.services.rewards.caps import (
    CapInterval,
    CapRule,
    CapTracker,
    apply_caps,
    cap_key,
    compute_remaining,
    interval_start,
    progressive_award,
)
from credit_rewards.services.rewards.definitions import RewardEventLog


def _event(to_user_id: int, for_id: str = "a", amount: int = 5) -> RewardEventLog:
    return RewardEventLog(type="goodContent", to_user_id=to_user_id, by_user_id=9, for_id=for_id, award_amount=amount)


def test_compute_remaining_never_negative() -> None:
    assert compute_remaining(10, 0, 5) == 5
    assert compute_remaining(10, 8, 5) == 2
    assert compute_remaining(10, 15, 5) == 0


def test_apply_caps_takes_smallest_remainder() -> None:
    assert apply_caps(5, [(100, 0), (60, 58)]) == 2
    assert apply_caps(5, []) == 5
    assert apply_caps(5, [(10, 20), (100, 0)]) == 0


def test_progressive_award_for_on_demand_caps() -> None:
    assert progressive_award(5, 0, 10) == 5
    assert progressive_award(5, 1, 10) == 5
    assert progressive_award(5, 2, 10) == 0
    assert progressive_award(4, 2, 10) == 2
    assert progressive_award(5, 50, None) == 5


def test_cap_rule_rejects_unknown_key_parts() -> None:
    with pytest.raises(ValueError):
        CapRule(key_parts=("ip",), amount=10)  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        CapRule(key_parts=(), amount=10)


def test_cap_key_identifies_rule_window_and_values() -> None:
    rule = CapRule(key_parts=["to_user_id", "for_id"], amount=60)
    event = _event(3, "post-1")

    assert rule.key_parts == ("to_user_id", "for_id")
    assert rule.values_for(event) == (3, "post-1")
    assert rule.values_for({"to_user_id": 3, "for_id": "post-1"}) == (3, "post-1")
    assert rule.key_for(event) == cap_key(("to_user_id", "for_id"), None, (3, "post-1"))


def test_interval_start_windows() -> None:
    now = dt.datetime(2026, 3, 31, 15, 30, tzinfo=dt.timezone.utc)

    assert interval_start(None, now) is None
    assert interval_start(CapInterval.DAY, now) == dt.datetime(2026, 3, 31, tzinfo=dt.timezone.utc)
    assert interval_start(CapInterval.WEEK, now) == dt.datetime(2026, 3, 24, 15, 30, tzinfo=dt.timezone.utc)
    # February has no 31st; the day is clamped.
    assert interval_start(CapInterval.MONTH, now) == dt.datetime(2026, 2, 28, 15, 30, tzinfo=dt.timezone.utc)


def test_interval_start_month_crosses_year() -> None:
    now = dt.datetime(2026, 1, 10, tzinfo=dt.timezone.utc)
    assert interval_start(CapInterval.MONTH, now) == dt.datetime(2025, 12, 10, tzinfo=dt.timezone.utc)


def test_tracker_applies_every_rule_and_is_monotonic() -> None:
    daily = CapRule(key_parts=("to_user_id",), amount=10, interval=CapInterval.DAY)
    lifetime = CapRule(key_parts=("to_user_id", "for_id"), amount=7)
    tracker = CapTracker(rules=[daily, lifetime])
    tracker.seed(daily.key_for(_event(1)), 4)

    granted = []
    for for_id in ("a", "a", "b"):
        event = _event(1, for_id)
        amount = tracker.clamp(event, 5)
        tracker.consume(event, amount)
        granted.append(amount)

    assert granted == [5, 1, 0]
    assert tracker.totals[daily.key_for(_event(1))] == 10


def test_tracker_counts_shared_keys_once() -> None:
    first = CapRule(key_parts=("to_user_id",), amount=10, interval=CapInterval.DAY)
    second = CapRule(key_parts=("to_user_id",), amount=8, interval=CapInterval.DAY)
    tracker = CapTracker(rules=[first, second])
    event = _event(2)

    tracker.consume(event, tracker.clamp(event, 5))

    assert tracker.totals[first.key_for(event)] == 5
    assert tracker.clamp(event, 5) == 3
