"""Cap arithmetic shared by on-demand and batch rewards.

Everything here is pure: callers supply prior totals (from the idempotency
cache or from an event store aggregate) and get back how much of a requested
amount is still payable.
"""

from __future__ import annotations

import calendar
import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Literal, Mapping, Sequence

KeyPart = Literal["to_user_id", "by_user_id", "for_id"]
KEY_PARTS: tuple[KeyPart, ...] = ("to_user_id", "by_user_id", "for_id")

CapKey = tuple[tuple[KeyPart, ...], str | None, tuple[Any, ...]]


class CapInterval(str, Enum):
    """Rolling windows a cap can be restricted to."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class CapRule:
    """Ceiling on the awarded total for events sharing ``key_parts`` values."""

    key_parts: tuple[KeyPart, ...]
    amount: int
    interval: CapInterval | None = None

    def __post_init__(self) -> None:
        if not self.key_parts:
            raise ValueError("Cap rules require at least one key part")
        unknown = [part for part in self.key_parts if part not in KEY_PARTS]
        if unknown:
            raise ValueError(f"Unsupported cap key parts: {', '.join(unknown)}")
        if self.amount < 0:
            raise ValueError("Cap amount must be non-negative")
        # Stored as a tuple so rules stay hashable.
        object.__setattr__(self, "key_parts", tuple(self.key_parts))

    def values_for(self, source: Any) -> tuple[Any, ...]:
        """Extract this rule's grouping values from an event or aggregate row."""

        if isinstance(source, Mapping):
            return tuple(source[part] for part in self.key_parts)
        return tuple(getattr(source, part) for part in self.key_parts)

    def key_for(self, source: Any) -> CapKey:
        return cap_key(self.key_parts, self.interval, self.values_for(source))


def cap_key(
    key_parts: Sequence[KeyPart],
    interval: CapInterval | None,
    values: Sequence[Any],
) -> CapKey:
    """Identity of one running total: rule grouping, window and group values."""

    return (tuple(key_parts), interval.value if interval else None, tuple(values))


def compute_remaining(rule_amount: int, prior_total: int, requested_amount: int) -> int:
    """Payable part of ``requested_amount`` under a single cap."""

    return min(requested_amount, max(rule_amount - prior_total, 0))


def apply_caps(requested_amount: int, limits: Iterable[tuple[int, int]]) -> int:
    """Clamp ``requested_amount`` by every ``(rule_amount, prior_total)`` pair.

    Each rule can only lower the result, so the outcome is the minimum of the
    per-rule remainders and never drops below zero.
    """

    amount = max(requested_amount, 0)
    for rule_amount, prior_total in limits:
        amount = compute_remaining(rule_amount, prior_total, amount)
    return amount


def progressive_award(award_amount: int, prior_count: int, cap: int | None) -> int:
    """On-demand award for the next occurrence given how many were already paid."""

    if cap is None:
        return award_amount
    awarded = prior_count * award_amount
    return compute_remaining(cap, awarded, award_amount)


def interval_start(interval: CapInterval | None, now: dt.datetime) -> dt.datetime | None:
    """Lower time bound for prior awards counted against a windowed cap."""

    if interval is None:
        return None
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    if interval is CapInterval.DAY:
        utc_now = now.astimezone(dt.timezone.utc)
        return utc_now.replace(hour=0, minute=0, second=0, microsecond=0)
    if interval is CapInterval.WEEK:
        return now - dt.timedelta(days=7)
    year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


@dataclass
class CapTracker:
    """Running awarded totals per cap key during one settlement sweep."""

    rules: Sequence[CapRule]
    totals: dict[CapKey, int] = field(default_factory=dict)

    def seed(self, key: CapKey, total: int) -> None:
        self.totals[key] = int(total or 0)

    def clamp(self, event: Any, requested_amount: int) -> int:
        limits = [(rule.amount, self.totals.get(rule.key_for(event), 0)) for rule in self.rules]
        return apply_caps(requested_amount, limits)

    def consume(self, event: Any, amount: int) -> None:
        # Rules sharing grouping and window share one running total.
        for key in {rule.key_for(event) for rule in self.rules}:
            self.totals[key] = self.totals.get(key, 0) + amount


__all__ = [
    "CapInterval",
    "CapKey",
    "CapRule",
    "CapTracker",
    "KEY_PARTS",
    "KeyPart",
    "apply_caps",
    "cap_key",
    "compute_remaining",
    "interval_start",
    "progressive_award",
]
