"""Scheduled sweep that settles pending processable rewards."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict, Sequence

from loguru import logger

from credit_rewards.core.settings import settings
from credit_rewards.db.session import SessionFactory
from credit_rewards.services.rewards import RewardRegistry, RewardRuntime, SettlementLock
from credit_rewards.services.rewards.catalog import build_reward_registry


def _select_groups(registry: RewardRegistry, groups: Sequence[str] | None) -> list[str]:
    requested = list(groups or settings.reward_settlement_groups)
    if not requested:
        return [handle.type for handle in registry.processable()]

    selected: list[str] = []
    for reward_type in requested:
        handle = registry.group(reward_type)
        if handle is None:
            logger.warning("Ignoring unknown settlement group", reward_type=reward_type)
            continue
        if handle.type not in selected:
            selected.append(handle.type)
    return selected


async def settle_reward_events(
    *,
    session_factory: SessionFactory,
    groups: Sequence[str] | None = None,
    registry: RewardRegistry | None = None,
    lock: SettlementLock | None = None,
    now: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Settle each reward group whose run-once lock is free.

    Every group is attempted; the first failure is re-raised afterwards so the
    scheduler can retry the sweep.
    """

    registry = registry or build_reward_registry(RewardRuntime(session_factory=session_factory))
    lock = lock or SettlementLock()

    results: Dict[str, Any] = {}
    failures: list[Exception] = []
    for reward_type in _select_groups(registry, groups):
        token = await lock.acquire(reward_type)
        if token is None:
            logger.info("Settlement already running, skipping group", reward_type=reward_type)
            results[reward_type] = {"skipped": True}
            continue

        started_at = now or dt.datetime.now(dt.timezone.utc)
        try:
            last_update = await lock.last_run(reward_type)
            summary = await registry.get(reward_type).settle(now=started_at, last_update=last_update)
            await lock.mark_run(reward_type, started_at)
            results[reward_type] = summary.as_dict()
        except Exception as exc:
            logger.bind(reward_type=reward_type).exception("Reward settlement failed for group")
            results[reward_type] = {"error": str(exc)}
            failures.append(exc)
        finally:
            await lock.release(reward_type, token)

    logger.bind(results=results).info("Reward settlement sweep completed")
    if failures:
        raise failures[0]
    return {"groups": results}


__all__ = ["settle_reward_events"]
