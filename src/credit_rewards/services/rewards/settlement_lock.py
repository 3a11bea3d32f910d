"""Run-once lock and last-run bookkeeping for settlement sweeps."""

from __future__ import annotations

import datetime as dt
import uuid

from redis.asyncio import Redis

from credit_rewards.core.settings import settings


class SettlementLock:
    """Redis ``SET NX EX`` lock held per reward group while a sweep runs."""

    def __init__(
        self,
        redis_client: Redis | None = None,
        *,
        key_prefix: str | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self._redis = redis_client or Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._prefix = key_prefix or settings.reward_cache_key_prefix
        self._ttl_seconds = ttl_seconds or settings.reward_settlement_lock_ttl_seconds

    def _lock_key(self, group: str) -> str:
        return f"{self._prefix}:settlement:{group}:lock"

    def _last_run_key(self, group: str) -> str:
        return f"{self._prefix}:settlement:{group}:last_run"

    async def acquire(self, group: str) -> str | None:
        """Return an ownership token, or ``None`` when another sweep holds the lock."""

        token = uuid.uuid4().hex
        acquired = await self._redis.set(self._lock_key(group), token, nx=True, ex=self._ttl_seconds)
        return token if acquired else None

    async def release(self, group: str, token: str) -> None:
        key = self._lock_key(group)
        # A lock that expired mid-sweep may now belong to someone else.
        if await self._redis.get(key) == token:
            await self._redis.delete(key)

    async def last_run(self, group: str) -> dt.datetime | None:
        raw = await self._redis.get(self._last_run_key(group))
        if not raw:
            return None
        return dt.datetime.fromisoformat(raw)

    async def mark_run(self, group: str, started_at: dt.datetime) -> None:
        await self._redis.set(self._last_run_key(group), started_at.isoformat())


__all__ = ["SettlementLock"]
