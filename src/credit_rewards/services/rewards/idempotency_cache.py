"""Per-user cache of on-demand reward keys that were already paid today."""

from __future__ import annotations

import asyncio
import datetime as dt
from collections import defaultdict
from dataclasses import dataclass
from typing import Protocol

from redis.asyncio import Redis

from credit_rewards.core.settings import settings


@dataclass(frozen=True)
class CacheClaim:
    """Outcome of claiming a reward key for a user and reward type."""

    claimed: bool
    prior_count: int


def next_utc_midnight(now: dt.datetime) -> dt.datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt.timezone.utc)
    today = now.astimezone(dt.timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return today + dt.timedelta(days=1)


class IdempotencyCache(Protocol):
    async def claim(
        self, to_user_id: int, reward_type: str, key_hash: str, *, now: dt.datetime
    ) -> CacheClaim:
        """Atomically record ``key_hash`` unless present, counting prior entries."""

    async def release(self, to_user_id: int, reward_type: str, key_hash: str) -> None:
        """Forget a claim whose reward could not be recorded."""

    async def entries(
        self, to_user_id: int, reward_type: str, *, now: dt.datetime | None = None
    ) -> dict[str, str]:
        """Claimed key hashes mapped to their claim timestamps."""


class RedisIdempotencyCache:
    """Redis hash per ``(user, reward type)`` expiring at the next UTC midnight."""

    def __init__(self, redis_client: Redis | None = None, *, key_prefix: str | None = None) -> None:
        self._redis = redis_client or Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._prefix = key_prefix or settings.reward_cache_key_prefix

    def _cache_key(self, to_user_id: int, reward_type: str) -> str:
        return f"{self._prefix}:{to_user_id}:{reward_type}"

    async def claim(
        self, to_user_id: int, reward_type: str, key_hash: str, *, now: dt.datetime
    ) -> CacheClaim:
        cache_key = self._cache_key(to_user_id, reward_type)
        expires_at = int(next_utc_midnight(now).timestamp())
        # MULTI/EXEC keeps the set and the count from interleaving with other claims.
        async with self._redis.pipeline(transaction=True) as pipe:
            created, size, _ = await (
                pipe.hsetnx(cache_key, key_hash, str(int(now.timestamp() * 1000)))
                .hlen(cache_key)
                .expireat(cache_key, expires_at)
                .execute()
            )

        return CacheClaim(claimed=bool(created), prior_count=int(size) - 1)

    async def release(self, to_user_id: int, reward_type: str, key_hash: str) -> None:
        await self._redis.hdel(self._cache_key(to_user_id, reward_type), key_hash)

    async def entries(
        self, to_user_id: int, reward_type: str, *, now: dt.datetime | None = None
    ) -> dict[str, str]:
        # Redis drops the hash itself at EXPIREAT.
        return dict(await self._redis.hgetall(self._cache_key(to_user_id, reward_type)) or {})


class InMemoryIdempotencyCache:
    """Process-local cache for development and tests."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._entries: dict[tuple[int, str], dict[str, str]] = defaultdict(dict)
        self._expires_at: dict[tuple[int, str], dt.datetime] = {}

    async def claim(
        self, to_user_id: int, reward_type: str, key_hash: str, *, now: dt.datetime
    ) -> CacheClaim:
        bucket_key = (to_user_id, reward_type)
        async with self._lock:
            self._expire(bucket_key, now)
            bucket = self._entries[bucket_key]
            self._expires_at[bucket_key] = next_utc_midnight(now)
            if key_hash in bucket:
                return CacheClaim(claimed=False, prior_count=len(bucket) - 1)
            prior_count = len(bucket)
            bucket[key_hash] = str(int(now.timestamp() * 1000))
            return CacheClaim(claimed=True, prior_count=prior_count)

    async def release(self, to_user_id: int, reward_type: str, key_hash: str) -> None:
        async with self._lock:
            self._entries.get((to_user_id, reward_type), {}).pop(key_hash, None)

    async def entries(
        self, to_user_id: int, reward_type: str, *, now: dt.datetime | None = None
    ) -> dict[str, str]:
        bucket_key = (to_user_id, reward_type)
        now = now or dt.datetime.now(dt.timezone.utc)
        async with self._lock:
            self._expire(bucket_key, now)
            return dict(self._entries.get(bucket_key, {}))

    def _expire(self, bucket_key: tuple[int, str], now: dt.datetime) -> None:
        expires_at = self._expires_at.get(bucket_key)
        if expires_at is not None and now >= expires_at:
            self._entries.pop(bucket_key, None)
            self._expires_at.pop(bucket_key, None)


__all__ = [
    "CacheClaim",
    "IdempotencyCache",
    "InMemoryIdempotencyCache",
    "RedisIdempotencyCache",
    "next_utc_midnight",
]
