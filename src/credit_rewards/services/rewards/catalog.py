"""Default reward catalog wired into the API and the settlement job."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from loguru import logger
from sqlalchemy import select

from credit_rewards.core.settings import settings
from credit_rewards.db.session import async_session
from credit_rewards.models.content import ContentItem
from credit_rewards.models.reward_event import RewardEventStatus
from .caps import CapInterval, CapRule
from .definitions import (
    KeyContext,
    OnDemandRewardDefinition,
    ProcessableRewardDefinition,
    ProcessingContext,
    RewardDefinition,
    RewardKey,
)
from .engine import RewardRuntime
from .idempotency_cache import RedisIdempotencyCache
from .registry import RewardRegistry

GOOD_CONTENT_KINDS = ("image", "article")


@dataclass(frozen=True)
class ReactionInput:
    content_id: str
    user_id: int
    reaction: str
    owner_id: int | None = None


@dataclass(frozen=True)
class ReportInput:
    report_id: int
    reporter_id: int
    moderator_id: int


@dataclass(frozen=True)
class GoodContentInput:
    content_id: str
    kind: str
    owner_id: int
    curator_id: int


@dataclass(frozen=True)
class ReferralInput:
    referrer_id: int
    referred_id: int
    code: str | None = None


async def _reaction_key(payload: ReactionInput, ctx: KeyContext) -> RewardKey | None:
    owner_id = payload.owner_id
    if owner_id is None:
        item = await ctx.session.get(ContentItem, payload.content_id)
        if item is None:
            return None
        owner_id = item.owner_id
    if owner_id == payload.user_id:
        return None
    return RewardKey(
        to_user_id=payload.user_id,
        by_user_id=owner_id,
        for_id=payload.content_id,
        type=f"userReaction:{payload.reaction}",
    )


async def _reaction_details(payload: ReactionInput, ctx: KeyContext) -> dict[str, Any]:
    return {"entityId": payload.content_id, "reaction": payload.reaction}


async def _report_key(payload: ReportInput, ctx: KeyContext) -> RewardKey | None:
    return RewardKey(
        to_user_id=payload.reporter_id,
        by_user_id=payload.moderator_id,
        for_id=payload.report_id,
    )


async def _good_content_key(payload: GoodContentInput, ctx: KeyContext) -> RewardKey | None:
    if payload.owner_id == payload.curator_id:
        return None
    refined = f"goodContent:{payload.kind}" if payload.kind in GOOD_CONTENT_KINDS else None
    return RewardKey(
        to_user_id=payload.owner_id,
        by_user_id=payload.curator_id,
        for_id=payload.content_id,
        type=refined,
    )


async def _good_content_details(payload: GoodContentInput, ctx: KeyContext) -> dict[str, Any]:
    return {"entityId": payload.content_id, "entityType": payload.kind}


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


async def _good_content_preprocess(ctx: ProcessingContext) -> None:
    """Drop awards for content that was removed or is too old to feature."""

    content_ids = {event.for_id for event in ctx.to_process}
    if not content_ids:
        return

    result = await ctx.session.execute(
        select(ContentItem.id, ContentItem.created_at).where(ContentItem.id.in_(content_ids))
    )
    created = {row.id: _as_utc(row.created_at) for row in result}
    oldest = ctx.now - dt.timedelta(days=settings.reward_content_recency_days)

    dropped = 0
    for event in ctx.to_process:
        if event.status is not RewardEventStatus.PENDING:
            continue
        created_at = created.get(event.for_id)
        if created_at is None or created_at < oldest:
            event.mark_unqualified()
            dropped += 1
    if dropped:
        logger.info("Marked good content rewards unqualified", count=dropped)


async def _referral_key(payload: ReferralInput, ctx: KeyContext) -> RewardKey | None:
    if payload.referrer_id == payload.referred_id:
        return None
    return RewardKey(
        to_user_id=payload.referrer_id,
        by_user_id=payload.referred_id,
        for_id=payload.referred_id,
    )


async def _referral_details(payload: ReferralInput, ctx: KeyContext) -> dict[str, Any]:
    return {"code": payload.code} if payload.code else {}


USER_REACTION = OnDemandRewardDefinition(
    type="userReaction",
    description="Content reaction",
    award_amount=2,
    cap=100,
    get_key=_reaction_key,
    get_transaction_details=_reaction_details,
    trigger_description="For each reaction on someone else's content",
    tooltip="Reactions on your own content do not count.",
)

REPORT_ACCEPTED = OnDemandRewardDefinition(
    type="reportAccepted",
    description="Accepted report",
    award_amount=5,
    cap=50,
    get_key=_report_key,
    trigger_description="For each report a moderator accepts",
)

GOOD_CONTENT = ProcessableRewardDefinition(
    type="goodContent",
    description="Featured content",
    award_amount=20,
    include_types=tuple(f"goodContent:{kind}" for kind in GOOD_CONTENT_KINDS),
    caps=(
        CapRule(key_parts=("to_user_id",), amount=100, interval=CapInterval.DAY),
        CapRule(key_parts=("to_user_id", "for_id"), amount=60),
    ),
    get_key=_good_content_key,
    get_transaction_details=_good_content_details,
    preprocess=_good_content_preprocess,
    trigger_description="When a curator features your recent content",
)

USER_REFERRED = ProcessableRewardDefinition(
    type="userReferred",
    description="Referral",
    award_amount=500,
    ip_scoped=True,
    caps=(CapRule(key_parts=("to_user_id",), amount=5000, interval=CapInterval.MONTH),),
    get_key=_referral_key,
    get_transaction_details=_referral_details,
    trigger_description="When someone signs up with your referral code",
)

DEFAULT_REWARDS: tuple[RewardDefinition, ...] = (
    USER_REACTION,
    REPORT_ACCEPTED,
    GOOD_CONTENT,
    USER_REFERRED,
)


def build_reward_registry(
    runtime: RewardRuntime,
    definitions: tuple[RewardDefinition, ...] = DEFAULT_REWARDS,
) -> RewardRegistry:
    registry = RewardRegistry(runtime)
    registry.register_all(definitions)
    return registry


@lru_cache
def get_reward_registry() -> RewardRegistry:
    """Process-wide registry backed by the configured database and Redis."""

    runtime = RewardRuntime(session_factory=async_session, cache=RedisIdempotencyCache())
    return build_reward_registry(runtime)


__all__ = [
    "DEFAULT_REWARDS",
    "GOOD_CONTENT",
    "GoodContentInput",
    "REPORT_ACCEPTED",
    "ReactionInput",
    "ReferralInput",
    "ReportInput",
    "USER_REACTION",
    "USER_REFERRED",
    "build_reward_registry",
    "get_reward_registry",
]
