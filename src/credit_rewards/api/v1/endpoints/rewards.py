"""Read-only API for reward types and per-user reward progress."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from credit_rewards.api.dependencies.rewards import get_registry
from credit_rewards.services.rewards import RewardRegistry


router = APIRouter(prefix="/rewards", tags=["rewards"])


class RewardTypeResponse(BaseModel):
    type: str
    description: str
    awardAmount: int
    onDemand: bool
    visible: bool
    types: List[str]


class RewardDetailsResponse(BaseModel):
    type: str
    description: str
    awardAmount: int
    onDemand: bool
    cap: Optional[int]
    interval: Optional[str]
    triggerDescription: Optional[str]
    tooltip: Optional[str]
    awarded: int


class UserRewardsResponse(BaseModel):
    userId: int
    rewards: List[RewardDetailsResponse]


@router.get("/types", response_model=List[RewardTypeResponse], summary="List registered reward types")
async def list_reward_types(registry: RewardRegistry = Depends(get_registry)) -> List[RewardTypeResponse]:
    return [
        RewardTypeResponse(
            type=handle.type,
            description=handle.definition.description,
            awardAmount=handle.definition.award_amount,
            onDemand=handle.on_demand,
            visible=handle.visible,
            types=handle.types,
        )
        for handle in registry.handles()
    ]


@router.get(
    "/users/{user_id}",
    response_model=UserRewardsResponse,
    summary="Reward progress for a user",
)
async def get_user_rewards(
    user_id: int,
    registry: RewardRegistry = Depends(get_registry),
) -> UserRewardsResponse:
    """Visible reward types with caps and today's on-demand totals.

    ``awarded`` is ``-1`` for batch rewards, which are only known after settlement.
    """

    rewards: List[RewardDetailsResponse] = []
    for handle in registry.handles():
        if not handle.visible:
            continue
        details = await handle.get_user_reward_details(user_id)
        rewards.append(RewardDetailsResponse(**details.as_dict()))
    return UserRewardsResponse(userId=user_id, rewards=rewards)
