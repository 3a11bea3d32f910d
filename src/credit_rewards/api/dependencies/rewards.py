"""Dependency providing the reward registry to request handlers."""

from credit_rewards.services.rewards import RewardRegistry
from credit_rewards.services.rewards.catalog import get_reward_registry


async def get_registry() -> RewardRegistry:
    return get_reward_registry()
