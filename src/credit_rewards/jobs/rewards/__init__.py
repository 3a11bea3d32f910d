"""Reward job exports."""

from .settlement import settle_reward_events  # noqa: F401

__all__ = ["settle_reward_events"]
