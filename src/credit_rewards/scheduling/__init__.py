"""Scheduling utilities for recurring reward jobs."""

from .config import JobDefinition, ScheduleConfig, load_job_definitions
from .runner import RewardJobScheduler

__all__ = ["JobDefinition", "RewardJobScheduler", "ScheduleConfig", "load_job_definitions"]
