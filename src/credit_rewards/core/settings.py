from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = True
    database_url: str = "sqlite+aiosqlite:///./credit_rewards.db"
    redis_url: str = "redis://localhost:6379/0"

    # Reward idempotency cache (on-demand rewards)
    reward_cache_key_prefix: str = "rewards:events"

    # Batch settlement
    reward_settlement_chunk_size: int = 1000
    reward_settlement_lock_ttl_seconds: int = 15 * 60
    reward_settlement_groups: list[str] = Field(default_factory=list)

    @field_validator("reward_settlement_groups", mode="before")
    @classmethod
    def _parse_group_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Ledger
    reward_central_account_id: int = 0

    # Reward catalog eligibility
    reward_content_recency_days: int = 30

    # Reward job scheduler
    reward_job_scheduler_enabled: bool = False
    reward_job_schedule_path: str = "config/schedules.toml"

    # Internal API security
    observability_api_key: str = ""


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
