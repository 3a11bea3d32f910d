"""Reward engine exports."""

from .caps import CapInterval, CapRule, apply_caps, compute_remaining, interval_start, progressive_award  # noqa: F401
from .definitions import (  # noqa: F401
    EventKey,
    KeyContext,
    OnDemandRewardDefinition,
    ProcessableRewardDefinition,
    ProcessingContext,
    RewardDefinition,
    RewardEventLog,
    RewardKey,
)
from .engine import RewardApplicationEngine, RewardDetails, RewardRuntime  # noqa: F401
from .errors import (  # noqa: F401
    DuplicateRewardEvent,
    InvalidRewardTransition,
    RewardError,
    RewardRecordError,
    RewardRegistrationError,
    RewardSendError,
    RewardSettlementError,
)
from .event_store import RewardEventStore  # noqa: F401
from .idempotency_cache import (  # noqa: F401
    CacheClaim,
    IdempotencyCache,
    InMemoryIdempotencyCache,
    RedisIdempotencyCache,
)
from .registry import RewardHandle, RewardRegistry  # noqa: F401
from .settlement import RewardSettlementEngine, SettlementSummary  # noqa: F401
from .settlement_lock import SettlementLock  # noqa: F401
