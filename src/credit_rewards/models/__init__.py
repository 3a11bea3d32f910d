"""SQLAlchemy models package."""

# Import all models
from .content import ContentItem  # noqa: F401
from .ledger import CreditAccount, CreditTransaction, CreditTransactionType  # noqa: F401
from .reward_event import RewardEvent, RewardEventStatus  # noqa: F401
