"""Translate reward events into balance ledger credit instructions."""

from __future__ import annotations

import math

from credit_rewards.services.ledger import CreditInstruction
from .definitions import RewardDefinition, RewardEventLog

_LOCAL_IPS = {"", "::1"}


def normalize_ip(ip: str | None) -> str | None:
    if ip is None or ip.strip() in _LOCAL_IPS:
        return None
    return ip.strip()


def transfer_amount(event: RewardEventLog) -> int:
    multiplier = event.multiplier or 1.0
    return math.ceil(event.award_amount * multiplier)


def external_transaction_id(definition: RewardDefinition, event: RewardEventLog) -> str:
    if definition.ip_scoped:
        return f"{event.type}:{event.for_id}-{event.ip}"
    return f"{event.type}:{event.for_id}-{event.to_user_id}-{event.by_user_id}"


def build_credit_instruction(definition: RewardDefinition, event: RewardEventLog) -> CreditInstruction:
    details = {
        "type": event.type,
        "forId": event.for_id,
        "byUserId": event.by_user_id,
        **(event.transaction_details or {}),
    }
    return CreditInstruction(
        to_account_id=event.to_user_id,
        amount=transfer_amount(event),
        description=f"Credit Reward: {definition.description}",
        details=details,
        external_transaction_id=external_transaction_id(definition, event),
    )


__all__ = [
    "build_credit_instruction",
    "external_transaction_id",
    "normalize_ip",
    "transfer_amount",
]
