"""Balance ledger contract and the bundled SQL implementation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_rewards.core.settings import settings
from credit_rewards.models.ledger import CreditAccount, CreditTransaction, CreditTransactionType


class LedgerError(Exception):
    """Base class for balance ledger failures."""


class TransactionNotFoundError(LedgerError):
    pass


class TransactionAlreadyRefundedError(LedgerError):
    pass


class InsufficientBalanceError(LedgerError):
    pass


@dataclass(frozen=True)
class CreditInstruction:
    """Request to move ``amount`` credits into ``to_account_id``."""

    to_account_id: int
    amount: int
    description: str
    details: dict[str, Any] = field(default_factory=dict)
    external_transaction_id: str | None = None
    from_account_id: int | None = None


class BalanceLedger(Protocol):
    async def credit(self, instruction: CreditInstruction) -> str:
        """Apply one credit and return its transaction id."""

    async def credit_many(self, instructions: Sequence[CreditInstruction]) -> list[str]:
        """Apply credits all-or-nothing, returning transaction ids in order."""

    async def refund(self, transaction_id: str, reason: str) -> str:
        """Reverse a prior transaction and return the refund transaction id."""


class SqlBalanceLedger:
    """Ledger storing transfers in ``credit_transactions``.

    Credits carrying an ``external_transaction_id`` are idempotent: replaying
    one returns the original transaction instead of paying twice.
    """

    def __init__(self, session: AsyncSession, *, central_account_id: int | None = None) -> None:
        self._session = session
        self._central_account_id = (
            settings.reward_central_account_id if central_account_id is None else central_account_id
        )

    async def credit(self, instruction: CreditInstruction) -> str:
        transaction_ids = await self.credit_many([instruction])
        return transaction_ids[0]

    async def credit_many(self, instructions: Sequence[CreditInstruction]) -> list[str]:
        if not instructions:
            return []

        transaction_ids: list[str] = []
        seen_external: dict[str, str] = {}
        try:
            for instruction in instructions:
                if instruction.amount <= 0:
                    raise LedgerError("Credit transactions require a positive amount")

                external_id = instruction.external_transaction_id
                if external_id:
                    existing_id = seen_external.get(external_id) or await self._find_external(external_id)
                    if existing_id:
                        logger.info(
                            "Skipping replayed credit transaction",
                            external_transaction_id=external_id,
                            transaction_id=existing_id,
                        )
                        transaction_ids.append(existing_id)
                        continue

                from_account_id = (
                    self._central_account_id
                    if instruction.from_account_id is None
                    else instruction.from_account_id
                )
                transaction = CreditTransaction(
                    transaction_type=CreditTransactionType.REWARD,
                    from_account_id=from_account_id,
                    to_account_id=instruction.to_account_id,
                    amount=instruction.amount,
                    description=instruction.description,
                    details=dict(instruction.details),
                    external_transaction_id=external_id,
                )
                self._session.add(transaction)
                await self._session.flush()

                await self._adjust_balance(from_account_id, -instruction.amount)
                await self._adjust_balance(instruction.to_account_id, instruction.amount, credited=True)

                if external_id:
                    seen_external[external_id] = transaction.id
                transaction_ids.append(transaction.id)

            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info("Recorded credit transactions", count=len(transaction_ids))
        return transaction_ids

    async def refund(self, transaction_id: str, reason: str) -> str:
        original = await self._session.get(CreditTransaction, transaction_id)
        if original is None:
            raise TransactionNotFoundError(f"Credit transaction {transaction_id} not found")
        if original.transaction_type == CreditTransactionType.REFUND:
            raise LedgerError("Refund transactions cannot be refunded")
        if original.refunded_by_id:
            raise TransactionAlreadyRefundedError(
                f"Credit transaction {transaction_id} already refunded by {original.refunded_by_id}"
            )

        try:
            refund = CreditTransaction(
                transaction_type=CreditTransactionType.REFUND,
                from_account_id=original.to_account_id,
                to_account_id=original.from_account_id,
                amount=original.amount,
                description=f"Refund: {original.description or transaction_id}",
                details={"refundedTransactionId": original.id, "reason": reason},
                external_transaction_id=f"refund:{original.id}",
            )
            self._session.add(refund)
            await self._session.flush()

            await self._adjust_balance(original.to_account_id, -int(original.amount))
            await self._adjust_balance(original.from_account_id, int(original.amount))
            original.refunded_by_id = refund.id
            original.refund_reason = reason
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise

        logger.info(
            "Refunded credit transaction",
            transaction_id=transaction_id,
            refund_transaction_id=refund.id,
            reason=reason,
        )
        return refund.id

    async def get_balance(self, account_id: int) -> int:
        account = await self._session.get(CreditAccount, account_id)
        return int(account.balance or 0) if account else 0

    async def _find_external(self, external_id: str) -> str | None:
        stmt = select(CreditTransaction.id).where(
            CreditTransaction.external_transaction_id == external_id
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _adjust_balance(self, account_id: int, delta: int, *, credited: bool = False) -> None:
        # The central account mints credits and carries no balance.
        if account_id == self._central_account_id:
            return

        account = await self._session.get(CreditAccount, account_id)
        if account is None:
            account = CreditAccount(account_id=account_id, balance=0, lifetime_credited=0)
            self._session.add(account)

        new_balance = int(account.balance or 0) + delta
        if new_balance < 0:
            raise InsufficientBalanceError(f"Insufficient credit balance for account {account_id}")
        account.balance = new_balance
        if credited:
            account.lifetime_credited = int(account.lifetime_credited or 0) + delta


__all__ = [
    "BalanceLedger",
    "CreditInstruction",
    "InsufficientBalanceError",
    "LedgerError",
    "SqlBalanceLedger",
    "TransactionAlreadyRefundedError",
    "TransactionNotFoundError",
]
