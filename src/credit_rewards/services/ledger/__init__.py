"""Balance ledger exports."""

from .ledger_service import (  # noqa: F401
    BalanceLedger,
    CreditInstruction,
    InsufficientBalanceError,
    LedgerError,
    SqlBalanceLedger,
    TransactionAlreadyRefundedError,
    TransactionNotFoundError,
)
