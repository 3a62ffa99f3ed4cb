"""
Loyalty Points Ledger

This module provides:
- Append-only transaction records with derived, never stored, balances
- Purchase, adjustment, transfer, redemption and event-reward flows
- Role-based authorization through an explicit permission table
- Redemption lifecycle: pending → processed
- Suspicious flags that exclude a record from the balance without deleting it
- Optimistic, bounded-retry commits for concurrent debits and event budgets
"""

from .errors import (
    LedgerServiceError,
    UnauthorizedError,
    InvalidRequestError,
    InvalidAmountError,
    InsufficientBalanceError,
    NotFoundError,
    WrongTypeError,
    AlreadyProcessedError,
    BudgetExceededError,
    ConflictError,
)
from .models import (
    Actor,
    Event,
    Role,
    Transaction,
    TransactionFilter,
    TransactionType,
    User,
)
from .service import LedgerService
from .storage import InMemoryStorage

__all__ = [
    "Actor",
    "Event",
    "Role",
    "Transaction",
    "TransactionFilter",
    "TransactionType",
    "User",
    "LedgerService",
    "InMemoryStorage",
    "LedgerServiceError",
    "UnauthorizedError",
    "InvalidRequestError",
    "InvalidAmountError",
    "InsufficientBalanceError",
    "NotFoundError",
    "WrongTypeError",
    "AlreadyProcessedError",
    "BudgetExceededError",
    "ConflictError",
]
