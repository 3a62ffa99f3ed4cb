from dataclasses import dataclass
from typing import Iterable

from .models import Transaction
from .storage import InMemoryStorage, user_key


@dataclass(frozen=True)
class BalanceSnapshot:
    user_id: int
    balance: int
    version: int


def sum_effective(transactions: Iterable[Transaction]) -> int:
    # Stored amounts already carry their sign: transfer-out legs, redemptions
    # and negative adjustments are negative.
    return sum(t.amount for t in transactions if not t.suspicious)


class BalanceEngine:
    """Derives balances from the ledger; nothing here is cached."""

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def effective_balance(self, user_id: int) -> int:
        return self.snapshot(user_id).balance

    def snapshot(self, user_id: int) -> BalanceSnapshot:
        with self.storage.locked():
            balance = sum_effective(self.storage.list_by_user(user_id))
            version = self.storage.version(user_key(user_id))
        return BalanceSnapshot(user_id=user_id, balance=balance, version=version)

    def can_spend(self, user_id: int, amount: int) -> bool:
        return self.effective_balance(user_id) - amount >= 0
