from enum import Enum

from .errors import AlreadyProcessedError, WrongTypeError
from .models import Transaction, TransactionType
from .storage import InMemoryStorage


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"


class RedemptionStateMachine:
    """pending -> processed; processed is terminal."""

    _ALLOWED_TRANSITIONS: dict[RedemptionStatus, set[RedemptionStatus]] = {
        RedemptionStatus.PENDING: {RedemptionStatus.PROCESSED},
        RedemptionStatus.PROCESSED: set(),
    }

    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    @staticmethod
    def status_of(transaction: Transaction) -> RedemptionStatus:
        return RedemptionStatus.PROCESSED if transaction.processed else RedemptionStatus.PENDING

    def can_transition(self, current: RedemptionStatus, target: RedemptionStatus) -> bool:
        return target in self._ALLOWED_TRANSITIONS[current]

    def require_pending(self, transaction_id: int) -> Transaction:
        transaction = self.storage.get(transaction_id)
        if transaction.type != TransactionType.REDEMPTION:
            raise WrongTypeError(f"Transaction {transaction_id} is not a redemption")
        if not self.can_transition(self.status_of(transaction), RedemptionStatus.PROCESSED):
            raise AlreadyProcessedError(f"Transaction {transaction_id} has already been processed")
        return transaction

    def process(self, transaction_id: int, processed_by: int) -> Transaction:
        self.require_pending(transaction_id)
        # The store re-checks under its lock, so a concurrent process call
        # still gets AlreadyProcessedError.
        return self.storage.mark_processed(transaction_id, processed_by)
