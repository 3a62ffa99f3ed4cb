from typing import Callable, Optional, Union

from loguru import logger
from pydantic import BaseModel, ValidationError

from .authz import Operation, is_allowed, require
from .balance import BalanceEngine
from .config import Settings, get_settings
from .directory import EventDirectory, UserDirectory
from .errors import (
    ConflictError,
    InvalidAmountError,
    InvalidRequestError,
    UnauthorizedError,
)
from .factory import TransactionFactory
from .models import (
    TRANSACTION_REQUESTS,
    Actor,
    LedgerHistoryResponse,
    SearchResult,
    Transaction,
    TransactionFilter,
    TransactionType,
    UserBalance,
)
from .query import QueryEngine
from .redemption import RedemptionStateMachine
from .storage import InMemoryStorage


_AMOUNT_FIELDS = {"amount", "spent"}


class LedgerService:
    def __init__(self, storage: Optional[InMemoryStorage] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.storage = storage or InMemoryStorage(seed=self.settings.seed_demo_data)
        self.balances = BalanceEngine(self.storage)
        self.factory = TransactionFactory(self.storage, self.balances, self.settings)
        self.redemptions = RedemptionStateMachine(self.storage)
        self.query = QueryEngine(self.storage)
        self.users = UserDirectory(self.storage)
        self.events = EventDirectory(self.storage)
        self._builders: dict[TransactionType, Callable[[Actor, BaseModel], list[Transaction]]] = {
            TransactionType.PURCHASE: self.factory.create_purchase,
            TransactionType.ADJUSTMENT: self.factory.create_adjustment,
            TransactionType.TRANSFER: self.factory.create_transfer,
            TransactionType.REDEMPTION: self.factory.create_redemption,
            TransactionType.EVENT: self.factory.create_event_reward,
        }

    def create_transaction(
        self,
        actor: Actor,
        transaction_type: Union[TransactionType, str],
        payload: Union[dict, BaseModel],
    ) -> Transaction:
        """Create a transaction of the given type.

        Transfers return the sender's leg; event rewards for a whole guest
        list return the first record (use ``award_event_points`` for all).
        """
        return self._create(actor, transaction_type, payload)[0]

    def award_event_points(
        self,
        actor: Actor,
        event_id: int,
        amount: int,
        user_id: Optional[int] = None,
        remark: str = "",
    ) -> list[Transaction]:
        payload = {"event_id": event_id, "amount": amount, "user_id": user_id, "remark": remark}
        return self._create(actor, TransactionType.EVENT, payload)

    def get_transaction(self, actor: Actor, transaction_id: int) -> Transaction:
        transaction = self.storage.get(transaction_id)
        if transaction.user_id != actor.user_id and not is_allowed(Operation.VIEW_ALL_TRANSACTIONS, actor.role):
            raise UnauthorizedError(f"Not allowed to view transaction {transaction_id}")
        return transaction

    def search_transactions(
        self,
        actor: Actor,
        criteria: Optional[TransactionFilter] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> SearchResult:
        criteria = criteria or TransactionFilter()
        limit = self._page_limit(page, limit)

        if not is_allowed(Operation.VIEW_ALL_TRANSACTIONS, actor.role):
            require(actor, Operation.VIEW_OWN_TRANSACTIONS)
            if criteria.user_id is not None and criteria.user_id != actor.user_id:
                raise UnauthorizedError("Not allowed to view other users' transactions")
            criteria = criteria.model_copy(update={"user_id": actor.user_id})

        return self.query.search(criteria, page, limit)

    def set_suspicious(self, actor: Actor, transaction_id: int, suspicious: bool) -> Transaction:
        require(actor, Operation.MARK_SUSPICIOUS)
        transaction = self.storage.mark_suspicious(transaction_id, suspicious)
        logger.info(
            "Transaction suspicious flag set",
            transaction_id=transaction_id, user_id=transaction.user_id,
            actor_id=actor.user_id, suspicious=suspicious,
        )
        return transaction

    def process_redemption(self, actor: Actor, transaction_id: int) -> Transaction:
        require(actor, Operation.PROCESS_REDEMPTION)
        transaction = self.redemptions.process(transaction_id, actor.user_id)
        logger.info(
            "Redemption processed",
            transaction_id=transaction_id, user_id=transaction.user_id,
            actor_id=actor.user_id, amount=transaction.amount,
        )
        return transaction

    def lookup_redemption(self, actor: Actor, transaction_id: int) -> Transaction:
        require(actor, Operation.PROCESS_REDEMPTION)
        return self.redemptions.require_pending(transaction_id)

    def pending_redemptions(self, actor: Actor, page: int = 1, limit: Optional[int] = None) -> SearchResult:
        require(actor, Operation.PROCESS_REDEMPTION)
        limit = self._page_limit(page, limit)
        criteria = TransactionFilter(type=TransactionType.REDEMPTION, processed=False)
        return self.query.search(criteria, page, limit)

    def get_balance(self, user_id: int) -> int:
        self.storage.get_user(user_id)
        return self.balances.effective_balance(user_id)

    def get_balance_summary(self, actor: Actor, user_id: int) -> UserBalance:
        if user_id != actor.user_id:
            require(actor, Operation.VIEW_ANY_BALANCE)
        self.storage.get_user(user_id)
        entries = self.storage.list_by_user(user_id)
        return UserBalance(
            user_id=user_id,
            balance=self.balances.effective_balance(user_id),
            total_entries=len(entries),
            last_transaction_at=max((e.created_at for e in entries), default=None),
        )

    def get_ledger_history(self, actor: Actor, user_id: int, limit: int = 50,
                           offset: int = 0) -> LedgerHistoryResponse:
        if user_id != actor.user_id:
            require(actor, Operation.VIEW_ANY_LEDGER)
        if not 1 <= limit <= self.settings.max_page_size:
            raise InvalidRequestError(f"Limit must be between 1 and {self.settings.max_page_size}")
        if offset < 0:
            raise InvalidRequestError("Offset cannot be negative")
        self.storage.get_user(user_id)
        all_entries = sorted(self.storage.list_by_user(user_id), key=lambda e: e.id, reverse=True)
        return LedgerHistoryResponse(
            user_id=user_id,
            entries=all_entries[offset:offset + limit],
            total_count=len(all_entries),
            current_balance=self.balances.effective_balance(user_id),
        )

    def _create(self, actor: Actor, transaction_type: Union[TransactionType, str],
                payload: Union[dict, BaseModel]) -> list[Transaction]:
        try:
            transaction_type = TransactionType(transaction_type)
        except ValueError:
            raise InvalidRequestError(f"Unknown transaction type '{transaction_type}'") from None

        request = self._parse_request(transaction_type, payload)
        build = self._builders[transaction_type]

        attempts = self.settings.conflict_retry_attempts
        for attempt in range(1, attempts + 1):
            try:
                created = build(actor, request)
                break
            except ConflictError as e:
                if attempt == attempts:
                    logger.warning("Giving up after repeated commit conflicts",
                                   type=transaction_type.value, actor_id=actor.user_id, attempts=attempts)
                    raise
                logger.debug("Commit conflict, re-validating", type=transaction_type.value,
                             actor_id=actor.user_id, attempt=attempt, reason=str(e))

        for transaction in created:
            logger.info(
                "Transaction created",
                transaction_id=transaction.id, type=transaction.type.value,
                user_id=transaction.user_id, actor_id=actor.user_id, amount=transaction.amount,
            )
        return created

    def _page_limit(self, page: int, limit: Optional[int]) -> int:
        limit = limit if limit is not None else self.settings.default_page_size
        if page < 1:
            raise InvalidRequestError("Page must be at least 1")
        if not 1 <= limit <= self.settings.max_page_size:
            raise InvalidRequestError(f"Limit must be between 1 and {self.settings.max_page_size}")
        return limit

    @staticmethod
    def _parse_request(transaction_type: TransactionType, payload: Union[dict, BaseModel]) -> BaseModel:
        model = TRANSACTION_REQUESTS[transaction_type]
        if isinstance(payload, model):
            return payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            fields = {str(err["loc"][0]) for err in e.errors() if err["loc"]}
            if fields & _AMOUNT_FIELDS:
                raise InvalidAmountError(f"Invalid amount: {e}") from e
            raise InvalidRequestError(f"Invalid {transaction_type.value} request: {e}") from e
