from decimal import Decimal, ROUND_HALF_UP

from loguru import logger

from .authz import Operation, is_allowed, require
from .balance import BalanceEngine
from .config import Settings
from .errors import (
    BudgetExceededError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidRequestError,
    UnauthorizedError,
)
from .models import (
    Actor,
    AdjustmentRequest,
    EventRewardRequest,
    PurchaseRequest,
    RedemptionRequest,
    Transaction,
    TransactionType,
    TransferRequest,
)
from .storage import InMemoryStorage, event_key, user_key


class TransactionFactory:
    """Validates and commits each transaction type.

    Each ``create_*`` method makes a single attempt: it reads the balance or
    budget it depends on, validates against it and commits with the version it
    read. A concurrent write in between surfaces as ``ConflictError`` and the
    caller decides whether to try again.
    """

    def __init__(self, storage: InMemoryStorage, balances: BalanceEngine, settings: Settings):
        self.storage = storage
        self.balances = balances
        self.settings = settings

    def create_purchase(self, actor: Actor, request: PurchaseRequest) -> list[Transaction]:
        require(actor, Operation.CREATE_PURCHASE)
        if request.spent <= 0:
            raise InvalidAmountError("Spent amount must be positive")

        customer = self.storage.get_user(request.user_id)
        cashier = self.storage.get_user(actor.user_id)
        points = self.points_for(request.spent)
        self._check_cap(points)

        if cashier.suspicious:
            logger.warning("Purchase by flagged cashier recorded as suspicious",
                           actor_id=actor.user_id, user_id=customer.id)

        return self.storage.commit([{
            "type": TransactionType.PURCHASE,
            "user_id": customer.id,
            "amount": points,
            "spent": request.spent,
            "created_by": actor.user_id,
            "suspicious": cashier.suspicious,
            "remark": request.remark,
        }])

    def create_adjustment(self, actor: Actor, request: AdjustmentRequest) -> list[Transaction]:
        require(actor, Operation.CREATE_ADJUSTMENT)
        if request.amount == 0:
            raise InvalidAmountError("Adjustment amount must be non-zero")
        self._check_cap(abs(request.amount))

        target = self.storage.get_user(request.user_id)
        if request.related_id is not None:
            adjusted = self.storage.get(request.related_id)
            if adjusted.user_id != target.id:
                raise InvalidRequestError(
                    f"Transaction {adjusted.id} does not belong to user {target.id}"
                )

        expected = None
        if request.amount < 0 and not request.allow_negative:
            snapshot = self.balances.snapshot(target.id)
            if snapshot.balance + request.amount < 0:
                raise InsufficientBalanceError(target.id, snapshot.balance, -request.amount)
            expected = {user_key(target.id): snapshot.version}

        return self.storage.commit([{
            "type": TransactionType.ADJUSTMENT,
            "user_id": target.id,
            "amount": request.amount,
            "related_id": request.related_id,
            "created_by": actor.user_id,
            "remark": request.remark,
        }], expected)

    def create_transfer(self, actor: Actor, request: TransferRequest) -> list[Transaction]:
        sender_id = request.sender_id if request.sender_id is not None else actor.user_id
        if sender_id == actor.user_id:
            require(actor, Operation.TRANSFER_OWN_POINTS)
        else:
            require(actor, Operation.TRANSFER_ON_BEHALF)

        self._check_positive(request.amount)
        if sender_id == request.recipient_id:
            raise InvalidRequestError("Cannot transfer points to yourself")

        sender = self.storage.get_user(sender_id)
        recipient = self.storage.get_user(request.recipient_id)
        if not sender.verified:
            raise UnauthorizedError(f"User {sender.id} must be verified to transfer points")

        snapshot = self.balances.snapshot(sender.id)
        if snapshot.balance < request.amount:
            raise InsufficientBalanceError(sender.id, snapshot.balance, request.amount)

        leg = {
            "type": TransactionType.TRANSFER,
            "created_by": actor.user_id,
            "remark": request.remark,
        }
        return self.storage.commit(
            [
                {**leg, "user_id": sender.id, "amount": -request.amount},
                {**leg, "user_id": recipient.id, "amount": request.amount},
            ],
            expected_versions={user_key(sender.id): snapshot.version},
            link_pair=True,
        )

    def create_redemption(self, actor: Actor, request: RedemptionRequest) -> list[Transaction]:
        require(actor, Operation.REQUEST_REDEMPTION)
        self._check_positive(request.amount)

        user = self.storage.get_user(actor.user_id)
        snapshot = self.balances.snapshot(user.id)
        if snapshot.balance < request.amount:
            raise InsufficientBalanceError(user.id, snapshot.balance, request.amount)

        # Points are reserved now; processing later only flips the status.
        return self.storage.commit([{
            "type": TransactionType.REDEMPTION,
            "user_id": user.id,
            "amount": -request.amount,
            "processed": False,
            "created_by": actor.user_id,
            "remark": request.remark,
        }], {user_key(user.id): snapshot.version})

    def create_event_reward(self, actor: Actor, request: EventRewardRequest) -> list[Transaction]:
        with self.storage.locked():
            event = self.storage.get_event(request.event_id)
            version = self.storage.version(event_key(event.id))

        if actor.user_id not in event.organizers and not is_allowed(Operation.AWARD_EVENT_POINTS, actor.role):
            raise UnauthorizedError(f"Only organizers of event {event.id} or managers can award its points")
        if not event.active:
            raise InvalidRequestError(f"Event {event.id} is no longer active")
        self._check_positive(request.amount)

        if request.user_id is not None:
            self.storage.get_user(request.user_id)
            if request.user_id not in event.guests:
                raise InvalidRequestError(f"User {request.user_id} is not a guest of event {event.id}")
            recipients = [request.user_id]
        else:
            recipients = list(event.guests)
            if not recipients:
                raise InvalidRequestError(f"Event {event.id} has no guests to award")

        total = request.amount * len(recipients)
        if total > event.points_remaining:
            raise BudgetExceededError(event.id, event.points_remaining, total)

        records = [
            {
                "type": TransactionType.EVENT,
                "user_id": guest_id,
                "amount": request.amount,
                "related_id": event.id,
                "created_by": actor.user_id,
                "remark": request.remark or event.name,
            }
            for guest_id in recipients
        ]
        return self.storage.commit(
            records,
            expected_versions={event_key(event.id): version},
            event_awards={event.id: total},
        )

    def points_for(self, spent: Decimal) -> int:
        points = (spent * self.settings.points_per_dollar).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return int(points)

    def _check_positive(self, amount: int) -> None:
        if amount <= 0:
            raise InvalidAmountError("Amount must be a positive number of points")
        self._check_cap(amount)

    def _check_cap(self, amount: int) -> None:
        if amount > self.settings.max_transaction_points:
            raise InvalidAmountError(
                f"Amount exceeds the limit of {self.settings.max_transaction_points} points"
            )
