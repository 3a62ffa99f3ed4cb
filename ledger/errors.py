class LedgerServiceError(Exception):
    pass


class UnauthorizedError(LedgerServiceError):
    pass


class InvalidRequestError(LedgerServiceError):
    pass


class InvalidAmountError(InvalidRequestError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    def __init__(self, user_id: int, balance: int, requested: int):
        super().__init__(
            f"User {user_id} has {balance} points available, {requested} requested"
        )
        self.user_id = user_id
        self.balance = balance
        self.requested = requested


class NotFoundError(LedgerServiceError):
    pass


class WrongTypeError(LedgerServiceError):
    pass


class AlreadyProcessedError(LedgerServiceError):
    pass


class BudgetExceededError(LedgerServiceError):
    def __init__(self, event_id: int, remaining: int, requested: int):
        super().__init__(
            f"Event {event_id} has {remaining} points remaining, {requested} requested"
        )
        self.event_id = event_id
        self.remaining = remaining
        self.requested = requested


class ConflictError(LedgerServiceError):
    """Raised when a commit loses a race against another write to the same user or event."""


class CapacityExceededError(InvalidRequestError):
    pass


class DuplicateMembershipError(InvalidRequestError):
    pass
