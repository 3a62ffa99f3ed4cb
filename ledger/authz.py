from enum import Enum

from .errors import UnauthorizedError
from .models import Actor, Role


class Operation(str, Enum):
    CREATE_PURCHASE = "create_purchase"
    CREATE_ADJUSTMENT = "create_adjustment"
    TRANSFER_OWN_POINTS = "transfer_own_points"
    TRANSFER_ON_BEHALF = "transfer_on_behalf"
    REQUEST_REDEMPTION = "request_redemption"
    PROCESS_REDEMPTION = "process_redemption"
    AWARD_EVENT_POINTS = "award_event_points"
    VIEW_OWN_TRANSACTIONS = "view_own_transactions"
    VIEW_ALL_TRANSACTIONS = "view_all_transactions"
    VIEW_ANY_BALANCE = "view_any_balance"
    VIEW_ANY_LEDGER = "view_any_ledger"
    MARK_SUSPICIOUS = "mark_suspicious"
    REGISTER_USER = "register_user"
    REGISTER_STAFF = "register_staff"
    VERIFY_USER = "verify_user"
    FLAG_CASHIER = "flag_cashier"
    MANAGE_EVENTS = "manage_events"
    MANAGE_EVENT_GUESTS = "manage_event_guests"
    VIEW_UNPUBLISHED_EVENTS = "view_unpublished_events"
    RSVP = "rsvp"


_EVERYONE = frozenset(Role)
_CASHIER_UP = frozenset({Role.CASHIER, Role.MANAGER, Role.SUPERUSER})
_MANAGER_UP = frozenset({Role.MANAGER, Role.SUPERUSER})

# Organizer rights on a single event are checked separately: they depend on
# the event, not on the role.
PERMISSIONS: dict[Operation, frozenset[Role]] = {
    Operation.CREATE_PURCHASE: _CASHIER_UP,
    Operation.CREATE_ADJUSTMENT: _MANAGER_UP,
    Operation.TRANSFER_OWN_POINTS: _EVERYONE,
    Operation.TRANSFER_ON_BEHALF: _CASHIER_UP,
    Operation.REQUEST_REDEMPTION: _EVERYONE,
    Operation.PROCESS_REDEMPTION: _CASHIER_UP,
    Operation.AWARD_EVENT_POINTS: _MANAGER_UP,
    Operation.VIEW_OWN_TRANSACTIONS: _EVERYONE,
    Operation.VIEW_ALL_TRANSACTIONS: _MANAGER_UP,
    Operation.VIEW_ANY_BALANCE: _CASHIER_UP,
    Operation.VIEW_ANY_LEDGER: _MANAGER_UP,
    Operation.MARK_SUSPICIOUS: _MANAGER_UP,
    Operation.REGISTER_USER: _CASHIER_UP,
    Operation.REGISTER_STAFF: _MANAGER_UP,
    Operation.VERIFY_USER: _MANAGER_UP,
    Operation.FLAG_CASHIER: _MANAGER_UP,
    Operation.MANAGE_EVENTS: _MANAGER_UP,
    Operation.MANAGE_EVENT_GUESTS: _MANAGER_UP,
    Operation.VIEW_UNPUBLISHED_EVENTS: _MANAGER_UP,
    Operation.RSVP: _EVERYONE,
}


def is_allowed(operation: Operation, role: Role) -> bool:
    return role in PERMISSIONS.get(operation, frozenset())


def require(actor: Actor, operation: Operation) -> None:
    if not is_allowed(operation, actor.role):
        raise UnauthorizedError(
            f"Role '{actor.role.value}' is not allowed to {operation.value.replace('_', ' ')}"
        )
