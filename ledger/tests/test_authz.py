import pytest

from ledger.authz import PERMISSIONS, Operation, is_allowed, require
from ledger.errors import UnauthorizedError
from ledger.models import Actor, Role


@pytest.mark.parametrize(
    "operation, allowed",
    [
        (Operation.CREATE_PURCHASE, {Role.CASHIER, Role.MANAGER, Role.SUPERUSER}),
        (Operation.CREATE_ADJUSTMENT, {Role.MANAGER, Role.SUPERUSER}),
        (Operation.TRANSFER_OWN_POINTS, set(Role)),
        (Operation.TRANSFER_ON_BEHALF, {Role.CASHIER, Role.MANAGER, Role.SUPERUSER}),
        (Operation.REQUEST_REDEMPTION, set(Role)),
        (Operation.PROCESS_REDEMPTION, {Role.CASHIER, Role.MANAGER, Role.SUPERUSER}),
        (Operation.AWARD_EVENT_POINTS, {Role.MANAGER, Role.SUPERUSER}),
        (Operation.VIEW_ALL_TRANSACTIONS, {Role.MANAGER, Role.SUPERUSER}),
        (Operation.MARK_SUSPICIOUS, {Role.MANAGER, Role.SUPERUSER}),
        (Operation.VIEW_ANY_BALANCE, {Role.CASHIER, Role.MANAGER, Role.SUPERUSER}),
        (Operation.VIEW_ANY_LEDGER, {Role.MANAGER, Role.SUPERUSER}),
        (Operation.REGISTER_STAFF, {Role.MANAGER, Role.SUPERUSER}),
        (Operation.VIEW_UNPUBLISHED_EVENTS, {Role.MANAGER, Role.SUPERUSER}),
    ],
)
def test_permission_table(operation, allowed):
    for role in Role:
        assert is_allowed(operation, role) == (role in allowed)


def test_every_operation_has_an_entry():
    assert set(PERMISSIONS) == set(Operation)


def test_require_raises_for_disallowed_role():
    with pytest.raises(UnauthorizedError, match="regular"):
        require(Actor(user_id=4, role=Role.REGULAR), Operation.MARK_SUSPICIOUS)


def test_role_ordering():
    assert Role.SUPERUSER.at_least(Role.MANAGER)
    assert Role.CASHIER.at_least(Role.CASHIER)
    assert not Role.REGULAR.at_least(Role.CASHIER)
