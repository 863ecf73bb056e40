import pytest

from roles import ALLOWED_TRANSITIONS, OrderStatus, RoleName, can_transition


def test_roles_are_ranked_admin_manager_staff():
    assert RoleName.ADMIN.allows(RoleName.MANAGER)
    assert RoleName.ADMIN.allows(RoleName.STAFF)
    assert RoleName.MANAGER.allows(RoleName.STAFF)
    assert RoleName.MANAGER.allows(RoleName.MANAGER)
    assert not RoleName.MANAGER.allows(RoleName.ADMIN)
    assert not RoleName.STAFF.allows(RoleName.MANAGER)


@pytest.mark.parametrize("current,target", [
    (OrderStatus.RECEIVED, OrderStatus.PREPARING),
    (OrderStatus.PREPARING, OrderStatus.COMPLETED),
    (OrderStatus.RECEIVED, OrderStatus.CANCELLED),
])
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


def test_every_other_transition_is_rejected():
    allowed = {
        (OrderStatus.RECEIVED, OrderStatus.PREPARING),
        (OrderStatus.PREPARING, OrderStatus.COMPLETED),
        (OrderStatus.RECEIVED, OrderStatus.CANCELLED),
    }
    for current in OrderStatus:
        for target in OrderStatus:
            if (current, target) not in allowed:
                assert not can_transition(current, target), (current, target)


def test_terminal_states_have_no_exits():
    assert ALLOWED_TRANSITIONS[OrderStatus.COMPLETED] == frozenset()
    assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()


def test_status_values_match_storefront_strings():
    assert OrderStatus("주문 접수") is OrderStatus.RECEIVED
    assert OrderStatus("취소됨") is OrderStatus.CANCELLED
