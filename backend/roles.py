"""
Role ranking for endpoint permissions and the order status lifecycle.
"""
from enum import Enum
from typing import Dict, FrozenSet


class RoleName(str, Enum):
    ADMIN = "Admin"
    MANAGER = "Manager"
    STAFF = "Staff"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    def allows(self, required: "RoleName") -> bool:
        """True when this role's permission scope covers ``required``."""
        return self.rank >= required.rank


_ROLE_RANKS = {
    RoleName.ADMIN: 3,
    RoleName.MANAGER: 2,
    RoleName.STAFF: 1,
}


class OrderStatus(str, Enum):
    # Values are the status strings the storefront and admin screens exchange.
    RECEIVED = "주문 접수"
    PREPARING = "제조 중"
    COMPLETED = "제조 완료"
    CANCELLED = "취소됨"


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.RECEIVED: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]
