"""Order lifecycle state machines.

``status`` follows pending -> processing -> shipped -> delivered, with a side
exit to cancelled from every non-terminal state. ``payment_status`` moves from
pending (cash on delivery) or awaiting_payment (gateway methods) to paid.
"""
from enum import Enum
from typing import Dict, FrozenSet

from shared.utils import InvalidTransitionException


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"


class PaymentMethod(str, Enum):
    COD = "cod"
    CARD = "card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"

    @property
    def uses_gateway(self) -> bool:
        return self is not PaymentMethod.COD

    def initial_payment_status(self) -> PaymentStatus:
        return PaymentStatus.AWAITING_PAYMENT if self.uses_gateway else PaymentStatus.PENDING


ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID}),
    PaymentStatus.AWAITING_PAYMENT: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset(),
}


def is_terminal(status: OrderStatus) -> bool:
    return not ORDER_TRANSITIONS[status]


def check_order_transition(current: str, target: str) -> OrderStatus:
    """Return ``target`` as an OrderStatus, raising if the table forbids the move."""
    src, dst = OrderStatus(current), OrderStatus(target)
    if dst not in ORDER_TRANSITIONS[src]:
        raise InvalidTransitionException(
            f"Cannot move order from '{src.value}' to '{dst.value}'",
            details={"from": src.value, "to": dst.value,
                     "allowed": sorted(s.value for s in ORDER_TRANSITIONS[src])},
        )
    return dst


def check_payment_transition(current: str, target: str) -> PaymentStatus:
    src, dst = PaymentStatus(current), PaymentStatus(target)
    if dst not in PAYMENT_TRANSITIONS[src]:
        raise InvalidTransitionException(
            f"Cannot move payment from '{src.value}' to '{dst.value}'",
            details={"from": src.value, "to": dst.value},
        )
    return dst
