"""
Order status transition table.

    pending -> confirmed -> shipped -> delivered
    pending -> cancelled
    confirmed -> cancelled

`delivered` and `cancelled` are terminal. Anything not listed, including a
move to the current status, is rejected.
"""
from apps.utils.exceptions import InvalidTransition

from .models.order import OrderStatus

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, nxt in ALLOWED_TRANSITIONS.items() if not nxt)


def allowed_next(current) -> frozenset:
    return ALLOWED_TRANSITIONS.get(current, frozenset())


def can_transition(current, requested) -> bool:
    return requested in allowed_next(current)


def validate_transition(current, requested):
    if not can_transition(current, requested):
        raise InvalidTransition(current, requested)
