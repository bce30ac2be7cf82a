"""
Order status graph.

    pending ─► confirmed ─► dispatched_to_logistics ─┬─► dispatched_to_coldstorage ─► in_coldstorage ─┐
       │                                             └──────────────────────────────────────────────┴─► dispatched_to_customer ─► delivered
       └─► cancelled

Each edge names the roles allowed to take it. Anything not listed is rejected.
"""

from enum import Enum

from core.errors import Forbidden, InvalidStateTransition
from core.roles import Role


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPATCHED_TO_LOGISTICS = "dispatched_to_logistics"
    DISPATCHED_TO_COLDSTORAGE = "dispatched_to_coldstorage"
    IN_COLDSTORAGE = "in_coldstorage"
    DISPATCHED_TO_CUSTOMER = "dispatched_to_customer"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class DeliveryDestination(str, Enum):
    CUSTOMER = "customer"
    COLDSTORAGE = "coldstorage"


TRANSITIONS: dict[OrderStatus, dict[OrderStatus, frozenset[Role]]] = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED: frozenset({Role.SELLER}),
        OrderStatus.CANCELLED: frozenset({Role.BUYER, Role.SELLER}),
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.DISPATCHED_TO_LOGISTICS: frozenset({Role.SELLER}),
    },
    OrderStatus.DISPATCHED_TO_LOGISTICS: {
        OrderStatus.DISPATCHED_TO_COLDSTORAGE: frozenset({Role.LOGISTICS}),
        OrderStatus.DISPATCHED_TO_CUSTOMER: frozenset({Role.LOGISTICS}),
    },
    OrderStatus.DISPATCHED_TO_COLDSTORAGE: {
        OrderStatus.IN_COLDSTORAGE: frozenset({Role.COLDSTORAGE}),
    },
    OrderStatus.IN_COLDSTORAGE: {
        OrderStatus.DISPATCHED_TO_CUSTOMER: frozenset({Role.COLDSTORAGE}),
    },
    OrderStatus.DISPATCHED_TO_CUSTOMER: {
        OrderStatus.DELIVERED: frozenset({Role.DRIVER}),
    },
    OrderStatus.DELIVERED: {},
    OrderStatus.CANCELLED: {},
}

# Order column stamped when the order enters each status
TIMESTAMP_FIELDS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "placed_at",
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.DISPATCHED_TO_LOGISTICS: "dispatched_to_logistics_at",
    OrderStatus.DISPATCHED_TO_COLDSTORAGE: "dispatched_to_coldstorage_at",
    OrderStatus.IN_COLDSTORAGE: "in_coldstorage_at",
    OrderStatus.DISPATCHED_TO_CUSTOMER: "dispatched_to_customer_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

TERMINAL_STATUSES = frozenset(status for status, edges in TRANSITIONS.items() if not edges)


def allowed_next(current: OrderStatus) -> list[OrderStatus]:
    return list(TRANSITIONS[current])


def check_transition(current: OrderStatus, target: OrderStatus, role: Role) -> None:
    """Raise unless `role` may move an order from `current` to `target`."""
    edges = TRANSITIONS[current]
    if target not in edges:
        allowed = ", ".join(s.value for s in edges) or "none"
        raise InvalidStateTransition(
            f"Cannot move order from '{current.value}' to '{target.value}'. Allowed: {allowed}"
        )
    if role not in edges[target]:
        raise Forbidden(f"Role '{role.value}' cannot move an order to '{target.value}'")
