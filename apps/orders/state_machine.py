r"""
Order lifecycle graph.

    pending -> accepted -> in-progress -> awaitconfirmation -> delivered
        \__________\______________\_______________\__________> cancelled

``delivered`` and ``cancelled`` are terminal. The human-facing delivery
status is derived from ``status`` and never stored.
"""
from django.db import models

from apps.utils.exceptions import InvalidTransition


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ACCEPTED = "accepted", "Accepted"
    IN_PROGRESS = "in-progress", "In Progress"
    AWAITING_CONFIRMATION = "awaitconfirmation", "Awaiting Confirmation"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


DELIVERY_STATUS = {
    OrderStatus.PENDING: "Assigning Partner",
    OrderStatus.ACCEPTED: "Partner Assigned",
    OrderStatus.IN_PROGRESS: "On The Way",
    OrderStatus.AWAITING_CONFIRMATION: "Delivered",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.CANCELLED: "Cancelled",
}

TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

ACTIVE_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.ACCEPTED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.AWAITING_CONFIRMATION,
)

# Partner-held orders (accepted but not finished)
PARTNER_ACTIVE_STATUSES = ACTIVE_STATUSES[1:]

TRANSITIONS = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.AWAITING_CONFIRMATION, OrderStatus.CANCELLED}),
    OrderStatus.AWAITING_CONFIRMATION: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Direct status-set path used by the partner app
STATUS_UPDATE_TRANSITIONS = {
    OrderStatus.ACCEPTED: frozenset({OrderStatus.IN_PROGRESS}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.AWAITING_CONFIRMATION}),
    OrderStatus.AWAITING_CONFIRMATION: frozenset({OrderStatus.DELIVERED}),
}


def delivery_status_for(status) -> str:
    return DELIVERY_STATUS[OrderStatus(status)]


def is_terminal(status) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current, target, table=TRANSITIONS) -> bool:
    return target in table.get(current, ())


def ensure_transition(current, target, table=TRANSITIONS):
    if target not in OrderStatus.values:
        raise InvalidTransition(f"Unknown order status: {target}")
    if not can_transition(current, target, table):
        raise InvalidTransition(f"Cannot move order from '{current}' to '{target}'.")
