"""
Order lifecycle state machine. Valid transitions enforce business rules.
"""
from dispatch.models import OrderStatus

# Orders in these states keep the rider busy; a rider holds at most one of them.
ACTIVE_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
})

TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.FAILED,
    OrderStatus.CANCELLED,
})

# Statuses a rider may move its own order to, enforced or not. Never pending or cancelled.
RIDER_TARGETS: frozenset[OrderStatus] = frozenset({
    OrderStatus.ASSIGNED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.FAILED,
})

# Current state -> allowed next state
VALID_TRANSITIONS: dict[OrderStatus | None, list[OrderStatus]] = {
    None: [OrderStatus.PENDING],
    OrderStatus.PENDING: [OrderStatus.ASSIGNED, OrderStatus.CANCELLED],
    OrderStatus.ASSIGNED: [OrderStatus.PICKED_UP, OrderStatus.FAILED],
    OrderStatus.PICKED_UP: [OrderStatus.IN_TRANSIT, OrderStatus.FAILED],
    OrderStatus.IN_TRANSIT: [OrderStatus.DELIVERED, OrderStatus.FAILED],
    OrderStatus.DELIVERED: [],  # terminal
    OrderStatus.FAILED: [],  # terminal
    OrderStatus.CANCELLED: [],  # terminal
}


def is_valid_transition(current_state: OrderStatus | None, new_state: OrderStatus) -> bool:
    """True if new_state is allowed after current_state."""
    allowed = VALID_TRANSITIONS.get(current_state, [])
    return new_state in allowed


def is_active(status: OrderStatus) -> bool:
    return status in ACTIVE_STATUSES
