"""
ORDER LIFECYCLE DOMAIN RULES

This module defines the ONLY allowed lifecycle transitions for Orders.

Payment status (driven by Pesapal, via IPN / polling / reconciliation):
- pending -> paid | failed | cancelled
- paid, failed, cancelled are terminal

Fulfillment status (driven by admins):
- processing -> confirmed -> shipped -> delivered
- processing | confirmed -> cancelled

DESIGN PRINCIPLES:
- No database writes
- No side effects
- Single source of truth
"""

from orders.models import Order
from orders.services.exceptions import InvalidOrderTransitionError

# ============================================================
# PAYMENT STATUS
# ============================================================

PAYMENT_TERMINAL_STATES = Order.TERMINAL_PAYMENT_STATUSES

PAYMENT_TRANSITIONS = {
    Order.PAYMENT_PENDING: {
        Order.PAYMENT_PAID,
        Order.PAYMENT_FAILED,
        Order.PAYMENT_CANCELLED,
    },
}


def resolve_payment_write(*, current: str, incoming: str) -> str | None:
    """
    Decide whether `incoming` may be written over `current`.

    Returns the status to write, or None when the write is a no-op
    (same status again, a stale `pending`, or anything after a terminal status).
    """
    if current == incoming:
        return None
    if current in PAYMENT_TERMINAL_STATES:
        return None
    if incoming in PAYMENT_TRANSITIONS.get(current, set()):
        return incoming
    return None


# ============================================================
# FULFILLMENT STATUS
# ============================================================

FULFILLMENT_TERMINAL_STATES = {
    Order.FULFILLMENT_DELIVERED,
    Order.FULFILLMENT_CANCELLED,
}

FULFILLMENT_TRANSITIONS = {
    Order.FULFILLMENT_PROCESSING: {
        Order.FULFILLMENT_CONFIRMED,
        Order.FULFILLMENT_CANCELLED,
    },
    Order.FULFILLMENT_CONFIRMED: {
        Order.FULFILLMENT_SHIPPED,
        Order.FULFILLMENT_CANCELLED,
    },
    Order.FULFILLMENT_SHIPPED: {
        Order.FULFILLMENT_DELIVERED,
    },
}

# Fulfillment states the system may cancel when payment fails
SYSTEM_CANCELLABLE_FULFILLMENT = {
    Order.FULFILLMENT_PROCESSING,
    Order.FULFILLMENT_CONFIRMED,
}


def can_transition_fulfillment(*, from_status: str, to_status: str) -> bool:
    if from_status in FULFILLMENT_TERMINAL_STATES:
        return False

    return to_status in FULFILLMENT_TRANSITIONS.get(from_status, set())


def validate_fulfillment_transition(*, order: Order, target_status: str):
    if not can_transition_fulfillment(
        from_status=order.fulfillment_status,
        to_status=target_status,
    ):
        raise InvalidOrderTransitionError(
            f"Order {order.order_number} cannot move fulfillment from "
            f"'{order.fulfillment_status}' to '{target_status}'"
        )
