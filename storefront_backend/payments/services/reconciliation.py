# payments/services/reconciliation.py

"""
RECONCILIATION

Maps the processor's authoritative status onto the local order.

- "Completed"           -> paid
- "Failed" / "Invalid"  -> failed
- anything else         -> pending (left as is)

All writes go through order_store.update_status, so terminal priority and
idempotency hold no matter which path (IPN, status check, poller, sweep)
gets there first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from orders.models import Order
from orders.services import order_store
from orders.services.exceptions import OrderNotFound
from payments.services.pesapal import ProcessorStatus

logger = logging.getLogger(__name__)

PAID_DESCRIPTIONS = frozenset({"completed"})
FAILED_DESCRIPTIONS = frozenset({"failed", "invalid"})


def map_processor_status(description) -> str:
    value = str(description or "").strip().lower()
    if value in PAID_DESCRIPTIONS:
        return Order.PAYMENT_PAID
    if value in FAILED_DESCRIPTIONS:
        return Order.PAYMENT_FAILED
    return Order.PAYMENT_PENDING


@dataclass
class Reconciliation:
    processor_status: ProcessorStatus
    mapped_status: str
    update: order_store.StatusUpdate | None = None

    @property
    def order(self) -> Order | None:
        return self.update.order if self.update else None

    @property
    def payment_status(self) -> str:
        if self.update is not None:
            return self.update.payment_status
        return self.mapped_status


def reconcile_order_status(*, order: Order, processor_status: ProcessorStatus) -> order_store.StatusUpdate:
    mapped = map_processor_status(processor_status.payment_status_description)

    if (
        mapped == Order.PAYMENT_PAID
        and processor_status.amount is not None
        and processor_status.amount != order.total_amount
    ):
        # Processor is authoritative for settlement; flag for manual review.
        logger.error(
            "Confirmed amount differs from order total",
            extra={
                "order_id": str(order.id),
                "order_total": str(order.total_amount),
                "confirmed_amount": str(processor_status.amount),
            },
        )

    return order_store.update_status(
        order.id,
        mapped,
        processor_description=processor_status.payment_status_description,
        confirmed_amount=processor_status.amount,
    )


def reconcile_tracking_id(*, session, tracking_id: str) -> Reconciliation:
    """
    Query the processor for `tracking_id` and apply the answer to the local
    order, if one is tracked. StatusQueryError propagates to the caller.
    """
    processor_status = session.get_status(tracking_id)
    mapped = map_processor_status(processor_status.payment_status_description)

    try:
        order = order_store.get_by_tracking_id(tracking_id)
    except OrderNotFound:
        logger.warning(
            "Processor status for an untracked order",
            extra={"tracking_id": tracking_id, "description": processor_status.payment_status_description},
        )
        return Reconciliation(processor_status=processor_status, mapped_status=mapped)

    update = reconcile_order_status(order=order, processor_status=processor_status)
    return Reconciliation(processor_status=processor_status, mapped_status=mapped, update=update)
