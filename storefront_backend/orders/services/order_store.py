# orders/services/order_store.py

"""
LOCAL ORDER STORE ADAPTER

Purpose:
- Single place that creates / mutates / deletes Order rows.
- Local source of truth for order contents and status, before and independent
  of payment confirmation.

Hard rules:
- Every write is single-record and row-locked (select_for_update).
- total_amount == subtotal + delivery_cost at creation time.
- Payment status: last-write-wins with terminal priority. Once paid / failed /
  cancelled is stored, later writes (including stale "pending" reads) are no-ops.
- delete() refuses orders that already carry a Pesapal tracking id.
- Database failures surface as PersistenceError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from orders.models import Order, OrderItem, generate_order_number
from orders.services.exceptions import (
    InvalidOrderTransitionError,
    OrderInvariantError,
    OrderNotFound,
    PersistenceError,
    TrackingIdAttachedError,
)
from orders.services.order_lifecycle import (
    SYSTEM_CANCELLABLE_FULFILLMENT,
    resolve_payment_write,
    validate_fulfillment_transition,
)

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")

# Order number regeneration budget on unique collisions
ORDER_NUMBER_ATTEMPTS = 3


def _money(v) -> Decimal:
    if v is None or v == "":
        return Decimal("0.00")
    return Decimal(str(v)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class LineItemSnapshot:
    product_id: str
    product_name: str
    unit_price: Decimal
    quantity: int
    category: str = ""
    image_url: str = ""

    @property
    def line_total(self) -> Decimal:
        return _money(_money(self.unit_price) * Decimal(int(self.quantity)))


@dataclass
class StatusUpdate:
    """Outcome of update_status(): what was stored and whether anything changed."""

    order: Order
    changed: bool
    previous_payment_status: str
    previous_fulfillment_status: str

    @property
    def payment_status(self) -> str:
        return self.order.payment_status

    @property
    def fulfillment_status(self) -> str:
        return self.order.fulfillment_status


# ============================================================
# READS
# ============================================================


def _lookup(qs, **filters) -> Order:
    try:
        return qs.get(**filters)
    except (Order.DoesNotExist, DjangoValidationError, ValueError) as exc:
        raise OrderNotFound(f"Order not found: {filters}") from exc
    except DatabaseError as exc:
        raise PersistenceError(f"Order lookup failed: {exc}") from exc


def _locked(order_id) -> Order:
    return _lookup(Order.objects.select_for_update(), id=order_id)


def get_by_id(order_id) -> Order:
    return _lookup(Order.objects.prefetch_related("items"), id=order_id)


def get_by_tracking_id(tracking_id: str) -> Order:
    tracking_id = str(tracking_id or "").strip()
    if not tracking_id:
        raise OrderNotFound("Empty tracking id")
    return _lookup(Order.objects.prefetch_related("items"), tracking_id=tracking_id)


def get_by_order_number(order_number: str) -> Order:
    order_number = str(order_number or "").strip()
    if not order_number:
        raise OrderNotFound("Empty order number")
    return _lookup(Order.objects.all(), order_number=order_number)


def list_by_user(user, *, require_tracking_id: bool = False):
    if user is None or not getattr(user, "is_authenticated", False):
        return Order.objects.none()

    qs = Order.objects.filter(user=user).prefetch_related("items")
    if require_tracking_id:
        qs = qs.filter(tracking_id__isnull=False).exclude(tracking_id="")
    return qs.order_by("-created_at")


def list_pending_with_tracking(*, created_before=None):
    qs = (
        Order.objects.filter(payment_status=Order.PAYMENT_PENDING, tracking_id__isnull=False)
        .exclude(tracking_id="")
    )
    if created_before is not None:
        qs = qs.filter(created_at__lt=created_before)
    return qs.order_by("created_at")


# ============================================================
# WRITES
# ============================================================


def create_pending(
    *,
    user,
    customer_info: dict,
    delivery_info: dict,
    items: list[LineItemSnapshot],
    delivery_cost,
    total_amount,
    currency: str = "KES",
) -> Order:
    """
    Insert an Order in payment PENDING / fulfillment PROCESSING with its
    line item snapshots. Regenerates the order number on unique collisions.
    """
    if not items:
        raise OrderInvariantError("An order needs at least one line item")

    subtotal = _money(sum((item.line_total for item in items), Decimal("0.00")))
    delivery_cost = _money(delivery_cost)
    total = _money(total_amount)

    if _money(subtotal + delivery_cost) != total:
        raise OrderInvariantError(
            f"Order total mismatch: subtotal({subtotal}) + delivery({delivery_cost}) != total({total})"
        )

    owner = user if user is not None and getattr(user, "is_authenticated", False) else None

    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order_number = generate_order_number()
        try:
            with transaction.atomic():
                order = Order.objects.create(
                    order_number=order_number,
                    user=owner,
                    customer_info=dict(customer_info or {}),
                    delivery_info=dict(delivery_info or {}),
                    subtotal=subtotal,
                    delivery_cost=delivery_cost,
                    total_amount=total,
                    currency=currency,
                    payment_status=Order.PAYMENT_PENDING,
                    fulfillment_status=Order.FULFILLMENT_PROCESSING,
                )

                rows = []
                for position, item in enumerate(items):
                    row = OrderItem(
                        order=order,
                        position=position,
                        product_id=str(item.product_id),
                        product_name=str(item.product_name),
                        category=str(item.category or ""),
                        image_url=str(item.image_url or ""),
                        quantity=int(item.quantity),
                        unit_price=_money(item.unit_price),
                        line_total=item.line_total,
                    )
                    row.clean()
                    rows.append(row)

                OrderItem.objects.bulk_create(rows)

        except DjangoValidationError as exc:
            raise OrderInvariantError("; ".join(exc.messages)) from exc
        except IntegrityError as exc:
            logger.warning(
                "Order insert collided, regenerating order number",
                extra={"order_number": order_number, "attempt": attempt, "error": str(exc)},
            )
            if attempt == ORDER_NUMBER_ATTEMPTS:
                raise PersistenceError(f"Failed to create order: {exc}") from exc
            continue
        except DatabaseError as exc:
            raise PersistenceError(f"Failed to create order: {exc}") from exc

        logger.info(
            "Pending order created",
            extra={"order_id": str(order.id), "order_number": order.order_number, "total": str(total)},
        )
        return order

    raise PersistenceError("Failed to create order")


def attach_tracking_id(order_id, tracking_id: str) -> Order:
    tracking_id = str(tracking_id or "").strip()
    if not tracking_id:
        raise PersistenceError("Cannot attach an empty tracking id")

    try:
        with transaction.atomic():
            order = _locked(order_id)

            if order.tracking_id == tracking_id:
                return order

            if order.tracking_id:
                raise TrackingIdAttachedError(
                    f"Order {order.order_number} already tracks {order.tracking_id}"
                )

            order.tracking_id = tracking_id
            order.save(update_fields=["tracking_id", "updated_at"])
    except IntegrityError as exc:
        raise PersistenceError(f"Tracking id {tracking_id} is already attached elsewhere") from exc
    except DatabaseError as exc:
        raise PersistenceError(f"Failed to attach tracking id: {exc}") from exc

    logger.info(
        "Tracking id attached",
        extra={"order_id": str(order.id), "tracking_id": tracking_id},
    )
    return order


def update_status(
    order_id,
    payment_status: str | None,
    fulfillment_status: str | None = None,
    *,
    processor_description: str | None = None,
    confirmed_amount=None,
) -> StatusUpdate:
    """
    Apply a payment (and optionally fulfillment) status to one order.

    Idempotent: reapplying the stored status is a no-op, and a terminal payment
    status is never overwritten. When payment resolves to failed / cancelled,
    fulfillment that has not shipped yet is cancelled by the system.
    """
    try:
        with transaction.atomic():
            order = _locked(order_id)

            previous_payment = order.payment_status
            previous_fulfillment = order.fulfillment_status
            touched: list[str] = []

            if payment_status:
                new_payment = resolve_payment_write(current=previous_payment, incoming=payment_status)
                if new_payment:
                    order.payment_status = new_payment
                    touched.append("payment_status")

                    if new_payment == Order.PAYMENT_PAID and not order.paid_at:
                        order.paid_at = timezone.now()
                        touched.append("paid_at")

                    if (
                        new_payment in (Order.PAYMENT_FAILED, Order.PAYMENT_CANCELLED)
                        and not fulfillment_status
                        and order.fulfillment_status in SYSTEM_CANCELLABLE_FULFILLMENT
                    ):
                        order.fulfillment_status = Order.FULFILLMENT_CANCELLED
                        touched.append("fulfillment_status")

                elif payment_status != previous_payment:
                    logger.info(
                        "Ignoring payment status write",
                        extra={
                            "order_id": str(order.id),
                            "current": previous_payment,
                            "incoming": payment_status,
                        },
                    )

            if fulfillment_status and fulfillment_status != order.fulfillment_status:
                validate_fulfillment_transition(order=order, target_status=fulfillment_status)
                order.fulfillment_status = fulfillment_status
                touched.append("fulfillment_status")

            # Processor snapshot follows the payment status; frozen once terminal.
            if processor_description is not None and (
                "payment_status" in touched or previous_payment not in Order.TERMINAL_PAYMENT_STATUSES
            ):
                description = str(processor_description or "")[:64]
                if description != order.processor_status_description:
                    order.processor_status_description = description
                    touched.append("processor_status_description")

                if confirmed_amount is not None:
                    amount = _money(confirmed_amount)
                    if amount != order.confirmed_amount:
                        order.confirmed_amount = amount
                        touched.append("confirmed_amount")

            if touched:
                order.save(update_fields=sorted(set(touched)) + ["updated_at"])

    except (InvalidOrderTransitionError, OrderNotFound):
        raise
    except DatabaseError as exc:
        raise PersistenceError(f"Failed to update order status: {exc}") from exc

    changed = (
        order.payment_status != previous_payment
        or order.fulfillment_status != previous_fulfillment
    )
    if changed:
        logger.info(
            "Order status updated",
            extra={
                "order_id": str(order.id),
                "payment": f"{previous_payment}->{order.payment_status}",
                "fulfillment": f"{previous_fulfillment}->{order.fulfillment_status}",
            },
        )

    return StatusUpdate(
        order=order,
        changed=changed,
        previous_payment_status=previous_payment,
        previous_fulfillment_status=previous_fulfillment,
    )


def advance_fulfillment(order_id, target_status: str) -> StatusUpdate:
    """
    Admin-driven fulfillment change. Cancelling an order whose payment is still
    pending also cancels the payment side.
    """
    payment_status = None
    if target_status == Order.FULFILLMENT_CANCELLED:
        payment_status = Order.PAYMENT_CANCELLED

    return update_status(order_id, payment_status, target_status)


def delete(order_id) -> None:
    """
    Rollback-only deletion. Orders that already carry a tracking id are kept.
    """
    try:
        with transaction.atomic():
            order = _locked(order_id)
            if order.tracking_id:
                raise TrackingIdAttachedError(
                    f"Order {order.order_number} has tracking id {order.tracking_id}; refusing to delete"
                )
            order.delete()
    except DatabaseError as exc:
        raise PersistenceError(f"Failed to delete order: {exc}") from exc

    logger.info("Pending order deleted", extra={"order_id": str(order_id)})
