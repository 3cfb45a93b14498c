# payments/services/notifications.py

"""
IPN HANDLER

Pesapal calls us with OrderTrackingId / OrderMerchantReference / Status /
Type. The payload status is logged and otherwise ignored: settlement is
decided only by GetTransactionStatus.

Order lookup: tracking id first, then merchant reference (our order number).
The fallback covers a crash between submit and attach; the tracking id is
attached on the way through.

Donation notifications are verified and logged only; there is no donation
store in this system.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from orders.models import Order
from orders.services import order_store
from orders.services.exceptions import OrderNotFound, TrackingIdAttachedError
from payments.services.reconciliation import map_processor_status, reconcile_order_status

logger = logging.getLogger(__name__)

TYPE_ECOMMERCE = "ecommerce"
TYPE_DONATION = "donation"

OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_UNKNOWN_ORDER = "unknown_order"
OUTCOME_DONATION_LOGGED = "donation_logged"


def normalize_type(value) -> str:
    return TYPE_ECOMMERCE if str(value or "").strip().lower() == TYPE_ECOMMERCE else TYPE_DONATION


@dataclass
class NotificationResult:
    notification_type: str
    tracking_id: str
    outcome: str
    payment_status: str = ""
    processor_description: str = ""
    order_id: str = ""


def _locate_order(*, tracking_id: str, merchant_reference: str) -> Order | None:
    try:
        return order_store.get_by_tracking_id(tracking_id)
    except OrderNotFound:
        pass

    if not merchant_reference:
        return None

    try:
        order = order_store.get_by_order_number(merchant_reference)
    except OrderNotFound:
        return None

    try:
        order = order_store.attach_tracking_id(order.id, tracking_id)
    except TrackingIdAttachedError:
        # Reference points at an order tracking a different payment.
        logger.warning(
            "Merchant reference matched an order with another tracking id",
            extra={
                "order_id": str(order.id),
                "tracking_id": tracking_id,
                "existing_tracking_id": order.tracking_id,
            },
        )
        return None

    logger.warning(
        "Tracking id recovered from IPN merchant reference",
        extra={"order_id": str(order.id), "tracking_id": tracking_id},
    )
    return order


def handle_notification(
    *,
    session,
    tracking_id: str,
    merchant_reference: str = "",
    reported_status: str = "",
    notification_type: str = TYPE_ECOMMERCE,
) -> NotificationResult:
    """
    Verify one IPN against the processor and apply it.

    Raises StatusQueryError / PersistenceError; the view turns every failure
    into a logged 200 acknowledgement.
    """
    tracking_id = str(tracking_id or "").strip()
    merchant_reference = str(merchant_reference or "").strip()
    notification_type = normalize_type(notification_type)

    if not tracking_id:
        raise ValueError("OrderTrackingId is required")

    logger.info(
        "IPN received",
        extra={
            "tracking_id": tracking_id,
            "merchant_reference": merchant_reference,
            "reported_status": reported_status,
            "type": notification_type,
        },
    )

    processor_status = session.get_status(tracking_id)
    description = processor_status.payment_status_description

    if notification_type == TYPE_DONATION:
        logger.info(
            "Donation IPN verified",
            extra={
                "tracking_id": tracking_id,
                "merchant_reference": merchant_reference,
                "description": description,
                "amount": str(processor_status.amount),
            },
        )
        return NotificationResult(
            notification_type=notification_type,
            tracking_id=tracking_id,
            outcome=OUTCOME_DONATION_LOGGED,
            payment_status=map_processor_status(description),
            processor_description=description,
        )

    order = _locate_order(tracking_id=tracking_id, merchant_reference=merchant_reference)
    if order is None:
        logger.warning(
            "IPN for unknown order",
            extra={"tracking_id": tracking_id, "merchant_reference": merchant_reference},
        )
        return NotificationResult(
            notification_type=notification_type,
            tracking_id=tracking_id,
            outcome=OUTCOME_UNKNOWN_ORDER,
            payment_status=map_processor_status(description),
            processor_description=description,
        )

    update = reconcile_order_status(order=order, processor_status=processor_status)

    return NotificationResult(
        notification_type=notification_type,
        tracking_id=tracking_id,
        outcome=OUTCOME_UPDATED if update.changed else OUTCOME_UNCHANGED,
        payment_status=update.payment_status,
        processor_description=description,
        order_id=str(update.order.id),
    )
