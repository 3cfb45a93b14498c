# orders/services/checkout_orchestrator.py

"""
CHECKOUT ORCHESTRATOR (APPLICATION SERVICE)

Purpose:
- Turn a storefront cart into a local pending Order and a Pesapal payment order.

Flow (per attempt):
    START -> ORDER_PERSISTED -> SUBMITTED -> DONE
    ORDER_PERSISTED -> ROLLED_BACK -> FAILED

- ORDER_PERSISTED: create_pending() committed (payment pending / processing)
- SUBMITTED: Pesapal accepted the order AND the tracking id is attached
- ROLLED_BACK: submit failed, redirect_url missing, or attach failed;
  the pending order is deleted (best-effort)

Hard rules:
- Money is computed server-side (line totals, delivery, total). A client
  totalAmount that disagrees is rejected before anything is written.
- Submission is never retried here: a retry would be a second remote payment.
- Rollback failure is logged with both errors and never replaces the
  original error.
- Callers get CheckoutFailed (generic message); processor detail stays in logs.

Known gap:
- A crash between submit and attach leaves a remote payment with no tracking
  id locally. The IPN handler recovers it through the merchant reference
  (our order number).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from urllib.parse import urlencode

from django.conf import settings

from orders.models import Order
from orders.services import delivery, order_store
from orders.services.exceptions import CheckoutFailed, CheckoutValidationError
from payments.services.exceptions import SubmissionError
from payments.services.pesapal import BillingAddress, PaymentOrderRequest, build_description

logger = logging.getLogger(__name__)

TWOPLACES = Decimal("0.01")

STATE_START = "start"
STATE_ORDER_PERSISTED = "order_persisted"
STATE_SUBMITTED = "submitted"
STATE_DONE = "done"
STATE_ROLLED_BACK = "rolled_back"
STATE_FAILED = "failed"


def _money(v) -> Decimal:
    if v is None or v == "":
        return Decimal("0.00")
    return Decimal(str(v)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _to_int_qty(value) -> int:
    if isinstance(value, bool):
        raise ValueError("quantity must be a whole integer unit")

    if isinstance(value, int):
        return value

    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())

    raise ValueError("quantity must be a whole integer unit")


@dataclass(frozen=True)
class CartLine:
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    category: str = ""
    image_url: str = ""


@dataclass(frozen=True)
class CustomerInfo:
    first_name: str
    last_name: str
    email: str
    phone: str
    address: str = ""

    def as_snapshot(self) -> dict:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
        }


@dataclass
class CheckoutRequest:
    lines: list[CartLine]
    customer: CustomerInfo
    county: str
    delivery_option: str
    address: str = ""
    total_amount: Decimal | None = None
    user: object = None


@dataclass
class CheckoutResult:
    order: Order
    tracking_id: str
    redirect_url: str
    states: list[str] = field(default_factory=list)


# ============================================================
# HELPERS
# ============================================================


def callback_url_for(order_id) -> str:
    """{PESAPAL_CALLBACK_URL or APP_BASE_URL/checkout/callback}?type=ecommerce&order_id=<id>"""
    cfg = (getattr(settings, "PAYMENTS", {}) or {}).get("PESAPAL") or {}
    base = (cfg.get("CALLBACK_URL") or "").strip()
    if not base:
        app_base = str(getattr(settings, "APP_BASE_URL", "") or "").rstrip("/")
        base = f"{app_base}/checkout/callback"

    sep = "&" if "?" in base else "?"
    return f"{base}{sep}{urlencode({'type': 'ecommerce', 'order_id': str(order_id)})}"


def _line_snapshots(lines: list[CartLine]) -> list[order_store.LineItemSnapshot]:
    if not lines:
        raise CheckoutValidationError("Cart is empty")

    snapshots = []
    for idx, line in enumerate(lines):
        name = str(line.name or "").strip()
        product_id = str(line.product_id or "").strip()
        if not product_id or not name:
            raise CheckoutValidationError(f"Cart item {idx} is missing product id or name")

        try:
            quantity = _to_int_qty(line.quantity)
        except ValueError:
            raise CheckoutValidationError(f"Invalid quantity for {name}. Quantity must be a whole number.")

        if quantity <= 0:
            raise CheckoutValidationError(f"Invalid quantity for {name}. Quantity must be at least 1.")

        try:
            unit_price = _money(line.unit_price)
        except (InvalidOperation, TypeError, ValueError):
            raise CheckoutValidationError(f"Invalid price for {name}")

        if unit_price <= 0:
            raise CheckoutValidationError(f"Invalid price for {name}")

        snapshots.append(
            order_store.LineItemSnapshot(
                product_id=product_id,
                product_name=name,
                unit_price=unit_price,
                quantity=quantity,
                category=str(line.category or ""),
                image_url=str(line.image_url or ""),
            )
        )

    return snapshots


def _validate_customer(customer: CustomerInfo) -> None:
    missing = [
        label
        for label, value in (
            ("firstName", customer.first_name),
            ("lastName", customer.last_name),
            ("email", customer.email),
            ("phone", customer.phone),
        )
        if not str(value or "").strip()
    ]
    if missing:
        raise CheckoutValidationError(f"Missing customer information: {', '.join(missing)}")


def build_payment_request(*, order: Order, item_names: list[str], customer: CustomerInfo) -> PaymentOrderRequest:
    cfg = (getattr(settings, "PAYMENTS", {}) or {}).get("PESAPAL") or {}

    return PaymentOrderRequest(
        merchant_reference=order.order_number,
        amount=order.total_amount,
        currency=order.currency,
        description=build_description(item_names),
        callback_url=callback_url_for(order.id),
        billing_address=BillingAddress(
            email_address=customer.email,
            phone_number=customer.phone,
            first_name=customer.first_name,
            last_name=customer.last_name,
            country_code=cfg.get("COUNTRY_CODE") or "KE",
            line_1=customer.address,
        ),
    )


def _rollback(order: Order) -> str:
    """Delete the pending order. Returns the rollback error text ('' on success)."""
    try:
        order_store.delete(order.id)
    except Exception as exc:
        return f"{type(exc).__name__}: {exc}"
    return ""


# ============================================================
# ENTRY POINT
# ============================================================


def checkout(*, request: CheckoutRequest, session) -> CheckoutResult:
    states = [STATE_START]

    _validate_customer(request.customer)
    items = _line_snapshots(request.lines)

    subtotal = _money(sum((item.line_total for item in items), Decimal("0.00")))
    quote = delivery.quote(
        subtotal=subtotal,
        county=request.county,
        delivery_option=request.delivery_option,
    )

    if request.total_amount is not None and _money(request.total_amount) != quote.total:
        raise CheckoutValidationError(
            f"Order total mismatch: expected {quote.total}, got {_money(request.total_amount)}"
        )

    cfg = (getattr(settings, "PAYMENTS", {}) or {}).get("PESAPAL") or {}

    order = order_store.create_pending(
        user=request.user,
        customer_info=request.customer.as_snapshot(),
        delivery_info=quote.as_snapshot(address=request.address or request.customer.address),
        items=items,
        delivery_cost=quote.delivery_cost,
        total_amount=quote.total,
        currency=cfg.get("CURRENCY") or "KES",
    )
    states.append(STATE_ORDER_PERSISTED)

    try:
        payment_request = build_payment_request(
            order=order,
            item_names=[item.product_name for item in items],
            customer=request.customer,
        )
        submission = session.submit(payment_request)

        if not submission.redirect_url:
            raise SubmissionError(
                f"Pesapal accepted order {submission.tracking_id} without a redirect_url"
            )

        order = order_store.attach_tracking_id(order.id, submission.tracking_id)
        states.append(STATE_SUBMITTED)

    except Exception as exc:
        states.append(STATE_ROLLED_BACK)
        rollback_error = _rollback(order)
        states.append(STATE_FAILED)

        logger.error(
            "Checkout failed, pending order rolled back",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "error": f"{type(exc).__name__}: {exc}",
                "rollback_error": rollback_error,
                "states": states,
            },
        )
        raise CheckoutFailed(
            f"Checkout failed for order {order.order_number}",
            order_id=order.id,
            states=states,
        ) from exc

    states.append(STATE_DONE)

    logger.info(
        "Checkout submitted",
        extra={
            "order_id": str(order.id),
            "order_number": order.order_number,
            "tracking_id": submission.tracking_id,
        },
    )

    return CheckoutResult(
        order=order,
        tracking_id=submission.tracking_id,
        redirect_url=submission.redirect_url,
        states=states,
    )
