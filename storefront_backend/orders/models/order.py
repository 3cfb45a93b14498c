# orders/models/order.py

import secrets
import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


def generate_order_number() -> str:
    """
    Human-readable order number: ORD-<UTC timestamp>-<8 random hex chars>.

    The random suffix comes from `secrets` (32 bits); the unique constraint on
    Order.order_number is the final guard and callers regenerate on collision.
    """
    stamp = timezone.now().strftime("%Y%m%d%H%M%S")
    return f"ORD-{stamp}-{secrets.token_hex(4).upper()}"


class Order(models.Model):
    """
    Storefront order (local record of a purchase attempt).

    Key rules:
    - Created first with payment PENDING / fulfillment PROCESSING,
      before any Pesapal interaction
    - Payment status only moves forward into a terminal state
      (paid / failed / cancelled) and never leaves it
    - Fulfillment is advanced by an admin; payment failure cancels it
    - Deleted only by checkout rollback, and only while tracking_id is unset
    """

    PAYMENT_PENDING = "pending"
    PAYMENT_PAID = "paid"
    PAYMENT_FAILED = "failed"
    PAYMENT_CANCELLED = "cancelled"

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_PAID, "Paid"),
        (PAYMENT_FAILED, "Failed"),
        (PAYMENT_CANCELLED, "Cancelled"),
    ]

    TERMINAL_PAYMENT_STATUSES = frozenset(
        {PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_CANCELLED}
    )

    FULFILLMENT_PROCESSING = "processing"
    FULFILLMENT_CONFIRMED = "confirmed"
    FULFILLMENT_SHIPPED = "shipped"
    FULFILLMENT_DELIVERED = "delivered"
    FULFILLMENT_CANCELLED = "cancelled"

    FULFILLMENT_STATUS_CHOICES = [
        (FULFILLMENT_PROCESSING, "Processing"),
        (FULFILLMENT_CONFIRMED, "Confirmed"),
        (FULFILLMENT_SHIPPED, "Shipped"),
        (FULFILLMENT_DELIVERED, "Delivered"),
        (FULFILLMENT_CANCELLED, "Cancelled"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order_number = models.CharField(
        max_length=64,
        unique=True,
        blank=True,
        help_text="System-generated public order number",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )

    # Snapshots taken at checkout (never re-read from profile / catalog)
    customer_info = models.JSONField(default=dict, blank=True)
    delivery_info = models.JSONField(default=dict, blank=True)

    # Money fields (server authoritative)
    subtotal = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    delivery_cost = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    total_amount = models.DecimalField(
        max_digits=12, decimal_places=2, default=Decimal("0.00")
    )
    currency = models.CharField(max_length=8, default="KES")

    payment_status = models.CharField(
        max_length=16,
        choices=PAYMENT_STATUS_CHOICES,
        default=PAYMENT_PENDING,
        db_index=True,
    )
    fulfillment_status = models.CharField(
        max_length=16,
        choices=FULFILLMENT_STATUS_CHOICES,
        default=FULFILLMENT_PROCESSING,
        db_index=True,
    )

    # Pesapal order_tracking_id (set once the payment order is submitted)
    tracking_id = models.CharField(
        max_length=128,
        unique=True,
        null=True,
        blank=True,
    )

    # Last authoritative answer from GetTransactionStatus
    processor_status_description = models.CharField(max_length=64, blank=True, default="")
    confirmed_amount = models.DecimalField(
        max_digits=12, decimal_places=2, null=True, blank=True
    )

    paid_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["created_at"], name="orders_orde_created_5c1f0e_idx"),
            models.Index(fields=["user", "created_at"], name="orders_orde_user_id_7a9d2b_idx"),
            models.Index(
                fields=["payment_status", "created_at"],
                name="orders_orde_payment_3e8c41_idx",
            ),
        ]

    @property
    def is_payment_terminal(self) -> bool:
        return self.payment_status in self.TERMINAL_PAYMENT_STATUSES

    def save(self, *args, **kwargs):
        if not self.order_number:
            self.order_number = generate_order_number()

        # If payment flips to PAID and paid_at not set, stamp it
        if self.payment_status == self.PAYMENT_PAID and not self.paid_at:
            self.paid_at = timezone.now()

        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.order_number} | {self.total_amount} | {self.payment_status}/{self.fulfillment_status}"
