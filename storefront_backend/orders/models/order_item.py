# orders/models/order_item.py

from decimal import Decimal

from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class OrderItem(models.Model):
    """
    Line item snapshot for an Order.

    Product data is copied from the cart at checkout time; later catalog price
    changes never touch these rows.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )

    position = models.PositiveIntegerField(default=0)

    # External catalog reference (catalog lives outside this service)
    product_id = models.CharField(max_length=64)
    product_name = models.CharField(max_length=255)
    category = models.CharField(max_length=120, blank=True, default="")
    image_url = models.CharField(max_length=500, blank=True, default="")

    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    line_total = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="quantity * unit_price (frozen at checkout)",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["position", "id"]
        indexes = [
            models.Index(fields=["order", "position"], name="orders_orde_order_i_4b7e90_idx"),
        ]

    def clean(self):
        if self.quantity is None or int(self.quantity) <= 0:
            raise ValidationError("quantity must be >= 1")

        if self.unit_price is None or Decimal(self.unit_price) <= Decimal("0.00"):
            raise ValidationError("unit_price must be > 0")

        expected = (Decimal(self.quantity) * Decimal(self.unit_price)).quantize(
            Decimal("0.01")
        )
        if self.line_total is None:
            self.line_total = expected
        elif Decimal(self.line_total) != expected:
            raise ValidationError("line_total must equal quantity * unit_price")

    def __str__(self):
        return f"{self.product_name} x{self.quantity}"
