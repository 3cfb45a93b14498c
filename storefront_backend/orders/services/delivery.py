# orders/services/delivery.py

"""
DELIVERY PRICING

delivery_cost = 0                             if subtotal > free shipping threshold
              = county.delivery_base * option.multiplier   otherwise

The table lives in settings.DELIVERY so operators can adjust it without a
deploy of code. Server-side pricing is authoritative: checkout recomputes the
cost and rejects client totals that disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings

from orders.services.exceptions import CheckoutValidationError

TWOPLACES = Decimal("0.01")


def _money(v) -> Decimal:
    return Decimal(str(v)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class County:
    name: str
    distance: int
    delivery_base: Decimal


@dataclass(frozen=True)
class DeliveryOption:
    name: str
    multiplier: Decimal


@dataclass(frozen=True)
class DeliveryQuote:
    county: County
    option: DeliveryOption
    subtotal: Decimal
    delivery_cost: Decimal
    total: Decimal
    free_shipping: bool

    def as_snapshot(self, *, address: str = "") -> dict:
        """Shape stored on Order.delivery_info."""
        return {
            "county": self.county.name,
            "distance": self.county.distance,
            "address": address,
            "deliveryOption": self.option.name,
            "multiplier": str(self.option.multiplier),
            "deliveryCost": str(self.delivery_cost),
            "freeShipping": self.free_shipping,
        }


def _config() -> dict:
    return getattr(settings, "DELIVERY", {}) or {}


def free_shipping_threshold() -> Decimal:
    return _money(_config().get("FREE_SHIPPING_THRESHOLD") or "5000")


def counties() -> list[County]:
    return [
        County(
            name=row["name"],
            distance=int(row.get("distance") or 0),
            delivery_base=_money(row.get("delivery_base") or "0"),
        )
        for row in _config().get("COUNTIES", [])
    ]


def delivery_options() -> list[DeliveryOption]:
    return [
        DeliveryOption(name=row["name"], multiplier=Decimal(str(row.get("multiplier") or "1")))
        for row in _config().get("OPTIONS", [])
    ]


def _pick(rows, name: str, label: str):
    wanted = str(name or "").strip().lower()
    if not wanted:
        raise CheckoutValidationError(f"{label} is required")

    for row in rows:
        if row.name.lower() == wanted:
            return row

    raise CheckoutValidationError(f"Unknown {label.lower()}: {name}")


def calculate_delivery_cost(
    *,
    subtotal,
    delivery_base,
    multiplier,
    free_shipping_threshold,
) -> Decimal:
    subtotal = _money(subtotal)
    if subtotal > _money(free_shipping_threshold):
        return Decimal("0.00")

    return _money(_money(delivery_base) * Decimal(str(multiplier)))


def quote(*, subtotal, county: str, delivery_option: str) -> DeliveryQuote:
    try:
        subtotal = _money(subtotal)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise CheckoutValidationError("Invalid subtotal") from exc

    if subtotal < 0:
        raise CheckoutValidationError("Subtotal cannot be negative")

    picked_county = _pick(counties(), county, "County")
    picked_option = _pick(delivery_options(), delivery_option, "Delivery option")
    threshold = free_shipping_threshold()

    cost = calculate_delivery_cost(
        subtotal=subtotal,
        delivery_base=picked_county.delivery_base,
        multiplier=picked_option.multiplier,
        free_shipping_threshold=threshold,
    )

    return DeliveryQuote(
        county=picked_county,
        option=picked_option,
        subtotal=subtotal,
        delivery_cost=cost,
        total=_money(subtotal + cost),
        free_shipping=subtotal > threshold,
    )
