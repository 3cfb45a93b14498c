# orders/apps.py

"""
ORDERS APP CONFIG

Storefront orders:
- Order + line item snapshots (local source of truth)
- Checkout orchestration (persist -> submit to Pesapal -> attach tracking id)
- Admin fulfillment progression
"""

from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "orders"
    verbose_name = "Storefront Orders"
