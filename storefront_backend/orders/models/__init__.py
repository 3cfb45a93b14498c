# orders/models/__init__.py

"""
ORDERS MODELS PACKAGE EXPORTS
"""

from .order import Order, generate_order_number
from .order_item import OrderItem

__all__ = [
    "Order",
    "OrderItem",
    "generate_order_number",
]
