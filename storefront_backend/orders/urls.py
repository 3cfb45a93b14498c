# orders/urls.py
"""
ORDERS API URLS

Base path (mounted in backend/urls.py):
    /api/

- POST  /api/checkout/
- POST  /api/checkout/quote/
- GET   /api/orders/
- GET   /api/orders/by-id/<order_id>/
- PATCH /api/orders/by-id/<order_id>/fulfillment/   (admin)
"""

from __future__ import annotations

from django.urls import path

from orders.views import (
    CheckoutView,
    DeliveryQuoteView,
    OrderDetailView,
    OrderFulfillmentView,
    OrderListView,
)

app_name = "orders"

urlpatterns = [
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("checkout/quote/", DeliveryQuoteView.as_view(), name="delivery-quote"),
    path("orders/", OrderListView.as_view(), name="order-list"),
    path("orders/by-id/<uuid:order_id>/", OrderDetailView.as_view(), name="order-detail"),
    path(
        "orders/by-id/<uuid:order_id>/fulfillment/",
        OrderFulfillmentView.as_view(),
        name="order-fulfillment",
    ),
]
