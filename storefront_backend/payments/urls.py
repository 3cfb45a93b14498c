# payments/urls.py
"""
PAYMENTS API URLS

Base path (mounted in backend/urls.py):
    /api/

- POST|GET /api/payments/ipn/?type=ecommerce|donation   (Pesapal -> us)
- GET      /api/orders/<tracking_id>/status/            (single check)
- GET      /api/orders/<tracking_id>/poll/              (bounded polling)
"""

from __future__ import annotations

from django.urls import path

from payments.views import PaymentPollView, PaymentStatusView, PesapalIPNView

app_name = "payments"

urlpatterns = [
    path("payments/ipn/", PesapalIPNView.as_view(), name="pesapal-ipn"),
    path("orders/<str:tracking_id>/status/", PaymentStatusView.as_view(), name="payment-status"),
    path("orders/<str:tracking_id>/poll/", PaymentPollView.as_view(), name="payment-poll"),
]
