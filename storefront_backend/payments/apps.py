# payments/apps.py

"""
PAYMENTS APP CONFIG

Pesapal v3 integration:
- Processor session (token cache, IPN registration, submit, status query)
- IPN receiver and client status polling
- Reconciliation of local order status with the processor
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments (Pesapal)"
