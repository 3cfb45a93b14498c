# payments/serializers.py

"""
PAYMENTS SERIALIZERS

Response shapes for the IPN acknowledgement and the status endpoints.
Pesapal's inbound IPN is read leniently (JSON body or query string), so it
has no request serializer.
"""

from __future__ import annotations

from rest_framework import serializers


class IPNAckSerializer(serializers.Serializer):
    """
    Always returned with HTTP 200. `status` mirrors Pesapal's own IPN ack
    convention (200 processed, 500 not processed).
    """

    success = serializers.BooleanField()
    message = serializers.CharField()
    type = serializers.CharField()
    orderNotificationType = serializers.CharField(required=False)
    orderTrackingId = serializers.CharField(required=False, allow_blank=True)
    orderMerchantReference = serializers.CharField(required=False, allow_blank=True)
    status = serializers.IntegerField()


class PaymentStatusResponseSerializer(serializers.Serializer):
    payment_status_description = serializers.CharField(allow_blank=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    payment_status = serializers.CharField()
    order_id = serializers.UUIDField(allow_null=True)


class PaymentPollResponseSerializer(serializers.Serializer):
    outcome = serializers.CharField()
    timed_out = serializers.BooleanField()
    attempts = serializers.IntegerField()
    payment_status_description = serializers.CharField(allow_blank=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    message = serializers.CharField()
