# orders/serializers.py

"""
ORDERS SERIALIZERS

Transport layer only: request / response shapes for the storefront.
Business rules (pricing, totals, lifecycle) live in orders/services.

Checkout request keeps the storefront's camelCase contract:
    {cartItems, deliveryInfo, totalAmount, customerInfo}
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from orders.models import Order, OrderItem


# ============================================================
# CHECKOUT (INPUT)
# ============================================================


class CheckoutProductSerializer(serializers.Serializer):
    id = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=255)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    images = serializers.ListField(child=serializers.CharField(), required=False, default=list)
    category = serializers.CharField(required=False, allow_blank=True, default="")


class CheckoutCartItemSerializer(serializers.Serializer):
    product = CheckoutProductSerializer()
    quantity = serializers.IntegerField(min_value=1)


class DeliveryInfoSerializer(serializers.Serializer):
    county = serializers.CharField()
    deliveryOption = serializers.CharField()
    address = serializers.CharField(required=False, allow_blank=True, default="")


class CustomerInfoSerializer(serializers.Serializer):
    firstName = serializers.CharField(max_length=100)
    lastName = serializers.CharField(max_length=100)
    email = serializers.EmailField()
    phone = serializers.CharField(max_length=40)
    address = serializers.CharField(required=False, allow_blank=True, default="")


class CheckoutSerializer(serializers.Serializer):
    cartItems = CheckoutCartItemSerializer(many=True, allow_empty=False)
    deliveryInfo = DeliveryInfoSerializer()
    totalAmount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    customerInfo = CustomerInfoSerializer()


class CheckoutResponseDataSerializer(serializers.Serializer):
    orderId = serializers.UUIDField()
    orderNumber = serializers.CharField()
    order_tracking_id = serializers.CharField()
    redirect_url = serializers.URLField()


class CheckoutResponseSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    data = CheckoutResponseDataSerializer()


class DeliveryQuoteRequestSerializer(serializers.Serializer):
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.00"))
    county = serializers.CharField()
    deliveryOption = serializers.CharField()


class DeliveryQuoteResponseSerializer(serializers.Serializer):
    county = serializers.CharField()
    deliveryOption = serializers.CharField()
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)
    deliveryCost = serializers.DecimalField(max_digits=12, decimal_places=2)
    total = serializers.DecimalField(max_digits=12, decimal_places=2)
    freeShipping = serializers.BooleanField()


# ============================================================
# ORDERS (OUTPUT)
# ============================================================


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = [
            "position",
            "product_id",
            "product_name",
            "category",
            "image_url",
            "quantity",
            "unit_price",
            "line_total",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_info",
            "delivery_info",
            "items",
            "subtotal",
            "delivery_cost",
            "total_amount",
            "currency",
            "payment_status",
            "fulfillment_status",
            "tracking_id",
            "processor_status_description",
            "confirmed_amount",
            "paid_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class FulfillmentUpdateSerializer(serializers.Serializer):
    fulfillment_status = serializers.ChoiceField(choices=Order.FULFILLMENT_STATUS_CHOICES)
