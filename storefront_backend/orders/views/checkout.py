# orders/views/checkout.py
from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.parsers import JSONParser
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework.views import APIView

from orders.serializers import (
    CheckoutResponseSerializer,
    CheckoutSerializer,
    DeliveryQuoteRequestSerializer,
    DeliveryQuoteResponseSerializer,
)
from orders.services import delivery
from orders.services.checkout_orchestrator import (
    CartLine,
    CheckoutRequest,
    CustomerInfo,
    checkout,
)
from orders.services.exceptions import (
    CheckoutFailed,
    CheckoutValidationError,
    OrderInvariantError,
    PersistenceError,
)
from payments.services.exceptions import ProcessorConfigurationError
from payments.services.session import get_session

logger = logging.getLogger(__name__)


class CheckoutWriteThrottle(AnonRateThrottle):
    """
    Public checkout writes.
    Uses REST_FRAMEWORK['DEFAULT_THROTTLE_RATES']['checkout_write'].
    """

    scope = "checkout_write"


def _error(message: str, http_status: int, **extra) -> Response:
    return Response({"success": False, "error": message, **extra}, status=http_status)


def _checkout_request(data: dict, *, user) -> CheckoutRequest:
    customer = data["customerInfo"]
    delivery_info = data["deliveryInfo"]

    lines = []
    for item in data["cartItems"]:
        product = item["product"]
        images = product.get("images") or []
        lines.append(
            CartLine(
                product_id=product["id"],
                name=product["name"],
                unit_price=product["price"],
                quantity=item["quantity"],
                category=product.get("category") or "",
                image_url=images[0] if images else "",
            )
        )

    return CheckoutRequest(
        lines=lines,
        customer=CustomerInfo(
            first_name=customer["firstName"].strip(),
            last_name=customer["lastName"].strip(),
            email=customer["email"].strip(),
            phone=customer["phone"].strip(),
            address=(customer.get("address") or "").strip(),
        ),
        county=delivery_info["county"],
        delivery_option=delivery_info["deliveryOption"],
        address=(delivery_info.get("address") or "").strip(),
        total_amount=data["totalAmount"],
        user=user if getattr(user, "is_authenticated", False) else None,
    )


class CheckoutView(APIView):
    permission_classes = [AllowAny]
    parser_classes = [JSONParser]
    throttle_classes = [CheckoutWriteThrottle]

    @extend_schema(
        tags=["Checkout"],
        request=CheckoutSerializer,
        responses={
            201: CheckoutResponseSerializer,
            400: OpenApiResponse(description="Validation error"),
            429: OpenApiResponse(description="Rate limited"),
            500: OpenApiResponse(description="Order could not be saved"),
            502: OpenApiResponse(description="Payment provider error (order rolled back)"),
            503: OpenApiResponse(description="Payments not configured"),
        },
        description="Persist a pending order, submit it to Pesapal and return the payer redirect URL.",
    )
    def post(self, request, *args, **kwargs):
        s = CheckoutSerializer(data=request.data)
        if not s.is_valid():
            return _error("Invalid checkout request", status.HTTP_400_BAD_REQUEST, details=s.errors)

        try:
            session = get_session()
        except ProcessorConfigurationError:
            logger.exception("Pesapal session unavailable")
            return _error("Payments are temporarily unavailable", status.HTTP_503_SERVICE_UNAVAILABLE)

        try:
            result = checkout(request=_checkout_request(s.validated_data, user=request.user), session=session)
        except (CheckoutValidationError, OrderInvariantError) as exc:
            return _error(str(exc), status.HTTP_400_BAD_REQUEST)
        except CheckoutFailed as exc:
            return _error(exc.user_message, status.HTTP_502_BAD_GATEWAY)
        except PersistenceError:
            logger.exception("Checkout could not persist order")
            return _error("Failed to save order. Please try again.", status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response(
            {
                "success": True,
                "data": {
                    "orderId": str(result.order.id),
                    "orderNumber": result.order.order_number,
                    "order_tracking_id": result.tracking_id,
                    "redirect_url": result.redirect_url,
                },
            },
            status=status.HTTP_201_CREATED,
        )


class DeliveryQuoteView(APIView):
    permission_classes = [AllowAny]
    parser_classes = [JSONParser]

    @extend_schema(
        tags=["Checkout"],
        request=DeliveryQuoteRequestSerializer,
        responses={
            200: DeliveryQuoteResponseSerializer,
            400: OpenApiResponse(description="Unknown county / delivery option"),
        },
        description="Server-side delivery cost and order total preview.",
    )
    def post(self, request, *args, **kwargs):
        s = DeliveryQuoteRequestSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        data = s.validated_data

        try:
            q = delivery.quote(
                subtotal=data["subtotal"],
                county=data["county"],
                delivery_option=data["deliveryOption"],
            )
        except CheckoutValidationError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        return Response(
            DeliveryQuoteResponseSerializer(
                {
                    "county": q.county.name,
                    "deliveryOption": q.option.name,
                    "subtotal": q.subtotal,
                    "deliveryCost": q.delivery_cost,
                    "total": q.total,
                    "freeShipping": q.free_shipping,
                }
            ).data,
            status=status.HTTP_200_OK,
        )
