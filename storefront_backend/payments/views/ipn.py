# payments/views/ipn.py
from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.exceptions import ParseError, UnsupportedMediaType
from rest_framework.parsers import FormParser, JSONParser
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework.views import APIView

from payments.serializers import IPNAckSerializer
from payments.services.notifications import handle_notification, normalize_type
from payments.services.session import get_session

logger = logging.getLogger(__name__)


class WebhookThrottle(AnonRateThrottle):
    scope = "webhook"


def _field(data, *names) -> str:
    for name in names:
        value = data.get(name)
        if value not in (None, ""):
            return str(value).strip()
    return ""


class PesapalIPNView(APIView):
    """
    Pesapal IPN receiver.

    Always answers HTTP 200 so Pesapal does not retry forever; failures are
    logged and reported in the body. Settlement is re-queried from Pesapal,
    the notification's own Status is never trusted.
    """

    permission_classes = [AllowAny]
    authentication_classes = []
    parser_classes = [JSONParser, FormParser]
    throttle_classes = [WebhookThrottle]

    @extend_schema(
        tags=["Payments"],
        parameters=[OpenApiParameter("type", str, enum=["ecommerce", "donation"], required=False)],
        request=None,
        responses={200: IPNAckSerializer},
    )
    def post(self, request, *args, **kwargs):
        try:
            data = request.data
        except (ParseError, UnsupportedMediaType) as exc:
            # Unreadable body still gets an ack; the query string may carry the ids.
            logger.warning(
                "IPN body could not be parsed",
                extra={"content_type": request.content_type, "error": str(exc)},
            )
            data = {}
        return self._handle(request, data if hasattr(data, "get") else {})

    @extend_schema(
        tags=["Payments"],
        parameters=[OpenApiParameter("type", str, enum=["ecommerce", "donation"], required=False)],
        responses={200: IPNAckSerializer},
    )
    def get(self, request, *args, **kwargs):
        return self._handle(request, request.query_params)

    def _handle(self, request, data) -> Response:
        notification_type = normalize_type(
            request.query_params.get("type") or _field(data, "Type", "type")
        )
        tracking_id = _field(data, "OrderTrackingId", "orderTrackingId") or _field(
            request.query_params, "OrderTrackingId"
        )
        merchant_reference = _field(data, "OrderMerchantReference", "orderMerchantReference") or _field(
            request.query_params, "OrderMerchantReference"
        )
        ipn_kind = _field(data, "OrderNotificationType") or "IPNCHANGE"

        ack = {
            "type": notification_type,
            "orderNotificationType": ipn_kind,
            "orderTrackingId": tracking_id,
            "orderMerchantReference": merchant_reference,
        }

        if not tracking_id:
            logger.warning("IPN without OrderTrackingId", extra={"type": notification_type})
            return Response(
                {**ack, "success": False, "message": "Missing OrderTrackingId", "status": 500},
                status=status.HTTP_200_OK,
            )

        try:
            result = handle_notification(
                session=get_session(),
                tracking_id=tracking_id,
                merchant_reference=merchant_reference,
                reported_status=_field(data, "Status", "status"),
                notification_type=notification_type,
            )
        except Exception:
            logger.exception(
                "IPN processing failed",
                extra={"tracking_id": tracking_id, "merchant_reference": merchant_reference},
            )
            return Response(
                {**ack, "success": False, "message": "IPN processing failed", "status": 500},
                status=status.HTTP_200_OK,
            )

        return Response(
            {
                **ack,
                "success": True,
                "message": f"IPN processed successfully ({result.outcome})",
                "status": 200,
            },
            status=status.HTTP_200_OK,
        )
