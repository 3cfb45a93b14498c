# payments/views/status.py
from __future__ import annotations

import logging

from django.conf import settings
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import AnonRateThrottle
from rest_framework.views import APIView

from orders.models import Order
from orders.services.exceptions import PersistenceError
from payments.serializers import PaymentPollResponseSerializer, PaymentStatusResponseSerializer
from payments.services.exceptions import ProcessorConfigurationError, StatusQueryError
from payments.services.reconciliation import reconcile_tracking_id
from payments.services.session import get_session
from payments.services.status_poller import StatusPoller

logger = logging.getLogger(__name__)

POLL_MESSAGES = {
    Order.PAYMENT_PAID: "Payment confirmed.",
    Order.PAYMENT_FAILED: "Payment failed. Please try again.",
    Order.PAYMENT_CANCELLED: "Payment was cancelled.",
}
STILL_PROCESSING_MESSAGE = (
    "Payment is still processing. You will receive an email confirmation once it completes."
)


class StatusPollThrottle(AnonRateThrottle):
    """
    Client polling endpoints.
    Uses REST_FRAMEWORK['DEFAULT_THROTTLE_RATES']['status_poll'].
    """

    scope = "status_poll"


def _unavailable() -> Response:
    return Response(
        {"detail": "Payment status is temporarily unavailable. Please try again shortly."},
        status=status.HTTP_502_BAD_GATEWAY,
    )


def _http_attempts(cfg: dict) -> int:
    attempts = int(cfg.get("MAX_ATTEMPTS", 10))
    cap = cfg.get("HTTP_MAX_ATTEMPTS")
    return min(attempts, int(cap)) if cap else attempts


class PaymentStatusView(APIView):
    """Single authoritative status check, applied to the local order."""

    permission_classes = [AllowAny]
    throttle_classes = [StatusPollThrottle]

    @extend_schema(
        tags=["Payments"],
        responses={
            200: PaymentStatusResponseSerializer,
            502: OpenApiResponse(description="Pesapal status query failed"),
        },
    )
    def get(self, request, tracking_id, *args, **kwargs):
        try:
            result = reconcile_tracking_id(session=get_session(), tracking_id=tracking_id)
        except (StatusQueryError, ProcessorConfigurationError, PersistenceError):
            logger.exception("Status check failed", extra={"tracking_id": tracking_id})
            return _unavailable()

        order = result.order
        return Response(
            PaymentStatusResponseSerializer(
                {
                    "payment_status_description": result.processor_status.payment_status_description,
                    "amount": result.processor_status.amount,
                    "payment_status": result.payment_status,
                    "order_id": order.id if order is not None else None,
                }
            ).data,
            status=status.HTTP_200_OK,
        )


class PaymentPollView(APIView):
    """
    Bounded server-side polling (PAYMENT_POLLING). Returns as soon as the
    payment is terminal; otherwise `pending` with timed_out=true.

    The whole loop runs inside the request and holds a sync worker for up to
    (attempts - 1) * interval seconds, so attempts here are capped by
    HTTP_MAX_ATTEMPTS (default 5, about 12s at the 3s interval). Callers that
    can afford the full MAX_ATTEMPTS budget use StatusPoller directly.
    """

    permission_classes = [AllowAny]
    throttle_classes = [StatusPollThrottle]

    @extend_schema(
        tags=["Payments"],
        responses={
            200: PaymentPollResponseSerializer,
            502: OpenApiResponse(description="Payments unavailable"),
        },
    )
    def get(self, request, tracking_id, *args, **kwargs):
        cfg = getattr(settings, "PAYMENT_POLLING", {}) or {}

        try:
            poller = StatusPoller(
                session=get_session(),
                interval_seconds=cfg.get("INTERVAL_SECONDS", 3.0),
                max_attempts=_http_attempts(cfg),
            )
            result = poller.poll(tracking_id)
        except (ProcessorConfigurationError, PersistenceError):
            logger.exception("Status poll failed", extra={"tracking_id": tracking_id})
            return _unavailable()

        processor_status = result.processor_status
        return Response(
            PaymentPollResponseSerializer(
                {
                    "outcome": result.outcome,
                    "timed_out": result.timed_out,
                    "attempts": result.attempts,
                    "payment_status_description": (
                        processor_status.payment_status_description if processor_status else ""
                    ),
                    "amount": processor_status.amount if processor_status else None,
                    "message": POLL_MESSAGES.get(result.outcome, STILL_PROCESSING_MESSAGE),
                }
            ).data,
            status=status.HTTP_200_OK,
        )
