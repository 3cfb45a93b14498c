# orders/views/orders.py
from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from orders.serializers import FulfillmentUpdateSerializer, OrderSerializer
from orders.services import order_store
from orders.services.exceptions import InvalidOrderTransitionError, OrderNotFound
from users.permissions import IsAdmin

_TRUTHY = {"1", "true", "yes", "on"}


class OrderListView(generics.ListAPIView):
    """Authenticated customer's own orders, newest first."""

    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        require_tracking_id = (
            str(self.request.query_params.get("require_tracking_id", "")).strip().lower() in _TRUTHY
        )
        return order_store.list_by_user(self.request.user, require_tracking_id=require_tracking_id)

    @extend_schema(
        tags=["Orders"],
        parameters=[
            OpenApiParameter(
                "require_tracking_id",
                bool,
                description="Only orders that reached Pesapal",
                required=False,
            )
        ],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class OrderDetailView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(
        tags=["Orders"],
        responses={200: OrderSerializer, 404: OpenApiResponse(description="Not found")},
    )
    def get(self, request, order_id, *args, **kwargs):
        try:
            order = order_store.get_by_id(order_id)
        except OrderNotFound:
            return Response({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)

        user = request.user
        if order.user_id != user.id and not getattr(user, "is_store_admin", False):
            # Do not reveal other customers' orders
            return Response({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)

        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)


class OrderFulfillmentView(APIView):
    permission_classes = [IsAdmin]

    @extend_schema(
        tags=["Orders"],
        request=FulfillmentUpdateSerializer,
        responses={
            200: OrderSerializer,
            404: OpenApiResponse(description="Not found"),
            409: OpenApiResponse(description="Transition not allowed"),
        },
        description=(
            "Advance fulfillment: processing -> confirmed -> shipped -> delivered, "
            "or cancel before shipping. Cancelling a pending-payment order also cancels its payment."
        ),
    )
    def patch(self, request, order_id, *args, **kwargs):
        s = FulfillmentUpdateSerializer(data=request.data)
        s.is_valid(raise_exception=True)

        try:
            update = order_store.advance_fulfillment(order_id, s.validated_data["fulfillment_status"])
        except OrderNotFound:
            return Response({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)
        except InvalidOrderTransitionError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)

        order = order_store.get_by_id(update.order.id)
        return Response(OrderSerializer(order).data, status=status.HTTP_200_OK)
