from orders.views.checkout import CheckoutView, DeliveryQuoteView
from orders.views.orders import OrderDetailView, OrderFulfillmentView, OrderListView

__all__ = [
    "CheckoutView",
    "DeliveryQuoteView",
    "OrderDetailView",
    "OrderFulfillmentView",
    "OrderListView",
]
