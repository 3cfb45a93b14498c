# orders/services/exceptions.py

"""
ORDER SERVICE ERRORS

Centralized domain errors for the orders app.
Views translate these into HTTP responses; services never build responses.
"""


class OrderServiceError(Exception):
    """Base exception for all order service failures."""


class CheckoutValidationError(OrderServiceError):
    """Raised on missing / malformed checkout input (user-correctable)."""


class OrderInvariantError(OrderServiceError):
    """Raised when order money fields do not add up."""


class PersistenceError(OrderServiceError):
    """Raised when the order store cannot read or write a record."""


class OrderNotFound(OrderServiceError):
    """Raised when an order lookup finds nothing."""


class TrackingIdAttachedError(OrderServiceError):
    """Raised when an operation requires an order without a (different) tracking id."""


class InvalidOrderTransitionError(OrderServiceError):
    """Raised when a fulfillment transition is not allowed."""


class CheckoutFailed(OrderServiceError):
    """
    Raised by the checkout orchestrator after a rolled-back attempt.

    `user_message` is safe to show to the customer; the processor detail stays
    in `__cause__` and in the server logs.
    """

    user_message = "Checkout failed, please try again."

    def __init__(self, message: str = "", *, order_id=None, states=None):
        super().__init__(message or self.user_message)
        self.order_id = order_id
        self.states = list(states or [])
