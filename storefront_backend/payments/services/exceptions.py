# payments/services/exceptions.py

"""
PAYMENT PROVIDER ERRORS

Raised by the Pesapal session / transport. Messages may carry processor
detail and are for server logs only; views never forward them to customers.
"""


class PaymentProviderError(Exception):
    """Base exception for all payment processor failures."""

    def __init__(self, message: str = "", *, status_code: int | None = None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class ProcessorConfigurationError(PaymentProviderError):
    """Credentials / URLs missing or invalid in settings."""


class TransportError(PaymentProviderError):
    """Processor unreachable (DNS, connect, timeout)."""


class AuthError(PaymentProviderError):
    """Processor rejected the consumer key / secret, or token request failed."""


class RegistrationError(PaymentProviderError):
    """IPN URL registration rejected."""


class SubmissionError(PaymentProviderError):
    """Order submission rejected or malformed. Never retried automatically."""


class StatusQueryError(PaymentProviderError):
    """Transaction status query failed."""
