# payments/services/pesapal.py
from __future__ import annotations

import json
import socket
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email

from payments.services.exceptions import SubmissionError, TransportError

PESAPAL_BASE_URLS = {
    "sandbox": "https://cybqa.pesapal.com/pesapalv3",
    "live": "https://pay.pesapal.com/v3",
}

TOKEN_PATH = "/api/Auth/RequestToken"
REGISTER_IPN_PATH = "/api/URLSetup/RegisterIPN"
SUBMIT_ORDER_PATH = "/api/Transactions/SubmitOrderRequest"
TRANSACTION_STATUS_PATH = "/api/Transactions/GetTransactionStatus"

DESCRIPTION_PREFIX = "Ecommerce Purchase: "
DESCRIPTION_NAMES_LIMIT = 100

TWOPLACES = Decimal("0.01")


def base_url_for(environment: str) -> str:
    env = str(environment or "").strip().lower()
    if env not in PESAPAL_BASE_URLS:
        raise ValueError(f"Unknown Pesapal environment: {environment!r} (expected sandbox|live)")
    return PESAPAL_BASE_URLS[env]


def build_description(item_names) -> str:
    """
    "Ecommerce Purchase: <comma separated names>", names cut at 100 chars
    with a trailing "..." when cut.
    """
    names = ", ".join(str(n or "").strip() for n in item_names)
    suffix = "..." if len(names) > DESCRIPTION_NAMES_LIMIT else ""
    return f"{DESCRIPTION_PREFIX}{names[:DESCRIPTION_NAMES_LIMIT]}{suffix}"


def _safe_preview(text: str, limit: int = 800) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit] + " ...(truncated)"


def _parse_json_object(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw or "")
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def processor_error_message(payload: dict | None, default: str) -> str:
    """
    Pesapal reports failures as {"error": {"code", "message", ...}, "status": "500"}
    even on HTTP 200; this pulls the most useful text out of either shape.
    """
    if not isinstance(payload, dict):
        return default

    err = payload.get("error")
    if isinstance(err, dict):
        return str(err.get("message") or err.get("code") or err.get("error_type") or default)
    if err:
        return str(err)

    return str(payload.get("message") or default)


def has_processor_error(payload: dict | None) -> bool:
    if not isinstance(payload, dict):
        return False

    err = payload.get("error")
    if isinstance(err, dict):
        return any(err.get(k) for k in ("code", "message", "error_type"))
    return bool(err)


# ============================================================
# TRANSPORT
# ============================================================


@dataclass
class TransportResponse:
    status_code: int
    payload: dict[str, Any] | None
    raw_text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class UrllibTransport:
    """
    Blocking JSON-over-HTTPS transport.

    HTTP error statuses come back as a TransportResponse (callers decide what a
    4xx/5xx means for their operation); only network-level failures raise.
    """

    user_agent = "StorefrontBackend/1.0 (PesapalClient) Python-urllib"

    def request(
        self,
        method: str,
        url: str,
        *,
        body: dict | None = None,
        headers: dict | None = None,
        timeout: float = 25,
    ) -> TransportResponse:
        data = None
        if body is not None:
            data = json.dumps(body, ensure_ascii=False).encode("utf-8")

        req = Request(
            url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "User-Agent": self.user_agent,
                **(headers or {}),
            },
            method=method,
        )

        try:
            with urlopen(req, timeout=timeout) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
                return TransportResponse(
                    status_code=resp.status,
                    payload=_parse_json_object(raw),
                    raw_text=_safe_preview(raw),
                )
        except HTTPError as e:
            try:
                raw = e.read().decode("utf-8", errors="replace")
            except OSError:
                raw = ""
            return TransportResponse(
                status_code=e.code,
                payload=_parse_json_object(raw),
                raw_text=_safe_preview(raw or str(e)),
            )
        except (URLError, socket.timeout, TimeoutError) as e:
            raise TransportError(f"Pesapal unreachable: {method} {url}: {e}") from e
        except OSError as e:
            raise TransportError(f"Pesapal request failed: {method} {url}: {e}") from e


# ============================================================
# VALUE OBJECTS
# ============================================================


@dataclass(frozen=True)
class BillingAddress:
    email_address: str
    phone_number: str
    first_name: str = ""
    last_name: str = ""
    country_code: str = "KE"
    line_1: str = ""

    def to_payload(self) -> dict:
        payload = {
            "email_address": self.email_address,
            "phone_number": self.phone_number,
            "country_code": self.country_code,
            "first_name": self.first_name,
            "last_name": self.last_name,
        }
        if self.line_1:
            payload["line_1"] = self.line_1
        return payload


@dataclass(frozen=True)
class PaymentOrderRequest:
    """
    Transient SubmitOrderRequest body. `merchant_reference` is sent as Pesapal's
    `id` and comes back in IPNs as OrderMerchantReference.
    """

    merchant_reference: str
    amount: Decimal
    currency: str
    description: str
    callback_url: str
    billing_address: BillingAddress
    cancellation_url: str = ""

    def validate(self) -> None:
        try:
            amount = Decimal(str(self.amount))
        except (InvalidOperation, TypeError, ValueError) as exc:
            raise SubmissionError("Payment amount is not a number") from exc

        if amount <= 0:
            raise SubmissionError("Payment amount must be greater than zero")

        currency = str(self.currency or "")
        if len(currency) != 3 or not currency.isalpha() or not currency.isupper():
            raise SubmissionError(f"Invalid currency code: {self.currency!r}")

        try:
            validate_email(self.billing_address.email_address or "")
        except DjangoValidationError as exc:
            raise SubmissionError("Billing email is not a valid address") from exc

        if not str(self.billing_address.phone_number or "").strip():
            raise SubmissionError("Billing phone number is required")

        if not str(self.merchant_reference or "").strip():
            raise SubmissionError("Merchant reference is required")

        if not str(self.callback_url or "").strip():
            raise SubmissionError("Callback URL is required")

    def to_payload(self, *, notification_id: str) -> dict:
        amount = Decimal(str(self.amount)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
        payload = {
            "id": self.merchant_reference,
            "currency": self.currency,
            "amount": float(amount),
            "description": self.description,
            "callback_url": self.callback_url,
            "notification_id": notification_id,
            "billing_address": self.billing_address.to_payload(),
        }
        if self.cancellation_url:
            payload["cancellation_url"] = self.cancellation_url
        return payload


@dataclass(frozen=True)
class SubmissionResult:
    tracking_id: str
    redirect_url: str
    merchant_reference: str = ""


@dataclass(frozen=True)
class ProcessorStatus:
    """Authoritative GetTransactionStatus answer."""

    payment_status_description: str
    amount: Decimal | None = None
    currency: str = ""
    confirmation_code: str = ""
    merchant_reference: str = ""
    status_code: int | None = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: dict) -> "ProcessorStatus":
        amount = payload.get("amount")
        try:
            amount = Decimal(str(amount)).quantize(TWOPLACES) if amount not in (None, "") else None
        except (InvalidOperation, ValueError):
            amount = None

        status_code = payload.get("status_code")
        try:
            status_code = int(status_code) if status_code not in (None, "") else None
        except (TypeError, ValueError):
            status_code = None

        return cls(
            payment_status_description=str(payload.get("payment_status_description") or "").strip(),
            amount=amount,
            currency=str(payload.get("currency") or ""),
            confirmation_code=str(payload.get("confirmation_code") or ""),
            merchant_reference=str(payload.get("merchant_reference") or ""),
            status_code=status_code,
            raw=dict(payload),
        )
