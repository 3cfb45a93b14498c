# payments/services/session.py

"""
PESAPAL PROCESSOR SESSION

One explicit object per process holding the only shared mutable payment
state: the bearer token (with expiry) and the registered IPN id.

Rules:
- Token: cached until min(TOKEN_TTL_SECONDS, processor expiryDate - skew),
  refreshed on demand, dropped on any 401 (the call is retried once).
- IPN id: populated once per process. Concurrent cold starts may register
  twice; the processor accepts that and the first stored id wins.
- No lock is held across network I/O.
- Submissions are never retried except for the single post-401 replay,
  which happens before the processor accepted anything.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from datetime import datetime, timezone as dt_timezone
from urllib.parse import urlencode

from django.conf import settings
from django.utils import timezone

from payments.services.exceptions import (
    AuthError,
    ProcessorConfigurationError,
    RegistrationError,
    StatusQueryError,
    SubmissionError,
    TransportError,
)
from payments.services.pesapal import (
    REGISTER_IPN_PATH,
    SUBMIT_ORDER_PATH,
    TOKEN_PATH,
    TRANSACTION_STATUS_PATH,
    PaymentOrderRequest,
    ProcessorStatus,
    SubmissionResult,
    UrllibTransport,
    base_url_for,
    has_processor_error,
    processor_error_message,
)

logger = logging.getLogger(__name__)

# Refresh this many seconds before the processor says the token expires
TOKEN_EXPIRY_SKEW_SECONDS = 30

_EXPIRY_RE = re.compile(r"^(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})")


def _parse_expiry(value) -> datetime | None:
    # Pesapal sends 7 fractional digits ("2021-08-26T12:29:50.5177619Z")
    match = _EXPIRY_RE.match(str(value or "").strip())
    if not match:
        return None
    return datetime.strptime(match.group(1), "%Y-%m-%dT%H:%M:%S").replace(tzinfo=dt_timezone.utc)


class PesapalSession:
    def __init__(
        self,
        *,
        consumer_key: str,
        consumer_secret: str,
        environment: str = "sandbox",
        ipn_url: str = "",
        transport=None,
        timeout: float = 25,
        token_ttl_seconds: int = 240,
        clock=time.monotonic,
        wall_clock=timezone.now,
    ):
        if not (consumer_key or "").strip() or not (consumer_secret or "").strip():
            raise ProcessorConfigurationError("Pesapal consumer key / secret are not configured")

        try:
            self.base_url = base_url_for(environment)
        except ValueError as exc:
            raise ProcessorConfigurationError(str(exc)) from exc

        self.environment = str(environment).strip().lower()
        self.ipn_url = (ipn_url or "").strip()

        self._consumer_key = consumer_key.strip()
        self._consumer_secret = consumer_secret.strip()
        self._transport = transport or UrllibTransport()
        self._timeout = timeout
        self._token_ttl = max(int(token_ttl_seconds), 0)
        self._clock = clock
        self._wall_clock = wall_clock

        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

        self._ipn_id: str | None = None
        self._ipn_lock = threading.Lock()

    def __repr__(self):
        return f"<PesapalSession env={self.environment} ipn_id={self._ipn_id!r}>"

    # --------------------------------------------------------
    # Token cache
    # --------------------------------------------------------

    @property
    def ipn_id(self) -> str | None:
        return self._ipn_id

    def get_token(self) -> str:
        with self._token_lock:
            if self._token and self._clock() < self._token_expires_at:
                return self._token

        token, ttl = self._request_token()

        with self._token_lock:
            self._token = token
            self._token_expires_at = self._clock() + ttl

        return token

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None
            self._token_expires_at = 0.0

    def _request_token(self) -> tuple[str, float]:
        try:
            resp = self._transport.request(
                "POST",
                f"{self.base_url}{TOKEN_PATH}",
                body={
                    "consumer_key": self._consumer_key,
                    "consumer_secret": self._consumer_secret,
                },
                timeout=self._timeout,
            )
        except TransportError as exc:
            raise AuthError(f"Pesapal token request failed: {exc}") from exc

        payload = resp.payload or {}
        token = str(payload.get("token") or "").strip()

        if not resp.ok or has_processor_error(payload) or not token:
            msg = processor_error_message(payload, resp.raw_text or "no token returned")
            raise AuthError(
                f"Pesapal token rejected: {resp.status_code} {msg}",
                status_code=resp.status_code,
                payload=payload,
            )

        ttl = float(self._token_ttl)
        expiry = _parse_expiry(payload.get("expiryDate"))
        if expiry is not None:
            remaining = (expiry - self._wall_clock()).total_seconds() - TOKEN_EXPIRY_SKEW_SECONDS
            ttl = max(min(ttl, remaining), 0.0)

        logger.debug("Pesapal token acquired", extra={"ttl_seconds": ttl})
        return token, ttl

    def _call(self, method: str, path: str, *, body: dict | None = None, error_cls):
        """
        Authorized request. A 401 drops the cached token and replays once.
        Network failures surface as `error_cls`; AuthError passes through.
        """
        url = f"{self.base_url}{path}"

        for attempt in (1, 2):
            token = self.get_token()
            try:
                resp = self._transport.request(
                    method,
                    url,
                    body=body,
                    headers={"Authorization": f"Bearer {token}"},
                    timeout=self._timeout,
                )
            except TransportError as exc:
                raise error_cls(str(exc)) from exc

            if resp.status_code == 401 and attempt == 1:
                logger.info("Pesapal returned 401, refreshing token", extra={"path": path})
                self.invalidate_token()
                continue

            return resp

        raise error_cls(f"Pesapal kept rejecting the token: {method} {path}")

    # --------------------------------------------------------
    # Callback registrant
    # --------------------------------------------------------

    def register_ipn(self, url: str | None = None, notification_type: str = "POST") -> str:
        """Always performs the round-trip. Does not touch the cached id."""
        url = (url or self.ipn_url or "").strip()
        if not url:
            raise RegistrationError("IPN URL is not configured")

        notification_type = str(notification_type or "POST").upper()
        if notification_type not in ("GET", "POST"):
            raise RegistrationError(f"Unsupported IPN notification type: {notification_type}")

        resp = self._call(
            "POST",
            REGISTER_IPN_PATH,
            body={"url": url, "ipn_notification_type": notification_type},
            error_cls=RegistrationError,
        )

        payload = resp.payload or {}
        ipn_id = str(payload.get("ipn_id") or "").strip()

        if not resp.ok or has_processor_error(payload) or not ipn_id:
            msg = processor_error_message(payload, resp.raw_text or "no ipn_id returned")
            raise RegistrationError(
                f"Pesapal IPN registration failed: {resp.status_code} {msg}",
                status_code=resp.status_code,
                payload=payload,
            )

        logger.info("Pesapal IPN registered", extra={"ipn_id": ipn_id, "ipn_url": url})
        return ipn_id

    def ensure_registered(self, callback_url: str | None = None, notification_type: str = "POST") -> str:
        cached = self._ipn_id
        if cached:
            return cached

        ipn_id = self.register_ipn(callback_url, notification_type)

        with self._ipn_lock:
            if not self._ipn_id:
                self._ipn_id = ipn_id
            return self._ipn_id

    # --------------------------------------------------------
    # Order submitter
    # --------------------------------------------------------

    def submit(self, order_request: PaymentOrderRequest) -> SubmissionResult:
        order_request.validate()

        notification_id = self.ensure_registered()

        resp = self._call(
            "POST",
            SUBMIT_ORDER_PATH,
            body=order_request.to_payload(notification_id=notification_id),
            error_cls=SubmissionError,
        )

        payload = resp.payload or {}
        if not resp.ok or has_processor_error(payload):
            msg = processor_error_message(payload, resp.raw_text or "order rejected")
            raise SubmissionError(
                f"Pesapal order submission failed: {resp.status_code} {msg}",
                status_code=resp.status_code,
                payload=payload,
            )

        tracking_id = str(payload.get("order_tracking_id") or "").strip()
        if not tracking_id:
            raise SubmissionError(
                "Pesapal response missing order_tracking_id",
                status_code=resp.status_code,
                payload=payload,
            )

        logger.info(
            "Pesapal order submitted",
            extra={
                "tracking_id": tracking_id,
                "merchant_reference": order_request.merchant_reference,
                "amount": str(order_request.amount),
            },
        )

        return SubmissionResult(
            tracking_id=tracking_id,
            redirect_url=str(payload.get("redirect_url") or "").strip(),
            merchant_reference=str(payload.get("merchant_reference") or order_request.merchant_reference),
        )

    def get_status(self, tracking_id: str) -> ProcessorStatus:
        tracking_id = str(tracking_id or "").strip()
        if not tracking_id:
            raise StatusQueryError("Tracking id is required")

        path = f"{TRANSACTION_STATUS_PATH}?{urlencode({'orderTrackingId': tracking_id})}"

        try:
            resp = self._call("GET", path, error_cls=StatusQueryError)
        except AuthError as exc:
            raise StatusQueryError(f"Pesapal auth failed during status query: {exc}") from exc

        payload = resp.payload
        if not resp.ok or payload is None or has_processor_error(payload):
            msg = processor_error_message(payload, resp.raw_text or "status unavailable")
            raise StatusQueryError(
                f"Pesapal status query failed: {resp.status_code} {msg}",
                status_code=resp.status_code,
                payload=payload,
            )

        return ProcessorStatus.from_payload(payload)


# ============================================================
# PROCESS-WIDE SESSION
# ============================================================

_session: PesapalSession | None = None
_session_lock = threading.Lock()


def default_ipn_url() -> str:
    base = str(getattr(settings, "APP_BASE_URL", "") or "").rstrip("/")
    return f"{base}/api/payments/ipn/?type=ecommerce"


def build_session_from_settings(*, transport=None) -> PesapalSession:
    cfg = (getattr(settings, "PAYMENTS", {}) or {}).get("PESAPAL") or {}

    return PesapalSession(
        consumer_key=cfg.get("CONSUMER_KEY") or "",
        consumer_secret=cfg.get("CONSUMER_SECRET") or "",
        environment=cfg.get("ENVIRONMENT") or "sandbox",
        ipn_url=cfg.get("IPN_URL") or default_ipn_url(),
        transport=transport,
        timeout=cfg.get("TIMEOUT_SECONDS") or 25,
        token_ttl_seconds=cfg.get("TOKEN_TTL_SECONDS") or 240,
    )


def get_session() -> PesapalSession:
    """Lazily build the process session from settings."""
    global _session

    if _session is not None:
        return _session

    with _session_lock:
        if _session is None:
            _session = build_session_from_settings()
        return _session


def reset_session() -> None:
    global _session
    with _session_lock:
        _session = None
