import threading
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

from django.test import SimpleTestCase, override_settings

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
    BillingAddress,
    PaymentOrderRequest,
    build_description,
)
from payments.services.session import get_session, reset_session
from payments.tests.fakes import (
    FakeTransport,
    http_error,
    make_session,
    ok,
    standard_transport,
    status_payload,
    token_payload,
)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def _order_request(**overrides):
    kwargs = {
        "merchant_reference": "ORD-20260101120000-ABCDEF12",
        "amount": Decimal("4750.00"),
        "currency": "KES",
        "description": "Ecommerce Purchase: Shoe",
        "callback_url": "https://shop.example/checkout/callback?type=ecommerce&order_id=1",
        "billing_address": BillingAddress(
            email_address="jane@example.com",
            phone_number="+254700000000",
            first_name="Jane",
            last_name="Doe",
        ),
    }
    kwargs.update(overrides)
    return PaymentOrderRequest(**kwargs)


class TokenCacheTests(SimpleTestCase):
    """
    GUARANTEES:
    - Token reused until its TTL expires
    - Processor expiryDate caps the TTL
    - Rejected credentials / unreachable processor -> AuthError
    """

    def test_token_is_reused_within_ttl(self):
        clock = FakeClock()
        transport = standard_transport()
        session = make_session(transport, clock=clock, token_ttl_seconds=240)

        self.assertEqual(session.get_token(), "tok-1")
        clock.now = 200
        self.assertEqual(session.get_token(), "tok-1")

        self.assertEqual(len(transport.calls_to(TOKEN_PATH)), 1)

    def test_token_is_refreshed_after_ttl(self):
        clock = FakeClock()
        transport = FakeTransport().queue(TOKEN_PATH, ok(token_payload("tok-1")), ok(token_payload("tok-2")))
        session = make_session(transport, clock=clock, token_ttl_seconds=240)

        self.assertEqual(session.get_token(), "tok-1")
        clock.now = 241
        self.assertEqual(session.get_token(), "tok-2")

    def test_processor_expiry_caps_ttl(self):
        clock = FakeClock()
        wall = datetime(2026, 1, 1, 12, 0, 0, tzinfo=dt_timezone.utc)
        payload = token_payload("tok-1")
        payload["expiryDate"] = "2026-01-01T12:01:00.5177619Z"

        transport = FakeTransport().queue(TOKEN_PATH, ok(payload), ok(token_payload("tok-2")))
        session = make_session(transport, clock=clock, wall_clock=lambda: wall, token_ttl_seconds=240)

        self.assertEqual(session.get_token(), "tok-1")
        clock.now = 29
        self.assertEqual(session.get_token(), "tok-1")
        clock.now = 31
        self.assertEqual(session.get_token(), "tok-2")

    def test_invalidate_forces_new_token(self):
        transport = FakeTransport().queue(TOKEN_PATH, ok(token_payload("tok-1")), ok(token_payload("tok-2")))
        session = make_session(transport)

        session.get_token()
        session.invalidate_token()

        self.assertEqual(session.get_token(), "tok-2")

    def test_rejected_credentials_raise_auth_error(self):
        transport = FakeTransport().queue(
            TOKEN_PATH,
            http_error(401, {"error": {"code": "invalid_consumer_key_or_secret_provided", "message": "Invalid"}}),
        )
        session = make_session(transport)

        with self.assertRaises(AuthError) as ctx:
            session.get_token()

        self.assertEqual(ctx.exception.status_code, 401)

    def test_missing_token_in_body_raises_auth_error(self):
        transport = FakeTransport().queue(TOKEN_PATH, ok({"token": None, "status": "500", "error": None}))

        with self.assertRaises(AuthError):
            make_session(transport).get_token()

    def test_unreachable_processor_raises_auth_error(self):
        transport = FakeTransport().queue(TOKEN_PATH, TransportError("timed out"))

        with self.assertRaises(AuthError):
            make_session(transport).get_token()


class CallbackRegistrantTests(SimpleTestCase):
    def test_registration_is_cached_for_process_lifetime(self):
        transport = standard_transport()
        session = make_session(transport)

        self.assertEqual(session.ensure_registered(), "IPN-1")
        self.assertEqual(session.ensure_registered(), "IPN-1")

        calls = transport.calls_to(REGISTER_IPN_PATH)
        self.assertEqual(len(calls), 1)
        self.assertEqual(
            calls[0].body,
            {"url": "https://shop.example/api/payments/ipn/?type=ecommerce", "ipn_notification_type": "POST"},
        )
        self.assertEqual(calls[0].headers["Authorization"], "Bearer tok-1")

    def test_rejected_registration_raises_and_keeps_cache_empty(self):
        transport = standard_transport()
        transport.queue(REGISTER_IPN_PATH, ok({"ipn_id": None, "error": {"code": "invalid_url", "message": "Bad URL"}, "status": "500"}))
        session = make_session(transport)

        with self.assertRaises(RegistrationError):
            session.ensure_registered()

        self.assertIsNone(session.ipn_id)
        # next attempt goes back to the network
        self.assertEqual(session.ensure_registered(), "IPN-1")

    def test_missing_ipn_url_raises_registration_error(self):
        session = make_session(standard_transport(), ipn_url="")

        with self.assertRaises(RegistrationError):
            session.ensure_registered()


class NumberedRegistrationTransport(FakeTransport):
    """Every RegisterIPN call answers with a fresh id (IPN-1, IPN-2, ...)."""

    def __init__(self):
        super().__init__()
        self.default(TOKEN_PATH, ok(token_payload()))
        self._counter_lock = threading.Lock()
        self._registrations = 0

    def request(self, method, url, *, body=None, headers=None, timeout=25):
        if url.split("?", 1)[0].endswith(REGISTER_IPN_PATH):
            with self._counter_lock:
                self._registrations += 1
                n = self._registrations
            self.queue(REGISTER_IPN_PATH, ok({"ipn_id": f"IPN-{n}", "error": None, "status": "200"}))
        return super().request(method, url, body=body, headers=headers, timeout=timeout)


class ConcurrentSessionTests(SimpleTestCase):
    """
    GUARANTEES:
    - concurrent cold starts agree on one stored notification id
    - concurrent token reads never raise and all get a token
    """

    workers = 8

    def _run_together(self, fn):
        barrier = threading.Barrier(self.workers)
        results, errors = [], []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                value = fn()
            except Exception as exc:  # collected for the assertion below
                with lock:
                    errors.append(exc)
            else:
                with lock:
                    results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(self.workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        return results, errors

    def test_concurrent_registration_settles_on_one_id(self):
        transport = NumberedRegistrationTransport()
        session = make_session(transport)

        results, errors = self._run_together(session.ensure_registered)

        self.assertEqual(errors, [])
        self.assertEqual(len(results), self.workers)
        self.assertIsNotNone(session.ipn_id)
        self.assertEqual(set(results), {session.ipn_id})
        # later callers hit the cache
        calls_before = len(transport.calls_to(REGISTER_IPN_PATH))
        self.assertEqual(session.ensure_registered(), session.ipn_id)
        self.assertEqual(len(transport.calls_to(REGISTER_IPN_PATH)), calls_before)

    def test_concurrent_token_reads(self):
        transport = standard_transport()
        session = make_session(transport)

        results, errors = self._run_together(session.get_token)

        self.assertEqual(errors, [])
        self.assertEqual(results, ["tok-1"] * self.workers)
        self.assertEqual(session.get_token(), "tok-1")


class OrderSubmitterTests(SimpleTestCase):
    def test_submit_sends_order_with_cached_notification_id(self):
        transport = standard_transport(tracking_id="TRK-9")
        session = make_session(transport)

        result = session.submit(_order_request())

        self.assertEqual(result.tracking_id, "TRK-9")
        self.assertEqual(result.redirect_url, "https://pay.example/redirect/1")

        body = transport.calls_to(SUBMIT_ORDER_PATH)[0].body
        self.assertEqual(body["id"], "ORD-20260101120000-ABCDEF12")
        self.assertEqual(body["notification_id"], "IPN-1")
        self.assertEqual(body["currency"], "KES")
        self.assertEqual(body["amount"], 4750.0)
        self.assertEqual(body["billing_address"]["country_code"], "KE")
        self.assertEqual(body["billing_address"]["email_address"], "jane@example.com")

    def test_second_submit_does_not_register_again(self):
        transport = standard_transport()
        session = make_session(transport)

        session.submit(_order_request())
        session.submit(_order_request())

        self.assertEqual(len(transport.calls_to(REGISTER_IPN_PATH)), 1)
        self.assertEqual(len(transport.calls_to(SUBMIT_ORDER_PATH)), 2)

    def test_http_500_raises_submission_error(self):
        transport = standard_transport()
        transport.queue(SUBMIT_ORDER_PATH, http_error(500, None, raw_text="Internal Server Error"))

        with self.assertRaises(SubmissionError) as ctx:
            make_session(transport).submit(_order_request())

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(len(transport.calls_to(SUBMIT_ORDER_PATH)), 1)

    def test_processor_error_field_raises_submission_error(self):
        transport = standard_transport()
        transport.queue(
            SUBMIT_ORDER_PATH,
            ok({"order_tracking_id": None, "error": {"code": "amount_exceeds_default_limit", "message": "Limit"}, "status": "500"}),
        )

        with self.assertRaisesMessage(SubmissionError, "Limit"):
            make_session(transport).submit(_order_request())

    def test_preconditions_fail_before_any_network_call(self):
        cases = [
            {"amount": Decimal("0")},
            {"currency": "KSH1"},
            {"currency": "kes"},
            {
                "billing_address": BillingAddress(email_address="not-an-email", phone_number="+254700000000"),
            },
            {
                "billing_address": BillingAddress(email_address="jane@example.com", phone_number="  "),
            },
        ]

        for overrides in cases:
            with self.subTest(overrides=overrides):
                transport = standard_transport()
                with self.assertRaises(SubmissionError):
                    make_session(transport).submit(_order_request(**overrides))
                self.assertEqual(transport.calls, [])

    def test_401_drops_token_and_replays_once(self):
        transport = standard_transport()
        transport.queue(TOKEN_PATH, ok(token_payload("tok-1")), ok(token_payload("tok-2")))
        transport.queue(TRANSACTION_STATUS_PATH, http_error(401, {"error": {"message": "expired"}}), ok(status_payload()))
        session = make_session(transport)

        result = session.get_status("TRK-1")

        self.assertEqual(result.payment_status_description, "Completed")
        status_calls = transport.calls_to(TRANSACTION_STATUS_PATH)
        self.assertEqual(len(status_calls), 2)
        self.assertEqual(status_calls[1].headers["Authorization"], "Bearer tok-2")


class StatusQueryTests(SimpleTestCase):
    def test_status_is_parsed(self):
        transport = standard_transport()
        transport.queue(TRANSACTION_STATUS_PATH, ok(status_payload("Completed", amount=4750)))

        result = make_session(transport).get_status("TRK-1")

        self.assertEqual(result.amount, Decimal("4750.00"))
        self.assertEqual(result.currency, "KES")
        self.assertEqual(result.status_code, 1)
        self.assertIn("orderTrackingId=TRK-1", transport.calls_to(TRANSACTION_STATUS_PATH)[0].url)

    def test_network_failure_raises_status_query_error(self):
        transport = standard_transport()
        transport.queue(TRANSACTION_STATUS_PATH, TransportError("connection reset"))

        with self.assertRaises(StatusQueryError):
            make_session(transport).get_status("TRK-1")

    def test_auth_failure_raises_status_query_error(self):
        transport = FakeTransport().queue(TOKEN_PATH, http_error(401, {"error": {"message": "bad key"}}))

        with self.assertRaises(StatusQueryError):
            make_session(transport).get_status("TRK-1")

    def test_processor_error_raises_status_query_error(self):
        transport = standard_transport()
        transport.queue(
            TRANSACTION_STATUS_PATH,
            ok({"error": {"error_type": "api_error", "code": "invalid_tracking_id", "message": "Unknown"}, "status": "500"}),
        )

        with self.assertRaises(StatusQueryError):
            make_session(transport).get_status("TRK-404")


class SessionConfigurationTests(SimpleTestCase):
    def test_missing_credentials_are_rejected(self):
        with self.assertRaises(ProcessorConfigurationError):
            make_session(consumer_key="")

    def test_unknown_environment_is_rejected(self):
        with self.assertRaises(ProcessorConfigurationError):
            make_session(environment="staging")

    def test_environment_selects_base_url(self):
        self.assertEqual(make_session(environment="sandbox").base_url, "https://cybqa.pesapal.com/pesapalv3")
        self.assertEqual(make_session(environment="live").base_url, "https://pay.pesapal.com/v3")

    @override_settings(
        APP_BASE_URL="https://shop.example",
        PAYMENTS={
            "PESAPAL": {
                "CONSUMER_KEY": "ck",
                "CONSUMER_SECRET": "cs",
                "ENVIRONMENT": "live",
                "IPN_URL": "",
                "TIMEOUT_SECONDS": 10,
                "TOKEN_TTL_SECONDS": 120,
            }
        },
    )
    def test_get_session_builds_one_session_from_settings(self):
        reset_session()
        self.addCleanup(reset_session)

        first = get_session()

        self.assertIs(first, get_session())
        self.assertEqual(first.environment, "live")
        self.assertEqual(first.ipn_url, "https://shop.example/api/payments/ipn/?type=ecommerce")


class DescriptionTests(SimpleTestCase):
    def test_short_names_are_joined(self):
        self.assertEqual(build_description(["Shoe", "Hat"]), "Ecommerce Purchase: Shoe, Hat")

    def test_long_names_are_truncated_with_ellipsis(self):
        desc = build_description(["x" * 150])

        self.assertEqual(desc, "Ecommerce Purchase: " + "x" * 100 + "...")
