from decimal import Decimal

from django.test import SimpleTestCase, TestCase

from orders.models import Order
from orders.services import order_store
from orders.services.order_store import LineItemSnapshot
from payments.services.exceptions import StatusQueryError
from payments.services.notifications import (
    OUTCOME_DONATION_LOGGED,
    OUTCOME_UNCHANGED,
    OUTCOME_UNKNOWN_ORDER,
    OUTCOME_UPDATED,
    TYPE_DONATION,
    TYPE_ECOMMERCE,
    handle_notification,
    normalize_type,
)
from payments.services.pesapal import TRANSACTION_STATUS_PATH
from payments.services.reconciliation import map_processor_status, reconcile_tracking_id
from payments.tests.fakes import make_session, ok, standard_transport, status_payload


def _order(tracking_id=None):
    order = order_store.create_pending(
        user=None,
        customer_info={"email": "jane@example.com"},
        delivery_info={"county": "Kajiado"},
        items=[LineItemSnapshot(product_id="p-1", product_name="Shoe", unit_price=Decimal("4000.00"), quantity=1)],
        delivery_cost=Decimal("750.00"),
        total_amount=Decimal("4750.00"),
    )
    if tracking_id:
        order = order_store.attach_tracking_id(order.id, tracking_id)
    return order


class StatusMappingTests(SimpleTestCase):
    def test_mapping(self):
        cases = {
            "Completed": Order.PAYMENT_PAID,
            "COMPLETED": Order.PAYMENT_PAID,
            "Failed": Order.PAYMENT_FAILED,
            "Invalid": Order.PAYMENT_FAILED,
            "Reversed": Order.PAYMENT_PENDING,
            "": Order.PAYMENT_PENDING,
            None: Order.PAYMENT_PENDING,
        }
        for description, expected in cases.items():
            with self.subTest(description=description):
                self.assertEqual(map_processor_status(description), expected)

    def test_type_discriminator(self):
        self.assertEqual(normalize_type("ecommerce"), TYPE_ECOMMERCE)
        self.assertEqual(normalize_type(" ECOMMERCE "), TYPE_ECOMMERCE)
        self.assertEqual(normalize_type("donation"), TYPE_DONATION)
        self.assertEqual(normalize_type(None), TYPE_DONATION)


class HandleNotificationTests(TestCase):
    """
    GUARANTEES:
    - settlement decided by GetTransactionStatus, never by the IPN payload
    - redelivered notifications are idempotent
    - terminal status never regresses to pending
    """

    def setUp(self):
        self.transport = standard_transport()
        self.session = make_session(self.transport)
        self.order = _order(tracking_id="TRK-1")

    def _status(self, *payloads):
        self.transport.queue(TRANSACTION_STATUS_PATH, *[ok(p) for p in payloads])

    def test_completed_marks_order_paid(self):
        self._status(status_payload("Completed"))

        result = handle_notification(session=self.session, tracking_id="TRK-1")

        self.assertEqual(result.outcome, OUTCOME_UPDATED)
        self.assertEqual(result.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(result.order_id, str(self.order.id))

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(self.order.confirmed_amount, Decimal("4750.00"))
        self.assertEqual(self.order.processor_status_description, "Completed")

    def test_redelivered_completed_notification_is_unchanged(self):
        self._status(status_payload("Completed"), status_payload("Completed"))

        handle_notification(session=self.session, tracking_id="TRK-1")
        again = handle_notification(session=self.session, tracking_id="TRK-1")

        self.assertEqual(again.outcome, OUTCOME_UNCHANGED)
        self.assertEqual(again.payment_status, Order.PAYMENT_PAID)

    def test_stale_pending_after_completed_keeps_order_paid(self):
        self._status(status_payload("Completed"), status_payload("Pending"))

        handle_notification(session=self.session, tracking_id="TRK-1")
        stale = handle_notification(session=self.session, tracking_id="TRK-1")

        self.assertEqual(stale.payment_status, Order.PAYMENT_PAID)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PAID)

    def test_reported_status_is_not_trusted(self):
        self._status(status_payload("Pending"))

        result = handle_notification(session=self.session, tracking_id="TRK-1", reported_status="Completed")

        self.assertEqual(result.payment_status, Order.PAYMENT_PENDING)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PENDING)

    def test_failed_payment_cancels_fulfillment(self):
        self._status(status_payload("Failed"))

        handle_notification(session=self.session, tracking_id="TRK-1")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(self.order.fulfillment_status, Order.FULFILLMENT_CANCELLED)

    def test_merchant_reference_recovers_tracking_id(self):
        orphan = _order()
        self._status(status_payload("Completed"))

        result = handle_notification(
            session=self.session,
            tracking_id="TRK-NEW",
            merchant_reference=orphan.order_number,
        )

        self.assertEqual(result.order_id, str(orphan.id))
        orphan.refresh_from_db()
        self.assertEqual(orphan.tracking_id, "TRK-NEW")
        self.assertEqual(orphan.payment_status, Order.PAYMENT_PAID)

    def test_merchant_reference_of_differently_tracked_order_is_unknown(self):
        self._status(status_payload("Completed"))

        result = handle_notification(
            session=self.session,
            tracking_id="TRK-OTHER",
            merchant_reference=self.order.order_number,
        )

        self.assertEqual(result.outcome, OUTCOME_UNKNOWN_ORDER)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PENDING)

    def test_unknown_order(self):
        self._status(status_payload("Completed"))

        result = handle_notification(session=self.session, tracking_id="TRK-404")

        self.assertEqual(result.outcome, OUTCOME_UNKNOWN_ORDER)
        self.assertEqual(result.payment_status, Order.PAYMENT_PAID)

    def test_donation_is_verified_and_logged_only(self):
        self._status(status_payload("Completed"))

        with self.assertLogs("payments.services.notifications", level="INFO") as logs:
            result = handle_notification(
                session=self.session,
                tracking_id="TRK-1",
                notification_type="donation",
            )

        self.assertEqual(result.outcome, OUTCOME_DONATION_LOGGED)
        self.assertTrue(any(r.getMessage() == "Donation IPN verified" for r in logs.records))
        self.assertEqual(len(self.transport.calls_to(TRANSACTION_STATUS_PATH)), 1)

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PENDING)

    def test_status_query_failure_propagates_and_leaves_order(self):
        self.transport.queue(TRANSACTION_STATUS_PATH, ok({"error": {"message": "down"}, "status": "500"}))

        with self.assertRaises(StatusQueryError):
            handle_notification(session=self.session, tracking_id="TRK-1")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PENDING)

    def test_missing_tracking_id(self):
        with self.assertRaises(ValueError):
            handle_notification(session=self.session, tracking_id="  ")

        self.assertEqual(self.transport.calls, [])


class ReconcileTrackingIdTests(TestCase):
    def test_amount_mismatch_is_logged_but_order_is_paid(self):
        order = _order(tracking_id="TRK-1")
        transport = standard_transport()
        transport.queue(TRANSACTION_STATUS_PATH, ok(status_payload("Completed", amount="100.00")))

        with self.assertLogs("payments.services.reconciliation", level="ERROR") as logs:
            result = reconcile_tracking_id(session=make_session(transport), tracking_id="TRK-1")

        self.assertEqual(result.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(logs.records[0].confirmed_amount, "100.00")
        order.refresh_from_db()
        self.assertEqual(order.confirmed_amount, Decimal("100.00"))

    def test_untracked_order_returns_mapped_status_without_update(self):
        transport = standard_transport()
        transport.queue(TRANSACTION_STATUS_PATH, ok(status_payload("Failed")))

        result = reconcile_tracking_id(session=make_session(transport), tracking_id="TRK-404")

        self.assertIsNone(result.update)
        self.assertIsNone(result.order)
        self.assertEqual(result.payment_status, Order.PAYMENT_FAILED)
