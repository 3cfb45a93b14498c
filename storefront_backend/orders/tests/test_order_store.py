from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase

from orders.models import Order, OrderItem
from orders.services import order_store
from orders.services.exceptions import (
    InvalidOrderTransitionError,
    OrderInvariantError,
    OrderNotFound,
    PersistenceError,
    TrackingIdAttachedError,
)
from orders.services.order_store import LineItemSnapshot

User = get_user_model()


def _items():
    return [
        LineItemSnapshot(product_id="p-1", product_name="Running Shoe", unit_price=Decimal("1500.00"), quantity=2),
        LineItemSnapshot(product_id="p-2", product_name="Cap", unit_price=Decimal("1000.00"), quantity=1),
    ]


def _create(**overrides):
    kwargs = {
        "user": None,
        "customer_info": {"firstName": "Jane", "lastName": "Doe", "email": "jane@example.com", "phone": "0700"},
        "delivery_info": {"county": "Kajiado", "deliveryOption": "Express (2-3 days)"},
        "items": _items(),
        "delivery_cost": Decimal("750.00"),
        "total_amount": Decimal("4750.00"),
    }
    kwargs.update(overrides)
    return order_store.create_pending(**kwargs)


class CreatePendingTests(TestCase):
    """
    GUARANTEES:
    - pending / processing on creation
    - frozen line snapshots
    - subtotal + delivery_cost == total_amount
    - unique order number (regenerated on collision)
    """

    def test_creates_pending_order_with_items(self):
        order = _create()

        order.refresh_from_db()
        self.assertEqual(order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(order.fulfillment_status, Order.FULFILLMENT_PROCESSING)
        self.assertIsNone(order.tracking_id)
        self.assertTrue(order.order_number.startswith("ORD-"))

        self.assertEqual(order.subtotal, Decimal("4000.00"))
        self.assertEqual(order.delivery_cost, Decimal("750.00"))
        self.assertEqual(order.total_amount, Decimal("4750.00"))
        self.assertEqual(order.subtotal + order.delivery_cost, order.total_amount)

        items = list(order.items.all())
        self.assertEqual([i.product_name for i in items], ["Running Shoe", "Cap"])
        self.assertEqual(items[0].line_total, Decimal("3000.00"))

    def test_total_mismatch_is_rejected_and_nothing_written(self):
        with self.assertRaises(OrderInvariantError):
            _create(total_amount=Decimal("4000.00"))

        self.assertEqual(Order.objects.count(), 0)
        self.assertEqual(OrderItem.objects.count(), 0)

    def test_empty_items_rejected(self):
        with self.assertRaises(OrderInvariantError):
            _create(items=[], total_amount=Decimal("750.00"))

    def test_anonymous_user_is_not_linked(self):
        order = _create(user=None)

        self.assertIsNone(order.user_id)

    def test_order_number_collision_is_regenerated(self):
        existing = _create()

        with mock.patch(
            "orders.services.order_store.generate_order_number",
            side_effect=[existing.order_number, "ORD-20260101000000-NEW00001"],
        ):
            order = _create()

        self.assertEqual(order.order_number, "ORD-20260101000000-NEW00001")
        self.assertEqual(Order.objects.count(), 2)

    def test_persistent_collisions_raise_persistence_error(self):
        existing = _create()

        with mock.patch(
            "orders.services.order_store.generate_order_number",
            return_value=existing.order_number,
        ):
            with self.assertRaises(PersistenceError):
                _create()

        self.assertEqual(Order.objects.count(), 1)


class TrackingIdTests(TestCase):
    def test_attach_sets_tracking_id(self):
        order = _create()

        order_store.attach_tracking_id(order.id, "TRK-1")

        self.assertEqual(order_store.get_by_tracking_id("TRK-1").id, order.id)

    def test_attach_same_id_twice_is_noop(self):
        order = _create()
        order_store.attach_tracking_id(order.id, "TRK-1")

        again = order_store.attach_tracking_id(order.id, "TRK-1")

        self.assertEqual(again.tracking_id, "TRK-1")

    def test_attach_different_id_is_rejected(self):
        order = _create()
        order_store.attach_tracking_id(order.id, "TRK-1")

        with self.assertRaises(TrackingIdAttachedError):
            order_store.attach_tracking_id(order.id, "TRK-2")

    def test_attach_to_missing_order(self):
        with self.assertRaises(OrderNotFound):
            order_store.attach_tracking_id("00000000-0000-0000-0000-000000000000", "TRK-1")


class UpdateStatusTests(TestCase):
    """
    GUARANTEES:
    - idempotent terminal writes
    - terminal status never reverted to pending
    - payment failure cancels unshipped fulfillment
    """

    def setUp(self):
        self.order = _create()
        order_store.attach_tracking_id(self.order.id, "TRK-1")

    def test_paid_twice_stays_paid(self):
        first = order_store.update_status(self.order.id, Order.PAYMENT_PAID)
        second = order_store.update_status(self.order.id, Order.PAYMENT_PAID)

        self.assertTrue(first.changed)
        self.assertFalse(second.changed)

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PAID)
        self.assertIsNotNone(self.order.paid_at)

    def test_pending_after_paid_is_ignored(self):
        order_store.update_status(self.order.id, Order.PAYMENT_PAID)
        stale = order_store.update_status(self.order.id, Order.PAYMENT_PENDING)

        self.assertFalse(stale.changed)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PAID)

    def test_failed_after_paid_is_ignored(self):
        order_store.update_status(self.order.id, Order.PAYMENT_PAID)
        order_store.update_status(self.order.id, Order.PAYMENT_FAILED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PAID)

    def test_failed_payment_cancels_fulfillment(self):
        update = order_store.update_status(self.order.id, Order.PAYMENT_FAILED)

        self.assertEqual(update.payment_status, Order.PAYMENT_FAILED)
        self.assertEqual(update.fulfillment_status, Order.FULFILLMENT_CANCELLED)

    def test_processor_snapshot_frozen_once_terminal(self):
        order_store.update_status(
            self.order.id,
            Order.PAYMENT_PAID,
            processor_description="Completed",
            confirmed_amount=Decimal("4750.00"),
        )
        order_store.update_status(self.order.id, Order.PAYMENT_PENDING, processor_description="Pending")

        self.order.refresh_from_db()
        self.assertEqual(self.order.processor_status_description, "Completed")
        self.assertEqual(self.order.confirmed_amount, Decimal("4750.00"))

    def test_processor_snapshot_updates_while_pending(self):
        order_store.update_status(self.order.id, Order.PAYMENT_PENDING, processor_description="Pending")

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PENDING)
        self.assertEqual(self.order.processor_status_description, "Pending")


class AdvanceFulfillmentTests(TestCase):
    def setUp(self):
        self.order = _create()

    def test_forward_progression(self):
        order_store.update_status(self.order.id, Order.PAYMENT_PAID)

        for target in ("confirmed", "shipped", "delivered"):
            order_store.advance_fulfillment(self.order.id, target)

        self.order.refresh_from_db()
        self.assertEqual(self.order.fulfillment_status, Order.FULFILLMENT_DELIVERED)

    def test_cancel_with_pending_payment_cancels_payment(self):
        update = order_store.advance_fulfillment(self.order.id, Order.FULFILLMENT_CANCELLED)

        self.assertEqual(update.payment_status, Order.PAYMENT_CANCELLED)
        self.assertEqual(update.fulfillment_status, Order.FULFILLMENT_CANCELLED)

    def test_cancel_paid_order_keeps_payment_paid(self):
        order_store.update_status(self.order.id, Order.PAYMENT_PAID)

        update = order_store.advance_fulfillment(self.order.id, Order.FULFILLMENT_CANCELLED)

        self.assertEqual(update.payment_status, Order.PAYMENT_PAID)
        self.assertEqual(update.fulfillment_status, Order.FULFILLMENT_CANCELLED)

    def test_cannot_cancel_after_shipping(self):
        order_store.update_status(self.order.id, Order.PAYMENT_PAID)
        order_store.advance_fulfillment(self.order.id, "confirmed")
        order_store.advance_fulfillment(self.order.id, "shipped")

        with self.assertRaises(InvalidOrderTransitionError):
            order_store.advance_fulfillment(self.order.id, Order.FULFILLMENT_CANCELLED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.fulfillment_status, Order.FULFILLMENT_SHIPPED)
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PAID)


class DeleteAndLookupTests(TestCase):
    def test_delete_pending_order_without_tracking_id(self):
        order = _create()

        order_store.delete(order.id)

        with self.assertRaises(OrderNotFound):
            order_store.get_by_id(order.id)
        self.assertEqual(OrderItem.objects.count(), 0)

    def test_delete_refused_once_tracking_id_attached(self):
        order = _create()
        order_store.attach_tracking_id(order.id, "TRK-1")

        with self.assertRaises(TrackingIdAttachedError):
            order_store.delete(order.id)

        self.assertTrue(Order.objects.filter(id=order.id).exists())

    def test_malformed_id_is_not_found(self):
        with self.assertRaises(OrderNotFound):
            order_store.get_by_id("not-a-uuid")

    def test_lookup_by_order_number(self):
        order = _create()

        self.assertEqual(order_store.get_by_order_number(order.order_number).id, order.id)

    def test_list_by_user_filters_owner_and_tracking(self):
        jane = User.objects.create_user(email="jane@example.com", password="pass")
        john = User.objects.create_user(email="john@example.com", password="pass")

        tracked = _create(user=jane)
        order_store.attach_tracking_id(tracked.id, "TRK-1")
        untracked = _create(user=jane)
        _create(user=john)

        all_orders = list(order_store.list_by_user(jane))
        only_tracked = list(order_store.list_by_user(jane, require_tracking_id=True))

        self.assertEqual({o.id for o in all_orders}, {tracked.id, untracked.id})
        self.assertEqual([o.id for o in only_tracked], [tracked.id])

    def test_list_pending_with_tracking(self):
        pending = _create()
        order_store.attach_tracking_id(pending.id, "TRK-1")
        paid = _create()
        order_store.attach_tracking_id(paid.id, "TRK-2")
        order_store.update_status(paid.id, Order.PAYMENT_PAID)
        _create()

        self.assertEqual([o.id for o in order_store.list_pending_with_tracking()], [pending.id])
