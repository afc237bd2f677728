import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import patch

from django.test import SimpleTestCase, TestCase, override_settings

from delivery.capabilities import ProviderId
from delivery.models import Shipment, TrackingEvent, WebhookLog
from delivery.services import TrackingReconciler, is_forward_transition
from notifications.models import Notification
from order.models import Order

from .helpers import create_marketplace, create_order

SHIP_SECRET = "ship-secret"
UBER_KEY = "uber-key"


def shipbubble_body(status, tracking="SB-T1", event="shipment.status.changed"):
    return json.dumps({"event": event, "order_id": tracking, "status": status, "data": {}}).encode()


def shipbubble_headers(body):
    return {"X-Ship-Signature": hmac.new(SHIP_SECRET.encode(), body, hashlib.sha512).hexdigest()}


class ForwardTransitionTests(SimpleTestCase):
    def test_progress_only_moves_forward(self):
        S = Shipment.Status
        self.assertTrue(is_forward_transition(S.PENDING, S.PICKED_UP))
        self.assertTrue(is_forward_transition(S.PICKED_UP, S.DELIVERED))
        self.assertFalse(is_forward_transition(S.IN_TRANSIT, S.PICKED_UP))
        self.assertFalse(is_forward_transition(S.PICKED_UP, S.PICKED_UP))

    def test_exit_states(self):
        S = Shipment.Status
        self.assertTrue(is_forward_transition(S.IN_TRANSIT, S.FAILED))
        self.assertTrue(is_forward_transition(S.PENDING, S.CANCELLED))
        self.assertTrue(is_forward_transition(S.FAILED, S.RETURNED))
        self.assertFalse(is_forward_transition(S.FAILED, S.IN_TRANSIT))
        self.assertFalse(is_forward_transition(S.DELIVERED, S.RETURNED))
        self.assertFalse(is_forward_transition(S.CANCELLED, S.PICKED_UP))


@override_settings(SHIPBUBBLE_WEBHOOK_SECRET=SHIP_SECRET, UBER_WEBHOOK_SIGNING_KEY=UBER_KEY)
class TrackingReconcilerTests(TestCase):
    def setUp(self):
        market = create_marketplace()
        self.customer = market["customer"]
        self.order = create_order(self.customer, market["vendor"], market["dropoff"])
        self.shipment = Shipment.objects.create(
            order=self.order,
            provider=ProviderId.SHIPBUBBLE,
            tracking_number="SB-T1",
            cost=Decimal("1200.00"),
            currency="NGN",
        )
        self.reconciler = TrackingReconciler()

    def _send(self, status, **kwargs):
        body = shipbubble_body(status, **kwargs)
        return self.reconciler.process_webhook("shipbubble", body, shipbubble_headers(body))

    def test_status_change_updates_shipment_order_and_notifies(self):
        result = self._send("picked_up")

        self.assertEqual(result, {"received": True, "processed": True})
        self.shipment.refresh_from_db()
        self.assertEqual(self.shipment.status, Shipment.Status.PICKED_UP)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.OUT_FOR_DELIVERY)

        notifications = Notification.objects.filter(user=self.customer)
        self.assertEqual(notifications.count(), 1)
        self.assertEqual(notifications.first().type, Notification.Type.ORDER_OUT_FOR_DELIVERY)

        log = WebhookLog.objects.get()
        self.assertTrue(log.signature_valid)
        self.assertTrue(log.processed)
        self.assertEqual(log.reference, "SB-T1")

    def test_replayed_webhook_is_a_no_op(self):
        self._send("picked_up")
        result = self._send("picked_up")

        self.assertEqual(result, {"received": True, "processed": False})
        self.assertEqual(TrackingEvent.objects.filter(shipment=self.shipment).count(), 1)
        self.assertEqual(Notification.objects.filter(user=self.customer).count(), 1)

    def test_out_of_order_event_is_ignored(self):
        self._send("out_for_delivery")
        self._send("picked_up")

        self.shipment.refresh_from_db()
        self.assertEqual(self.shipment.status, Shipment.Status.OUT_FOR_DELIVERY)
        self.assertEqual(TrackingEvent.objects.filter(shipment=self.shipment).count(), 1)

    def test_order_moves_once_across_in_progress_statuses(self):
        self._send("picked_up")
        self._send("in_transit")
        self._send("out_for_delivery")

        self.assertEqual(TrackingEvent.objects.filter(shipment=self.shipment).count(), 3)
        self.assertEqual(Notification.objects.filter(user=self.customer).count(), 1)

    def test_delivered_stamps_times(self):
        self._send("delivered")

        self.shipment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertIsNotNone(self.shipment.actual_delivery_at)
        self.assertEqual(self.order.status, Order.Status.DELIVERED)
        self.assertIsNotNone(self.order.delivered_at)

    def test_failed_records_reason_and_cancels_order(self):
        self._send("failed")

        self.shipment.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.shipment.status, Shipment.Status.FAILED)
        self.assertTrue(self.shipment.failure_reason)
        self.assertEqual(self.order.status, Order.Status.CANCELLED)

    def test_unrecognized_status_changes_nothing(self):
        result = self._send("teleported")

        self.assertFalse(result["processed"])
        self.shipment.refresh_from_db()
        self.assertEqual(self.shipment.status, Shipment.Status.PENDING)
        self.assertEqual(WebhookLog.objects.get().error, "unrecognized status")

    def test_unknown_shipment_is_acknowledged(self):
        result = self._send("picked_up", tracking="SB-NOPE")
        self.assertEqual(result, {"received": True, "processed": False})
        self.assertEqual(WebhookLog.objects.get().error, "unknown shipment")

    def test_bad_signature_is_rejected(self):
        body = shipbubble_body("delivered")
        result = self.reconciler.process_webhook("shipbubble", body, {"X-Ship-Signature": "0" * 128})

        self.assertFalse(result["processed"])
        self.shipment.refresh_from_db()
        self.assertEqual(self.shipment.status, Shipment.Status.PENDING)
        self.assertFalse(WebhookLog.objects.get().signature_valid)

    def test_invalid_json_is_logged(self):
        result = self.reconciler.process_webhook("shipbubble", b"not json", {})
        self.assertFalse(result["processed"])
        self.assertEqual(WebhookLog.objects.get().event_type, "INVALID_JSON")

    def test_non_object_json_is_acknowledged(self):
        for body in (b"[]", b'"picked_up"', b"null"):
            result = self.reconciler.process_webhook("shipbubble", body, shipbubble_headers(body))
            self.assertEqual(result, {"received": True, "processed": False})

        self.assertEqual(WebhookLog.objects.filter(event_type="INVALID_JSON").count(), 3)
        self.shipment.refresh_from_db()
        self.assertEqual(self.shipment.status, Shipment.Status.PENDING)

    def test_notification_failure_does_not_block_status_change(self):
        with patch("delivery.services.order_bridge.NotificationService.send_order_update", side_effect=RuntimeError("fcm down")):
            result = self._send("picked_up")

        self.assertTrue(result["processed"])
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.OUT_FOR_DELIVERY)

    def test_settled_order_is_not_reopened(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.REFUNDED)
        self._send("delivered")

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.REFUNDED)
        self.assertFalse(Notification.objects.filter(user=self.customer).exists())

    def test_uber_informational_event_changes_nothing(self):
        Shipment.objects.filter(pk=self.shipment.pk).update(provider=ProviderId.UBER, tracking_number="del_1")
        body = json.dumps({"kind": "courier.update", "delivery_id": "del_1", "data": {"courier": {}}}).encode()
        signature = hmac.new(UBER_KEY.encode(), body, hashlib.sha256).hexdigest()

        result = self.reconciler.process_webhook("uber", body, {"X-Uber-Signature": signature})

        self.assertFalse(result["processed"])
        self.assertFalse(TrackingEvent.objects.exists())

    def test_uber_status_event(self):
        Shipment.objects.filter(pk=self.shipment.pk).update(provider=ProviderId.UBER, tracking_number="del_1")
        body = json.dumps({"kind": "event.delivery_status", "delivery_id": "del_1", "status": "pickup_complete"}).encode()
        signature = hmac.new(UBER_KEY.encode(), body, hashlib.sha256).hexdigest()

        result = self.reconciler.process_webhook("uber", body, {"X-Uber-Signature": signature})

        self.assertTrue(result["processed"])
        self.shipment.refresh_from_db()
        self.assertEqual(self.shipment.status, Shipment.Status.PICKED_UP)

    def test_tracking_events_are_append_only(self):
        self._send("picked_up")
        event = TrackingEvent.objects.get()
        event.description = "edited"
        with self.assertRaises(ValueError):
            event.save()
        with self.assertRaises(ValueError):
            event.delete()
