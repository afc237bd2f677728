import hashlib
import hmac
import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, PropertyMock, patch

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from delivery.capabilities import ProviderId
from delivery.exceptions import ProviderRequestError, ProviderUnavailable
from delivery.models import DeliveryQuote, Shipment, TrackingEvent
from delivery.providers.shipbubble import ShipbubbleClient, ShipbubbleProvider
from delivery.services import QuoteStore
from notifications.models import Notification
from order.models import Order
from order.services import OrderService

from .helpers import SHIPBUBBLE_COURIERS, User, create_marketplace, create_order, make_quote

SHIP_SECRET = "ship-secret"


@override_settings(
    SHIPBUBBLE_WEBHOOK_SECRET=SHIP_SECRET,
    SHIPBUBBLE_PACKAGE_CATEGORY_ID="22",
    SHIPBUBBLE_QUOTE_TTL_MINUTES=0,
)
class DeliveryFlowAPITests(TestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.market = create_marketplace()
        self.customer = self.market["customer"]
        self.client.force_authenticate(user=self.customer)

        self.sb_client = MagicMock(spec=ShipbubbleClient)
        self.sb_client.validate_address.side_effect = lambda payload: {
            "address_code": 101 if "Akin Adesola" in payload["address"] else 202,
        }
        self.sb_client.fetch_rates.return_value = {"request_token": "req-tok", "couriers": SHIPBUBBLE_COURIERS}
        self.sb_client.create_label.return_value = {
            "order_id": "T1",
            "status": "pending",
            "tracking_url": "https://track.example.test/T1",
        }
        patcher = patch.object(ShipbubbleProvider, "client", new_callable=PropertyMock, return_value=self.sb_client)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _webhook(self, payload):
        body = json.dumps(payload).encode()
        signature = hmac.new(SHIP_SECRET.encode(), body, hashlib.sha512).hexdigest()
        return self.client.post(
            "/delivery/webhooks/shipbubble/",
            data=body,
            content_type="application/json",
            HTTP_X_SHIP_SIGNATURE=signature,
        )

    def test_nigerian_order_end_to_end(self):
        response = self.client.post(
            "/delivery/quotes/",
            {"vendor_id": str(self.market["vendor"].id), "address_id": str(self.market["dropoff"].id)},
            format="json",
        )
        self.assertEqual(response.status_code, 201, response.data)
        self.assertEqual(response.data["provider"], "SHIPBUBBLE")
        self.assertEqual(Decimal(response.data["fee"]), Decimal("1200"))
        self.assertEqual(response.data["currency"], "NGN")
        quote_id = response.data["id"]

        response = self.client.post(f"/delivery/quotes/{quote_id}/accept/", {}, format="json")
        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["status"], "SELECTED")

        order = OrderService.create_order_from_cart(
            self.market["cart"], self.market["dropoff"], delivery_fee=Decimal("1200.00")
        )

        response = self.client.post("/delivery/shipments/", {"quote_id": quote_id, "order_id": str(order.id)}, format="json")
        self.assertEqual(response.status_code, 201, response.data)
        self.assertEqual(response.data["tracking_number"], "T1")
        self.assertEqual(response.data["status"], "PENDING")
        self.assertEqual(DeliveryQuote.objects.get(pk=quote_id).status, DeliveryQuote.Status.USED)

        payload = {"event": "shipment.status.changed", "order_id": "T1", "status": "picked_up", "data": {}}
        response = self._webhook(payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True, "processed": True})

        shipment = Shipment.objects.get(tracking_number="T1")
        self.assertEqual(shipment.status, Shipment.Status.PICKED_UP)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.OUT_FOR_DELIVERY)
        self.assertEqual(Notification.objects.filter(user=self.customer).count(), 1)

        response = self._webhook(payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"received": True, "processed": False})
        self.assertEqual(TrackingEvent.objects.filter(shipment=shipment).count(), 2)
        self.assertEqual(Notification.objects.filter(user=self.customer).count(), 1)

        self.sb_client.track.return_value = {"order_id": "T1", "status": "picked_up"}
        response = self.client.get("/delivery/shipments/T1/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["shipment"]["status"], "PICKED_UP")
        self.assertEqual(len(response.data["events"]), 2)

    def test_provider_outage_is_reported_as_unavailable(self):
        self.sb_client.fetch_rates.side_effect = ProviderUnavailable("shipbubble request timed out")
        response = self.client.post(
            "/delivery/quotes/",
            {"vendor_id": str(self.market["vendor"].id), "address_id": str(self.market["dropoff"].id)},
            format="json",
        )
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.data["detail"], "Delivery is currently unavailable")
        self.assertFalse(DeliveryQuote.objects.exists())

    def test_other_customers_address_is_not_found(self):
        stranger = User.objects.create_user(username="stranger", email="s@example.com", password="Pass123!")
        self.client.force_authenticate(user=stranger)
        response = self.client.post(
            "/delivery/quotes/",
            {"vendor_id": str(self.market["vendor"].id), "address_id": str(self.market["dropoff"].id)},
            format="json",
        )
        self.assertEqual(response.status_code, 404)

    def test_quote_detail_is_owner_only(self):
        quote = make_quote(customer=self.customer)
        self.assertEqual(self.client.get(f"/delivery/quotes/{quote.id}/").status_code, 200)

        stranger = User.objects.create_user(username="stranger", email="s@example.com", password="Pass123!")
        self.client.force_authenticate(user=stranger)
        self.assertEqual(self.client.get(f"/delivery/quotes/{quote.id}/").status_code, 404)

    def test_quote_of_another_customer_cannot_ship_their_order(self):
        quote = make_quote(customer=self.customer, vendor=self.market["vendor"])
        QuoteStore.select(quote.id)
        stranger = User.objects.create_user(username="stranger", email="s@example.com", password="Pass123!")
        their_order = create_order(stranger, self.market["vendor"], self.market["dropoff"])

        self.client.force_authenticate(user=stranger)
        response = self.client.post(
            "/delivery/shipments/", {"quote_id": str(quote.id), "order_id": str(their_order.id)}, format="json"
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(DeliveryQuote.objects.get(pk=quote.pk).status, DeliveryQuote.Status.SELECTED)
        self.sb_client.create_label.assert_not_called()

    def test_expired_quote_cannot_be_accepted(self):
        quote = make_quote(customer=self.customer, expires_at=timezone.now() - timedelta(minutes=1))
        response = self.client.post(f"/delivery/quotes/{quote.id}/accept/", {}, format="json")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["detail"], "Delivery quote has expired")

    def test_validate_address_caches_provider_code(self):
        url = "/delivery/addresses/validate/"
        payload = {"address_id": str(self.market["dropoff"].id)}

        response = self.client.post(url, payload, format="json")
        self.assertEqual(response.status_code, 200, response.data)
        self.assertEqual(response.data["provider"], "SHIPBUBBLE")
        self.assertEqual(response.data["address_code"], "202")
        self.assertTrue(response.data["valid"])

        self.client.post(url, payload, format="json")
        self.sb_client.validate_address.assert_called_once()

    def test_rejected_address_is_reported_invalid(self):
        self.sb_client.validate_address.side_effect = ProviderRequestError("Address could not be geocoded")
        response = self.client.post(
            "/delivery/addresses/validate/", {"address_id": str(self.market["dropoff"].id)}, format="json"
        )
        self.assertEqual(response.status_code, 422)
        self.assertFalse(response.data["valid"])

    def test_unknown_provider_webhook(self):
        response = self.client.post("/delivery/webhooks/dhl/", data=b"{}", content_type="application/json")
        self.assertEqual(response.status_code, 400)

    def test_unsigned_webhook_is_not_processed(self):
        response = self.client.post(
            "/delivery/webhooks/shipbubble/",
            data=json.dumps({"order_id": "T1", "status": "delivered"}),
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["processed"])


class ShipmentListAPITests(TestCase):
    def setUp(self):
        market = create_marketplace()
        self.customer = market["customer"]
        stranger = User.objects.create_user(username="stranger", email="s@example.com", password="Pass123!")

        for number, (owner, status) in enumerate(
            [
                (self.customer, Shipment.Status.DELIVERED),
                (self.customer, Shipment.Status.IN_TRANSIT),
                (stranger, Shipment.Status.IN_TRANSIT),
            ]
        ):
            order = create_order(owner, market["vendor"], market["dropoff"], order_number=f"ORD-LIST-{number}")
            Shipment.objects.create(
                order=order,
                provider=ProviderId.SHIPBUBBLE,
                tracking_number=f"SB-LIST-{number}",
                status=status,
                cost=Decimal("1200.00"),
                currency="NGN",
            )

        self.client = APIClient()
        self.client.force_authenticate(user=self.customer)

    def test_lists_only_own_shipments(self):
        response = self.client.get("/delivery/shipments/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["count"], 2)
        self.assertCountEqual(
            [row["tracking_number"] for row in response.data["results"]], ["SB-LIST-0", "SB-LIST-1"]
        )

    def test_filters_by_status_and_paginates(self):
        response = self.client.get("/delivery/shipments/", {"status": "in_transit"})
        self.assertEqual([row["tracking_number"] for row in response.data["results"]], ["SB-LIST-1"])

        response = self.client.get("/delivery/shipments/", {"limit": 1})
        self.assertEqual(len(response.data["results"]), 1)
        self.assertIsNotNone(response.data["next"])

    def test_unknown_status_filter_is_rejected(self):
        response = self.client.get("/delivery/shipments/", {"status": "teleported"})
        self.assertEqual(response.status_code, 400)


class ProviderListAPITests(TestCase):
    def test_lists_providers_for_country(self):
        response = APIClient().get("/delivery/providers/", {"country": "NG"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([p["provider"] for p in response.data], ["SHIPBUBBLE", "UBER"])
        self.assertTrue(response.data[1]["requires_confirmation"])


class ExpireQuotesCommandTests(TestCase):
    def test_command_expires_stale_quotes(self):
        stale = make_quote(expires_at=timezone.now() - timedelta(minutes=1))
        call_command("expire_delivery_quotes", verbosity=0)
        stale.refresh_from_db()
        self.assertEqual(stale.status, DeliveryQuote.Status.EXPIRED)
