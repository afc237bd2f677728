import hashlib
import hmac
import threading
import time
from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import MagicMock

import requests
from django.core.cache import cache
from django.test import SimpleTestCase, override_settings

from delivery.exceptions import (
    AddressNotServiceable,
    NoCourierAvailable,
    ProviderAuthFailure,
    ProviderRequestError,
    ProviderUnavailable,
)
from delivery.packaging import build_package_manifest
from delivery.providers import UNRECOGNIZED, get_provider
from delivery.providers.base import ContactAddress, QuoteOffer
from delivery.providers.http import ProviderHTTPClient, build_session
from delivery.providers.shipbubble import ShipbubbleClient, ShipbubbleProvider
from delivery.providers.token_cache import OAuthTokenCache
from delivery.providers.uber import UberDirectClient, UberDirectProvider, build_time_windows

from .helpers import SHIPBUBBLE_COURIERS


def _contact(code="", country="NG"):
    return ContactAddress(
        name="Tolu Ade",
        phone="+2348020000000",
        email="tolu@example.com",
        address_line_1="12 Admiralty Way",
        city="Lekki",
        state="Lagos",
        country=country,
        address_code=code,
    )


def _response(status_code, body=None, content=b"{}"):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.content = content
    response.json.return_value = body if body is not None else {}
    response.reason = "reason"
    return response


class ProviderHTTPClientTests(SimpleTestCase):
    def setUp(self):
        self.session = MagicMock()
        self.http = ProviderHTTPClient("shipbubble", "https://api.example.test/v1/", timeout=5, session=self.session)

    def test_success_returns_json_and_uses_timeout(self):
        self.session.request.return_value = _response(200, {"status": "success"})
        self.assertEqual(self.http.get("shipping/labels/categories"), {"status": "success"})
        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(self.session.request.call_args[0][1], "https://api.example.test/v1/shipping/labels/categories")

    def test_timeout_is_unavailable(self):
        self.session.request.side_effect = requests.Timeout("slow")
        with self.assertRaises(ProviderUnavailable) as ctx:
            self.http.post("shipping/fetch_rates", json={})
        self.assertTrue(ctx.exception.retryable)

    def test_status_codes_map_to_error_kinds(self):
        self.session.request.return_value = _response(503, {"message": "down"})
        with self.assertRaises(ProviderUnavailable):
            self.http.get("x")

        self.session.request.return_value = _response(401, {"message": "bad key"})
        with self.assertRaises(ProviderAuthFailure):
            self.http.get("x")

        self.session.request.return_value = _response(422, {"message": "invalid address"})
        with self.assertRaises(ProviderRequestError) as ctx:
            self.http.get("x")
        self.assertEqual(ctx.exception.message, "invalid address")
        self.assertEqual(ctx.exception.context["upstream_status"], 422)

    def test_session_retries_idempotent_calls_only(self):
        session = build_session(3)
        retry = session.get_adapter("https://api.example.test").max_retries
        self.assertEqual(retry.total, 2)
        self.assertIn("GET", retry.allowed_methods)
        self.assertNotIn("POST", retry.allowed_methods)
        self.assertIn(503, retry.status_forcelist)


class TokenCacheTests(SimpleTestCase):
    def test_token_is_reused_until_near_expiry(self):
        now = [1000.0]
        cache_ = OAuthTokenCache(leeway_seconds=60, clock=lambda: now[0])
        fetcher = MagicMock(side_effect=[("first", 3600), ("second", 3600)])

        self.assertEqual(cache_.get_token("client", fetcher), "first")
        now[0] += 3000
        self.assertEqual(cache_.get_token("client", fetcher), "first")
        now[0] += 560
        self.assertEqual(cache_.get_token("client", fetcher), "second")
        self.assertEqual(fetcher.call_count, 2)

    def test_concurrent_callers_share_one_fetch(self):
        cache_ = OAuthTokenCache()
        calls = []
        start = threading.Event()

        def fetcher():
            calls.append(1)
            time.sleep(0.05)
            return "token", 3600

        results = []

        def worker():
            start.wait()
            results.append(cache_.get_token("client", fetcher))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        start.set()
        for thread in threads:
            thread.join()

        self.assertEqual(len(calls), 1)
        self.assertEqual(results, ["token"] * 8)

    def test_invalidate_forces_refresh(self):
        cache_ = OAuthTokenCache()
        fetcher = MagicMock(side_effect=[("first", 3600), ("second", 3600)])
        cache_.get_token("client", fetcher)
        cache_.invalidate("client")
        self.assertEqual(cache_.get_token("client", fetcher), "second")


@override_settings(SHIPBUBBLE_PACKAGE_CATEGORY_ID="", SHIPBUBBLE_QUOTE_TTL_MINUTES=0)
class ShipbubbleProviderTests(SimpleTestCase):
    def setUp(self):
        cache.clear()
        self.client = MagicMock(spec=ShipbubbleClient)
        self.client.get_package_categories.return_value = [
            {"category_id": 11, "category": "Electronics"},
            {"category_id": 22, "category": "Hot Food"},
        ]
        self.client.fetch_rates.return_value = {"request_token": "req-tok", "couriers": SHIPBUBBLE_COURIERS}
        self.provider = ShipbubbleProvider(client=self.client)
        self.manifest = build_package_manifest([{"name": "Jollof Rice", "quantity": 3, "unit_price": 2500}])

    def test_cheapest_courier_wins(self):
        offer = self.provider.get_quote(_contact("101"), _contact("202"), self.manifest)

        self.assertEqual(offer.fee, Decimal("1200"))
        self.assertEqual(offer.currency, "NGN")
        self.assertEqual(offer.courier_id, "gig")
        self.assertEqual(offer.service_code, "gig-express")
        self.assertEqual(offer.request_token, "req-tok")
        self.assertIsNone(offer.expires_at)
        self.assertEqual(len(offer.raw["couriers"]), 3)

        payload = self.client.fetch_rates.call_args[0][0]
        self.assertEqual(payload["sender_address_code"], 101)
        self.assertEqual(payload["reciever_address_code"], 202)
        self.assertEqual(payload["category_id"], "22")
        self.assertEqual(payload["package_dimension"], {"length": 30, "width": 30, "height": 15})

    def test_tie_keeps_first_offer(self):
        offers = [
            QuoteOffer(provider="SHIPBUBBLE", fee=Decimal("1200"), currency="NGN", courier_id="a"),
            QuoteOffer(provider="SHIPBUBBLE", fee=Decimal("1200"), currency="NGN", courier_id="b"),
        ]
        self.assertEqual(ShipbubbleProvider.choose_cheapest(offers).courier_id, "a")

    def test_no_couriers_raises(self):
        self.client.fetch_rates.return_value = {"request_token": "req-tok", "couriers": []}
        with self.assertRaises(NoCourierAvailable):
            self.provider.get_quote(_contact("101"), _contact("202"), self.manifest)

    def test_courier_without_a_price_is_skipped(self):
        self.client.fetch_rates.return_value = {
            "request_token": "req-tok",
            "couriers": [
                {"courier_id": "kwik", "courier_name": "Kwik", "total": 1500, "currency": "NGN"},
                {"courier_id": "broken", "courier_name": "Broken", "total": None, "currency": "NGN"},
                {"courier_id": "junk", "courier_name": "Junk", "total": "n/a", "currency": "NGN"},
            ],
        }
        offer = self.provider.get_quote(_contact("101"), _contact("202"), self.manifest)

        self.assertEqual(offer.courier_id, "kwik")
        self.assertEqual(offer.fee, Decimal("1500"))

    def test_only_unpriced_couriers_raises(self):
        self.client.fetch_rates.return_value = {
            "request_token": "req-tok",
            "couriers": [{"courier_id": "broken", "courier_name": "Broken", "currency": "NGN"}],
        }
        with self.assertRaises(NoCourierAvailable):
            self.provider.get_quote(_contact("101"), _contact("202"), self.manifest)

    def test_refused_cancellation_returns_false(self):
        self.client.cancel.side_effect = ProviderRequestError("Shipment already picked up")
        self.assertFalse(self.provider.cancel_shipment("SB1"))

        self.client.cancel.side_effect = None
        self.client.cancel.return_value = {}
        self.assertTrue(self.provider.cancel_shipment("SB1"))

    def test_unvalidated_addresses_are_refused(self):
        with self.assertRaises(AddressNotServiceable):
            self.provider.get_quote(_contact(""), _contact("202"), self.manifest)
        self.client.fetch_rates.assert_not_called()

    def test_package_category_is_cached(self):
        self.assertEqual(self.provider.resolve_category_id(), "22")
        self.assertEqual(self.provider.resolve_category_id(), "22")
        self.client.get_package_categories.assert_called_once()

    def test_rejected_address_is_not_serviceable(self):
        self.client.validate_address.side_effect = ProviderRequestError("Address could not be geocoded")
        with self.assertRaises(AddressNotServiceable):
            self.provider.validate_address(_contact())

    def test_status_vocabulary(self):
        self.assertEqual(self.provider.translate_status("completed"), "DELIVERED")
        self.assertEqual(self.provider.translate_status("Picked_Up"), "PICKED_UP")
        self.assertEqual(self.provider.translate_status("teleported"), UNRECOGNIZED)

    @override_settings(SHIPBUBBLE_WEBHOOK_SECRET="ship-secret")
    def test_webhook_signature(self):
        body = b'{"event": "shipment.status.changed"}'
        good = hmac.new(b"ship-secret", body, hashlib.sha512).hexdigest()

        self.assertTrue(self.provider.verify_webhook_signature(body, {"X-Ship-Signature": good}))
        self.assertTrue(self.provider.verify_webhook_signature(body, {"x-ship-signature": good.upper()}))
        self.assertFalse(self.provider.verify_webhook_signature(body, {"X-Ship-Signature": "0" * 128}))
        self.assertFalse(self.provider.verify_webhook_signature(body, {}))

    @override_settings(SHIPBUBBLE_WEBHOOK_SECRET="", DELIVERY_ALLOW_UNSIGNED_WEBHOOKS=False)
    def test_missing_secret_fails_closed(self):
        self.assertFalse(self.provider.verify_webhook_signature(b"{}", {}))

    @override_settings(SHIPBUBBLE_WEBHOOK_SECRET="", DELIVERY_ALLOW_UNSIGNED_WEBHOOKS=True)
    def test_unsigned_webhooks_can_be_allowed(self):
        self.assertTrue(self.provider.verify_webhook_signature(b"{}", {}))

    def test_parse_label_created_webhook(self):
        event = self.provider.parse_webhook({"event": "shipment.label.created", "order_id": "SB-1", "data": {}})
        self.assertEqual(event.tracking_number, "SB-1")
        self.assertEqual(event.raw_status, "confirmed")


class UberDirectProviderTests(SimpleTestCase):
    def setUp(self):
        self.client = MagicMock(spec=UberDirectClient)
        self.provider = UberDirectProvider(client=self.client)
        self.manifest = build_package_manifest([{"name": "Burger", "quantity": 2, "unit_price": "9.50"}], currency="USD")

    def test_time_windows(self):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=dt_timezone.utc)
        windows = build_time_windows(now)
        self.assertEqual(windows["pickup_ready_dt"], (now + timedelta(minutes=20)).isoformat())
        self.assertEqual(windows["pickup_deadline_dt"], (now + timedelta(minutes=50)).isoformat())
        self.assertEqual(windows["dropoff_ready_dt"], (now + timedelta(minutes=50)).isoformat())
        self.assertEqual(windows["dropoff_deadline_dt"], (now + timedelta(minutes=140)).isoformat())

    def test_quote_fee_is_converted_from_cents(self):
        self.client.create_quote.return_value = {
            "id": "dqt_123",
            "fee": 1250,
            "currency": "usd",
            "expires": "2026-03-01T12:15:00Z",
        }
        offer = self.provider.get_quote(_contact(country="US"), _contact(country="US"), self.manifest)

        self.assertEqual(offer.fee, Decimal("12.50"))
        self.assertEqual(offer.currency, "USD")
        self.assertEqual(offer.provider_quote_id, "dqt_123")
        self.assertEqual(offer.expires_at, datetime(2026, 3, 1, 12, 15, tzinfo=dt_timezone.utc))
        payload = self.client.create_quote.call_args[0][0]
        self.assertEqual(payload["manifest_total_value"], 1900)

    def test_declined_confirmation_raises(self):
        self.client.confirm_quote.return_value = {"confirmed": False}
        with self.assertRaises(ProviderRequestError):
            self.provider.confirm_quote("dqt_123")

    def test_status_vocabulary(self):
        self.assertEqual(self.provider.translate_status("accepted"), "PICKED_UP")
        self.assertEqual(self.provider.translate_status("dropoff"), "OUT_FOR_DELIVERY")
        self.assertEqual(self.provider.translate_status("canceled"), "CANCELLED")
        self.assertEqual(self.provider.translate_status("scheduled"), UNRECOGNIZED)

    def test_informational_events_carry_no_status(self):
        event = self.provider.parse_webhook({"kind": "courier.update", "delivery_id": "del_1", "data": {}})
        self.assertEqual(event.tracking_number, "del_1")
        self.assertEqual(event.raw_status, "")

        event = self.provider.parse_webhook({"kind": "event.delivery_status", "delivery_id": "del_1", "status": "pickup_complete"})
        self.assertEqual(event.raw_status, "pickup_complete")

    def test_courier_location_needs_both_coordinates(self):
        event = self.provider.parse_webhook(
            {"kind": "courier.update", "delivery_id": "del_1", "data": {"courier": {"location": {"lat": 40.7}}}}
        )
        self.assertEqual(event.location, "")

        self.client.get_delivery.return_value = {
            "id": "del_1",
            "status": "pickup",
            "courier": {"location": {"lat": 40.7, "lng": -73.9}},
        }
        self.assertEqual(self.provider.track_shipment("del_1").location, "40.7,-73.9")

    @override_settings(UBER_WEBHOOK_SIGNING_KEY="uber-key")
    def test_webhook_signature_accepts_either_header(self):
        body = b'{"kind": "event.delivery_status"}'
        good = hmac.new(b"uber-key", body, hashlib.sha256).hexdigest()
        self.assertTrue(self.provider.verify_webhook_signature(body, {"X-Postmates-Signature": good}))
        self.assertTrue(self.provider.verify_webhook_signature(body, {"X-Uber-Signature": good}))
        self.assertFalse(self.provider.verify_webhook_signature(body + b" ", {"X-Uber-Signature": good}))


class UberDirectClientTests(SimpleTestCase):
    def setUp(self):
        self.http = MagicMock(spec=ProviderHTTPClient)
        self.http.post.return_value = {"access_token": "tok-1", "expires_in": 3600}
        self.http.request.return_value = {"id": "dqt_1"}
        self.client = UberDirectClient(
            client_id="cid",
            client_secret="secret",
            customer_id="cust",
            base_url="https://api.example.test/v1",
            auth_url="https://auth.example.test/token",
            token_cache=OAuthTokenCache(),
            http=self.http,
        )

    def test_token_is_fetched_once(self):
        self.client.create_quote({})
        self.client.get_delivery("del_1")

        self.http.post.assert_called_once()
        self.assertEqual(self.http.post.call_args[1]["data"]["scope"], "eats.deliveries")
        headers = self.http.request.call_args[1]["headers"]
        self.assertEqual(headers["Authorization"], "Bearer tok-1")

    def test_auth_failure_drops_cached_token(self):
        self.http.request.side_effect = [ProviderAuthFailure("expired"), {"id": "dqt_1"}]
        with self.assertRaises(ProviderAuthFailure):
            self.client.create_quote({})
        self.client.create_quote({})
        self.assertEqual(self.http.post.call_count, 2)


class ProviderRegistryTests(SimpleTestCase):
    def test_lookup_is_case_insensitive(self):
        self.assertIsInstance(get_provider("shipbubble"), ShipbubbleProvider)
        self.assertIsInstance(get_provider("UBER"), UberDirectProvider)
