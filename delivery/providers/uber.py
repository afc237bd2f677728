from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from django.utils import timezone

from delivery.capabilities import ProviderId
from delivery.exceptions import AddressNotServiceable, ProviderAuthFailure, ProviderRequestError
from delivery.packaging import PackageManifest

from .base import (
    BaseDeliveryProvider,
    ContactAddress,
    QuoteOffer,
    ShipmentResult,
    TrackingResult,
    ValidatedAddress,
    WebhookEvent,
    header_value,
    parse_timestamp,
)
from .http import ProviderHTTPClient
from .token_cache import OAuthTokenCache

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("X-Uber-Signature", "X-Postmates-Signature")
OAUTH_SCOPE = "eats.deliveries"
DEFAULT_QUOTE_TTL = timedelta(minutes=15)


def build_time_windows(now: Optional[datetime] = None) -> Dict[str, str]:
    """Pickup ready in 20 min with a 30 min window; dropoff window of 90 min follows it."""
    now = now or timezone.now()
    pickup_ready = now + timedelta(minutes=20)
    pickup_deadline = pickup_ready + timedelta(minutes=30)
    dropoff_ready = pickup_deadline
    dropoff_deadline = dropoff_ready + timedelta(minutes=90)
    return {
        "pickup_ready_dt": pickup_ready.isoformat(),
        "pickup_deadline_dt": pickup_deadline.isoformat(),
        "dropoff_ready_dt": dropoff_ready.isoformat(),
        "dropoff_deadline_dt": dropoff_deadline.isoformat(),
    }


def format_address(address: ContactAddress) -> str:
    street = [line for line in (address.address_line_1, address.address_line_2) if line]
    return json.dumps(
        {
            "street_address": street,
            "city": address.city,
            "state": address.state,
            "zip_code": address.postal_code or "",
            "country": address.country,
        }
    )


def format_location(location: Any) -> str:
    if not isinstance(location, dict):
        return ""
    lat, lng = location.get("lat"), location.get("lng")
    if lat is None or lng is None:
        return ""
    return f"{lat},{lng}"


def _cents(value: Decimal) -> int:
    return int((Decimal(value) * 100).quantize(Decimal("1")))


class UberDirectClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        customer_id: str,
        base_url: str,
        auth_url: str,
        token_cache: OAuthTokenCache,
        http: Optional[ProviderHTTPClient] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.customer_id = customer_id
        self.auth_url = auth_url
        self.token_cache = token_cache
        self.http = http or ProviderHTTPClient("uber", base_url)

    def _fetch_token(self):
        try:
            body = self.http.post(
                self.auth_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": OAUTH_SCOPE,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except ProviderRequestError as exc:
            raise ProviderAuthFailure(exc.message, provider="uber") from exc
        token = body.get("access_token")
        if not token:
            raise ProviderAuthFailure("Uber token response has no access_token", provider="uber")
        return token, int(body.get("expires_in") or 0)

    def _headers(self) -> Dict[str, str]:
        token = self.token_cache.get_token(self.client_id, self._fetch_token)
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            return self.http.request(method, path, headers=self._headers(), **kwargs)
        except ProviderAuthFailure:
            # Token revoked or rotated upstream; next call fetches a fresh one.
            self.token_cache.invalidate(self.client_id)
            raise

    def create_quote(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("POST", f"customers/{self.customer_id}/delivery_quotes", json=payload)

    def confirm_quote(self, quote_id: str) -> Dict[str, Any]:
        return self._call("POST", f"deliveries/quotes/{quote_id}/confirm")

    def create_delivery(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("POST", f"customers/{self.customer_id}/deliveries", json=payload)

    def get_delivery(self, delivery_id: str) -> Dict[str, Any]:
        return self._call("GET", f"customers/{self.customer_id}/deliveries/{delivery_id}")

    def cancel_delivery(self, delivery_id: str) -> Dict[str, Any]:
        return self._call("POST", f"customers/{self.customer_id}/deliveries/{delivery_id}/cancel")


class UberDirectProvider(BaseDeliveryProvider):
    """On-demand provider: one priced quote per request, confirmed before booking."""

    provider_id = ProviderId.UBER
    STATUS_MAP = {
        "pending": "PENDING",
        "pickup": "PENDING",
        "accepted": "PICKED_UP",
        "pickup_complete": "PICKED_UP",
        "picked_up": "PICKED_UP",
        "dropoff": "OUT_FOR_DELIVERY",
        "in_transit": "IN_TRANSIT",
        "out_for_delivery": "OUT_FOR_DELIVERY",
        "delivered": "DELIVERED",
        "canceled": "CANCELLED",
        "cancelled": "CANCELLED",
        "failed": "FAILED",
        "returned": "RETURNED",
    }
    STATUS_EVENTS = ("event.delivery_status", "delivery.status")
    EVENT_DESCRIPTIONS = {
        "courier.update": "Courier location updated",
        "refund.request": "Refund requested",
        "shopping.progress": "Shopping in progress",
    }

    def __init__(self, client: Optional[UberDirectClient] = None, token_cache: Optional[OAuthTokenCache] = None):
        self._client = client
        self._token_cache = token_cache

    @property
    def client(self) -> UberDirectClient:
        if self._client is None:
            from . import shared_token_cache

            self._client = UberDirectClient(
                client_id=self._get_setting("UBER_CLIENT_ID"),
                client_secret=self._get_setting("UBER_CLIENT_SECRET"),
                customer_id=self._get_setting("UBER_CUSTOMER_ID"),
                base_url=self._get_setting("UBER_BASE_URL"),
                auth_url=self._get_setting("UBER_AUTH_URL"),
                token_cache=self._token_cache or shared_token_cache,
            )
        return self._client

    def validate_address(self, address: ContactAddress) -> ValidatedAddress:
        # Uber geocodes on its side; only shape is checked here.
        if not address.address_line_1 or not address.city:
            raise AddressNotServiceable("Street address and city are required", provider=self.provider_id)
        return ValidatedAddress(
            address_code="",
            formatted_address=address.full_address(),
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
            country=address.country,
            latitude=address.latitude,
            longitude=address.longitude,
        )

    def _base_payload(self, origin: ContactAddress, destination: ContactAddress, manifest: PackageManifest):
        payload = {
            "pickup_address": format_address(origin),
            "dropoff_address": format_address(destination),
            "pickup_phone_number": origin.phone,
            "dropoff_phone_number": destination.phone,
            "manifest_total_value": _cents(manifest.declared_value),
        }
        payload.update(build_time_windows())
        if origin.latitude is not None and origin.longitude is not None:
            payload["pickup_latitude"] = origin.latitude
            payload["pickup_longitude"] = origin.longitude
        if destination.latitude is not None and destination.longitude is not None:
            payload["dropoff_latitude"] = destination.latitude
            payload["dropoff_longitude"] = destination.longitude
        return payload

    def get_quote(self, origin: ContactAddress, destination: ContactAddress, manifest: PackageManifest) -> QuoteOffer:
        data = self.client.create_quote(self._base_payload(origin, destination, manifest))
        quote_id = data.get("id") or data.get("quote_id")
        if not quote_id:
            raise ProviderRequestError("Uber quote response has no id", provider=self.provider_id)
        expires_at = parse_timestamp(data.get("expires") or data.get("expires_at"))
        return QuoteOffer(
            provider=self.provider_id,
            fee=Decimal(str(data.get("fee") or 0)) / 100,
            currency=str(data.get("currency") or data.get("currency_type") or "USD").upper(),
            provider_quote_id=str(quote_id),
            courier_name="Uber Direct",
            service_type="on_demand",
            estimated_delivery_at=parse_timestamp(data.get("dropoff_eta")),
            expires_at=expires_at or timezone.now() + DEFAULT_QUOTE_TTL,
            raw=data,
        )

    def confirm_quote(self, provider_quote_id: str) -> Dict[str, Any]:
        data = self.client.confirm_quote(provider_quote_id)
        if data and data.get("confirmed") is False:
            raise ProviderRequestError("Uber declined to confirm the quote", provider=self.provider_id)
        return data

    def _manifest_items(self, manifest: PackageManifest):
        items = manifest.items or ()
        if not items:
            return [{"name": "Food order", "quantity": 1, "size": "small", "price": _cents(manifest.declared_value)}]
        size = "small" if manifest.total_quantity <= 5 else "medium" if manifest.total_quantity <= 10 else "large"
        return [
            {"name": item.name, "quantity": item.quantity, "size": size, "price": _cents(item.unit_price)}
            for item in items
        ]

    def create_shipment(self, quote, order) -> ShipmentResult:
        origin = ContactAddress.from_dict(quote.origin_address)
        destination = ContactAddress.from_dict(quote.destination_address)
        manifest = PackageManifest.from_dict(quote.package_details)

        payload = self._base_payload(origin, destination, manifest)
        payload.update(
            {
                "quote_id": quote.provider_quote_id,
                "pickup_name": origin.name,
                "dropoff_name": destination.name,
                "manifest_items": self._manifest_items(manifest),
                "manifest_reference": order.order_number,
                "external_id": order.order_number,
            }
        )
        data = self.client.create_delivery(payload)
        delivery_id = str(data.get("id") or "")
        if not delivery_id:
            raise ProviderRequestError("Uber delivery response has no id", provider=self.provider_id)
        courier = data.get("courier") or {}
        return ShipmentResult(
            tracking_number=delivery_id,
            provider_shipment_id=delivery_id,
            label_url=data.get("tracking_url") or "",
            raw_status=data.get("status") or "pending",
            courier_name=courier.get("name") or "Uber Direct",
            estimated_delivery_at=parse_timestamp(data.get("dropoff_eta")),
            raw=data,
        )

    def track_shipment(self, tracking_number: str) -> TrackingResult:
        data = self.client.get_delivery(tracking_number)
        courier = data.get("courier") or {}
        return TrackingResult(
            tracking_number=str(data.get("id") or tracking_number),
            raw_status=data.get("status") or "",
            location=format_location(courier.get("location")),
            estimated_delivery_at=parse_timestamp(data.get("dropoff_eta")),
            raw=data,
        )

    def cancel_shipment(self, tracking_number: str) -> bool:
        try:
            data = self.client.cancel_delivery(tracking_number)
        except ProviderRequestError:
            logger.exception("Uber rejected cancellation of %s", tracking_number)
            return False
        status = str(data.get("status") or "canceled").lower()
        return status in {"canceled", "cancelled"}

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        signature = header_value(headers, *SIGNATURE_HEADERS)
        return self._verify_hmac(raw_body, signature, "UBER_WEBHOOK_SIGNING_KEY", hashlib.sha256)

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        event_type = str(payload.get("kind") or payload.get("event_type") or payload.get("type") or "")
        tracking = str(payload.get("delivery_id") or data.get("id") or "")

        if event_type in self.STATUS_EVENTS:
            raw_status = str(payload.get("status") or data.get("status") or "")
            description = f"Delivery status changed to {raw_status}" if raw_status else ""
        else:
            # Informational events carry no lifecycle change.
            raw_status = ""
            description = self.EVENT_DESCRIPTIONS.get(event_type, "")

        courier = data.get("courier") or {}
        return WebhookEvent(
            provider=self.provider_id,
            event_type=event_type,
            tracking_number=tracking,
            raw_status=raw_status,
            description=description,
            location=format_location(courier.get("location")),
            occurred_at=parse_timestamp(payload.get("created") or data.get("updated")),
            raw=payload,
        )
