from __future__ import annotations

import hashlib
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from django.core.cache import cache
from django.utils import timezone

from delivery.capabilities import ProviderId
from delivery.exceptions import (
    AddressNotServiceable,
    NoCourierAvailable,
    ProviderRequestError,
)
from delivery.packaging import PackageManifest, WEIGHT_PER_ITEM_KG

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

logger = logging.getLogger(__name__)

CATEGORY_CACHE_KEY = "delivery:shipbubble:package_category"
CATEGORY_CACHE_TTL = 60 * 60 * 24
SIGNATURE_HEADER = "X-Ship-Signature"


def _decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")


def _price(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return None
    return price if price.is_finite() and price >= 0 else None


class ShipbubbleClient:
    """Raw Shipbubble v1 endpoints. Every call returns the ``data`` member of the envelope."""

    def __init__(self, api_key: str, base_url: str, http: Optional[ProviderHTTPClient] = None):
        self.api_key = api_key
        self.http = http or ProviderHTTPClient("shipbubble", base_url)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _unwrap(body: Dict[str, Any]) -> Any:
        if body.get("status") == "success" or body.get("success") is True:
            return body.get("data")
        raise ProviderRequestError(body.get("message") or "Shipbubble request failed", provider="shipbubble")

    def validate_address(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._unwrap(self.http.post("shipping/address/validate", json=payload, headers=self._headers()))

    def get_package_categories(self) -> List[Dict[str, Any]]:
        return self._unwrap(self.http.get("shipping/labels/categories", headers=self._headers())) or []

    def fetch_rates(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._unwrap(self.http.post("shipping/fetch_rates", json=payload, headers=self._headers())) or {}

    def create_label(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._unwrap(self.http.post("shipping/labels", json=payload, headers=self._headers())) or {}

    def track(self, tracking_number: str) -> Dict[str, Any]:
        return self._unwrap(self.http.get(f"tracking/{tracking_number}", headers=self._headers())) or {}

    def cancel(self, tracking_number: str) -> Dict[str, Any]:
        body = self.http.post(f"shipments/{tracking_number}/cancel", headers=self._headers())
        return self._unwrap(body) or {}


class ShipbubbleProvider(BaseDeliveryProvider):
    """Scheduled, rate-shopping provider for domestic (NG) deliveries."""

    provider_id = ProviderId.SHIPBUBBLE
    STATUS_MAP = {
        "pending": "PENDING",
        "confirmed": "PENDING",
        "processing": "PENDING",
        "picked_up": "PICKED_UP",
        "in_transit": "IN_TRANSIT",
        "out_for_delivery": "OUT_FOR_DELIVERY",
        "delivered": "DELIVERED",
        "completed": "DELIVERED",
        "failed": "FAILED",
        "cancelled": "CANCELLED",
        "returned": "RETURNED",
    }
    EVENT_DESCRIPTIONS = {
        "shipment.label.created": "Shipment label created and confirmed",
        "shipment.status.changed": "Shipment status changed",
        "shipment.cancelled": "Shipment cancelled",
        "shipment.cod.remitted": "Cash on delivery remitted",
    }

    def __init__(self, client: Optional[ShipbubbleClient] = None):
        self._client = client

    @property
    def client(self) -> ShipbubbleClient:
        if self._client is None:
            self._client = ShipbubbleClient(
                api_key=self._get_setting("SHIPBUBBLE_API_KEY"),
                base_url=self._get_setting("SHIPBUBBLE_BASE_URL"),
            )
        return self._client

    # -----------------------------
    # Address validation
    def validate_address(self, address: ContactAddress) -> ValidatedAddress:
        payload: Dict[str, Any] = {
            "name": address.name,
            "email": address.email,
            "phone": address.phone,
            "address": address.full_address(),
        }
        if address.latitude is not None and address.longitude is not None:
            payload["latitude"] = address.latitude
            payload["longitude"] = address.longitude

        try:
            data = self.client.validate_address(payload) or {}
        except ProviderRequestError as exc:
            raise AddressNotServiceable(exc.message, provider=self.provider_id) from exc

        code = data.get("address_code")
        if code in (None, ""):
            raise AddressNotServiceable("Shipbubble did not return an address code", provider=self.provider_id)
        return ValidatedAddress(
            address_code=str(code),
            formatted_address=data.get("formatted_address", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            postal_code=data.get("postal_code", ""),
            country=data.get("country_code", "") or data.get("country", ""),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            raw=data,
        )

    # -----------------------------
    # Rate shopping
    def resolve_category_id(self) -> str:
        configured = self._get_setting("SHIPBUBBLE_PACKAGE_CATEGORY_ID", required=False)
        if configured:
            return str(configured)

        cached = cache.get(CATEGORY_CACHE_KEY)
        if cached:
            return cached

        categories = self.client.get_package_categories()
        if not categories:
            raise ProviderRequestError("Shipbubble returned no package categories", provider=self.provider_id)
        chosen = next(
            (c for c in categories if "food" in str(c.get("category", "")).lower()),
            categories[0],
        )
        category_id = str(chosen.get("category_id"))
        cache.set(CATEGORY_CACHE_KEY, category_id, CATEGORY_CACHE_TTL)
        return category_id

    @staticmethod
    def _package_items(manifest: PackageManifest) -> List[Dict[str, Any]]:
        if not manifest.items:
            return [
                {
                    "name": "Food order",
                    "description": "Food delivery order",
                    "unit_weight": str(manifest.weight_kg),
                    "unit_amount": str(manifest.declared_value),
                    "quantity": "1",
                }
            ]
        return [
            {
                "name": item.name,
                "description": item.description or item.name,
                "unit_weight": str(WEIGHT_PER_ITEM_KG),
                "unit_amount": str(item.unit_price),
                "quantity": str(item.quantity),
            }
            for item in manifest.items
        ]

    def fetch_rates(
        self, origin: ContactAddress, destination: ContactAddress, manifest: PackageManifest
    ) -> Tuple[List[QuoteOffer], str, Dict[str, Any]]:
        if not origin.address_code or not destination.address_code:
            raise AddressNotServiceable("Both addresses must be validated before rate shopping", provider=self.provider_id)

        payload = {
            "sender_address_code": int(origin.address_code) if origin.address_code.isdigit() else origin.address_code,
            "reciever_address_code": (
                int(destination.address_code) if destination.address_code.isdigit() else destination.address_code
            ),
            "pickup_date": timezone.localdate().isoformat(),
            "category_id": self.resolve_category_id(),
            "package_items": self._package_items(manifest),
            "package_dimension": {
                "length": manifest.length_cm,
                "width": manifest.width_cm,
                "height": manifest.height_cm,
            },
        }
        data = self.client.fetch_rates(payload)
        request_token = str(data.get("request_token") or "")
        expires_at = self._quote_expiry()

        offers = []
        for courier in data.get("couriers") or []:
            total = courier.get("total")
            fee = _price(total if total is not None else courier.get("rate_card_amount"))
            if fee is None:
                logger.warning(
                    "Skipping Shipbubble courier %s with unusable total %r",
                    courier.get("courier_name") or courier.get("courier_id"),
                    total,
                )
                continue
            insurance = courier.get("insurance") or {}
            offers.append(
                QuoteOffer(
                    provider=self.provider_id,
                    fee=fee,
                    currency=courier.get("currency") or courier.get("rate_card_currency") or manifest.currency,
                    request_token=request_token,
                    courier_id=str(courier.get("courier_id", "")),
                    courier_name=courier.get("courier_name", ""),
                    service_code=str(courier.get("service_code", "")),
                    service_type=courier.get("service_type", ""),
                    insurance_fee=_decimal(insurance["fee"]) if insurance.get("fee") is not None else None,
                    estimated_delivery_at=parse_timestamp(courier.get("delivery_eta_time")),
                    expires_at=expires_at,
                    raw=courier,
                )
            )
        return offers, request_token, data

    @staticmethod
    def choose_cheapest(offers: List[QuoteOffer]) -> QuoteOffer:
        """Strictly lowest fee; on a tie the offer listed first wins."""
        if not offers:
            raise NoCourierAvailable()
        cheapest = offers[0]
        for offer in offers[1:]:
            if offer.fee < cheapest.fee:
                cheapest = offer
        return cheapest

    def _quote_expiry(self):
        ttl = int(self._get_setting("SHIPBUBBLE_QUOTE_TTL_MINUTES", required=False) or 0)
        if ttl <= 0:
            return None
        return timezone.now() + timedelta(minutes=ttl)

    def get_quote(self, origin: ContactAddress, destination: ContactAddress, manifest: PackageManifest) -> QuoteOffer:
        offers, request_token, data = self.fetch_rates(origin, destination, manifest)
        cheapest = self.choose_cheapest(offers)
        logger.info(
            "Shipbubble returned %s offers, cheapest %s %s via %s",
            len(offers),
            cheapest.fee,
            cheapest.currency,
            cheapest.courier_name,
        )
        return QuoteOffer(
            provider=cheapest.provider,
            fee=cheapest.fee,
            currency=cheapest.currency,
            request_token=request_token,
            courier_id=cheapest.courier_id,
            courier_name=cheapest.courier_name,
            service_code=cheapest.service_code,
            service_type=cheapest.service_type,
            insurance_fee=cheapest.insurance_fee,
            estimated_delivery_at=cheapest.estimated_delivery_at,
            expires_at=cheapest.expires_at,
            raw={"selected": cheapest.raw, "couriers": data.get("couriers") or []},
        )

    def confirm_quote(self, provider_quote_id: str) -> Dict[str, Any]:
        # Rate-shopped quotes are booked straight from the request token.
        return {}

    # -----------------------------
    # Shipments
    def create_shipment(self, quote, order) -> ShipmentResult:
        payload = {
            "request_token": quote.provider_request_token,
            "service_code": quote.service_code,
            "courier_id": quote.courier_id,
        }
        data = self.client.create_label(payload)
        tracking = str(data.get("order_id") or "")
        if not tracking:
            raise ProviderRequestError("Shipbubble label response has no order_id", provider=self.provider_id)
        courier = data.get("courier") or {}
        return ShipmentResult(
            tracking_number=tracking,
            provider_shipment_id=tracking,
            label_url=data.get("tracking_url") or "",
            raw_status=data.get("status") or "pending",
            courier_name=courier.get("name") or quote.courier_name,
            raw=data,
        )

    def track_shipment(self, tracking_number: str) -> TrackingResult:
        data = self.client.track(tracking_number)
        return TrackingResult(
            tracking_number=str(data.get("tracking_number") or data.get("order_id") or tracking_number),
            raw_status=data.get("status") or "",
            description=data.get("status_description") or "",
            location=data.get("current_location") or "",
            estimated_delivery_at=parse_timestamp(data.get("estimated_delivery")),
            raw=data,
        )

    def cancel_shipment(self, tracking_number: str) -> bool:
        try:
            self.client.cancel(tracking_number)
        except ProviderRequestError:
            logger.exception("Shipbubble rejected cancellation of %s", tracking_number)
            return False
        return True

    # -----------------------------
    # Webhooks
    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        signature = header_value(headers, SIGNATURE_HEADER)
        return self._verify_hmac(raw_body, signature, "SHIPBUBBLE_WEBHOOK_SECRET", hashlib.sha512)

    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        event_type = str(payload.get("event") or payload.get("event_type") or "")
        tracking = str(payload.get("order_id") or data.get("order_id") or "")
        raw_status = payload.get("status") or data.get("status") or data.get("shipment_status") or ""

        if event_type == "shipment.label.created":
            raw_status = raw_status or "confirmed"
        elif event_type == "shipment.cancelled":
            raw_status = "cancelled"
        elif event_type == "shipment.cod.remitted":
            raw_status = raw_status or "completed"

        description = data.get("status_description") or self.EVENT_DESCRIPTIONS.get(event_type, "")
        return WebhookEvent(
            provider=self.provider_id,
            event_type=event_type,
            tracking_number=tracking,
            raw_status=str(raw_status),
            description=description,
            location=str(data.get("current_location") or data.get("location") or ""),
            occurred_at=parse_timestamp(payload.get("timestamp") or data.get("updated_at")),
            raw=payload,
        )
