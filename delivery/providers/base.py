from __future__ import annotations

import hmac
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from django.conf import settings
from django.utils.dateparse import parse_datetime

from delivery.capabilities import CAPABILITIES, ProviderCapabilities
from delivery.exceptions import ProviderConfigurationError
from delivery.packaging import PackageManifest

logger = logging.getLogger(__name__)

# Raw provider status outside the translation table.
UNRECOGNIZED = "UNRECOGNIZED"


@dataclass(frozen=True)
class ContactAddress:
    """Who and where, as handed to a provider. Stored verbatim as a quote snapshot."""

    name: str
    phone: str
    email: str
    address_line_1: str
    city: str
    country: str
    address_line_2: str = ""
    state: str = ""
    postal_code: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address_id: str = ""
    address_code: str = ""

    def full_address(self) -> str:
        parts = [
            self.address_line_1,
            self.address_line_2,
            self.city,
            self.state,
            self.postal_code,
            self.country,
        ]
        return ", ".join(p.strip() for p in parts if p and p.strip())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ContactAddress":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_address(cls, address, name: str = "", phone: str = "", email: str = "") -> "ContactAddress":
        return cls(
            name=name or address.contact_name,
            phone=phone or address.contact_phone,
            email=email or address.contact_email,
            address_line_1=address.address_line_1,
            address_line_2=address.address_line_2,
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
            country=(address.country or "").upper(),
            latitude=float(address.latitude) if address.latitude is not None else None,
            longitude=float(address.longitude) if address.longitude is not None else None,
            address_id=str(address.id),
        )


@dataclass(frozen=True)
class ValidatedAddress:
    address_code: str
    formatted_address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def components(self) -> Dict[str, Any]:
        return {
            "formatted_address": self.formatted_address,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


@dataclass(frozen=True)
class QuoteOffer:
    provider: str
    fee: Decimal
    currency: str
    provider_quote_id: str = ""
    request_token: str = ""
    courier_id: str = ""
    courier_name: str = ""
    service_code: str = ""
    service_type: str = ""
    insurance_fee: Optional[Decimal] = None
    estimated_delivery_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ShipmentResult:
    tracking_number: str
    provider_shipment_id: str = ""
    label_url: str = ""
    raw_status: str = ""
    courier_name: str = ""
    estimated_delivery_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TrackingResult:
    tracking_number: str
    raw_status: str
    description: str = ""
    location: str = ""
    estimated_delivery_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookEvent:
    provider: str
    event_type: str
    tracking_number: str
    raw_status: str
    description: str = ""
    location: str = ""
    occurred_at: Optional[datetime] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_datetime(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def header_value(headers: Mapping[str, str], *names: str) -> str:
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    for name in names:
        value = lowered.get(name.lower())
        if value:
            return str(value).strip()
    return ""


class BaseDeliveryProvider(ABC):
    """Common contract for every delivery provider.

    Both workflows implement every method; steps that do not apply to a
    workflow are explicit no-ops rather than missing.
    """

    provider_id: str = ""
    STATUS_MAP: Dict[str, str] = {}

    @property
    def capabilities(self) -> ProviderCapabilities:
        return CAPABILITIES[self.provider_id]

    # -----------------------------
    # Settings
    @staticmethod
    def _get_setting(key: str, required: bool = True) -> str:
        value = getattr(settings, key, None) or os.getenv(key)
        if required and not value:
            raise ProviderConfigurationError(
                f"Missing delivery configuration: {key}. Set it in Django settings or environment variables."
            )
        return value or ""

    @staticmethod
    def _get_bool_setting(key: str, default: bool = False) -> bool:
        value = getattr(settings, key, None)
        if value is None:
            raw_env = os.getenv(key)
            if raw_env is None:
                return default
            value = raw_env

        if isinstance(value, bool):
            return value

        return str(value).strip().lower() in {"1", "true", "yes", "on"}

    # -----------------------------
    # Status translation
    def translate_status(self, raw_status: Optional[str]) -> str:
        status = (raw_status or "").strip().lower()
        return self.STATUS_MAP.get(status, UNRECOGNIZED)

    # -----------------------------
    # Webhook signatures
    def _verify_hmac(self, raw_body: bytes, signature: str, secret_setting: str, digestmod) -> bool:
        secret = self._get_setting(secret_setting, required=False)
        if not secret:
            if self._get_bool_setting("DELIVERY_ALLOW_UNSIGNED_WEBHOOKS"):
                logger.warning("%s webhook accepted unsigned: %s is not configured", self.provider_id, secret_setting)
                return True
            logger.error("%s webhook rejected: %s is not configured", self.provider_id, secret_setting)
            return False
        if not signature:
            logger.warning("%s webhook rejected: signature header missing", self.provider_id)
            return False
        expected = hmac.new(secret.encode("utf-8"), raw_body or b"", digestmod).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    # -----------------------------
    # Provider operations
    @abstractmethod
    def validate_address(self, address: ContactAddress) -> ValidatedAddress:
        raise NotImplementedError

    @abstractmethod
    def get_quote(self, origin: ContactAddress, destination: ContactAddress, manifest: PackageManifest) -> QuoteOffer:
        raise NotImplementedError

    @abstractmethod
    def confirm_quote(self, provider_quote_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def create_shipment(self, quote, order) -> ShipmentResult:
        raise NotImplementedError

    @abstractmethod
    def track_shipment(self, tracking_number: str) -> TrackingResult:
        raise NotImplementedError

    @abstractmethod
    def cancel_shipment(self, tracking_number: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        raise NotImplementedError

    @abstractmethod
    def parse_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        raise NotImplementedError
