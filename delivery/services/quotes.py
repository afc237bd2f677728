from __future__ import annotations

import logging
from typing import Optional

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from account.services import AddressService
from order.services import CartService
from vendor.services import VendorService

from delivery.capabilities import get_capabilities, select_provider
from delivery.exceptions import (
    AddressNotServiceable,
    DeliveryError,
    InvalidQuoteTransition,
    QuoteAlreadyUsed,
    QuoteExpired,
    QuoteNotConfirmed,
    QuoteNotFound,
)
from delivery.models import DeliveryQuote
from delivery.packaging import PackageManifest, build_package_manifest
from delivery.providers import get_provider
from delivery.providers.base import ContactAddress, QuoteOffer

from .address import AddressGateway

logger = logging.getLogger(__name__)

OPEN_STATUSES = tuple(DeliveryQuote.OPEN_STATUSES)


class QuoteStore:
    """All quote state transitions.

    PENDING -> SELECTED -> USED is the only path to a shipment; EXPIRED and
    CANCELLED are reachable from either open state. Terminal quotes never change.
    """

    @staticmethod
    def create(
        offer: QuoteOffer,
        origin: ContactAddress,
        destination: ContactAddress,
        manifest: PackageManifest,
        customer=None,
        vendor=None,
        order=None,
    ) -> DeliveryQuote:
        return DeliveryQuote.objects.create(
            provider=offer.provider,
            status=DeliveryQuote.Status.PENDING,
            provider_quote_id=offer.provider_quote_id,
            provider_request_token=offer.request_token,
            fee=offer.fee,
            currency=offer.currency,
            insurance_fee=offer.insurance_fee,
            courier_id=offer.courier_id,
            courier_name=offer.courier_name,
            service_code=offer.service_code,
            service_type=offer.service_type,
            estimated_delivery_at=offer.estimated_delivery_at,
            expires_at=offer.expires_at,
            origin_address=origin.to_dict(),
            destination_address=destination.to_dict(),
            package_details=manifest.to_dict(),
            provider_payload=offer.raw,
            customer=customer,
            vendor=vendor,
            order=order,
        )

    @staticmethod
    def get(quote_id) -> DeliveryQuote:
        quote = DeliveryQuote.objects.filter(pk=quote_id).first()
        if quote is None:
            raise QuoteNotFound()
        return quote

    @staticmethod
    def mark_confirmed(quote_id) -> None:
        now = timezone.now()
        DeliveryQuote.objects.filter(pk=quote_id, status=DeliveryQuote.Status.PENDING).update(
            confirmed_at=now, updated_at=now
        )

    @staticmethod
    def select(quote_id, by: str = "", reason: str = "") -> DeliveryQuote:
        expired = False
        with transaction.atomic():
            quote = DeliveryQuote.objects.select_for_update().filter(pk=quote_id).first()
            if quote is None:
                raise QuoteNotFound()

            if quote.status in OPEN_STATUSES and quote.is_expired():
                quote.status = DeliveryQuote.Status.EXPIRED
                quote.save(update_fields=["status", "updated_at"])
                expired = True
            else:
                if quote.status == DeliveryQuote.Status.EXPIRED:
                    raise QuoteExpired()
                if quote.status != DeliveryQuote.Status.PENDING:
                    raise InvalidQuoteTransition(f"Quote is {quote.status}, only PENDING quotes can be selected")
                if get_capabilities(quote.provider).requires_confirmation and not quote.confirmed_at:
                    raise QuoteNotConfirmed()

                quote.status = DeliveryQuote.Status.SELECTED
                quote.selected_at = timezone.now()
                quote.selected_by = str(by or "")[:150]
                quote.selection_reason = str(reason or "")[:255]
                quote.save(update_fields=["status", "selected_at", "selected_by", "selection_reason", "updated_at"])

        # Raised outside the atomic block so the EXPIRED status sticks.
        if expired:
            raise QuoteExpired()
        return quote

    @staticmethod
    def mark_used(quote_id, shipment) -> DeliveryQuote:
        """SELECTED -> USED as a single conditional UPDATE; only one caller can win."""
        now = timezone.now()
        updated = (
            DeliveryQuote.objects.filter(pk=quote_id, status=DeliveryQuote.Status.SELECTED)
            .filter(Q(expires_at__isnull=True) | Q(expires_at__gt=now))
            .update(
                status=DeliveryQuote.Status.USED,
                used_at=now,
                shipment_id=shipment.pk,
                order_id=shipment.order_id,
                updated_at=now,
            )
        )
        if updated == 1:
            return DeliveryQuote.objects.get(pk=quote_id)

        current = DeliveryQuote.objects.filter(pk=quote_id).first()
        if current is None:
            raise QuoteNotFound()
        if current.status == DeliveryQuote.Status.EXPIRED or (
            current.status in OPEN_STATUSES and current.is_expired(now)
        ):
            raise QuoteExpired()
        raise QuoteAlreadyUsed(f"Quote is {current.status}")

    @staticmethod
    def _close(quote_id, status) -> bool:
        now = timezone.now()
        updated = DeliveryQuote.objects.filter(pk=quote_id, status__in=OPEN_STATUSES).update(
            status=status, updated_at=now
        )
        if not updated and not DeliveryQuote.objects.filter(pk=quote_id).exists():
            raise QuoteNotFound()
        return bool(updated)

    @classmethod
    def expire(cls, quote_id) -> bool:
        return cls._close(quote_id, DeliveryQuote.Status.EXPIRED)

    @classmethod
    def cancel(cls, quote_id) -> bool:
        return cls._close(quote_id, DeliveryQuote.Status.CANCELLED)


def expire_stale_quotes(now=None) -> int:
    now = now or timezone.now()
    count = DeliveryQuote.objects.filter(
        status__in=OPEN_STATUSES,
        expires_at__isnull=False,
        expires_at__lte=now,
    ).update(status=DeliveryQuote.Status.EXPIRED, updated_at=now)
    if count:
        logger.info("Expired %s stale delivery quotes", count)
    return count


class QuoteService:

    @staticmethod
    def request_quote(
        vendor_address,
        destination_address,
        package_manifest: PackageManifest,
        *,
        origin_contact: Optional[dict] = None,
        destination_contact: Optional[dict] = None,
        customer=None,
        vendor=None,
    ) -> DeliveryQuote:
        provider_id = select_provider(destination_address.country)
        provider = get_provider(provider_id)

        origin = AddressGateway.resolve(provider, vendor_address, **(origin_contact or {}))
        destination = AddressGateway.resolve(provider, destination_address, **(destination_contact or {}))

        offer = provider.get_quote(origin, destination, package_manifest)
        quote = QuoteStore.create(offer, origin, destination, package_manifest, customer=customer, vendor=vendor)
        logger.info(
            "Created %s delivery quote=%s fee=%s %s",
            provider_id,
            quote.id,
            quote.fee,
            quote.currency,
        )
        return quote

    @staticmethod
    def request_quote_for_cart(user, vendor_id, address_id) -> DeliveryQuote:
        vendor = VendorService.get_vendor(vendor_id)
        vendor_address = VendorService.get_vendor_address(vendor_id)
        if vendor_address is None:
            raise AddressNotServiceable("Vendor has no pickup address")
        address = AddressService.get_address_by_id(address_id, user=user)

        cart = CartService.get_cart_for_vendor(user, vendor_id)
        items = list(cart.items.all()) if cart else []
        if not items:
            raise DeliveryError("Cart is empty")

        manifest = build_package_manifest(items)
        return QuoteService.request_quote(
            vendor_address,
            address,
            manifest,
            origin_contact={
                "name": vendor.business_name,
                "phone": vendor.phone_number,
                "email": vendor.email,
            },
            destination_contact={
                "name": user.get_full_name() or user.get_username(),
                "email": user.email,
            },
            customer=user,
            vendor=vendor,
        )

    @staticmethod
    def accept_quote(quote_id, by: str = "", reason: str = "customer_selected") -> DeliveryQuote:
        quote = QuoteStore.get(quote_id)
        caps = get_capabilities(quote.provider)
        if (
            caps.requires_confirmation
            and quote.status == DeliveryQuote.Status.PENDING
            and not quote.confirmed_at
            and not quote.is_expired()
        ):
            get_provider(quote.provider).confirm_quote(quote.provider_quote_id)
            QuoteStore.mark_confirmed(quote.id)
        return QuoteStore.select(quote.id, by=by, reason=reason)
