from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from django.db import IntegrityError, transaction

from order.services import OrderService

from delivery.exceptions import (
    OrderNotFound,
    ProviderError,
    QuoteAlreadyUsed,
    QuoteExpired,
    QuoteNotFound,
    QuoteOrderMismatch,
    ShipmentAlreadyExists,
    ShipmentNotCancellable,
    ShipmentNotFound,
)
from delivery.models import DeliveryQuote, Shipment, TrackingEvent
from delivery.providers import UNRECOGNIZED, get_provider

from .quotes import QuoteStore
from .tracking import TrackingReconciler

logger = logging.getLogger(__name__)


@dataclass
class ShipmentTrackingView:
    shipment: Shipment
    events: List[TrackingEvent] = field(default_factory=list)
    refreshed: bool = False


def _active_shipment_exists(order_id) -> bool:
    return Shipment.objects.filter(order_id=order_id).exclude(status=Shipment.Status.CANCELLED).exists()


def list_shipments(user, status=None, provider=None):
    qs = Shipment.objects.select_related("order").filter(order__user=user)
    if status:
        qs = qs.filter(status=status)
    if provider:
        qs = qs.filter(provider=provider)
    return qs.order_by("-created_at")


def _release_booking(provider, result) -> None:
    """Cancel a provider booking whose local Shipment was rolled back."""
    if result is None:
        return
    try:
        released = provider.cancel_shipment(result.tracking_number)
    except ProviderError:
        logger.exception("Could not cancel orphaned %s booking %s", provider.provider_id, result.tracking_number)
        return
    if released:
        logger.warning("Cancelled orphaned %s booking %s", provider.provider_id, result.tracking_number)
    else:
        logger.error("%s refused to cancel orphaned booking %s", provider.provider_id, result.tracking_number)


def get_shipment(tracking_number) -> Shipment:
    shipment = Shipment.objects.select_related("order").filter(tracking_number=tracking_number).first()
    if shipment is None:
        raise ShipmentNotFound()
    return shipment


def create_shipment(quote_id, order_id) -> Shipment:
    """Book the courier for a SELECTED quote and bind the result to the order.

    The Shipment row and the quote's SELECTED -> USED move commit together; if
    either fails nothing is persisted, and a booking already made with the
    provider is cancelled again.
    """
    quote = QuoteStore.get(quote_id)
    if quote.status in DeliveryQuote.OPEN_STATUSES and quote.is_expired():
        QuoteStore.expire(quote.id)
        raise QuoteExpired()
    if quote.status == DeliveryQuote.Status.EXPIRED:
        raise QuoteExpired()
    if quote.status != DeliveryQuote.Status.SELECTED:
        raise QuoteAlreadyUsed(f"Quote is {quote.status}, it must be SELECTED")

    order = OrderService.find_order(order_id)
    if order is None:
        raise OrderNotFound()
    if quote.customer_id is not None and quote.customer_id != order.user_id:
        raise QuoteNotFound()
    if quote.vendor_id is not None and quote.vendor_id != order.vendor_id:
        raise QuoteOrderMismatch()
    if _active_shipment_exists(order.id):
        raise ShipmentAlreadyExists()

    provider = get_provider(quote.provider)
    result = None
    try:
        with transaction.atomic():
            quote = DeliveryQuote.objects.select_for_update().get(pk=quote.pk)
            if quote.status != DeliveryQuote.Status.SELECTED:
                raise QuoteAlreadyUsed(f"Quote is {quote.status}, it must be SELECTED")

            result = provider.create_shipment(quote, order)
            shipment = Shipment.objects.create(
                order=order,
                provider=quote.provider,
                tracking_number=result.tracking_number,
                provider_shipment_id=result.provider_shipment_id,
                status=Shipment.Status.PENDING,
                cost=quote.fee,
                currency=quote.currency,
                courier_name=result.courier_name or quote.courier_name,
                service_type=quote.service_type,
                estimated_delivery_at=result.estimated_delivery_at or quote.estimated_delivery_at,
                label_url=result.label_url,
                last_event="shipment.created",
                last_payload=result.raw,
            )
            QuoteStore.mark_used(quote.id, shipment)
            TrackingEvent.objects.create(
                shipment=shipment,
                status=Shipment.Status.PENDING,
                provider_status=result.raw_status,
                event_type="shipment.created",
                description="Shipment booked",
                raw_payload=result.raw,
            )
    except IntegrityError:
        logger.warning("Duplicate shipment for order=%s quote=%s", order.id, quote.id)
        _release_booking(provider, result)
        raise ShipmentAlreadyExists()
    except Exception:
        _release_booking(provider, result)
        raise

    logger.info(
        "Created %s shipment tracking=%s for order=%s",
        shipment.provider,
        shipment.tracking_number,
        order.id,
    )
    return shipment


def track_shipment(tracking_number) -> ShipmentTrackingView:
    shipment = get_shipment(tracking_number)
    refreshed = False

    if not shipment.is_terminal:
        provider = get_provider(shipment.provider)
        try:
            result = provider.track_shipment(shipment.tracking_number)
        except ProviderError as exc:
            logger.warning("Tracking refresh failed for %s: %s", shipment.tracking_number, exc.message)
        else:
            canonical = provider.translate_status(result.raw_status)
            if canonical == UNRECOGNIZED:
                logger.warning(
                    "Unrecognized %s status %r while tracking %s",
                    shipment.provider,
                    result.raw_status,
                    shipment.tracking_number,
                )
            else:
                outcome = TrackingReconciler().apply(
                    shipment,
                    canonical,
                    provider_status=result.raw_status,
                    event_type="tracking.poll",
                    description=result.description,
                    location=result.location,
                    raw=result.raw,
                )
                refreshed = outcome.applied
            shipment = get_shipment(tracking_number)

    return ShipmentTrackingView(
        shipment=shipment,
        events=list(shipment.events.all()),
        refreshed=refreshed,
    )


def cancel_shipment(tracking_number) -> bool:
    shipment = get_shipment(tracking_number)
    if shipment.is_terminal or shipment.status == Shipment.Status.FAILED:
        raise ShipmentNotCancellable(f"Shipment is {shipment.status}")

    provider = get_provider(shipment.provider)
    if not provider.cancel_shipment(shipment.tracking_number):
        logger.warning("%s refused to cancel shipment %s", shipment.provider, shipment.tracking_number)
        return False

    TrackingReconciler().apply(
        shipment,
        Shipment.Status.CANCELLED,
        provider_status="cancelled",
        event_type="shipment.cancelled",
        description="Cancelled on request",
    )
    return True
