from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from django.db import transaction
from django.utils import timezone

from delivery.exceptions import UnrecognizedProviderStatus
from delivery.models import Shipment, TrackingEvent, WebhookLog
from delivery.providers import UNRECOGNIZED, get_provider
from delivery.providers.base import WebhookEvent

from .order_bridge import OrderStatusBridge

logger = logging.getLogger(__name__)

PROGRESS_RANK = {
    Shipment.Status.PENDING: 0,
    Shipment.Status.PICKED_UP: 1,
    Shipment.Status.IN_TRANSIT: 2,
    Shipment.Status.OUT_FOR_DELIVERY: 3,
    Shipment.Status.DELIVERED: 4,
}
# Exit states reachable from anywhere still in progress.
EXIT_STATUSES = {Shipment.Status.FAILED, Shipment.Status.CANCELLED, Shipment.Status.RETURNED}


def is_forward_transition(current: str, new: str) -> bool:
    if current == new or current in Shipment.TERMINAL_STATUSES:
        return False
    if current == Shipment.Status.FAILED:
        return new == Shipment.Status.RETURNED
    if new in EXIT_STATUSES:
        return True
    return PROGRESS_RANK.get(new, -1) > PROGRESS_RANK.get(current, -1)


@dataclass(frozen=True)
class ReconcileOutcome:
    applied: bool
    status: str
    reason: str = ""


class TrackingReconciler:
    """Single path for every shipment status change, webhook or poll."""

    def process_webhook(self, provider_name: str, raw_body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        provider = get_provider(provider_name)

        try:
            payload = json.loads(raw_body or b"{}")
        except (TypeError, ValueError):
            payload = None
        if not isinstance(payload, dict):
            WebhookLog.objects.create(
                provider=provider.provider_id,
                event_type="INVALID_JSON",
                reference="",
                payload={"raw": (raw_body or b"").decode("utf-8", errors="replace")[:2000]},
                error="Body is not a JSON object",
            )
            logger.warning("%s webhook rejected: body is not a JSON object", provider.provider_id)
            return {"received": True, "processed": False}

        signature_valid = provider.verify_webhook_signature(raw_body, headers)
        log = WebhookLog.objects.create(
            provider=provider.provider_id,
            event_type=str(payload.get("event") or payload.get("kind") or payload.get("type") or "")[:100],
            reference="",
            payload=payload,
            signature_valid=signature_valid,
        )
        if not signature_valid:
            log.error = "Invalid signature"
            log.save(update_fields=["error"])
            logger.warning("%s webhook rejected: invalid signature log=%s", provider.provider_id, log.id)
            return {"received": True, "processed": False}

        try:
            event = provider.parse_webhook(payload)
            log.reference = event.tracking_number[:150]
            log.event_type = event.event_type[:100] or log.event_type
            outcome = self.handle_event(provider, event)
            log.processed = outcome.applied
            log.error = "" if outcome.applied else outcome.reason
        except Exception as exc:
            logger.exception("Failed to process %s webhook log=%s", provider.provider_id, log.id)
            log.processed = False
            log.error = str(exc)
        log.save(update_fields=["reference", "event_type", "processed", "error"])
        return {"received": True, "processed": log.processed}

    def handle_event(self, provider, event: WebhookEvent) -> ReconcileOutcome:
        if not event.tracking_number:
            return ReconcileOutcome(False, "", "missing tracking number")
        if not event.raw_status:
            return ReconcileOutcome(False, "", "informational event")

        canonical = provider.translate_status(event.raw_status)
        if canonical == UNRECOGNIZED:
            logger.warning(
                "%s: %s=%r tracking=%s",
                UnrecognizedProviderStatus.default_message,
                provider.provider_id,
                event.raw_status,
                event.tracking_number,
            )
            return ReconcileOutcome(False, UNRECOGNIZED, "unrecognized status")

        shipment = Shipment.objects.filter(tracking_number=event.tracking_number).first()
        if shipment is None:
            logger.warning("%s webhook for unknown shipment tracking=%s", provider.provider_id, event.tracking_number)
            return ReconcileOutcome(False, canonical, "unknown shipment")

        return self.apply(
            shipment,
            canonical,
            provider_status=event.raw_status,
            event_type=event.event_type,
            description=event.description,
            location=event.location,
            occurred_at=event.occurred_at,
            raw=event.raw,
        )

    @transaction.atomic
    def apply(
        self,
        shipment: Shipment,
        new_status: str,
        *,
        provider_status: str = "",
        event_type: str = "",
        description: str = "",
        location: str = "",
        occurred_at: Optional[Any] = None,
        raw: Optional[Dict[str, Any]] = None,
    ) -> ReconcileOutcome:
        shipment = Shipment.objects.select_for_update().select_related("order").get(pk=shipment.pk)
        current = shipment.status
        if current == new_status:
            return ReconcileOutcome(False, current, "duplicate")
        if not is_forward_transition(current, new_status):
            logger.info(
                "Ignoring stale event for shipment=%s: %s -> %s",
                shipment.tracking_number,
                current,
                new_status,
            )
            return ReconcileOutcome(False, current, "stale")

        shipment.status = new_status
        shipment.last_event = (event_type or provider_status)[:100]
        shipment.last_payload = raw or {}
        update_fields = ["status", "last_event", "last_payload", "updated_at"]
        if new_status == Shipment.Status.DELIVERED:
            shipment.actual_delivery_at = occurred_at or timezone.now()
            update_fields.append("actual_delivery_at")
        elif new_status == Shipment.Status.FAILED:
            shipment.failure_reason = description or provider_status
            update_fields.append("failure_reason")
        shipment.save(update_fields=update_fields)

        TrackingEvent.objects.create(
            shipment=shipment,
            status=new_status,
            provider_status=provider_status[:100],
            event_type=event_type[:100],
            description=description[:255],
            location=location[:255],
            occurred_at=occurred_at or timezone.now(),
            raw_payload=raw or {},
        )
        logger.info("Shipment=%s moved %s -> %s", shipment.tracking_number, current, new_status)

        OrderStatusBridge.on_shipment_status(shipment)
        return ReconcileOutcome(True, new_status)
