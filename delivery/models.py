import uuid

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

from order.models import Order
from vendor.models import Vendor

from .capabilities import ProviderId


class Shipment(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PICKED_UP = "PICKED_UP", "Picked Up"
        IN_TRANSIT = "IN_TRANSIT", "In Transit"
        OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY", "Out for Delivery"
        DELIVERED = "DELIVERED", "Delivered"
        FAILED = "FAILED", "Failed"
        CANCELLED = "CANCELLED", "Cancelled"
        RETURNED = "RETURNED", "Returned"

    TERMINAL_STATUSES = frozenset({Status.DELIVERED, Status.CANCELLED, Status.RETURNED})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, related_name="shipments", on_delete=models.CASCADE)
    provider = models.CharField(max_length=20, choices=ProviderId.choices)

    tracking_number = models.CharField(max_length=150, unique=True)
    provider_shipment_id = models.CharField(max_length=150, blank=True)
    status = models.CharField(max_length=30, choices=Status.choices, default=Status.PENDING)

    cost = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    currency = models.CharField(max_length=3)
    courier_name = models.CharField(max_length=150, blank=True)
    service_type = models.CharField(max_length=50, blank=True)

    estimated_delivery_at = models.DateTimeField(null=True, blank=True)
    actual_delivery_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True)
    label_url = models.CharField(max_length=500, blank=True)

    last_event = models.CharField(max_length=100, blank=True)
    last_payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=~Q(status="CANCELLED"),
                name="delivery_one_active_shipment",
            ),
        ]
        indexes = [
            models.Index(fields=["status"], name="delivery_ship_status_idx"),
            models.Index(fields=["provider", "status"], name="delivery_ship_prov_status_idx"),
        ]

    def __str__(self):
        return f"{self.tracking_number} - {self.status}"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class DeliveryQuote(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        SELECTED = "SELECTED", "Selected"
        USED = "USED", "Used"
        EXPIRED = "EXPIRED", "Expired"
        CANCELLED = "CANCELLED", "Cancelled"

    OPEN_STATUSES = frozenset({Status.PENDING, Status.SELECTED})
    TERMINAL_STATUSES = frozenset({Status.USED, Status.EXPIRED, Status.CANCELLED})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    provider = models.CharField(max_length=20, choices=ProviderId.choices)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    provider_quote_id = models.CharField(max_length=150, blank=True)
    provider_request_token = models.TextField(blank=True)

    fee = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    currency = models.CharField(max_length=3)
    insurance_fee = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    courier_id = models.CharField(max_length=100, blank=True)
    courier_name = models.CharField(max_length=150, blank=True)
    service_code = models.CharField(max_length=100, blank=True)
    service_type = models.CharField(max_length=50, blank=True)
    estimated_delivery_at = models.DateTimeField(null=True, blank=True)

    expires_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    selected_at = models.DateTimeField(null=True, blank=True)
    selected_by = models.CharField(max_length=150, blank=True)
    selection_reason = models.CharField(max_length=255, blank=True)
    used_at = models.DateTimeField(null=True, blank=True)

    # Snapshots taken at quote time; shipment creation never re-reads live records.
    origin_address = models.JSONField(default=dict, blank=True)
    destination_address = models.JSONField(default=dict, blank=True)
    package_details = models.JSONField(default=dict, blank=True)
    provider_payload = models.JSONField(default=dict, blank=True)

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="delivery_quotes",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    vendor = models.ForeignKey(
        Vendor,
        related_name="delivery_quotes",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    order = models.ForeignKey(
        Order,
        related_name="delivery_quotes",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    shipment = models.OneToOneField(
        Shipment,
        related_name="quote",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=Q(fee__gte=0), name="delivery_quote_fee_non_negative"),
        ]
        indexes = [
            models.Index(fields=["status", "expires_at"], name="delivery_quote_status_exp_idx"),
            models.Index(fields=["provider_quote_id"], name="delivery_quote_prov_id_idx"),
        ]

    def __str__(self):
        return f"{self.provider} {self.fee} {self.currency} ({self.status})"

    def is_expired(self, now=None) -> bool:
        if not self.expires_at:
            return False
        return self.expires_at <= (now or timezone.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES


class TrackingEvent(models.Model):
    """Append-only history entry for a shipment."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shipment = models.ForeignKey(Shipment, related_name="events", on_delete=models.CASCADE)
    status = models.CharField(max_length=30, choices=Shipment.Status.choices)
    provider_status = models.CharField(max_length=100, blank=True)
    event_type = models.CharField(max_length=100, blank=True)
    description = models.CharField(max_length=255, blank=True)
    location = models.CharField(max_length=255, blank=True)
    occurred_at = models.DateTimeField(default=timezone.now)
    raw_payload = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["occurred_at", "created_at"]
        indexes = [
            models.Index(fields=["shipment", "occurred_at"], name="delivery_event_ship_time_idx"),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Tracking events are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Tracking events are append-only")


class WebhookLog(models.Model):

    provider = models.CharField(max_length=50)
    event_type = models.CharField(max_length=100)

    reference = models.CharField(max_length=150)
    payload = models.JSONField()

    signature_valid = models.BooleanField(default=False)
    processed = models.BooleanField(default=False)
    error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["reference"], name="delivery_webhook_ref_idx"),
            models.Index(fields=["processed"], name="delivery_webhook_proc_idx"),
        ]
