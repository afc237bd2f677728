import hashlib
import uuid

from django.conf import settings
from django.db import models


class Address(models.Model):
    """A postal address owned by a customer or a vendor.

    Delivery providers that validate addresses issue an opaque address code.
    Codes are cached per provider in ``provider_address_codes`` together with a
    fingerprint of the address fields they were issued for, so editing the
    address silently invalidates them.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="addresses",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
    )
    label = models.CharField(max_length=50, blank=True)
    contact_name = models.CharField(max_length=120, blank=True)
    contact_phone = models.CharField(max_length=20, blank=True)
    contact_email = models.EmailField(blank=True)

    address_line_1 = models.CharField(max_length=255)
    address_line_2 = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100)
    state = models.CharField(max_length=100, blank=True)
    postal_code = models.CharField(max_length=20, blank=True)
    country = models.CharField(max_length=2, default="NG")  # ISO 3166-1 alpha-2
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)

    # {"shipbubble": {"code": "...", "fingerprint": "...", "components": {...}}}
    provider_address_codes = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["user"], name="account_addr_user_idx"),
            models.Index(fields=["country"], name="account_addr_country_idx"),
        ]

    def __str__(self):
        return self.full_address()

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

    def address_fingerprint(self) -> str:
        raw = "|".join(
            str(value or "").strip().lower()
            for value in (
                self.address_line_1,
                self.address_line_2,
                self.city,
                self.state,
                self.postal_code,
                self.country,
                self.latitude,
                self.longitude,
            )
        )
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()

    def cached_provider_code(self, provider: str):
        entry = (self.provider_address_codes or {}).get(provider)
        if not entry or entry.get("fingerprint") != self.address_fingerprint():
            return None
        return entry

    def save(self, *args, **kwargs):
        fingerprint = self.address_fingerprint()
        codes = dict(self.provider_address_codes or {})
        stale = [p for p, entry in codes.items() if (entry or {}).get("fingerprint") != fingerprint]
        if stale:
            for provider in stale:
                codes.pop(provider, None)
            self.provider_address_codes = codes
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = set(update_fields) | {"provider_address_codes"}
        super().save(*args, **kwargs)
