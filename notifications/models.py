import uuid
from django.conf import settings
from django.db import models


class DeviceToken(models.Model):
    class DeviceType(models.TextChoices):
        WEB = "web", "Web"
        ANDROID = "android", "Android"
        IOS = "ios", "iOS"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="device_tokens")
    token = models.TextField(unique=True)
    device_type = models.CharField(max_length=20, choices=DeviceType.choices)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["user", "is_active"], name="notif_token_user_active_idx"),
            models.Index(fields=["device_type"], name="notif_token_device_idx"),
        ]


class Notification(models.Model):
    class Type(models.TextChoices):
        NEW_ORDER = "new_order", "New Order"
        ORDER_CONFIRMED = "order_confirmed", "Order Confirmed"
        ORDER_OUT_FOR_DELIVERY = "order_out_for_delivery", "Order Out for Delivery"
        ORDER_DELIVERED = "order_delivered", "Order Delivered"
        ORDER_CANCELLED = "order_cancelled", "Order Cancelled"
        ORDER_UPDATE = "order_update", "Order Update"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="notifications")
    type = models.CharField(max_length=50, choices=Type.choices)
    title = models.CharField(max_length=255)
    message = models.TextField()
    payload = models.JSONField(default=dict)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read"], name="notif_user_read_idx"),
            models.Index(fields=["type"], name="notif_type_idx"),
            models.Index(fields=["created_at"], name="notif_created_idx"),
        ]
