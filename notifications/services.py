import json
import logging
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction

from .models import DeviceToken, Notification

logger = logging.getLogger(__name__)

# FCM error codes after which a device token will never work again.
DEAD_TOKEN_CODES = ("registration-token-not-registered", "invalid-argument", "UNREGISTERED")


class NotificationService:
    """Stores in-app notifications and mirrors them to the user's devices over FCM.

    Push is best effort: the Notification row is the source of truth and is kept
    even when Firebase is unconfigured or unreachable.
    """

    _firebase_ready = False

    @staticmethod
    def _firebase_credentials():
        from firebase_admin import credentials

        raw_json = getattr(settings, "FCM_SERVICE_ACCOUNT_JSON", "")
        if raw_json:
            return credentials.Certificate(json.loads(raw_json))
        path = getattr(settings, "FCM_SERVICE_ACCOUNT_FILE", "")
        if path:
            return credentials.Certificate(path)
        return None

    @classmethod
    def _init_firebase(cls) -> bool:
        if cls._firebase_ready:
            return True
        try:
            import firebase_admin

            if not firebase_admin._apps:
                cred = cls._firebase_credentials()
                if cred is None:
                    logger.info("FCM credentials are not configured; order updates stay in-app only")
                    return False
                project_id = getattr(settings, "FCM_PROJECT_ID", "")
                firebase_admin.initialize_app(cred, {"projectId": project_id} if project_id else None)
            cls._firebase_ready = True
            return True
        except Exception:
            logger.exception("Failed to initialize Firebase app")
            return False

    @classmethod
    @transaction.atomic
    def notify(
        cls,
        *,
        user,
        notification_type: str,
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        payload = payload or {}
        notification = Notification.objects.create(
            user=user,
            type=notification_type,
            title=title,
            message=message,
            payload=payload,
        )
        try:
            sent = cls._send_push_to_user(user=user, title=title, message=message, payload=payload)
            logger.debug("Pushed %s to %s device(s) of user=%s", notification_type, sent, user.id)
        except Exception:
            logger.exception("Push send failed for user=%s type=%s", user.id, notification_type)
        return notification

    @classmethod
    def send_order_update(cls, user_id, order_id, status: str, message: str) -> Notification:
        """Persist and push an order status change to the order's customer."""
        user = get_user_model().objects.get(pk=user_id)
        notification_type = NotificationTemplates.ORDER_STATUS_TYPES.get(status, Notification.Type.ORDER_UPDATE)
        title = NotificationTemplates.ORDER_STATUS_TITLES.get(status, "Order Update")
        return cls.notify(
            user=user,
            notification_type=notification_type,
            title=title,
            message=message,
            payload={
                "type": notification_type,
                "entity_id": str(order_id),
                "entity_type": "order",
                "order_id": str(order_id),
                "status": status,
            },
        )

    @staticmethod
    def _collapse_key(payload: Dict[str, Any]) -> str:
        # Later status pushes for one order replace earlier ones on the device.
        order_id = payload.get("order_id")
        return f"order-{order_id}" if order_id else str(payload.get("type") or "general")

    @classmethod
    def _send_push_to_user(cls, *, user, title: str, message: str, payload: Dict[str, Any]) -> int:
        if not cls._init_firebase():
            return 0
        tokens: List[str] = list(
            DeviceToken.objects.filter(user=user, is_active=True).values_list("token", flat=True)
        )
        if not tokens:
            return 0

        from firebase_admin import messaging

        collapse_key = cls._collapse_key(payload)
        batch = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=title, body=message),
            data={k: str(v) for k, v in payload.items()},
            android=messaging.AndroidConfig(collapse_key=collapse_key, priority="high"),
            apns=messaging.APNSConfig(headers={"apns-collapse-id": collapse_key[:64]}),
        )
        response = messaging.send_each_for_multicast(batch)

        dead = []
        for token, result in zip(tokens, response.responses):
            if result.success:
                continue
            code = getattr(result.exception, "code", "") or str(result.exception)
            if any(marker in code for marker in DEAD_TOKEN_CODES):
                dead.append(token)
            logger.warning("FCM send failed token=%s code=%s", token[:12], code)
        if dead:
            DeviceToken.objects.filter(token__in=dead).update(is_active=False)
        return response.success_count


class NotificationTemplates:
    ORDER_STATUS_TYPES = {
        "confirmed": Notification.Type.ORDER_CONFIRMED,
        "out_for_delivery": Notification.Type.ORDER_OUT_FOR_DELIVERY,
        "delivered": Notification.Type.ORDER_DELIVERED,
        "cancelled": Notification.Type.ORDER_CANCELLED,
    }
    ORDER_STATUS_TITLES = {
        "confirmed": "Order Confirmed",
        "out_for_delivery": "Order On The Way",
        "delivered": "Order Delivered",
        "cancelled": "Order Cancelled",
    }

    @staticmethod
    def new_order(order):
        return (
            "New Order",
            f"You received a new order #{order.order_number}.",
            {
                "type": "new_order",
                "entity_id": str(order.id),
                "entity_type": "order",
                "order_id": str(order.id),
            },
        )

    @staticmethod
    def order_status_message(order) -> str:
        messages = {
            "confirmed": f"Your order #{order.order_number} has been confirmed.",
            "out_for_delivery": f"Your order #{order.order_number} is on the way.",
            "delivered": f"Your order #{order.order_number} has been delivered. Enjoy your meal!",
            "cancelled": f"Delivery for your order #{order.order_number} was cancelled.",
        }
        return messages.get(order.status, f"Your order #{order.order_number} is now {order.status}.")
