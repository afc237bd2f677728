import logging

from django.utils import timezone

from notifications.services import NotificationService, NotificationTemplates
from order.models import Order
from order.services import OrderService

from delivery.models import Shipment

logger = logging.getLogger(__name__)


class OrderStatusBridge:
    """Moves the order along with its shipment and tells the customer."""

    SHIPMENT_TO_ORDER = {
        Shipment.Status.PICKED_UP: Order.Status.OUT_FOR_DELIVERY,
        Shipment.Status.IN_TRANSIT: Order.Status.OUT_FOR_DELIVERY,
        Shipment.Status.OUT_FOR_DELIVERY: Order.Status.OUT_FOR_DELIVERY,
        Shipment.Status.DELIVERED: Order.Status.DELIVERED,
        Shipment.Status.FAILED: Order.Status.CANCELLED,
        Shipment.Status.CANCELLED: Order.Status.CANCELLED,
    }
    # Orders in these states are settled; delivery events no longer move them.
    FINAL_ORDER_STATUSES = {Order.Status.DELIVERED, Order.Status.REFUNDED}

    @classmethod
    def on_shipment_status(cls, shipment: Shipment) -> bool:
        target = cls.SHIPMENT_TO_ORDER.get(shipment.status)
        if target is None:
            return False

        order = shipment.order
        if order.status == target or order.status in cls.FINAL_ORDER_STATUSES:
            return False

        order.status = target
        update_fields = ["status"]
        if target == Order.Status.DELIVERED:
            order.delivered_at = shipment.actual_delivery_at or timezone.now()
            update_fields.append("delivered_at")
        elif target == Order.Status.CANCELLED:
            order.cancelled_at = timezone.now()
            update_fields.append("cancelled_at")
        OrderService.save_order(order, update_fields=update_fields)
        logger.info("Order=%s moved to %s by shipment=%s", order.id, target, shipment.tracking_number)

        try:
            NotificationService.send_order_update(
                user_id=order.user_id,
                order_id=order.id,
                status=order.status,
                message=NotificationTemplates.order_status_message(order),
            )
        except Exception:
            logger.exception("Failed to send order update notification for order=%s", order.id)
        return True
