from django.db import transaction
import uuid
import logging
from .models import *
from notifications.services import NotificationService, NotificationTemplates

logger = logging.getLogger(__name__)


class CartService:

    @staticmethod
    def get_cart_for_vendor(user, vendor_id):
        """Active cart of ``user`` at the given vendor, or ``None``."""
        return (
            Cart.objects.filter(user=user, vendor_id=vendor_id, is_active=True)
            .prefetch_related("items")
            .first()
        )


class OrderService:

    @staticmethod
    def _generate_order_number():
        while True:
            candidate = f"ORD-{uuid.uuid4().hex[:12].upper()}"
            if not Order.objects.filter(order_number=candidate).exists():
                return candidate

    @staticmethod
    def find_order(order_id):
        return Order.objects.select_related("user", "vendor", "delivery_address").filter(id=order_id).first()

    @staticmethod
    def save_order(order, update_fields=None):
        if update_fields is not None:
            update_fields = set(update_fields) | {"updated_at"}
        order.save(update_fields=update_fields)
        return order

    @staticmethod
    @transaction.atomic
    def create_order_from_cart(cart, delivery_address, delivery_fee=0, currency="NGN"):
        items = list(cart.items.all())
        if not items:
            raise ValueError("Cart is empty")

        subtotal = sum(item.unit_price * item.quantity for item in items)
        order = Order.objects.create(
            order_number=OrderService._generate_order_number(),
            user=cart.user,
            vendor=cart.vendor,
            delivery_address=delivery_address,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            total_amount=subtotal + delivery_fee,
            currency=currency,
            status=Order.Status.NEW,
        )
        for item in items:
            OrderItem.objects.create(
                order=order,
                name=item.name,
                price=item.unit_price,
                quantity=item.quantity,
                total=item.unit_price * item.quantity,
            )
        cart.is_active = False
        cart.save(update_fields=["is_active", "updated_at"])

        # Non-blocking notification: order flow must not fail on push errors.
        try:
            title, message, payload = NotificationTemplates.new_order(order)
            NotificationService.notify(
                user=cart.vendor.owner,
                notification_type="new_order",
                title=title,
                message=message,
                payload=payload,
            )
        except Exception:
            logger.exception("Failed to send new_order notification for order=%s", order.id)

        return order
