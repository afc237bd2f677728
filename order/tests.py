from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase

from account.models import Address
from notifications.models import Notification
from vendor.models import Vendor

from .models import Cart, CartItem, Order
from .services import CartService, OrderService

User = get_user_model()


class OrderFromCartTests(TestCase):
    def setUp(self):
        self.owner = User.objects.create_user(username="owner_order_tests", email="owner@example.com", password="pass1234")
        self.buyer = User.objects.create_user(username="buyer_order_tests", email="buyer@example.com", password="pass1234")
        self.vendor = Vendor.objects.create(owner=self.owner, business_name="Suya Spot", phone_number="+2348030000000")
        self.address = Address.objects.create(
            user=self.buyer,
            contact_name="Buyer",
            address_line_1="5 Bourdillon Road",
            city="Ikoyi",
            state="Lagos",
            country="NG",
        )
        self.cart = Cart.objects.create(user=self.buyer, vendor=self.vendor)
        CartItem.objects.create(cart=self.cart, name="Beef Suya", unit_price=Decimal("3000.00"), quantity=2)
        CartItem.objects.create(cart=self.cart, name="Zobo", unit_price=Decimal("500.00"), quantity=1)

    def test_active_cart_lookup(self):
        self.assertEqual(CartService.get_cart_for_vendor(self.buyer, self.vendor.id), self.cart)
        self.assertIsNone(CartService.get_cart_for_vendor(self.owner, self.vendor.id))

    def test_order_totals_include_delivery_fee(self):
        order = OrderService.create_order_from_cart(self.cart, self.address, delivery_fee=Decimal("1200.00"))

        self.assertEqual(order.status, Order.Status.NEW)
        self.assertEqual(order.subtotal, Decimal("6500.00"))
        self.assertEqual(order.total_amount, Decimal("7700.00"))
        self.assertEqual(order.items.count(), 2)
        self.cart.refresh_from_db()
        self.assertFalse(self.cart.is_active)

    def test_vendor_is_notified_of_new_order(self):
        order = OrderService.create_order_from_cart(self.cart, self.address)
        note = Notification.objects.get(user=self.owner)
        self.assertEqual(note.type, Notification.Type.NEW_ORDER)
        self.assertEqual(note.payload["order_id"], str(order.id))

    @patch("order.services.NotificationService.notify", side_effect=RuntimeError("fcm down"))
    def test_notification_failure_does_not_block_order(self, _mock_notify):
        order = OrderService.create_order_from_cart(self.cart, self.address)
        self.assertTrue(Order.objects.filter(pk=order.pk).exists())

    def test_empty_cart_is_rejected(self):
        self.cart.items.all().delete()
        with self.assertRaises(ValueError):
            OrderService.create_order_from_cart(self.cart, self.address)

    def test_save_order_touches_updated_at(self):
        order = OrderService.create_order_from_cart(self.cart, self.address)
        before = order.updated_at
        order.status = Order.Status.CONFIRMED
        OrderService.save_order(order, update_fields=["status"])
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CONFIRMED)
        self.assertGreaterEqual(order.updated_at, before)
