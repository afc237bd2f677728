from unittest.mock import MagicMock, patch

from django.contrib.auth import get_user_model
from django.test import TestCase

from .models import DeviceToken, Notification
from .services import NotificationService

User = get_user_model()


class OrderUpdateNotificationTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="chidi", email="chidi@example.com", password="Pass123!")

    def test_send_order_update_persists_status_specific_notification(self):
        note = NotificationService.send_order_update(
            self.user.id, "b8c4b7a2-0000-4000-8000-000000000001", "delivered", "Your order has been delivered."
        )
        self.assertEqual(note.type, Notification.Type.ORDER_DELIVERED)
        self.assertEqual(note.title, "Order Delivered")
        self.assertEqual(note.payload["status"], "delivered")
        self.assertEqual(Notification.objects.filter(user=self.user).count(), 1)

    def test_unknown_status_falls_back_to_generic_update(self):
        note = NotificationService.send_order_update(self.user.id, "order-1", "preparing", "Cooking")
        self.assertEqual(note.type, Notification.Type.ORDER_UPDATE)

    @patch("notifications.services.NotificationService._send_push_to_user", side_effect=RuntimeError("fcm down"))
    def test_push_failure_does_not_block_persistence(self, _mock_push):
        note = NotificationService.send_order_update(self.user.id, "order-1", "cancelled", "Cancelled")
        self.assertTrue(Notification.objects.filter(id=note.id).exists())


class OrderUpdatePushTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="ngozi", email="ngozi@example.com", password="Pass123!")
        DeviceToken.objects.create(user=self.user, token="good-token-0001", device_type=DeviceToken.DeviceType.ANDROID)
        DeviceToken.objects.create(user=self.user, token="stale-token-0002", device_type=DeviceToken.DeviceType.IOS)

    @patch("notifications.services.NotificationService._init_firebase", return_value=True)
    @patch("firebase_admin.messaging.send_each_for_multicast")
    def test_pushes_collapse_per_order_and_drop_dead_tokens(self, mock_send, _mock_init):
        def send(batch):
            responses = []
            for token in batch.tokens:
                result = MagicMock(success=token.startswith("good"))
                result.exception.code = "registration-token-not-registered"
                responses.append(result)
            return MagicMock(responses=responses, success_count=1)

        mock_send.side_effect = send

        NotificationService.send_order_update(self.user.id, "order-9", "out_for_delivery", "On the way")

        message = mock_send.call_args[0][0]
        self.assertCountEqual(message.tokens, ["good-token-0001", "stale-token-0002"])
        self.assertEqual(message.android.collapse_key, "order-order-9")
        self.assertEqual(message.data["status"], "out_for_delivery")
        self.assertTrue(DeviceToken.objects.get(token="good-token-0001").is_active)
        self.assertFalse(DeviceToken.objects.get(token="stale-token-0002").is_active)
