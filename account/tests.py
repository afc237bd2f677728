from django.contrib.auth import get_user_model
from django.test import TestCase

from account.models import Address
from account.services import AddressService

User = get_user_model()


class AddressProviderCodeTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="ada", email="ada@example.com", password="Pass123!")
        self.address = Address.objects.create(
            user=self.user,
            contact_name="Ada",
            address_line_1="12 Admiralty Way",
            city="Lekki",
            state="Lagos",
            country="NG",
        )

    def test_cached_code_is_returned_for_unchanged_address(self):
        AddressService.update_provider_address_code(self.address, "shipbubble", 9911, {"city": "Lekki"})
        self.address.refresh_from_db()
        entry = self.address.cached_provider_code("shipbubble")
        self.assertIsNotNone(entry)
        self.assertEqual(entry["code"], "9911")
        self.assertEqual(entry["components"], {"city": "Lekki"})

    def test_editing_address_drops_cached_code(self):
        AddressService.update_provider_address_code(self.address, "shipbubble", "9911")
        self.address.address_line_1 = "1 Ozumba Mbadiwe Avenue"
        self.address.save(update_fields=["address_line_1", "updated_at"])
        self.address.refresh_from_db()
        self.assertIsNone(self.address.cached_provider_code("shipbubble"))
        self.assertNotIn("shipbubble", self.address.provider_address_codes)

    def test_get_address_by_id_is_scoped_to_owner(self):
        other = User.objects.create_user(username="bola", email="bola@example.com", password="Pass123!")
        self.assertEqual(AddressService.get_address_by_id(self.address.id, user=self.user), self.address)
        with self.assertRaises(Address.DoesNotExist):
            AddressService.get_address_by_id(self.address.id, user=other)
