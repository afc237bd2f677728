import logging
from dataclasses import replace
from typing import Tuple

from account.services import AddressService

from delivery.capabilities import select_provider
from delivery.providers import get_provider
from delivery.providers.base import BaseDeliveryProvider, ContactAddress

logger = logging.getLogger(__name__)


class AddressGateway:

    @staticmethod
    def resolve(provider: BaseDeliveryProvider, address, name: str = "", phone: str = "", email: str = "") -> ContactAddress:
        """Return the provider-ready form of ``address``.

        Providers that validate addresses up front get the provider address
        code attached, from the Address record's cache when it is still valid
        and from the provider otherwise. A rejection raises
        ``AddressNotServiceable``; there is no fallback.
        """
        contact = ContactAddress.from_address(address, name=name, phone=phone, email=email)
        if not provider.capabilities.validates_address_before_quote:
            provider.validate_address(contact)
            return contact

        cached = address.cached_provider_code(provider.provider_id)
        if cached:
            return replace(contact, address_code=cached["code"])

        validated = provider.validate_address(contact)
        AddressService.update_provider_address_code(
            address,
            provider.provider_id,
            validated.address_code,
            validated.components(),
        )
        logger.info("Validated address=%s with %s", address.id, provider.provider_id)
        return replace(contact, address_code=validated.address_code)

    @classmethod
    def validate_for_user(cls, user, address_id, provider_id=None) -> Tuple[BaseDeliveryProvider, ContactAddress]:
        address = AddressService.get_address_by_id(address_id, user=user)
        provider = get_provider(provider_id or select_provider(address.country))
        contact = cls.resolve(
            provider,
            address,
            name=user.get_full_name() or user.get_username(),
            email=user.email,
        )
        return provider, contact
