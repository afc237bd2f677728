import logging
from typing import Any, Dict, Optional

from django.utils import timezone

from .models import Address

logger = logging.getLogger(__name__)


class AddressService:

    @staticmethod
    def get_address_by_id(address_id, user=None) -> Address:
        qs = Address.objects.all()
        if user is not None:
            qs = qs.filter(user=user)
        return qs.get(id=address_id)

    @staticmethod
    def update_provider_address_code(
        address: Address,
        provider: str,
        code: str,
        components: Optional[Dict[str, Any]] = None,
    ) -> Address:
        codes = dict(address.provider_address_codes or {})
        codes[provider] = {
            "code": str(code),
            "fingerprint": address.address_fingerprint(),
            "components": components or {},
            "validated_at": timezone.now().isoformat(),
        }
        address.provider_address_codes = codes
        address.save(update_fields=["provider_address_codes", "updated_at"])
        logger.info("Cached %s address code for address=%s", provider, address.id)
        return address
