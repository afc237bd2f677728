from delivery.capabilities import ProviderId
from delivery.exceptions import UnsupportedProvider

from .base import BaseDeliveryProvider, UNRECOGNIZED
from .token_cache import OAuthTokenCache

# One token cache per process, shared by every Uber client.
shared_token_cache = OAuthTokenCache()

from .shipbubble import ShipbubbleProvider  # noqa: E402
from .uber import UberDirectProvider  # noqa: E402

PROVIDERS = {
    ProviderId.SHIPBUBBLE: ShipbubbleProvider,
    ProviderId.UBER: UberDirectProvider,
}


def get_provider(provider_id) -> BaseDeliveryProvider:
    key = str(provider_id or "").strip().upper()
    provider_cls = PROVIDERS.get(key)
    if provider_cls is None:
        raise UnsupportedProvider(f"Unsupported delivery provider: {provider_id}")
    return provider_cls()


__all__ = [
    "BaseDeliveryProvider",
    "PROVIDERS",
    "ShipbubbleProvider",
    "UNRECOGNIZED",
    "UberDirectProvider",
    "get_provider",
    "shared_token_cache",
]
