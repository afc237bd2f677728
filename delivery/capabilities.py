from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from django.db import models

from .exceptions import UnsupportedProvider


class ProviderId(models.TextChoices):
    SHIPBUBBLE = "SHIPBUBBLE", "Shipbubble"
    UBER = "UBER", "Uber Direct"


class WorkflowType(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled rate shopping"
    ON_DEMAND = "on_demand", "On-demand quote confirmation"


@dataclass(frozen=True)
class ProviderCapabilities:
    provider: str
    display_name: str
    workflow: str
    supported_countries: Tuple[str, ...]
    requires_confirmation: bool
    supports_store_locations: bool
    validates_address_before_quote: bool
    quotes_expire: bool
    supports_real_time_tracking: bool
    features: Tuple[str, ...] = ()

    def serves(self, country: str) -> bool:
        if "*" in self.supported_countries:
            return True
        return normalize_country(country) in self.supported_countries


DOMESTIC_COUNTRY = "NG"

CAPABILITIES: Dict[str, ProviderCapabilities] = {
    ProviderId.SHIPBUBBLE: ProviderCapabilities(
        provider=ProviderId.SHIPBUBBLE,
        display_name="Shipbubble",
        workflow=WorkflowType.SCHEDULED,
        supported_countries=(DOMESTIC_COUNTRY,),
        requires_confirmation=False,
        supports_store_locations=False,
        validates_address_before_quote=True,
        quotes_expire=False,
        supports_real_time_tracking=False,
        features=("rate_shopping", "multi_courier", "address_validation", "cash_on_delivery"),
    ),
    ProviderId.UBER: ProviderCapabilities(
        provider=ProviderId.UBER,
        display_name="Uber Direct",
        workflow=WorkflowType.ON_DEMAND,
        supported_countries=("*",),
        requires_confirmation=True,
        supports_store_locations=True,
        validates_address_before_quote=False,
        quotes_expire=True,
        supports_real_time_tracking=True,
        features=("on_demand", "real_time_tracking", "contactless_delivery", "proof_of_delivery"),
    ),
}

_COUNTRY_ALIASES = {
    "NIGERIA": "NG",
}


def normalize_country(country: Optional[str]) -> str:
    code = (country or "").strip().upper()
    return _COUNTRY_ALIASES.get(code, code)


def select_provider(country: Optional[str]) -> str:
    """Pick the delivery provider for a destination country.

    Total over every input: the domestic market goes to Shipbubble and
    everything else, blank or unknown codes included, goes to Uber Direct.
    """
    if normalize_country(country) == DOMESTIC_COUNTRY:
        return ProviderId.SHIPBUBBLE
    return ProviderId.UBER


def get_capabilities(provider: str) -> ProviderCapabilities:
    try:
        return CAPABILITIES[ProviderId(str(provider).upper())]
    except (KeyError, ValueError):
        raise UnsupportedProvider(f"Unsupported delivery provider: {provider}")


def available_providers(country: Optional[str]) -> List[ProviderCapabilities]:
    selected = select_provider(country)
    ordered = [CAPABILITIES[selected]]
    ordered.extend(
        caps for pid, caps in CAPABILITIES.items() if pid != selected and caps.serves(country or "")
    )
    return ordered


def is_provider_available(provider: str, country: Optional[str]) -> bool:
    try:
        caps = get_capabilities(provider)
    except UnsupportedProvider:
        return False
    return caps.serves(country or "")
