"""Geocoder library — pluggable address geocoding providers.

Public API:
    - AddressFields: Address input dataclass
    - GeocodingResult: Result dataclass
    - GeocodingProviderError: Provider transport/service failure
    - BaseGeocoder: Abstract provider interface
    - NominatimGeocoder: OpenStreetMap Nominatim provider
    - CensusGeocoder: US Census Bureau provider
    - MalformedAddressError / validate_address_fields: Pre-flight address checks
    - is_placeholder_address / clean_value: CSV cell helpers
    - get_geocoder: Provider factory/registry
    - geocoder_from_settings: Build the configured provider
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from smartgeocode.lib.geocoder.address import (
    MalformedAddressError,
    clean_value,
    is_placeholder_address,
    validate_address_fields,
)
from smartgeocode.lib.geocoder.base import (
    AddressFields,
    BaseGeocoder,
    GeocodingProviderError,
    GeocodingResult,
)
from smartgeocode.lib.geocoder.census import CensusGeocoder
from smartgeocode.lib.geocoder.nominatim import NominatimGeocoder

if TYPE_CHECKING:
    from smartgeocode.core.config import Settings

_PROVIDERS: dict[str, type[BaseGeocoder]] = {
    "census": CensusGeocoder,
    "nominatim": NominatimGeocoder,
}


def get_available_providers() -> list[str]:
    """Return the names of all registered geocoder providers."""
    return sorted(_PROVIDERS.keys())


def get_geocoder(provider: str = "nominatim", **kwargs: Any) -> BaseGeocoder:
    """Get a geocoder instance by provider name.

    Args:
        provider: Provider name (e.g., "nominatim").
        **kwargs: Additional arguments forwarded to the provider constructor.

    Raises:
        ValueError: If the provider is not registered.
    """
    cls = _PROVIDERS.get(provider)
    if cls is None:
        msg = f"Unknown geocoder provider: {provider!r}. Available: {list(_PROVIDERS.keys())}"
        raise ValueError(msg)
    return cls(**kwargs)


def geocoder_from_settings(settings: Settings) -> BaseGeocoder:
    """Instantiate the provider selected by ``settings.geocoder_provider``."""
    provider = settings.geocoder_provider.strip().lower()
    kwargs: dict[str, Any] = {"timeout": settings.geocoder_timeout}
    if provider == "nominatim":
        kwargs["base_url"] = settings.geocoder_nominatim_url
        kwargs["email"] = settings.geocoder_nominatim_email
    return get_geocoder(provider, **kwargs)


__all__ = [
    "AddressFields",
    "BaseGeocoder",
    "CensusGeocoder",
    "GeocodingProviderError",
    "GeocodingResult",
    "MalformedAddressError",
    "NominatimGeocoder",
    "clean_value",
    "geocoder_from_settings",
    "get_available_providers",
    "get_geocoder",
    "is_placeholder_address",
    "validate_address_fields",
]
