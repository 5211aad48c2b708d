"""OpenStreetMap Nominatim geocoder provider.

Uses the Nominatim search API (https://nominatim.org/release-docs/develop/api/Search/)
for address-to-coordinate resolution. Free but rate-limited to 1 req/sec on
the public instance; point ``base_url`` at a self-hosted instance for volume.
"""

import httpx
from loguru import logger

from smartgeocode.lib.geocoder.base import (
    AddressFields,
    BaseGeocoder,
    GeocodingProviderError,
    GeocodingResult,
)

NOMINATIM_BASE_URL = "https://nominatim.openstreetmap.org"
DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "smartgeocode/0.1"

# Confidence reported for a Nominatim match that carries no importance score
_DEFAULT_CONFIDENCE = 0.95


class NominatimGeocoder(BaseGeocoder):
    """OpenStreetMap Nominatim geocoder provider."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        base_url: str = NOMINATIM_BASE_URL,
        email: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self._email = email
        self._user_agent = user_agent
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "nominatim"

    @property
    def rate_limit_delay(self) -> float:
        # Usage policy of the public instance; self-hosted instances are unthrottled
        return 1.0 if self._base_url == NOMINATIM_BASE_URL else 0.0

    def _build_params(self, fields: AddressFields) -> dict[str, str | int]:
        params: dict[str, str | int] = {
            "q": fields.one_line(),
            "format": "json",
            "limit": 1,
            "addressdetails": 1,
        }
        if self._email:
            params["email"] = self._email
        return params

    async def geocode(self, fields: AddressFields) -> GeocodingResult | None:
        """Geocode an address using the Nominatim API.

        Raises:
            GeocodingProviderError: On transport or service errors.
        """
        headers = {"User-Agent": self._user_agent}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/search", params=self._build_params(fields), headers=headers
                )
                response.raise_for_status()

            return self._parse_response(response.json())

        except httpx.TimeoutException as e:
            logger.warning("Nominatim geocoder timeout for address (redacted)")
            raise GeocodingProviderError("nominatim", "Geocoding request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Nominatim geocoder HTTP error {e.response.status_code}")
            raise GeocodingProviderError(
                "nominatim",
                f"Provider returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TransportError as e:
            logger.warning("Nominatim geocoder connection error")
            raise GeocodingProviderError("nominatim", "Connection to geocoding provider failed") from e
        except GeocodingProviderError:
            raise
        except ValueError as e:
            logger.warning(f"Nominatim returned an unreadable payload: {e}")
            raise GeocodingProviderError("nominatim", "Provider returned invalid JSON", transient=False) from e

    def _parse_response(self, data: list[dict]) -> GeocodingResult | None:
        """Parse a Nominatim search response (a list of places) into a GeocodingResult."""
        if not isinstance(data, list):
            # Errors come back as a JSON object, e.g. {"error": "Unable to geocode"}
            logger.warning("Nominatim returned a non-list payload")
            raise GeocodingProviderError("nominatim", "Unexpected response payload", transient=False)
        if not data:
            return None

        try:
            best = data[0]
            lat = float(best["lat"])
            lon = float(best["lon"])
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to parse Nominatim response: {e}")
            raise GeocodingProviderError("nominatim", f"Failed to parse response: {e}", transient=False) from e

        importance = best.get("importance")
        confidence = min(float(importance), 1.0) if importance is not None else _DEFAULT_CONFIDENCE

        return GeocodingResult(
            latitude=lat,
            longitude=lon,
            formatted_address=best.get("display_name"),
            confidence_score=confidence,
            raw_response={"results": data},
        )
