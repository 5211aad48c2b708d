"""US Census Bureau geocoder provider.

Uses the Census Geocoding API (https://geocoding.geo.census.gov/geocoder/)
for US address-to-coordinate resolution.
"""

import httpx
from loguru import logger

from smartgeocode.lib.geocoder.base import AddressFields, BaseGeocoder, GeocodingProviderError, GeocodingResult

CENSUS_API_URL = "https://geocoding.geo.census.gov/geocoder/locations/onelineaddress"
DEFAULT_TIMEOUT = 30.0


class CensusGeocoder(BaseGeocoder):
    """US Census Bureau geocoder provider."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "census"

    async def geocode(self, fields: AddressFields) -> GeocodingResult | None:
        """Geocode an address using the Census Bureau API.

        The Census API only covers the United States; the ``country`` field
        is left out of the one-line query.

        Raises:
            GeocodingProviderError: On transport or service errors.
        """
        us_fields = AddressFields(
            address=fields.address, city=fields.city, state=fields.state, zip=fields.zip
        )
        params = {
            "address": us_fields.one_line(),
            "benchmark": "Public_AR_Current",
            "format": "json",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(CENSUS_API_URL, params=params)
                response.raise_for_status()

            return self._parse_response(response.json())

        except httpx.TimeoutException as e:
            logger.warning("Census geocoder timeout for address (redacted)")
            raise GeocodingProviderError("census", "Geocoding request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"Census geocoder HTTP error {e.response.status_code}")
            raise GeocodingProviderError(
                "census", f"Provider returned HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.TransportError as e:
            logger.warning("Census geocoder connection error")
            raise GeocodingProviderError("census", "Connection to geocoding provider failed") from e
        except GeocodingProviderError:
            raise
        except ValueError as e:
            logger.warning(f"Census returned an unreadable payload: {e}")
            raise GeocodingProviderError("census", "Provider returned invalid JSON", transient=False) from e

    def _parse_response(self, data: dict) -> GeocodingResult | None:
        """Parse a Census API response into a GeocodingResult."""
        try:
            matches = data.get("result", {}).get("addressMatches", [])
            if not matches:
                return None

            best = matches[0]
            coords = best.get("coordinates", {})
            lon = coords.get("x")
            lat = coords.get("y")
            if lat is None or lon is None:
                return None

            return GeocodingResult(
                latitude=float(lat),
                longitude=float(lon),
                formatted_address=best.get("matchedAddress"),
                confidence_score=1.0 if best.get("tigerLine") else 0.8,
                raw_response=data,
            )
        except (AttributeError, KeyError, IndexError, ValueError, TypeError) as e:
            logger.warning(f"Failed to parse Census geocoder response: {e}")
            raise GeocodingProviderError("census", f"Failed to parse response: {e}", transient=False) from e
