"""Abstract base geocoder interface for pluggable provider support."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AddressFields:
    """Address input of a single lookup or batch row.

    Only ``address`` is required; the remaining fields refine the query.
    """

    address: str
    landmark: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None

    def one_line(self) -> str:
        """Join the non-empty locating fields into a single-line query.

        ``landmark`` is carried through to results but is not sent to the
        provider, since free-text landmarks degrade match quality.
        """
        parts = [self.address, self.city, self.state, self.zip, self.country]
        return ", ".join(p.strip() for p in parts if p and p.strip())


@dataclass
class GeocodingResult:
    """Result from a geocoding operation."""

    latitude: float
    longitude: float
    formatted_address: str | None = None
    confidence_score: float | None = None
    raw_response: dict | None = None

    def __post_init__(self) -> None:
        if not (-90 <= self.latitude <= 90):
            msg = f"latitude must be between -90 and 90, got {self.latitude}"
            raise ValueError(msg)
        if not (-180 <= self.longitude <= 180):
            msg = f"longitude must be between -180 and 180, got {self.longitude}"
            raise ValueError(msg)
        if self.confidence_score is not None and not (0 <= self.confidence_score <= 1):
            msg = f"confidence_score must be between 0 and 1, got {self.confidence_score}"
            raise ValueError(msg)


class GeocodingProviderError(Exception):
    """Raised when a geocoding provider experiences a transport or service error.

    Distinguishes provider failures from a successful response with no match
    (which returns None). ``transient`` tells callers whether retrying the
    same request can succeed: timeouts, connection failures, HTTP 429 and
    5xx are transient; other 4xx responses and unparseable payloads are not.

    Args:
        provider_name: Name of the failing provider.
        message: Human-readable error description.
        status_code: Optional HTTP status code from the provider.
        transient: Override the retryability derived from ``status_code``.
    """

    def __init__(
        self,
        provider_name: str,
        message: str,
        status_code: int | None = None,
        *,
        transient: bool | None = None,
    ) -> None:
        self.provider_name = provider_name
        self.message = message
        self.status_code = status_code
        if transient is None:
            transient = status_code is None or status_code == 429 or status_code >= 500
        self.transient = transient
        super().__init__(f"{provider_name}: {message}")


class BaseGeocoder(ABC):
    """Abstract geocoder interface. All providers must implement this."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique name identifying this geocoder provider."""

    @property
    def rate_limit_delay(self) -> float:
        """Minimum delay in seconds between requests (for rate-limited providers)."""
        return 0.0

    @abstractmethod
    async def geocode(self, fields: AddressFields) -> GeocodingResult | None:
        """Geocode a single address.

        Args:
            fields: Address input fields.

        Returns:
            GeocodingResult or None if the address could not be matched.

        Raises:
            GeocodingProviderError: On transport or service errors.
        """
