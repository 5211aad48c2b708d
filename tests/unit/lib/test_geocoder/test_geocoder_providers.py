"""Unit tests for the Nominatim and Census geocoder providers."""

import httpx
import pytest

from smartgeocode.lib.geocoder import (
    AddressFields,
    CensusGeocoder,
    GeocodingProviderError,
    NominatimGeocoder,
    geocoder_from_settings,
    get_available_providers,
    get_geocoder,
)
from smartgeocode.lib.geocoder.nominatim import NOMINATIM_BASE_URL

FIELDS = AddressFields(address="100 Peachtree St NW", city="Atlanta", state="GA", zip="30303", landmark="Hotel")


def _transport(handler) -> httpx.MockTransport:  # noqa: ANN001
    return httpx.MockTransport(handler)


class TestNominatimGeocoder:
    """Tests for NominatimGeocoder over a mocked transport."""

    async def test_successful_match(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json=[{"lat": "33.7590", "lon": "-84.3880", "display_name": "Peachtree St", "importance": 0.7}],
            )

        geocoder = NominatimGeocoder(
            base_url="http://osm.local", email="ops@example.com", transport=_transport(handler)
        )
        result = await geocoder.geocode(FIELDS)

        assert result is not None
        assert result.latitude == pytest.approx(33.759)
        assert result.longitude == pytest.approx(-84.388)
        assert result.formatted_address == "Peachtree St"
        assert result.confidence_score == pytest.approx(0.7)
        assert seen[0].url.path == "/search"
        assert seen[0].url.params["q"] == "100 Peachtree St NW, Atlanta, GA, 30303"
        assert seen[0].url.params["email"] == "ops@example.com"
        assert "smartgeocode" in seen[0].headers["User-Agent"]

    async def test_no_match_returns_none(self) -> None:
        geocoder = NominatimGeocoder(transport=_transport(lambda r: httpx.Response(200, json=[])))
        assert await geocoder.geocode(FIELDS) is None

    async def test_missing_importance_uses_default_confidence(self) -> None:
        geocoder = NominatimGeocoder(
            transport=_transport(lambda r: httpx.Response(200, json=[{"lat": "1", "lon": "2"}]))
        )
        result = await geocoder.geocode(FIELDS)
        assert result is not None
        assert result.confidence_score == pytest.approx(0.95)

    @pytest.mark.parametrize("status_code", [500, 503, 429])
    async def test_server_errors_are_transient(self, status_code: int) -> None:
        geocoder = NominatimGeocoder(transport=_transport(lambda r: httpx.Response(status_code)))
        with pytest.raises(GeocodingProviderError) as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is True
        assert exc_info.value.status_code == status_code

    async def test_client_error_is_permanent(self) -> None:
        geocoder = NominatimGeocoder(transport=_transport(lambda r: httpx.Response(400)))
        with pytest.raises(GeocodingProviderError) as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is False

    async def test_timeout_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        geocoder = NominatimGeocoder(transport=_transport(handler))
        with pytest.raises(GeocodingProviderError, match="timed out") as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is True

    async def test_connection_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        geocoder = NominatimGeocoder(transport=_transport(handler))
        with pytest.raises(GeocodingProviderError) as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is True

    async def test_invalid_json_is_permanent(self) -> None:
        geocoder = NominatimGeocoder(transport=_transport(lambda r: httpx.Response(200, text="<html>")))
        with pytest.raises(GeocodingProviderError) as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is False

    async def test_error_object_is_permanent(self) -> None:
        geocoder = NominatimGeocoder(
            transport=_transport(lambda r: httpx.Response(200, json={"error": "Unable to geocode"}))
        )
        with pytest.raises(GeocodingProviderError, match="Unexpected response") as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is False

    def test_malformed_coordinates_raise(self) -> None:
        with pytest.raises(GeocodingProviderError, match="nominatim"):
            NominatimGeocoder()._parse_response([{"lat": "north", "lon": "-84.0"}])

    def test_public_instance_is_throttled(self) -> None:
        assert NominatimGeocoder(base_url=NOMINATIM_BASE_URL).rate_limit_delay == 1.0
        assert NominatimGeocoder(base_url="http://osm.internal:8080").rate_limit_delay == 0.0


class TestCensusGeocoder:
    """Tests for CensusGeocoder over a mocked transport."""

    async def test_successful_match(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "result": {
                        "addressMatches": [
                            {
                                "matchedAddress": "100 PEACHTREE ST NW, ATLANTA, GA, 30303",
                                "coordinates": {"x": -84.388, "y": 33.759},
                                "tigerLine": {"side": "L"},
                            }
                        ]
                    }
                },
            )

        result = await CensusGeocoder(transport=_transport(handler)).geocode(
            AddressFields(address="100 Peachtree St NW", city="Atlanta", country="USA")
        )

        assert result is not None
        assert result.latitude == pytest.approx(33.759)
        assert result.confidence_score == 1.0
        assert "USA" not in seen[0].url.params["address"]

    async def test_no_match_returns_none(self) -> None:
        geocoder = CensusGeocoder(
            transport=_transport(lambda r: httpx.Response(200, json={"result": {"addressMatches": []}}))
        )
        assert await geocoder.geocode(FIELDS) is None

    async def test_unexpected_payload_is_permanent(self) -> None:
        body = {"result": {"addressMatches": {"coordinates": {"x": 1, "y": 2}}}}
        geocoder = CensusGeocoder(transport=_transport(lambda r: httpx.Response(200, json=body)))
        with pytest.raises(GeocodingProviderError) as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is False

    async def test_server_error_is_transient(self) -> None:
        geocoder = CensusGeocoder(transport=_transport(lambda r: httpx.Response(502)))
        with pytest.raises(GeocodingProviderError) as exc_info:
            await geocoder.geocode(FIELDS)
        assert exc_info.value.transient is True


class TestProviderRegistry:
    """Tests for provider lookup."""

    def test_available_providers(self) -> None:
        assert get_available_providers() == ["census", "nominatim"]

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown geocoder provider"):
            get_geocoder("bogus")

    def test_from_settings(self, settings) -> None:  # noqa: ANN001
        geocoder = geocoder_from_settings(settings)
        assert isinstance(geocoder, NominatimGeocoder)
        census = geocoder_from_settings(settings.model_copy(update={"geocoder_provider": "Census"}))
        assert isinstance(census, CensusGeocoder)


class TestProviderError:
    """Tests for transient classification."""

    @pytest.mark.parametrize(
        ("status_code", "transient"),
        [(None, True), (429, True), (500, True), (504, True), (400, False), (404, False)],
    )
    def test_transient_from_status(self, status_code: int | None, transient: bool) -> None:
        assert GeocodingProviderError("p", "m", status_code).transient is transient

    def test_explicit_override(self) -> None:
        assert GeocodingProviderError("p", "m", transient=False).transient is False
