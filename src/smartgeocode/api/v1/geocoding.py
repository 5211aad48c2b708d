"""Single-address geocoding endpoint."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from smartgeocode.core.config import Settings
from smartgeocode.core.dependencies import get_app_settings, get_async_session, get_current_account, get_geocoder
from smartgeocode.lib.geocoder import BaseGeocoder, GeocodingProviderError
from smartgeocode.models.account import Account
from smartgeocode.schemas.common import ErrorResponse
from smartgeocode.schemas.geocoding import GeocodeResponse
from smartgeocode.services.geocoding_service import geocode_single_address

geocoding_router = APIRouter(tags=["geocoding"])


@geocoding_router.get(
    "/geocode",
    response_model=GeocodeResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def geocode_address(
    address: str = Query(  # noqa: B008
        ...,
        min_length=1,
        max_length=500,
        description="Freeform address to geocode (1-500 characters)",
    ),
    session: AsyncSession = Depends(get_async_session),  # noqa: B008
    account: Account = Depends(get_current_account),  # noqa: B008
    geocoder: BaseGeocoder = Depends(get_geocoder),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> GeocodeResponse:
    """Geocode one address. Counts against the account's monthly limit."""
    try:
        result = await geocode_single_address(session, account.id, address, geocoder=geocoder, settings=settings)
    except GeocodingProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Geocoding provider is temporarily unavailable. Please retry later.",
        ) from e

    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Address could not be geocoded. The provider could not match it to a location.",
        )

    return GeocodeResponse(
        address=address.strip(),
        lat=result.latitude,
        lng=result.longitude,
        formatted_address=result.formatted_address,
        confidence=result.confidence_score,
        provider=geocoder.provider_name,
    )
