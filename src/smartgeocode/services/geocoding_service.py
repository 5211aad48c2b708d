"""Geocoding service — provider calls with retry, and the quota-gated single-address lookup."""

import asyncio
import uuid

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from smartgeocode.core.config import Settings
from smartgeocode.lib.geocoder import (
    AddressFields,
    BaseGeocoder,
    GeocodingProviderError,
    GeocodingResult,
    clean_value,
    validate_address_fields,
)
from smartgeocode.services import quota_service


async def geocode_with_retry(
    geocoder: BaseGeocoder,
    fields: AddressFields,
    *,
    max_retries: int,
    base_delay: float,
) -> GeocodingResult | None:
    """Geocode with exponential backoff on transient provider errors.

    Permanent errors (4xx, unparseable responses) are raised on the first
    attempt; transient ones (timeouts, connection errors, 429, 5xx) are
    retried up to ``max_retries`` attempts in total.

    Returns:
        GeocodingResult, or None if the provider found no match.

    Raises:
        GeocodingProviderError: The last error once retries are exhausted,
            or the first permanent error.
    """
    for attempt in range(max_retries):
        try:
            return await geocoder.geocode(fields)
        except GeocodingProviderError as e:
            if not e.transient or attempt == max_retries - 1:
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                f"Transient {e.provider_name} error (attempt {attempt + 1}/{max_retries}), retrying in {delay}s: "
                f"{e.message}"
            )
            await asyncio.sleep(delay)

    msg = "max_retries must be at least 1"
    raise ValueError(msg)


async def geocode_single_address(
    session: AsyncSession,
    owner_id: uuid.UUID,
    address: str,
    *,
    geocoder: BaseGeocoder,
    settings: Settings,
) -> GeocodingResult | None:
    """Geocode one freeform address on behalf of an account.

    Reserves one lookup before calling the provider and settles it afterwards,
    so concurrent single lookups and batches from the same account share the
    ledger without ever exceeding the limit.

    Args:
        session: Database session.
        owner_id: Account performing the lookup.
        address: Freeform address string.
        geocoder: Provider to call.
        settings: Application settings (retry policy, quota policy).

    Returns:
        GeocodingResult on success, None if the provider found no match.

    Raises:
        MalformedAddressError: If the address cannot be geocoded at all (nothing is charged).
        QuotaExceededError: If the account has no lookups left (nothing is charged).
        GeocodingProviderError: If the provider fails after retries.
    """
    fields = validate_address_fields(AddressFields(address=clean_value(address) or ""))

    period = quota_service.current_period()
    try:
        await quota_service.check_and_reserve(session, owner_id, 1, settings=settings, period=period)
        await session.commit()
    except quota_service.QuotaExceededError:
        await session.rollback()
        raise

    charged = 1 if settings.quota_charge_failed_rows else 0
    try:
        result = await geocode_with_retry(
            geocoder,
            fields,
            max_retries=settings.geocoder_max_retries,
            base_delay=settings.geocoder_retry_base_delay,
        )
    except GeocodingProviderError:
        await quota_service.commit(session, owner_id, period, 1, charged=charged)
        await session.commit()
        raise
    except asyncio.CancelledError:
        # The request went away before the provider answered
        await quota_service.release(session, owner_id, period, 1)
        await session.commit()
        raise
    except Exception as e:
        logger.exception(f"Provider {geocoder.provider_name} failed unexpectedly on a single lookup")
        await quota_service.commit(session, owner_id, period, 1, charged=charged)
        await session.commit()
        msg = "Unexpected provider response"
        raise GeocodingProviderError(geocoder.provider_name, msg, transient=False) from e

    if result is not None:
        charged = 1
    await quota_service.commit(session, owner_id, period, 1, charged=charged)
    await session.commit()
    return result
