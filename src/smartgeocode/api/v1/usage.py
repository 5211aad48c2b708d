"""Usage ledger endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from smartgeocode.core.config import Settings
from smartgeocode.core.dependencies import get_app_settings, get_async_session, get_current_account
from smartgeocode.models.account import Account
from smartgeocode.schemas.usage import UsageResponse
from smartgeocode.services import quota_service

usage_router = APIRouter(prefix="/usage", tags=["usage"])


@usage_router.get("", response_model=UsageResponse)
async def get_usage(
    session: AsyncSession = Depends(get_async_session),  # noqa: B008
    account: Account = Depends(get_current_account),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> UsageResponse:
    """Return this month's lookups used, reserved and allowed."""
    snapshot = await quota_service.current(session, account.id, settings=settings)
    return UsageResponse(
        used=snapshot.used,
        limit=snapshot.limit,
        reserved=snapshot.reserved,
        plan=snapshot.plan,
        billing_period=snapshot.billing_period,
    )
