"""Quota ledger — per-account monthly lookup counter.

Every mutation is a single conditional UPDATE so the check and the
increment happen atomically in the database, across workers and server
instances. Batches reserve their rows up front; workers then move rows from
``reserved`` to ``used`` as they are attempted.
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import case, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from smartgeocode.core.config import Settings
from smartgeocode.models.account import Account
from smartgeocode.models.usage_ledger import UsageLedger


class QuotaExceededError(Exception):
    """Raised when a request would push usage past the plan limit.

    Nothing is charged or reserved when this is raised.
    """

    def __init__(self, *, requested: int, used: int, reserved: int, limit: int, plan: str) -> None:
        self.requested = requested
        self.used = used
        self.reserved = reserved
        self.limit = limit
        self.plan = plan
        remaining = max(limit - used - reserved, 0)
        super().__init__(
            f"Monthly limit reached: {requested} lookups requested, {remaining} of {limit} remaining on the "
            f"{plan} plan. Upgrade for a higher limit."
        )


class QuotaCommitError(Exception):
    """Raised when attempted rows exceed the reservation they were charged against."""


@dataclass(frozen=True)
class UsageSnapshot:
    """Point-in-time view of an account's ledger for one billing period."""

    used: int
    limit: int
    reserved: int
    plan: str
    billing_period: str

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used - self.reserved, 0)


def current_period(now: datetime | None = None) -> str:
    """Return the billing period key (UTC calendar month, ``YYYY-MM``)."""
    return (now or datetime.now(UTC)).strftime("%Y-%m")


async def resolve_plan(session: AsyncSession, owner_id: uuid.UUID, settings: Settings) -> str:
    """Read the account's plan as maintained by the billing collaborator."""
    result = await session.execute(select(Account.plan).where(Account.id == owner_id))
    plan = result.scalar_one_or_none()
    if not plan or plan.lower() not in settings.plan_limits:
        return settings.default_plan
    return plan.lower()


async def _ensure_ledger(session: AsyncSession, owner_id: uuid.UUID, period: str, plan: str, limit: int) -> None:
    """Create the ledger row for a period if it does not exist yet (insert-or-ignore)."""
    dialect = session.get_bind().dialect.name
    insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
    stmt = (
        insert(UsageLedger.__table__)
        .values(
            id=uuid.uuid4(),
            owner_id=owner_id,
            billing_period=period,
            plan=plan,
            used=0,
            reserved=0,
            lookup_limit=limit,
        )
        .on_conflict_do_nothing(index_elements=["owner_id", "billing_period"])
    )
    await session.execute(stmt)


async def _read_ledger(session: AsyncSession, owner_id: uuid.UUID, period: str) -> UsageLedger | None:
    result = await session.execute(
        select(UsageLedger)
        .where(UsageLedger.owner_id == owner_id, UsageLedger.billing_period == period)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def check_and_reserve(
    session: AsyncSession,
    owner_id: uuid.UUID,
    row_count: int,
    *,
    settings: Settings,
    period: str | None = None,
) -> UsageSnapshot:
    """Atomically reserve ``row_count`` lookups for an account.

    Runs inside the caller's transaction; the caller commits together with
    whatever the reservation pays for (e.g. the batch job record).

    Args:
        session: Database session.
        owner_id: Account ID.
        row_count: Number of lookups requested.
        settings: Application settings (plan limits).
        period: Billing period override (defaults to the current month).

    Returns:
        The ledger state after the reservation.

    Raises:
        QuotaExceededError: If ``used + reserved + row_count`` would exceed the limit.
        ValueError: If ``row_count`` is not positive.
    """
    if row_count <= 0:
        msg = "row_count must be positive"
        raise ValueError(msg)

    period = period or current_period()
    plan = await resolve_plan(session, owner_id, settings)
    limit = settings.limit_for_plan(plan)
    await _ensure_ledger(session, owner_id, period, plan, limit)

    result = await session.execute(
        update(UsageLedger)
        .where(
            UsageLedger.owner_id == owner_id,
            UsageLedger.billing_period == period,
            UsageLedger.used + UsageLedger.reserved + row_count <= limit,
        )
        .values(
            {
                UsageLedger.reserved: UsageLedger.reserved + row_count,
                UsageLedger.limit: limit,
                UsageLedger.plan: plan,
            }
        )
        .execution_options(synchronize_session=False)
    )

    ledger = await _read_ledger(session, owner_id, period)
    if ledger is None:  # pragma: no cover - row was ensured above
        msg = "Usage ledger row missing after insert"
        raise RuntimeError(msg)

    if result.rowcount != 1:
        logger.info(f"Quota exceeded for account {owner_id}: requested {row_count}, used {ledger.used}/{limit}")
        raise QuotaExceededError(
            requested=row_count, used=ledger.used, reserved=ledger.reserved, limit=limit, plan=plan
        )

    return UsageSnapshot(
        used=ledger.used, limit=ledger.limit, reserved=ledger.reserved, plan=plan, billing_period=period
    )


async def commit(
    session: AsyncSession,
    owner_id: uuid.UUID,
    period: str,
    attempted: int,
    *,
    charged: int | None = None,
) -> None:
    """Settle attempted lookups against an earlier reservation.

    ``attempted`` rows leave ``reserved``; ``charged`` of them (default: all)
    are added to ``used``. Runs inside the caller's transaction.

    Raises:
        QuotaCommitError: If the reservation does not cover ``attempted``.
    """
    charged = attempted if charged is None else charged
    if attempted < 0 or not (0 <= charged <= attempted):
        msg = f"Invalid quota commit: attempted={attempted}, charged={charged}"
        raise ValueError(msg)
    if attempted == 0:
        return

    result = await session.execute(
        update(UsageLedger)
        .where(
            UsageLedger.owner_id == owner_id,
            UsageLedger.billing_period == period,
            UsageLedger.reserved >= attempted,
        )
        .values(
            {
                UsageLedger.used: UsageLedger.used + charged,
                UsageLedger.reserved: UsageLedger.reserved - attempted,
            }
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        msg = f"No reservation covers {attempted} lookups for account {owner_id} in {period}"
        raise QuotaCommitError(msg)


async def release(session: AsyncSession, owner_id: uuid.UUID, period: str, count: int) -> None:
    """Return unused reserved lookups (e.g. rows of a failed job that were never attempted)."""
    if count <= 0:
        return
    await session.execute(
        update(UsageLedger)
        .where(UsageLedger.owner_id == owner_id, UsageLedger.billing_period == period)
        .values(
            {
                UsageLedger.reserved: case(
                    (UsageLedger.reserved >= count, UsageLedger.reserved - count),
                    else_=0,
                )
            }
        )
        .execution_options(synchronize_session=False)
    )


async def current(session: AsyncSession, owner_id: uuid.UUID, *, settings: Settings) -> UsageSnapshot:
    """Return the account's usage for the current billing period.

    The limit always reflects the account's current plan, so an upgrade is
    visible immediately.
    """
    period = current_period()
    plan = await resolve_plan(session, owner_id, settings)
    limit = settings.limit_for_plan(plan)
    ledger = await _read_ledger(session, owner_id, period)
    if ledger is None:
        return UsageSnapshot(used=0, limit=limit, reserved=0, plan=plan, billing_period=period)
    return UsageSnapshot(
        used=ledger.used, limit=limit, reserved=ledger.reserved, plan=plan, billing_period=period
    )
