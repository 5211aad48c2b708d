"""Job store — durable batch job records and their row-level results.

The store is the single source of truth for job progress. Writes are
guarded SQL updates, so repeated or out-of-order calls from concurrent
workers can never rewind ``processed_rows``, push it past ``total_rows``,
or move a job out of a terminal state.
"""

import uuid
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from smartgeocode.lib.geocoder import AddressFields
from smartgeocode.models.batch_job import ALLOWED_TRANSITIONS, BatchJob, BatchStatus
from smartgeocode.models.batch_row import BatchRow, RowStatus


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed by the job state machine."""

    def __init__(self, job_id: uuid.UUID, current: str, requested: str) -> None:
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Batch {job_id}: cannot move from {current!r} to {requested!r}")


@dataclass(frozen=True)
class RowOutcome:
    """Geocoding outcome of one row."""

    status: RowStatus
    lat: float | None = None
    lng: float | None = None
    formatted_address: str | None = None
    error_reason: str | None = None

    def __post_init__(self) -> None:
        if self.status == RowStatus.PENDING:
            msg = "A row outcome cannot be pending"
            raise ValueError(msg)
        if (self.status == RowStatus.ERROR) != (self.error_reason is not None):
            msg = "error_reason must be set exactly when status is error"
            raise ValueError(msg)

    @classmethod
    def ok(cls, lat: float, lng: float, formatted_address: str | None) -> "RowOutcome":
        return cls(status=RowStatus.OK, lat=lat, lng=lng, formatted_address=formatted_address)

    @classmethod
    def error(cls, reason: str) -> "RowOutcome":
        return cls(status=RowStatus.ERROR, error_reason=reason)


@dataclass(frozen=True)
class PendingRow:
    """A row still waiting to be geocoded."""

    row_index: int
    fields: AddressFields


async def create(
    session: AsyncSession,
    owner_id: uuid.UUID,
    rows: Sequence[AddressFields],
    *,
    billing_period: str,
    file_name: str | None = None,
) -> BatchJob:
    """Create a queued job with one pending row per address.

    Flushes but does not commit; the lifecycle manager commits together with
    the quota reservation.
    """
    job = BatchJob(
        owner_id=owner_id,
        file_name=file_name,
        status=BatchStatus.QUEUED,
        total_rows=len(rows),
        processed_rows=0,
        succeeded_rows=0,
        failed_rows=0,
        billing_period=billing_period,
    )
    session.add(job)
    await session.flush()

    session.add_all(
        BatchRow(
            job_id=job.id,
            row_index=index,
            address=fields.address,
            landmark=fields.landmark,
            city=fields.city,
            state=fields.state,
            zip=fields.zip,
            country=fields.country,
            status=RowStatus.PENDING,
        )
        for index, fields in enumerate(rows)
    )
    await session.flush()
    return job


async def lock_job(session: AsyncSession, job_id: uuid.UUID) -> BatchJob | None:
    """Load a job with a row lock (``FOR UPDATE``) for the rest of the transaction.

    SQLite ignores the lock clause; its single-writer model already
    serializes the writes that follow.
    """
    result = await session.execute(
        select(BatchJob).where(BatchJob.id == job_id).with_for_update().execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def append_result(
    session: AsyncSession,
    job_id: uuid.UUID,
    row_index: int,
    outcome: RowOutcome,
) -> bool:
    """Record the outcome of a row.

    Only a pending row of a job that is still active is written, so a
    repeated call for the same row, or a late call after the job reached a
    terminal state, is a no-op. The row gets the next processing
    ``sequence`` of its job, which orders the live preview.

    Returns:
        True if the row was written, False otherwise.
    """
    prior = aliased(BatchRow)
    next_sequence = (
        select(func.coalesce(func.max(prior.sequence), 0) + 1)
        .where(prior.job_id == job_id)
        .scalar_subquery()
    )
    job_active = (
        select(BatchJob.id)
        .where(BatchJob.id == job_id, BatchJob.status.in_([BatchStatus.QUEUED, BatchStatus.PROCESSING]))
        .exists()
    )
    result = await session.execute(
        update(BatchRow)
        .where(
            BatchRow.job_id == job_id,
            BatchRow.row_index == row_index,
            BatchRow.status == RowStatus.PENDING,
            job_active,
        )
        .values(
            status=outcome.status,
            lat=outcome.lat,
            lng=outcome.lng,
            formatted_address=outcome.formatted_address,
            error_reason=outcome.error_reason,
            sequence=next_sequence,
            processed_at=datetime.now(UTC),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    counter = BatchJob.succeeded_rows if outcome.status == RowStatus.OK else BatchJob.failed_rows
    await session.execute(
        update(BatchJob)
        .where(BatchJob.id == job_id)
        .values({counter: counter + 1})
        .execution_options(synchronize_session=False)
    )
    return True


async def count_processed(session: AsyncSession, job_id: uuid.UUID) -> int:
    """Count rows of a job that have an outcome."""
    result = await session.execute(
        select(func.count())
        .select_from(BatchRow)
        .where(BatchRow.job_id == job_id, BatchRow.status != RowStatus.PENDING)
    )
    return result.scalar_one()


async def advance(session: AsyncSession, job_id: uuid.UUID, new_processed_count: int) -> bool:
    """Move ``processed_rows`` forward.

    A count lower than or equal to the stored one, or above ``total_rows``,
    leaves the job unchanged.

    Returns:
        True if the stored count changed.
    """
    result = await session.execute(
        update(BatchJob)
        .where(
            BatchJob.id == job_id,
            BatchJob.processed_rows < new_processed_count,
            BatchJob.total_rows >= new_processed_count,
        )
        .values(processed_rows=new_processed_count)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def set_status(
    session: AsyncSession,
    job_id: uuid.UUID,
    status: BatchStatus,
    *,
    error_message: str | None = None,
    result_handle: str | None = None,
) -> bool:
    """Transition a job to ``status`` if the state machine allows it.

    Setting the status a job already has is a no-op returning False, which
    makes concurrent "first row started" and "job finished" calls safe.

    Raises:
        InvalidTransitionError: For a transition the state machine forbids.
        LookupError: If the job does not exist.
    """
    job = await lock_job(session, job_id)
    if job is None:
        msg = f"Batch {job_id} not found"
        raise LookupError(msg)

    current = BatchStatus(job.status)
    if current == status:
        return False
    if status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(job_id, current, status)

    now = datetime.now(UTC)
    values: dict[str, object] = {"status": status}
    if status == BatchStatus.PROCESSING:
        values["started_at"] = now
        values["result_handle"] = result_handle or f"batch-{job_id}.csv"
    if status.is_terminal:
        values["completed_at"] = now
    if status == BatchStatus.FAILED:
        values["error_message"] = error_message

    result = await session.execute(
        update(BatchJob)
        .where(BatchJob.id == job_id, BatchJob.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get(session: AsyncSession, job_id: uuid.UUID) -> BatchJob | None:
    """Get a batch job by ID, reloading from the database."""
    result = await session.execute(
        select(BatchJob).where(BatchJob.id == job_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_by_owner(session: AsyncSession, owner_id: uuid.UUID, *, limit: int = 100) -> list[BatchJob]:
    """List an account's jobs, most recent first."""
    result = await session.execute(
        select(BatchJob)
        .where(BatchJob.owner_id == owner_id)
        .order_by(BatchJob.created_at.desc(), BatchJob.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def preview(session: AsyncSession, job_id: uuid.UUID, size: int) -> list[BatchRow]:
    """Return the last ``size`` processed rows, oldest first (processing order)."""
    result = await session.execute(
        select(BatchRow)
        .where(BatchRow.job_id == job_id, BatchRow.sequence.is_not(None))
        .order_by(BatchRow.sequence.desc())
        .limit(size)
    )
    rows = list(result.scalars().all())
    rows.reverse()
    return rows


async def pending_rows(session: AsyncSession, job_id: uuid.UUID) -> list[PendingRow]:
    """Return rows of a job that have not been geocoded yet, in file order."""
    result = await session.execute(
        select(BatchRow)
        .where(BatchRow.job_id == job_id, BatchRow.status == RowStatus.PENDING)
        .order_by(BatchRow.row_index)
    )
    return [
        PendingRow(
            row_index=row.row_index,
            fields=AddressFields(
                address=row.address,
                landmark=row.landmark,
                city=row.city,
                state=row.state,
                zip=row.zip,
                country=row.country,
            ),
        )
        for row in result.scalars().all()
    ]


async def list_unfinished(session: AsyncSession) -> list[BatchJob]:
    """Return jobs that are queued or processing, oldest first."""
    result = await session.execute(
        select(BatchJob)
        .where(BatchJob.status.in_([BatchStatus.QUEUED, BatchStatus.PROCESSING]))
        .order_by(BatchJob.created_at)
    )
    return list(result.scalars().all())


async def iter_results(
    session: AsyncSession, job_id: uuid.UUID, *, chunk_size: int = 1000
) -> AsyncIterator[dict[str, object]]:
    """Yield every row of a job as a dict, in file order.

    Pages by ``row_index`` so large results are streamed rather than loaded at once.
    """
    last_index = -1
    while True:
        result = await session.execute(
            select(BatchRow)
            .where(BatchRow.job_id == job_id, BatchRow.row_index > last_index)
            .order_by(BatchRow.row_index)
            .limit(chunk_size)
        )
        rows = list(result.scalars().all())
        if not rows:
            return
        for row in rows:
            yield {
                "address": row.address,
                "landmark": row.landmark,
                "city": row.city,
                "state": row.state,
                "zip": row.zip,
                "country": row.country,
                "status": row.status,
                "lat": row.lat,
                "lng": row.lng,
                "formatted_address": row.formatted_address,
                "error_reason": row.error_reason,
            }
        last_index = rows[-1].row_index
