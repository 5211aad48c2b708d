"""Batch service — submission, lifecycle transitions and read projections of batch jobs.

State machine::

    queued ──> processing ──> complete
       │            │
       └────────────┴──────> failed

``complete`` and ``failed`` are terminal. Row-level geocoding errors are
data on the rows; only a system fault (unreadable input, unwritable
output, quota settlement failure) fails the job.
"""

import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smartgeocode.core.config import Settings
from smartgeocode.core.logging import job_logger
from smartgeocode.lib.batch_csv import BatchValidationError, parse_batch_csv
from smartgeocode.lib.exporter import render_csv_stream
from smartgeocode.models.batch_job import BatchJob, BatchStatus
from smartgeocode.models.batch_row import BatchRow
from smartgeocode.services import job_store, quota_service
from smartgeocode.services.job_store import PendingRow

if TYPE_CHECKING:
    from smartgeocode.services.worker_pool import GeocodeWorkerPool


class BatchNotFoundError(Exception):
    """Raised when a batch job does not exist."""


class BatchAccessDeniedError(Exception):
    """Raised when an account asks for a batch it does not own."""


@dataclass(frozen=True)
class SubmittedBatch:
    """Outcome of an accepted upload."""

    job: BatchJob
    skipped_rows: int


@dataclass(frozen=True)
class BatchStatusView:
    """Polling projection: the job plus its live preview rows."""

    job: BatchJob
    preview_rows: list[BatchRow]


async def submit_batch(
    session: AsyncSession,
    pool: "GeocodeWorkerPool",
    owner_id: uuid.UUID,
    content: bytes,
    *,
    file_name: str | None,
    settings: Settings,
) -> SubmittedBatch:
    """Validate an upload, reserve quota for it and start processing.

    The quota reservation and the job record are committed together, so a
    rejected upload leaves neither a job nor a charge behind.

    Args:
        session: Database session.
        pool: Worker pool the rows are handed to.
        owner_id: Submitting account.
        content: Raw CSV bytes.
        file_name: Original upload name, kept for the history view.
        settings: Application settings.

    Returns:
        SubmittedBatch with the queued job.

    Raises:
        BatchValidationError: If the file is too large, unreadable, or has no valid rows.
        QuotaExceededError: If the account cannot afford every row.
    """
    max_bytes = settings.batch_max_file_size_mb * 1024 * 1024
    if len(content) > max_bytes:
        msg = f"Uploaded file exceeds {settings.batch_max_file_size_mb} MB"
        raise BatchValidationError(msg)

    parsed = parse_batch_csv(content, max_rows=settings.batch_max_rows)
    period = quota_service.current_period()

    try:
        await quota_service.check_and_reserve(session, owner_id, parsed.total_rows, settings=settings, period=period)
        job = await job_store.create(session, owner_id, parsed.rows, billing_period=period, file_name=file_name)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    job_logger(job.id, owner_id=str(owner_id)).info(
        f"Batch submitted: {job.total_rows} rows ({parsed.skipped_rows} skipped), period {period}"
    )

    rows = [PendingRow(row_index=index, fields=fields) for index, fields in enumerate(parsed.rows)]
    await pool.enqueue(job.id, owner_id, period, rows)
    return SubmittedBatch(job=job, skipped_rows=parsed.skipped_rows)


async def mark_processing(session_factory: async_sessionmaker[AsyncSession], job_id: uuid.UUID) -> bool:
    """Move a job to ``processing`` as its first row is dispatched.

    Returns:
        True if the job may be processed (it is now processing), False if it
        is already terminal.
    """
    async with session_factory() as session:
        job = await job_store.lock_job(session, job_id)
        if job is None:
            msg = f"Batch {job_id} not found"
            raise BatchNotFoundError(msg)
        status = BatchStatus(job.status)
        if status.is_terminal:
            await session.rollback()
            return False
        if status == BatchStatus.QUEUED:
            await job_store.set_status(session, job_id, BatchStatus.PROCESSING)
            await session.commit()
            job_logger(job_id).info("Batch processing started")
        else:
            await session.rollback()
        return True


async def complete_job(session_factory: async_sessionmaker[AsyncSession], job_id: uuid.UUID) -> BatchJob:
    """Move a fully processed job to ``complete``.

    Raises:
        BatchNotFoundError: If the job does not exist.
        RuntimeError: If rows are still unprocessed.
    """
    async with session_factory() as session:
        job = await job_store.lock_job(session, job_id)
        if job is None:
            msg = f"Batch {job_id} not found"
            raise BatchNotFoundError(msg)
        # Rollback expires the instance; read everything needed first
        status = BatchStatus(job.status)
        processed, total = job.processed_rows, job.total_rows
        if status.is_terminal:
            await session.rollback()
            return await job_store.get(session, job_id)
        if processed != total:
            await session.rollback()
            msg = f"Batch {job_id} drained with {processed}/{total} rows processed"
            raise RuntimeError(msg)

        if status == BatchStatus.QUEUED:
            await job_store.set_status(session, job_id, BatchStatus.PROCESSING)
        await job_store.set_status(session, job_id, BatchStatus.COMPLETE)
        await session.commit()

        job = await job_store.get(session, job_id)
        job_logger(job_id).info(
            f"Batch complete: {job.succeeded_rows} succeeded, {job.failed_rows} failed of {job.total_rows}"
        )
        return job


async def fail_job(session_factory: async_sessionmaker[AsyncSession], job_id: uuid.UUID, reason: str) -> bool:
    """Move a job to ``failed`` and release the quota reserved for rows never attempted.

    Returns:
        True if the job transitioned, False if it was already terminal.
    """
    async with session_factory() as session:
        job = await job_store.lock_job(session, job_id)
        if job is None:
            msg = f"Batch {job_id} not found"
            raise BatchNotFoundError(msg)
        if BatchStatus(job.status).is_terminal:
            await session.rollback()
            return False

        unattempted = job.total_rows - job.processed_rows
        await job_store.set_status(session, job_id, BatchStatus.FAILED, error_message=reason)
        await quota_service.release(session, job.owner_id, job.billing_period, unattempted)
        await session.commit()

    job_logger(job_id).error(f"Batch failed after {job.processed_rows}/{job.total_rows} rows: {reason}")
    return True


async def _get_owned(session: AsyncSession, batch_id: uuid.UUID, owner_id: uuid.UUID) -> BatchJob:
    job = await job_store.get(session, batch_id)
    if job is None:
        msg = f"Batch {batch_id} not found"
        raise BatchNotFoundError(msg)
    if job.owner_id != owner_id:
        msg = f"Batch {batch_id} belongs to another account"
        raise BatchAccessDeniedError(msg)
    return job


async def get_batch_status(
    session: AsyncSession,
    batch_id: uuid.UUID,
    owner_id: uuid.UUID,
    *,
    preview_size: int = 50,
) -> BatchStatusView:
    """Return the polling projection of a job owned by ``owner_id``.

    Raises:
        BatchNotFoundError: If the job does not exist.
        BatchAccessDeniedError: If the job belongs to another account.
    """
    job = await _get_owned(session, batch_id, owner_id)
    preview_rows = await job_store.preview(session, batch_id, preview_size)
    return BatchStatusView(job=job, preview_rows=preview_rows)


async def list_batches(session: AsyncSession, owner_id: uuid.UUID, *, limit: int = 100) -> list[BatchJob]:
    """Return an account's batch history, most recent first."""
    return await job_store.list_by_owner(session, owner_id, limit=limit)


async def download_batch_result(session: AsyncSession, batch_id: uuid.UUID, owner_id: uuid.UUID) -> BatchJob:
    """Authorize a result download.

    Rows processed so far are available while the job is still running; a
    terminal job's artifact no longer changes.

    Raises:
        BatchNotFoundError: If the job does not exist.
        BatchAccessDeniedError: If the job belongs to another account.
    """
    return await _get_owned(session, batch_id, owner_id)


async def stream_batch_result(
    session_factory: async_sessionmaker[AsyncSession], batch_id: uuid.UUID
) -> AsyncIterator[str]:
    """Yield the result artifact of a job as CSV lines, in file order."""
    async with session_factory() as session:
        async for line in render_csv_stream(job_store.iter_results(session, batch_id)):
            yield line


async def resume_incomplete_jobs(
    session_factory: async_sessionmaker[AsyncSession], pool: "GeocodeWorkerPool"
) -> int:
    """Re-enqueue the pending rows of every queued or processing job.

    Called at startup so jobs interrupted by a restart continue where they
    stopped; rows already recorded are not geocoded or charged again.

    Returns:
        Number of jobs resumed.
    """
    async with session_factory() as session:
        jobs = await job_store.list_unfinished(session)
        work = [(job, await job_store.pending_rows(session, job.id)) for job in jobs]

    for job, rows in work:
        logger.info(f"Resuming batch {job.id}: {len(rows)} of {job.total_rows} rows pending")
        await pool.enqueue(job.id, job.owner_id, job.billing_period, rows)
    return len(work)
