"""Geocode worker pool.

A fixed set of asyncio workers pulls rows from a ``FairJobQueue`` (round-robin
across jobs, bounded per job), geocodes each one, and records the outcome,
the progress advance and the quota charge in a single transaction. Row-level
geocoding failures are stored as row errors; anything that prevents a row
from being recorded fails the whole job.
"""

import asyncio
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smartgeocode.core.background import FairJobQueue, QueueClosedError
from smartgeocode.core.config import Settings
from smartgeocode.lib.geocoder import (
    BaseGeocoder,
    GeocodingProviderError,
    MalformedAddressError,
    validate_address_fields,
)
from smartgeocode.models.batch_row import RowStatus
from smartgeocode.services import batch_service, job_store, quota_service
from smartgeocode.services.geocoding_service import geocode_with_retry
from smartgeocode.services.job_store import PendingRow, RowOutcome


@dataclass(frozen=True)
class _JobContext:
    owner_id: uuid.UUID
    billing_period: str


class JobRecordError(Exception):
    """Raised when a row outcome could not be recorded against its job."""


class GeocodeWorkerPool:
    """Bounded pool of geocoding workers shared by all batch jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        geocoder: BaseGeocoder,
        *,
        worker_count: int = 8,
        per_job_concurrency: int = 4,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        charge_failed_rows: bool = True,
    ) -> None:
        if worker_count < 1:
            msg = "worker_count must be at least 1"
            raise ValueError(msg)
        self._session_factory = session_factory
        self._geocoder = geocoder
        self._worker_count = worker_count
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._charge_failed_rows = charge_failed_rows
        self._queue: FairJobQueue[uuid.UUID, PendingRow] = FairJobQueue(per_job_concurrency)
        self._jobs: dict[uuid.UUID, _JobContext] = {}
        self._started_jobs: set[uuid.UUID] = set()
        self._failed_jobs: set[uuid.UUID] = set()
        self._settled: dict[uuid.UUID, asyncio.Event] = {}
        self._start_lock = asyncio.Lock()
        self._throttle_lock = asyncio.Lock()
        self._last_call = 0.0
        self._workers: list[asyncio.Task[None]] = []

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        geocoder: BaseGeocoder,
        settings: Settings,
    ) -> "GeocodeWorkerPool":
        return cls(
            session_factory,
            geocoder,
            worker_count=settings.worker_count,
            per_job_concurrency=settings.per_job_concurrency,
            max_retries=settings.geocoder_max_retries,
            retry_base_delay=settings.geocoder_retry_base_delay,
            charge_failed_rows=settings.quota_charge_failed_rows,
        )

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Spawn the worker tasks. Must be called from a running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"geocode-worker-{n}") for n in range(self._worker_count)
        ]
        logger.info(f"Geocode worker pool started with {self._worker_count} workers ({self._geocoder.provider_name})")

    async def stop(self) -> None:
        """Stop all workers; rows still queued stay pending in the store."""
        await self._queue.close()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        for event in self._settled.values():
            event.set()
        self._settled.clear()
        logger.info("Geocode worker pool stopped")

    async def enqueue(
        self,
        job_id: uuid.UUID,
        owner_id: uuid.UUID,
        billing_period: str,
        rows: Iterable[PendingRow],
    ) -> None:
        """Schedule the rows of a job for geocoding."""
        rows = list(rows)
        self._jobs[job_id] = _JobContext(owner_id=owner_id, billing_period=billing_period)
        self._failed_jobs.discard(job_id)
        self._settled.setdefault(job_id, asyncio.Event())
        await self._queue.put(job_id, rows)
        logger.debug(f"Batch {job_id}: {len(rows)} rows enqueued")
        if not rows:
            await self._finish_job(job_id)

    async def wait_for_job(self, job_id: uuid.UUID) -> None:
        """Wait until every enqueued row of a job has been handled and the job settled."""
        event = self._settled.get(job_id)
        if event is not None:
            await event.wait()

    async def _worker(self, number: int) -> None:
        while True:
            try:
                job_id, row = await self._queue.get()
            except QueueClosedError:
                return

            try:
                if job_id not in self._failed_jobs:
                    await self._process(job_id, row)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Worker {number}: batch {job_id} row {row.row_index} could not be recorded")
                await self._fail_job(job_id, f"Processing fault: {e}")

            if await self._queue.task_done(job_id):
                await self._finish_job(job_id)

    async def _process(self, job_id: uuid.UUID, row: PendingRow) -> None:
        if not await self._ensure_started(job_id):
            return
        outcome, attempted = await self._geocode_row(row)
        await self._record(job_id, row.row_index, outcome, attempted=attempted)

    async def _ensure_started(self, job_id: uuid.UUID) -> bool:
        """Move the job to processing when its first row is dispatched."""
        if job_id in self._started_jobs:
            return True
        async with self._start_lock:
            if job_id in self._started_jobs:
                return True
            if not await batch_service.mark_processing(self._session_factory, job_id):
                # Already terminal (e.g. failed by another instance)
                self._failed_jobs.add(job_id)
                await self._queue.discard(job_id)
                return False
            self._started_jobs.add(job_id)
            return True

    async def _throttle(self) -> None:
        delay = self._geocoder.rate_limit_delay
        if delay <= 0:
            return
        loop = asyncio.get_running_loop()
        async with self._throttle_lock:
            wait = self._last_call + delay - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_call = loop.time()

    async def _geocode_row(self, row: PendingRow) -> tuple[RowOutcome, bool]:
        """Geocode one row; returns its outcome and whether the provider was called."""
        try:
            fields = validate_address_fields(row.fields)
        except MalformedAddressError as e:
            return RowOutcome.error(f"Malformed address: {e}"), False

        await self._throttle()
        try:
            result = await geocode_with_retry(
                self._geocoder,
                fields,
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
            )
        except GeocodingProviderError as e:
            return RowOutcome.error(f"Provider error: {e.message}"), True
        except Exception:
            logger.exception(f"Provider {self._geocoder.provider_name} failed unexpectedly on row {row.row_index}")
            return RowOutcome.error("Provider error: unexpected response"), True

        if result is None:
            return RowOutcome.error("Address not found"), True
        return RowOutcome.ok(result.latitude, result.longitude, result.formatted_address), True

    async def _record(self, job_id: uuid.UUID, row_index: int, outcome: RowOutcome, *, attempted: bool) -> None:
        """Write a row outcome, advance progress and settle its quota in one transaction.

        Rows the provider never saw (malformed addresses) are not charged.
        """
        context = self._jobs[job_id]
        async with self._session_factory() as session:
            try:
                job = await job_store.lock_job(session, job_id)
                if job is None:
                    msg = f"Batch {job_id} disappeared while processing"
                    raise JobRecordError(msg)

                if not await job_store.append_result(session, job_id, row_index, outcome):
                    # Repeated delivery or job already terminal
                    await session.rollback()
                    return

                processed = await job_store.count_processed(session, job_id)
                await job_store.advance(session, job_id, processed)

                if outcome.status == RowStatus.OK:
                    charged = 1
                else:
                    charged = 1 if attempted and self._charge_failed_rows else 0
                await quota_service.commit(session, context.owner_id, context.billing_period, 1, charged=charged)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _finish_job(self, job_id: uuid.UUID) -> None:
        """Settle a drained job: complete it unless a fault already failed it."""
        self._started_jobs.discard(job_id)
        self._jobs.pop(job_id, None)
        try:
            if job_id in self._failed_jobs:
                self._failed_jobs.discard(job_id)
                return
            try:
                await batch_service.complete_job(self._session_factory, job_id)
            except Exception as e:
                logger.exception(f"Batch {job_id} could not be completed")
                await self._mark_failed(job_id, f"Could not finalize results: {e}")
        finally:
            event = self._settled.pop(job_id, None)
            if event is not None:
                event.set()

    async def _fail_job(self, job_id: uuid.UUID, reason: str) -> None:
        """Stop a job after a fault; its in-flight rows finish but are not recorded."""
        if job_id in self._failed_jobs:
            return
        self._failed_jobs.add(job_id)
        dropped = await self._queue.discard(job_id)
        if dropped:
            logger.warning(f"Batch {job_id}: dropped {dropped} queued rows after a job fault")
        await self._mark_failed(job_id, reason)

    async def _mark_failed(self, job_id: uuid.UUID, reason: str) -> None:
        try:
            await batch_service.fail_job(self._session_factory, job_id, reason)
        except Exception:
            logger.exception(f"Batch {job_id} could not be marked failed")
