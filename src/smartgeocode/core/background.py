"""Fair work queue for background job processing.

Holds work items grouped by job and hands them out round-robin across
jobs, so one large job cannot monopolize the workers while other
accounts' jobs wait. A per-job in-flight cap bounds how many items of a
single job are processed at once.
"""

import asyncio
from collections import OrderedDict, deque
from collections.abc import Hashable, Iterable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class QueueClosedError(Exception):
    """Raised by ``get`` once the queue has been closed."""


class FairJobQueue(Generic[K, T]):
    """Round-robin multi-job queue with a per-job concurrency limit.

    Workers call ``get`` to receive ``(job_key, item)`` and must call
    ``task_done(job_key)`` when the item is finished (success or failure).
    """

    def __init__(self, per_job_limit: int) -> None:
        if per_job_limit < 1:
            msg = "per_job_limit must be at least 1"
            raise ValueError(msg)
        self._per_job_limit = per_job_limit
        self._pending: OrderedDict[K, deque[T]] = OrderedDict()
        self._in_flight: dict[K, int] = {}
        self._drained: dict[K, asyncio.Event] = {}
        self._cond = asyncio.Condition()
        self._closed = False

    async def put(self, job_key: K, items: Iterable[T]) -> None:
        """Add items for a job; a job already in rotation keeps its place."""
        async with self._cond:
            if self._closed:
                msg = "Queue is closed"
                raise QueueClosedError(msg)
            queue = self._pending.setdefault(job_key, deque())
            queue.extend(items)
            self._in_flight.setdefault(job_key, 0)
            event = self._drained.setdefault(job_key, asyncio.Event())
            if queue:
                event.clear()
            elif self._in_flight[job_key] == 0:
                self._forget(job_key)
            self._cond.notify_all()

    def _next_ready(self) -> K | None:
        for job_key, queue in self._pending.items():
            if queue and self._in_flight[job_key] < self._per_job_limit:
                return job_key
        return None

    async def get(self) -> tuple[K, T]:
        """Wait for the next item, rotating across jobs.

        Raises:
            QueueClosedError: If the queue is closed while waiting.
        """
        async with self._cond:
            while True:
                if self._closed:
                    msg = "Queue is closed"
                    raise QueueClosedError(msg)
                job_key = self._next_ready()
                if job_key is not None:
                    break
                await self._cond.wait()

            item = self._pending[job_key].popleft()
            self._in_flight[job_key] += 1
            # Served job goes to the back of the rotation
            self._pending.move_to_end(job_key)
            return job_key, item

    async def task_done(self, job_key: K) -> bool:
        """Mark one item of a job finished.

        Returns:
            True if this was the job's last outstanding item (the job drained).
        """
        async with self._cond:
            if job_key not in self._drained:
                return False
            if self._in_flight[job_key] > 0:
                self._in_flight[job_key] -= 1
            drained = self._in_flight[job_key] == 0 and not self._pending.get(job_key)
            if drained:
                self._forget(job_key)
            self._cond.notify_all()
            return drained

    async def discard(self, job_key: K) -> int:
        """Drop all pending items of a job; in-flight items still finish.

        Returns:
            The number of items dropped.
        """
        async with self._cond:
            queue = self._pending.get(job_key)
            dropped = len(queue) if queue else 0
            if queue:
                queue.clear()
            if self._in_flight.get(job_key, 0) == 0 and job_key in self._drained:
                self._forget(job_key)
            self._cond.notify_all()
            return dropped

    def _forget(self, job_key: K) -> None:
        self._pending.pop(job_key, None)
        self._in_flight.pop(job_key, None)
        event = self._drained.pop(job_key, None)
        if event is not None:
            event.set()

    async def wait_drained(self, job_key: K) -> None:
        """Wait until a job has no pending or in-flight items."""
        event = self._drained.get(job_key)
        if event is not None:
            await event.wait()

    def has_job(self, job_key: K) -> bool:
        return job_key in self._drained

    def pending_count(self, job_key: K) -> int:
        queue = self._pending.get(job_key)
        return len(queue) if queue else 0

    async def close(self) -> None:
        """Wake all waiting workers with ``QueueClosedError`` and release job waiters."""
        async with self._cond:
            self._closed = True
            for job_key in list(self._drained):
                self._forget(job_key)
            self._cond.notify_all()
