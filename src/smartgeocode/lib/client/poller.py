"""Client-side batch status polling.

``BatchPoller`` keeps at most one polling task alive. Starting a poll for a
new batch cancels and awaits the previous task first, so intervals never
overlap, and ``close`` (or leaving ``async with``) tears the task down
deterministically.
"""

import asyncio
import inspect
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from smartgeocode.lib.client.api import ApiError, BatchApiClient, SessionExpiredError, TransientApiError
from smartgeocode.schemas.batch import BatchStatusResponse

DEFAULT_POLL_INTERVAL = 2.0
TERMINAL_STATUSES = frozenset({"complete", "failed"})

Callback = Callable[..., Awaitable[None] | None]


async def _emit(callback: Callback | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class BatchPoller:
    """Poll one batch at a time until it reaches a terminal status.

    Every tick fetches the batch status and then the usage ledger, so the
    displayed usage follows the charges made as rows complete. When a
    terminal status is observed, ``on_terminal`` fires once per batch (even
    across restarts of the poll) and the history is refreshed.

    Callbacks may be plain functions or coroutines:
        on_status(BatchStatusResponse), on_usage(UsageResponse),
        on_terminal(BatchStatusResponse), on_history(list[BatchSummaryResponse]),
        on_session_expired(), on_error(ApiError).
    """

    def __init__(
        self,
        client: BatchApiClient,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_status: Callback | None = None,
        on_usage: Callback | None = None,
        on_terminal: Callback | None = None,
        on_history: Callback | None = None,
        on_session_expired: Callback | None = None,
        on_error: Callback | None = None,
    ) -> None:
        if interval <= 0:
            msg = "interval must be positive"
            raise ValueError(msg)
        self._client = client
        self._interval = interval
        self._on_status = on_status
        self._on_usage = on_usage
        self._on_terminal = on_terminal
        self._on_history = on_history
        self._on_session_expired = on_session_expired
        self._on_error = on_error
        self._task: asyncio.Task[None] | None = None
        self._batch_id: uuid.UUID | None = None
        self._notified: set[uuid.UUID] = set()

    @property
    def active_batch_id(self) -> uuid.UUID | None:
        return self._batch_id if self.running else None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def was_notified(self, batch_id: uuid.UUID | str) -> bool:
        return uuid.UUID(str(batch_id)) in self._notified

    async def start(self, batch_id: uuid.UUID | str) -> None:
        """Begin polling ``batch_id``, stopping any poll already running."""
        await self.stop()
        self._batch_id = uuid.UUID(str(batch_id))
        self._task = asyncio.create_task(self._run(self._batch_id), name=f"poll-batch-{self._batch_id}")

    async def stop(self) -> None:
        """Cancel the active poll and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Previous poll ended with an error")

    async def wait(self) -> None:
        """Wait for the active poll to end on its own."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def close(self) -> None:
        await self.stop()
        self._batch_id = None

    async def __aenter__(self) -> "BatchPoller":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def poll_once(self, batch_id: uuid.UUID | str) -> bool:
        """Run a single tick.

        Returns:
            True if polling should stop (terminal status, expired session,
            or a non-retryable error), False to poll again.
        """
        batch_id = uuid.UUID(str(batch_id))
        try:
            status = await self._client.get_batch_status(batch_id)
            await _emit(self._on_status, status)
            usage = await self._client.get_usage()
            await _emit(self._on_usage, usage)
        except SessionExpiredError:
            logger.warning(f"Session expired while polling batch {batch_id}; stopping")
            await _emit(self._on_session_expired)
            return True
        except TransientApiError as e:
            logger.debug(f"Transient error polling batch {batch_id}, retrying next tick: {e}")
            return False
        except ApiError as e:
            logger.warning(f"Polling batch {batch_id} failed: {e}")
            await _emit(self._on_error, e)
            return True

        if status.status in TERMINAL_STATUSES:
            await self._notify_terminal(status)
            return True
        return False

    async def _run(self, batch_id: uuid.UUID) -> None:
        try:
            while not await self.poll_once(batch_id):
                await asyncio.sleep(self._interval)
        except Exception:
            # A failing callback ends this poll only
            logger.exception(f"Polling batch {batch_id} stopped unexpectedly")

    async def _notify_terminal(self, status: BatchStatusResponse) -> None:
        if status.batch_id in self._notified:
            return
        self._notified.add(status.batch_id)
        await _emit(self._on_terminal, status)

        try:
            history = await self._client.list_batches()
        except SessionExpiredError:
            await _emit(self._on_session_expired)
            return
        except ApiError as e:
            logger.debug(f"History refresh after batch {status.batch_id} failed: {e}")
            return
        await _emit(self._on_history, history)
