"""Client library — HTTP client and batch status poller.

Public API:
    - BatchApiClient: Async client for the batch, lookup and usage endpoints
    - BatchPoller: Single-loop status poller with once-per-batch notification
    - ApiError / QuotaExceededApiError / TransientApiError / SessionExpiredError
"""

from smartgeocode.lib.client.api import (
    ApiError,
    BatchApiClient,
    QuotaExceededApiError,
    SessionExpiredError,
    TransientApiError,
)
from smartgeocode.lib.client.poller import DEFAULT_POLL_INTERVAL, BatchPoller

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "ApiError",
    "BatchApiClient",
    "BatchPoller",
    "QuotaExceededApiError",
    "SessionExpiredError",
    "TransientApiError",
]
