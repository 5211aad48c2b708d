"""Async HTTP client for the SmartGeocode API.

Maps HTTP failures onto a small exception taxonomy so callers can decide
what to retry: ``TransientApiError`` (network trouble, 429, 5xx) may be
retried, ``SessionExpiredError`` (401) requires signing in again, and any
other ``ApiError`` should be shown to the user once.
"""

import uuid
from typing import Any, TypeVar

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from smartgeocode.schemas.batch import (
    BatchListResponse,
    BatchStatusResponse,
    BatchSubmitResponse,
    BatchSummaryResponse,
)
from smartgeocode.schemas.geocoding import GeocodeResponse
from smartgeocode.schemas.usage import UsageResponse

DEFAULT_TIMEOUT = 10.0

M = TypeVar("M", bound=BaseModel)


class ApiError(Exception):
    """Raised when the API rejects a request."""

    def __init__(self, status_code: int | None, detail: str, code: str | None = None) -> None:
        self.status_code = status_code
        self.detail = detail
        self.code = code
        super().__init__(f"[{status_code}] {detail}" if status_code else detail)


class QuotaExceededApiError(ApiError):
    """The account's monthly limit does not cover the request."""


class TransientApiError(ApiError):
    """The request failed for a reason that may clear up on retry."""


class SessionExpiredError(ApiError):
    """The credential is invalid or expired; the user must sign in again."""


class BatchApiClient:
    """Client for the batch, lookup and usage endpoints.

    After a 401 the client forgets its credential, and every later call
    raises ``SessionExpiredError`` without sending a request.

    Args:
        base_url: API root including the version prefix, e.g. ``http://host/api/v1``.
        token: Bearer credential issued by the auth service.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token = token
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    @property
    def has_credential(self) -> bool:
        return self._token is not None

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BatchApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if self._token is None:
            raise SessionExpiredError(401, "Session expired. Please sign in again.", "session_expired")

        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.debug(f"{method} {path} failed: {type(e).__name__}")
            raise TransientApiError(None, f"Network error: {type(e).__name__}") from e

        if response.is_success:
            return response

        detail, code = _error_body(response)
        if response.status_code == 401:
            self._token = None
            raise SessionExpiredError(401, detail, code or "session_expired")
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientApiError(response.status_code, detail, code)
        if code == "quota_exceeded":
            raise QuotaExceededApiError(response.status_code, detail, code)
        raise ApiError(response.status_code, detail, code)

    async def submit_batch(self, content: bytes, file_name: str = "upload.csv") -> BatchSubmitResponse:
        """Upload a CSV; returns the queued batch id and its row count."""
        response = await self._request("POST", "/batches", files={"file": (file_name, content, "text/csv")})
        return _parse(response, BatchSubmitResponse)

    async def get_batch_status(self, batch_id: uuid.UUID | str) -> BatchStatusResponse:
        response = await self._request("GET", f"/batches/{batch_id}")
        return _parse(response, BatchStatusResponse)

    async def list_batches(self) -> list[BatchSummaryResponse]:
        response = await self._request("GET", "/batches")
        return _parse(response, BatchListResponse).items

    async def download_batch(self, batch_id: uuid.UUID | str) -> bytes:
        response = await self._request("GET", f"/batches/{batch_id}/download")
        return response.content

    async def get_usage(self) -> UsageResponse:
        response = await self._request("GET", "/usage")
        return _parse(response, UsageResponse)

    async def geocode(self, address: str) -> GeocodeResponse:
        response = await self._request("GET", "/geocode", params={"address": address})
        return _parse(response, GeocodeResponse)


def _parse(response: httpx.Response, model: type[M]) -> M:
    """Validate a success body; an unreadable one (e.g. a proxy error page) is treated as transient."""
    try:
        return model.model_validate_json(response.content)
    except ValidationError as e:
        logger.debug(f"Unreadable {model.__name__} body from {response.request.url.path}: {e.error_count()} errors")
        msg = f"Unexpected response from the API ({response.status_code})"
        raise TransientApiError(response.status_code, msg) from e


def _error_body(response: httpx.Response) -> tuple[str, str | None]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, None
    if not isinstance(body, dict):
        return str(body), None
    detail = body.get("detail")
    if not isinstance(detail, str):
        detail = str(detail) if detail is not None else response.reason_phrase
    return detail, body.get("code")
