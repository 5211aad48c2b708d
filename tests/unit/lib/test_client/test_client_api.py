"""Unit tests for the HTTP API client's error mapping."""

import uuid

import httpx
import pytest

from smartgeocode.lib.client import (
    ApiError,
    BatchApiClient,
    QuotaExceededApiError,
    SessionExpiredError,
    TransientApiError,
)

BASE_URL = "http://api.test/api/v1"
BATCH_ID = uuid.uuid4()


def _client(handler, token: str | None = "tok") -> BatchApiClient:  # noqa: ANN001
    return BatchApiClient(BASE_URL, token, transport=httpx.MockTransport(handler))


def _status_body(status: str = "processing") -> dict:
    return {
        "batch_id": str(BATCH_ID),
        "status": status,
        "processed_rows": 1,
        "total_rows": 3,
        "succeeded_rows": 1,
        "failed_rows": 0,
        "preview_rows": [],
        "created_at": "2026-01-05T12:00:00Z",
    }


class TestRequests:
    """Tests for request construction and response parsing."""

    @pytest.mark.asyncio
    async def test_bearer_header_and_status_parsing(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_status_body())

        async with _client(handler) as client:
            status = await client.get_batch_status(BATCH_ID)

        assert status.batch_id == BATCH_ID
        assert status.status == "processing"
        assert seen[0].headers["Authorization"] == "Bearer tok"
        assert seen[0].url.path == f"/api/v1/batches/{BATCH_ID}"

    @pytest.mark.asyncio
    async def test_submit_uploads_multipart_file(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                202, json={"batch_id": str(BATCH_ID), "total_rows": 2, "skipped_rows": 1, "status": "queued"}
            )

        async with _client(handler) as client:
            submitted = await client.submit_batch(b"address\n1 Main St\n", "homes.csv")

        assert submitted.total_rows == 2
        assert submitted.skipped_rows == 1
        assert seen[0].method == "POST"
        assert seen[0].headers["Content-Type"].startswith("multipart/form-data")
        assert b'filename="homes.csv"' in seen[0].content

    @pytest.mark.asyncio
    async def test_list_batches_unwraps_items(self) -> None:
        body = {
            "items": [
                {
                    "id": str(BATCH_ID),
                    "status": "complete",
                    "total_rows": 3,
                    "processed_rows": 3,
                    "succeeded_rows": 3,
                    "failed_rows": 0,
                    "created_at": "2026-01-05T12:00:00Z",
                }
            ]
        }
        async with _client(lambda r: httpx.Response(200, json=body)) as client:
            items = await client.list_batches()
        assert [item.id for item in items] == [BATCH_ID]

    @pytest.mark.asyncio
    async def test_download_returns_bytes(self) -> None:
        async with _client(lambda r: httpx.Response(200, content=b"address\n")) as client:
            assert await client.download_batch(BATCH_ID) == b"address\n"


class TestErrorMapping:
    """Tests for mapping HTTP failures onto client exceptions."""

    @pytest.mark.asyncio
    async def test_401_drops_credential(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401, json={"detail": "Could not validate credentials"})

        async with _client(handler) as client:
            with pytest.raises(SessionExpiredError):
                await client.get_usage()
            assert client.has_credential is False

            with pytest.raises(SessionExpiredError):
                await client.get_usage()

        assert calls == 1

    @pytest.mark.asyncio
    async def test_no_token_sends_nothing(self) -> None:
        calls: list[httpx.Request] = []
        async with _client(lambda r: calls.append(r) or httpx.Response(200), token=None) as client:
            with pytest.raises(SessionExpiredError):
                await client.list_batches()
        assert calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [429, 500, 502, 503])
    async def test_retryable_statuses(self, status_code: int) -> None:
        async with _client(lambda r: httpx.Response(status_code, json={"detail": "busy"})) as client:
            with pytest.raises(TransientApiError) as exc_info:
                await client.get_batch_status(BATCH_ID)
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(TransientApiError) as exc_info:
                await client.get_usage()
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_quota_code_maps_to_quota_error(self) -> None:
        body = {"detail": "Monthly limit reached", "code": "quota_exceeded"}
        async with _client(lambda r: httpx.Response(403, json=body)) as client:
            with pytest.raises(QuotaExceededApiError) as exc_info:
                await client.submit_batch(b"address\nx\n")
        assert exc_info.value.detail == "Monthly limit reached"

    @pytest.mark.asyncio
    async def test_other_client_errors(self) -> None:
        body = {"detail": "Batch not found", "code": "not_found"}
        async with _client(lambda r: httpx.Response(404, json=body)) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.get_batch_status(BATCH_ID)
        assert not isinstance(exc_info.value, TransientApiError)
        assert exc_info.value.code == "not_found"

    @pytest.mark.asyncio
    async def test_non_json_error_body(self) -> None:
        async with _client(lambda r: httpx.Response(400, text="bad upload")) as client:
            with pytest.raises(ApiError, match="bad upload"):
                await client.get_usage()

    @pytest.mark.asyncio
    async def test_unreadable_success_body_is_transient(self) -> None:
        async with _client(lambda r: httpx.Response(200, text="<html>proxy hiccup</html>")) as client:
            with pytest.raises(TransientApiError) as exc_info:
                await client.get_batch_status(BATCH_ID)
        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_unexpected_success_payload_is_transient(self) -> None:
        async with _client(lambda r: httpx.Response(200, json={"status": "bogus"})) as client:
            with pytest.raises(TransientApiError):
                await client.get_batch_status(BATCH_ID)
            with pytest.raises(TransientApiError):
                await client.list_batches()

    @pytest.mark.asyncio
    async def test_validation_detail_list_is_stringified(self) -> None:
        body = {"detail": [{"loc": ["query", "address"], "msg": "field required"}]}
        async with _client(lambda r: httpx.Response(422, json=body)) as client:
            with pytest.raises(ApiError) as exc_info:
                await client.geocode("")
        assert "field required" in exc_info.value.detail
