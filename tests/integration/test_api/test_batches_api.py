"""Integration tests for the batch job endpoints."""

import asyncio
import csv
import io
import uuid
from collections.abc import Callable

import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smartgeocode.core.config import Settings
from smartgeocode.lib.geocoder import GeocodingProviderError, GeocodingResult
from smartgeocode.models.account import Account
from smartgeocode.services import quota_service
from smartgeocode.services.worker_pool import GeocodeWorkerPool

HOMES = b"address,city,state\n1 Main St,Atlanta,GA\n,Atlanta,GA\nN/A,Macon,GA\n2 Oak Ave,Athens,GA\n"


def _upload(content: bytes, name: str = "homes.csv") -> dict:
    return {"file": (name, content, "text/csv")}


async def _submit_and_wait(
    client: AsyncClient, worker_pool: GeocodeWorkerPool, headers: dict[str, str], content: bytes = HOMES
) -> str:
    response = await client.post("/api/v1/batches", files=_upload(content), headers=headers)
    assert response.status_code == 202
    batch_id = response.json()["batch_id"]
    await asyncio.wait_for(worker_pool.wait_for_job(uuid.UUID(batch_id)), timeout=10)
    return batch_id


class TestUploadBatch:
    """Tests for POST /api/v1/batches."""

    @pytest.mark.asyncio
    async def test_upload_accepted(self, client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await client.post("/api/v1/batches", files=_upload(HOMES), headers=auth_headers)

        assert response.status_code == 202
        data = response.json()
        assert data["total_rows"] == 2
        assert data["skipped_rows"] == 2
        assert data["status"] == "queued"
        uuid.UUID(data["batch_id"])

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient) -> None:
        response = await client.post("/api/v1/batches", files=_upload(HOMES))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token_rejected(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/batches", files=_upload(HOMES), headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Could not validate credentials"
        assert response.headers["WWW-Authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_deactivated_account_rejected(
        self, client: AsyncClient, make_account: Callable, token_for: Callable[[Account], str]
    ) -> None:
        inactive = await make_account(is_active=False)
        response = await client.post(
            "/api/v1/batches", files=_upload(HOMES), headers={"Authorization": f"Bearer {token_for(inactive)}"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_address_column(self, client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await client.post(
            "/api/v1/batches", files=_upload(b"street,city\nMain,Atlanta\n"), headers=auth_headers
        )

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"
        assert "address" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_only_placeholder_rows(self, client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await client.post("/api/v1/batches", files=_upload(b"address\nN/A\n\n"), headers=auth_headers)

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_missing_file_field(self, client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await client.post("/api/v1/batches", headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_quota_exceeded(
        self,
        client: AsyncClient,
        auth_headers: dict[str, str],
        account: Account,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> None:
        period = quota_service.current_period()
        async with session_factory() as session:
            await quota_service.check_and_reserve(session, account.id, 499, settings=settings, period=period)
            await quota_service.commit(session, account.id, period, 499)
            await session.commit()

        response = await client.post("/api/v1/batches", files=_upload(HOMES), headers=auth_headers)

        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "quota_exceeded"
        assert "1 of 500" in body["detail"]

        history = await client.get("/api/v1/batches", headers=auth_headers)
        assert history.json()["items"] == []

    @pytest.mark.asyncio
    async def test_pool_unavailable(self, app: FastAPI, client: AsyncClient, auth_headers: dict[str, str]) -> None:
        app.state.worker_pool = None
        response = await client.post("/api/v1/batches", files=_upload(HOMES), headers=auth_headers)
        assert response.status_code == 503


class TestBatchStatus:
    """Tests for GET /api/v1/batches/{batch_id}."""

    @pytest.mark.asyncio
    async def test_completed_batch(
        self, client: AsyncClient, auth_headers: dict[str, str], worker_pool: GeocodeWorkerPool
    ) -> None:
        batch_id = await _submit_and_wait(client, worker_pool, auth_headers)

        response = await client.get(f"/api/v1/batches/{batch_id}", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "complete"
        assert (data["processed_rows"], data["total_rows"]) == (2, 2)
        assert (data["succeeded_rows"], data["failed_rows"]) == (2, 0)
        assert data["completed_at"] is not None
        assert {row["address"] for row in data["preview_rows"]} == {"1 Main St", "2 Oak Ave"}
        assert {row["status"] for row in data["preview_rows"]} == {"ok"}
        assert data["preview_rows"][0]["lat"] == 40.0

    @pytest.mark.asyncio
    async def test_failed_rows_reported(
        self,
        client: AsyncClient,
        auth_headers: dict[str, str],
        worker_pool: GeocodeWorkerPool,
        stub_geocoder,  # noqa: ANN001
    ) -> None:
        stub_geocoder.answers["1 Main St"] = None
        stub_geocoder.answers["2 Oak Ave"] = GeocodingProviderError("stub", "bad request", 400)

        batch_id = await _submit_and_wait(client, worker_pool, auth_headers)
        data = (await client.get(f"/api/v1/batches/{batch_id}", headers=auth_headers)).json()

        assert data["status"] == "complete"
        assert (data["succeeded_rows"], data["failed_rows"]) == (0, 2)
        assert {row["status"] for row in data["preview_rows"]} == {"error"}
        assert all(row["error_reason"] for row in data["preview_rows"])

    @pytest.mark.asyncio
    async def test_unknown_batch(self, client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await client.get(f"/api/v1/batches/{uuid.uuid4()}", headers=auth_headers)

        assert response.status_code == 404
        assert response.json() == {"detail": "Batch not found", "code": "not_found"}

    @pytest.mark.asyncio
    async def test_invalid_batch_id(self, client: AsyncClient, auth_headers: dict[str, str]) -> None:
        response = await client.get("/api/v1/batches/not-a-uuid", headers=auth_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_other_accounts_batch_forbidden(
        self,
        client: AsyncClient,
        auth_headers: dict[str, str],
        worker_pool: GeocodeWorkerPool,
        make_account: Callable,
        token_for: Callable[[Account], str],
    ) -> None:
        batch_id = await _submit_and_wait(client, worker_pool, auth_headers)
        stranger = await make_account()
        stranger_headers = {"Authorization": f"Bearer {token_for(stranger)}"}

        status_response = await client.get(f"/api/v1/batches/{batch_id}", headers=stranger_headers)
        download_response = await client.get(f"/api/v1/batches/{batch_id}/download", headers=stranger_headers)

        assert status_response.status_code == 403
        assert status_response.json()["code"] == "forbidden"
        assert download_response.status_code == 403


class TestBatchHistory:
    """Tests for GET /api/v1/batches."""

    @pytest.mark.asyncio
    async def test_lists_own_batches(
        self,
        client: AsyncClient,
        auth_headers: dict[str, str],
        worker_pool: GeocodeWorkerPool,
        make_account: Callable,
        token_for: Callable[[Account], str],
    ) -> None:
        batch_id = await _submit_and_wait(client, worker_pool, auth_headers)
        stranger = await make_account()

        mine = (await client.get("/api/v1/batches", headers=auth_headers)).json()["items"]
        theirs = await client.get("/api/v1/batches", headers={"Authorization": f"Bearer {token_for(stranger)}"})

        assert [item["id"] for item in mine] == [batch_id]
        assert mine[0]["file_name"] == "homes.csv"
        assert mine[0]["status"] == "complete"
        assert theirs.json()["items"] == []

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient) -> None:
        assert (await client.get("/api/v1/batches")).status_code == 401


class TestDownload:
    """Tests for the result and sample CSV downloads."""

    @pytest.mark.asyncio
    async def test_result_csv(
        self,
        client: AsyncClient,
        auth_headers: dict[str, str],
        worker_pool: GeocodeWorkerPool,
        stub_geocoder,  # noqa: ANN001
    ) -> None:
        stub_geocoder.answers["2 Oak Ave"] = GeocodingResult(33.95, -83.38, formatted_address="2 Oak Ave, Athens, GA")
        batch_id = await _submit_and_wait(client, worker_pool, auth_headers)

        response = await client.get(f"/api/v1/batches/{batch_id}/download", headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert [row["address"] for row in rows] == ["1 Main St", "2 Oak Ave"]
        assert rows[1]["city"] == "Athens"
        assert rows[1]["lat"] == "33.95"
        assert rows[1]["formatted_address"] == "2 Oak Ave, Athens, GA"

    @pytest.mark.asyncio
    async def test_sample_csv(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/batches/sample")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.text.splitlines()[0] == "address,landmark,city,state,zip,country"
