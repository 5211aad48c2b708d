"""Batch job API endpoints — upload, status polling, history, and result download."""

import uuid

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from smartgeocode.core.config import Settings
from smartgeocode.core.database import get_session_factory
from smartgeocode.core.dependencies import get_app_settings, get_async_session, get_current_account, get_worker_pool
from smartgeocode.lib.exporter import sample_csv
from smartgeocode.models.account import Account
from smartgeocode.schemas.batch import (
    BatchListResponse,
    BatchRowResponse,
    BatchStatusResponse,
    BatchSubmitResponse,
    BatchSummaryResponse,
)
from smartgeocode.schemas.common import ErrorResponse
from smartgeocode.services.batch_service import (
    download_batch_result,
    get_batch_status,
    list_batches,
    stream_batch_result,
    submit_batch,
)
from smartgeocode.services.worker_pool import GeocodeWorkerPool

batches_router = APIRouter(prefix="/batches", tags=["batches"])


@batches_router.post(
    "",
    response_model=BatchSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={403: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def upload_batch(
    file: UploadFile = File(..., description="CSV with an 'address' column"),  # noqa: B008
    session: AsyncSession = Depends(get_async_session),  # noqa: B008
    account: Account = Depends(get_current_account),  # noqa: B008
    pool: GeocodeWorkerPool = Depends(get_worker_pool),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> BatchSubmitResponse:
    """Upload a CSV of addresses and start a batch geocoding job."""
    content = await file.read()
    submitted = await submit_batch(
        session,
        pool,
        account.id,
        content,
        file_name=file.filename,
        settings=settings,
    )
    return BatchSubmitResponse(
        batch_id=submitted.job.id,
        total_rows=submitted.job.total_rows,
        skipped_rows=submitted.skipped_rows,
        status=submitted.job.status,
    )


@batches_router.get("", response_model=BatchListResponse)
async def list_batch_history(
    session: AsyncSession = Depends(get_async_session),  # noqa: B008
    account: Account = Depends(get_current_account),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> BatchListResponse:
    """List the account's batch jobs, most recent first."""
    jobs = await list_batches(session, account.id, limit=settings.batch_history_limit)
    return BatchListResponse(items=[BatchSummaryResponse.model_validate(job) for job in jobs])


@batches_router.get("/sample", response_class=PlainTextResponse)
async def download_sample() -> PlainTextResponse:
    """Download a template CSV with the supported header."""
    return PlainTextResponse(
        sample_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="sample.csv"'},
    )


@batches_router.get(
    "/{batch_id}",
    response_model=BatchStatusResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def get_batch(
    batch_id: uuid.UUID,
    session: AsyncSession = Depends(get_async_session),  # noqa: B008
    account: Account = Depends(get_current_account),  # noqa: B008
    settings: Settings = Depends(get_app_settings),  # noqa: B008
) -> BatchStatusResponse:
    """Poll the status of a batch job, with the most recently processed rows."""
    view = await get_batch_status(session, batch_id, account.id, preview_size=settings.batch_preview_size)
    job = view.job
    return BatchStatusResponse(
        batch_id=job.id,
        status=job.status,
        processed_rows=job.processed_rows,
        total_rows=job.total_rows,
        succeeded_rows=job.succeeded_rows,
        failed_rows=job.failed_rows,
        preview_rows=[BatchRowResponse.model_validate(row) for row in view.preview_rows],
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


@batches_router.get(
    "/{batch_id}/download",
    response_class=StreamingResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def download_batch(
    batch_id: uuid.UUID,
    session: AsyncSession = Depends(get_async_session),  # noqa: B008
    account: Account = Depends(get_current_account),  # noqa: B008
) -> StreamingResponse:
    """Download the result CSV of a batch job (rows processed so far while it runs)."""
    job = await download_batch_result(session, batch_id, account.id)
    filename = job.result_handle or f"batch-{job.id}.csv"
    return StreamingResponse(
        stream_batch_result(get_session_factory(), job.id),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
