"""Pydantic v2 schemas for batch geocoding jobs."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class BatchSubmitResponse(BaseModel):
    """Returned when an upload is accepted as a batch job."""

    batch_id: uuid.UUID
    total_rows: int
    skipped_rows: int = Field(default=0, description="Rows dropped because the address was blank or N/A")
    status: str


class BatchRowResponse(BaseModel):
    """One processed row as shown in the live preview."""

    model_config = {"from_attributes": True}

    row_index: int
    address: str
    landmark: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None
    status: Literal["pending", "ok", "error"]
    lat: float | None = None
    lng: float | None = None
    formatted_address: str | None = None
    error_reason: str | None = None


class BatchStatusResponse(BaseModel):
    """Polling projection of a batch job."""

    batch_id: uuid.UUID
    status: Literal["queued", "processing", "complete", "failed"]
    processed_rows: int
    total_rows: int
    succeeded_rows: int
    failed_rows: int
    preview_rows: list[BatchRowResponse]
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class BatchSummaryResponse(BaseModel):
    """History entry for a batch job."""

    model_config = {"from_attributes": True}

    id: uuid.UUID
    file_name: str | None = None
    status: str
    total_rows: int
    processed_rows: int
    succeeded_rows: int
    failed_rows: int
    created_at: datetime
    completed_at: datetime | None = None


class BatchListResponse(BaseModel):
    """Batch history, most recent first."""

    items: list[BatchSummaryResponse]
