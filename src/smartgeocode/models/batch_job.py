"""BatchJob model — one CSV upload and its asynchronous geocoding run."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from smartgeocode.models.base import Base, UUIDMixin


class BatchStatus(enum.StrEnum):
    """Lifecycle state of a batch job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({BatchStatus.COMPLETE, BatchStatus.FAILED})

# Allowed transitions; terminal states have none
ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.QUEUED: frozenset({BatchStatus.PROCESSING, BatchStatus.FAILED}),
    BatchStatus.PROCESSING: frozenset({BatchStatus.COMPLETE, BatchStatus.FAILED}),
    BatchStatus.COMPLETE: frozenset(),
    BatchStatus.FAILED: frozenset(),
}


class BatchJob(Base, UUIDMixin):
    """Tracks a batch geocoding job for progress reporting and history."""

    __tablename__ = "batch_jobs"

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BatchStatus.QUEUED, server_default=BatchStatus.QUEUED.value, index=True
    )

    # Progress counts
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    succeeded_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    failed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    # Quota period the rows were reserved against
    billing_period: Mapped[str] = mapped_column(String(7), nullable=False)

    # Result artifact name, set once processing starts
    result_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Job-level fault (status == failed only)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
