"""BatchRow model — one address of a batch job and its geocoding outcome.

The rows of a job together form its result artifact.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from smartgeocode.models.base import Base, UUIDMixin


class RowStatus(enum.StrEnum):
    """Outcome of a single row."""

    PENDING = "pending"
    OK = "ok"
    ERROR = "error"


class BatchRow(Base, UUIDMixin):
    """An address row belonging to a batch job."""

    __tablename__ = "batch_rows"
    __table_args__ = (
        UniqueConstraint("job_id", "row_index", name="uq_batch_rows_job_row"),
        Index("ix_batch_rows_job_sequence", "job_id", "sequence"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("batch_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Input fields
    address: Mapped[str] = mapped_column(Text, nullable=False)
    landmark: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    zip: Mapped[str | None] = mapped_column(String(20), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Outcome
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=RowStatus.PENDING, server_default=RowStatus.PENDING.value
    )
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    formatted_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # 1-based processing order within the job
    sequence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
