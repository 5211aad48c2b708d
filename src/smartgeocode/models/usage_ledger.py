"""UsageLedger model — per-account, per-billing-period lookup counter."""

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from smartgeocode.models.base import Base, UUIDMixin


class UsageLedger(Base, UUIDMixin):
    """Monthly usage counter for one account.

    ``reserved`` holds rows of accepted batches that have not been attempted
    yet; ``used`` counts attempted lookups. ``used + reserved`` never exceeds
    ``limit``.
    """

    __tablename__ = "usage_ledger"
    __table_args__ = (
        UniqueConstraint("owner_id", "billing_period", name="uq_usage_ledger_owner_period"),
        CheckConstraint("used >= 0 AND reserved >= 0", name="non_negative"),
        CheckConstraint("used + reserved <= lookup_limit", name="within_limit"),
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    billing_period: Mapped[str] = mapped_column(String(7), nullable=False)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    limit: Mapped[int] = mapped_column("lookup_limit", Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
