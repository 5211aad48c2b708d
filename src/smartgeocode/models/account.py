"""Account model — the owner of batch jobs and usage ledger entries."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from smartgeocode.models.base import Base, UUIDMixin


class Account(Base, UUIDMixin):
    """A customer account.

    Rows are provisioned by the auth collaborator at signup; ``plan`` is kept
    in sync by the billing collaborator and is only read here.
    """

    __tablename__ = "accounts"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="free", server_default="free")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
