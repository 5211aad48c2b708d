"""ORM model registry — import all models so Alembic autogenerate discovers them."""

from smartgeocode.models.account import Account
from smartgeocode.models.batch_job import BatchJob, BatchStatus
from smartgeocode.models.batch_row import BatchRow, RowStatus
from smartgeocode.models.usage_ledger import UsageLedger

__all__ = [
    "Account",
    "BatchJob",
    "BatchRow",
    "BatchStatus",
    "RowStatus",
    "UsageLedger",
]
