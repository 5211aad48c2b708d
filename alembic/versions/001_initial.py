"""Create accounts, usage_ledger, batch_jobs and batch_rows tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create the batch geocoding schema."""
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False, server_default="free"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_accounts"),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)

    op.create_table(
        "usage_ledger",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("billing_period", sa.String(7), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False),
        sa.Column("used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("lookup_limit", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_usage_ledger"),
        sa.ForeignKeyConstraint(
            ["owner_id"], ["accounts.id"], name="fk_usage_ledger_owner_id_accounts", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("owner_id", "billing_period", name="uq_usage_ledger_owner_period"),
        sa.CheckConstraint("used >= 0 AND reserved >= 0", name="ck_usage_ledger_non_negative"),
        sa.CheckConstraint("used + reserved <= lookup_limit", name="ck_usage_ledger_within_limit"),
    )
    op.create_index("ix_usage_ledger_owner_id", "usage_ledger", ["owner_id"])

    op.create_table(
        "batch_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("total_rows", sa.Integer(), nullable=False),
        sa.Column("processed_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("succeeded_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("billing_period", sa.String(7), nullable=False),
        sa.Column("result_handle", sa.String(255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_batch_jobs"),
        sa.ForeignKeyConstraint(
            ["owner_id"], ["accounts.id"], name="fk_batch_jobs_owner_id_accounts", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_batch_jobs_owner_id", "batch_jobs", ["owner_id"])
    op.create_index("ix_batch_jobs_status", "batch_jobs", ["status"])
    op.create_index("ix_batch_jobs_created_at", "batch_jobs", ["created_at"])

    op.create_table(
        "batch_rows",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("landmark", sa.String(255), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("state", sa.String(100), nullable=True),
        sa.Column("zip", sa.String(20), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("status", sa.String(10), nullable=False, server_default="pending"),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("formatted_address", sa.Text(), nullable=True),
        sa.Column("error_reason", sa.Text(), nullable=True),
        sa.Column("sequence", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_batch_rows"),
        sa.ForeignKeyConstraint(
            ["job_id"], ["batch_jobs.id"], name="fk_batch_rows_job_id_batch_jobs", ondelete="CASCADE"
        ),
        sa.UniqueConstraint("job_id", "row_index", name="uq_batch_rows_job_row"),
    )
    op.create_index("ix_batch_rows_job_id", "batch_rows", ["job_id"])
    op.create_index("ix_batch_rows_job_sequence", "batch_rows", ["job_id", "sequence"])


def downgrade() -> None:
    """Drop the batch geocoding schema."""
    op.drop_table("batch_rows")
    op.drop_table("batch_jobs")
    op.drop_table("usage_ledger")
    op.drop_table("accounts")
