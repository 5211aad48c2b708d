"""Pydantic v2 schemas for the usage ledger projection."""

from pydantic import BaseModel, Field


class UsageResponse(BaseModel):
    """Current billing-period usage for the authenticated account."""

    used: int = Field(description="Lookups attempted this period")
    limit: int = Field(description="Monthly lookup limit of the account's plan")
    reserved: int = Field(default=0, description="Rows of accepted batches not yet attempted")
    plan: str
    billing_period: str = Field(description="Billing period key, YYYY-MM")
