"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="Async SQLAlchemy connection string (postgresql+asyncpg:// or sqlite+aiosqlite://)",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    # JWT (tokens are issued by the auth collaborator; we only verify them)
    jwt_secret_key: str = Field(min_length=32, description="Secret key for verifying JWTs (minimum 32 characters)")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=60,
        description="Lifetime of access tokens issued by the operator CLI",
        gt=0,
    )

    # Geocoding provider
    geocoder_provider: str = Field(
        default="nominatim",
        description="Geocoding provider used for batch rows and single lookups (nominatim or census)",
    )
    geocoder_timeout: float = Field(
        default=10.0,
        description="Provider request timeout in seconds",
        gt=0,
    )
    geocoder_nominatim_url: str = Field(
        default="https://nominatim.openstreetmap.org",
        description="Nominatim base URL (self-hostable)",
    )
    geocoder_nominatim_email: str = Field(
        default="",
        description="Email for Nominatim usage policy compliance",
    )
    geocoder_max_retries: int = Field(
        default=3,
        description="Attempts per row for transient provider errors (timeout, 5xx)",
        ge=1,
    )
    geocoder_retry_base_delay: float = Field(
        default=1.0,
        description="Base delay in seconds for exponential retry backoff",
        ge=0,
    )

    # Worker pool
    worker_count: int = Field(
        default=8,
        description="Number of concurrent geocoding workers shared by all jobs",
        gt=0,
    )
    per_job_concurrency: int = Field(
        default=4,
        description="Maximum rows of a single job geocoded in parallel",
        gt=0,
    )

    # Batch uploads
    batch_max_rows: int = Field(
        default=10_000,
        description="Maximum number of valid address rows accepted in one upload",
        gt=0,
    )
    batch_max_file_size_mb: int = Field(
        default=20,
        description="Maximum CSV upload size in megabytes",
        gt=0,
    )
    batch_preview_size: int = Field(
        default=50,
        description="Number of most recently processed rows returned as a live preview",
        gt=0,
    )
    batch_history_limit: int = Field(
        default=100,
        description="Maximum number of batches returned by the history endpoint",
        gt=0,
    )

    # Quota
    plan_limits: dict[str, int] = Field(
        default={"free": 500, "premium": 10_000},
        description="Monthly lookup limit per subscription plan",
    )
    default_plan: str = Field(
        default="free",
        description="Plan applied to accounts whose plan is unknown or canceled",
    )
    quota_charge_failed_rows: bool = Field(
        default=True,
        description="Whether rows that fail geocoding still consume quota (the lookup was attempted)",
    )

    @field_validator("plan_limits")
    @classmethod
    def validate_plan_limits(cls, v: dict[str, int]) -> dict[str, int]:
        if any(limit < 0 for limit in v.values()):
            msg = "plan_limits values must be non-negative"
            raise ValueError(msg)
        return {plan.lower(): limit for plan, limit in v.items()}

    def limit_for_plan(self, plan: str | None) -> int:
        """Return the monthly limit for a plan, falling back to the default plan."""
        key = (plan or self.default_plan).lower()
        if key not in self.plan_limits:
            key = self.default_plan
        return self.plan_limits.get(key, 0)

    # Client polling
    poll_interval_seconds: float = Field(
        default=2.0,
        description="Seconds between batch status polls in the client",
        gt=0,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )
    cors_origin_regex: str = Field(
        default="",
        description="Regex pattern for allowed CORS origins",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )
    rate_limit_per_minute: int = Field(
        default=200,
        description="Maximum API requests per minute per IP address",
        gt=0,
    )
    trusted_proxy_headers: str = Field(
        default="CF-Connecting-IP,X-Forwarded-For,X-Real-IP",
        description="Comma-separated list of HTTP headers to check for real client IP, in priority order",
    )

    @property
    def trusted_proxy_header_list(self) -> list[str]:
        """Parse trusted proxy headers string into a list."""
        if not self.trusted_proxy_headers.strip():
            return []
        return [h.strip() for h in self.trusted_proxy_headers.split(",") if h.strip()]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
