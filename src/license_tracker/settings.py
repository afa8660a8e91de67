"""Service settings for the license tracker.

All settings use the LICENSE_TRACKER_ prefix and cover:
- Logging output
- Report analysis window
- Google API endpoints, credentials and retry behaviour
- Report dataset database
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for the license tracker service.

    Environment variable prefix: LICENSE_TRACKER_
    """

    service_name: str = "license-tracker"

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR).",
    )
    log_json: bool = Field(
        default=True,
        description="Emit JSON log lines. Disable for human-readable console output.",
    )

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    analysis_window_days: int = Field(
        default=90,
        ge=1,
        description="How far back (in days) a reporting window may begin. "
        "Audit logs older than this are assumed to be unavailable.",
    )

    # -------------------------------------------------------------------------
    # Google APIs
    # -------------------------------------------------------------------------

    compute_api_url: str = Field(
        default="https://compute.googleapis.com/compute/v1",
        description="Base URL of the Compute Engine API.",
    )
    logging_api_url: str = Field(
        default="https://logging.googleapis.com/v2",
        description="Base URL of the Cloud Logging API.",
    )
    access_token: str = Field(
        default="",
        description="OAuth bearer token sent to Google APIs. Leave empty when "
        "requests are authenticated by a sidecar or proxy.",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single Google API request.",
    )
    max_retries: int = Field(
        default=10,
        ge=0,
        description="Maximum number of retries for rate-limited or transient API errors.",
    )
    initial_backoff_ms: int = Field(
        default=100,
        description="Delay before the first retry. Each subsequent retry doubles the delay.",
    )
    max_backoff_ms: int = Field(
        default=30_000,
        description="Upper bound for a single retry delay.",
    )
    log_page_size: int = Field(
        default=1000,
        description="Page size used when listing audit log entries.",
    )

    # -------------------------------------------------------------------------
    # Report dataset
    # -------------------------------------------------------------------------

    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/license_tracker",
        description="SQLAlchemy async URL of the database holding report tables.",
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size.")
    db_max_overflow: int = Field(default=2, description="Connections allowed above the pool size.")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a pooled connection.")
    max_rows_per_insert: int = Field(
        default=1000,
        description="Maximum number of rows written by a single INSERT statement.",
    )

    model_config = SettingsConfigDict(env_prefix="LICENSE_TRACKER_")
