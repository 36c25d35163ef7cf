"""Application settings and configuration.

This module defines all configuration options for the EOTY platform backend.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="EOTY Platform", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./eoty.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Reporting and the reviewer queue
    report_dedup_window_seconds: int = Field(default=600, alias="REPORT_DEDUP_WINDOW_SECONDS")
    report_queue_threshold: int = Field(default=3, alias="REPORT_QUEUE_THRESHOLD")
    report_flood_limit: int = Field(default=30, alias="REPORT_FLOOD_LIMIT")
    report_flood_window_seconds: int = Field(default=300, alias="REPORT_FLOOD_WINDOW_SECONDS")
    queue_medium_priority_reports: int = Field(default=5, alias="QUEUE_MEDIUM_PRIORITY_REPORTS")
    queue_page_size: int = Field(default=25, alias="QUEUE_PAGE_SIZE")
    moderation_retry_attempts: int = Field(default=1, alias="MODERATION_RETRY_ATTEMPTS")
    redacted_content_marker: str = Field(
        default="[removed by a moderator]",
        alias="REDACTED_CONTENT_MARKER",
    )

    # Anomaly detection
    burst_report_threshold: int = Field(default=10, alias="BURST_REPORT_THRESHOLD")
    burst_report_window_seconds: int = Field(default=300, alias="BURST_REPORT_WINDOW_SECONDS")
    repeat_offender_threshold: int = Field(default=3, alias="REPEAT_OFFENDER_THRESHOLD")
    repeat_offender_window_days: int = Field(default=7, alias="REPEAT_OFFENDER_WINDOW_DAYS")
    rapid_action_threshold: int = Field(default=20, alias="RAPID_ACTION_THRESHOLD")
    rapid_action_window_seconds: int = Field(default=600, alias="RAPID_ACTION_WINDOW_SECONDS")
    backlog_size_threshold: int = Field(default=50, alias="BACKLOG_SIZE_THRESHOLD")
    backlog_age_threshold_seconds: int = Field(
        default=24 * 3600,
        alias="BACKLOG_AGE_THRESHOLD_SECONDS",
    )
    anomaly_sweep_enabled: bool = Field(default=True, alias="ANOMALY_SWEEP_ENABLED")
    anomaly_sweep_interval_seconds: float = Field(
        default=300.0,
        alias="ANOMALY_SWEEP_INTERVAL_SECONDS",
    )

    # Lessons, annotations and progress
    annotation_timestamp_epsilon: float = Field(default=0.5, alias="ANNOTATION_TIMESTAMP_EPSILON")
    completion_threshold: float = Field(default=0.95, alias="COMPLETION_THRESHOLD")
    progress_clock_skew_seconds: float = Field(default=5.0, alias="PROGRESS_CLOCK_SKEW_SECONDS")

    # Session engine (client side)
    api_base_url: str = Field(default="http://localhost:8000/api/v1", alias="API_BASE_URL")
    store_timeout_seconds: float = Field(default=10.0, alias="STORE_TIMEOUT_SECONDS")
    provider_timeout_seconds: float = Field(default=30.0, alias="PROVIDER_TIMEOUT_SECONDS")
    heartbeat_max_elapsed_seconds: float = Field(default=2.0, alias="HEARTBEAT_MAX_ELAPSED_SECONDS")
    progress_flush_interval_seconds: float = Field(
        default=30.0,
        alias="PROGRESS_FLUSH_INTERVAL_SECONDS",
    )
    offline_buffer_seconds: float = Field(default=300.0, alias="OFFLINE_BUFFER_SECONDS")
    close_flush_timeout_seconds: float = Field(default=2.0, alias="CLOSE_FLUSH_TIMEOUT_SECONDS")
    provider_max_attempts: int = Field(default=3, alias="PROVIDER_MAX_ATTEMPTS")
    provider_backoff_base_seconds: float = Field(default=1.0, alias="PROVIDER_BACKOFF_BASE_SECONDS")
    unavailable_retry_after_seconds: int = Field(default=30, alias="UNAVAILABLE_RETRY_AFTER_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
