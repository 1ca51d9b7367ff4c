from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shortener.app.exceptions import ConfigurationError
from shortener.app.services.scheduler import CronSchedule


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # PostgreSQL settings
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "shortener"
    db_password: str = "shortener"
    db_name: str = "shortener"
    db_ssl_mode: str = "disable"

    # Connection pool settings
    db_pool_size: int = 20
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 300
    db_pool_pre_ping: bool = True
    db_command_timeout: float = 30.0

    # Explicit DATABASE_URL (takes priority over db_* settings)
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    # Drop and recreate tables on startup
    reload_on_start: bool = False

    @property
    def database_url(self) -> str:
        """Build database connection URL.

        Priority:
        1. database_url_override (from DATABASE_URL env var or .env file)
        2. Built from db_* settings
        """
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )

    # HTTP Basic credentials guarding the /url write endpoints
    http_auth_user: str = ""
    http_auth_password: str = ""

    # Rate limiting settings
    rate_limit: int = 100  # steady-state admitted requests per time frame
    rate_buffer: int = 10  # burst allowance above rate_limit before lockout
    rate_time_frame_seconds: float = 60.0
    # Record requests whose handler failed (attempted vs successful throughput)
    rate_limit_count_failed_requests: bool = True

    # Scheduling settings
    location: str = "UTC"  # IANA time zone for job boundaries
    peak_reset_cron: str = "0 0 * * *"
    analytics_cron: str = "* * * * *"
    scheduler_enabled: bool = True

    # Short URL settings
    alias_length: int = 6
    leaders_limit: int = 3

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rate_limit", "alias_length", "leaders_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("rate_buffer")
    @classmethod
    def validate_rate_buffer(cls, v: int) -> int:
        """Validate rate buffer is not negative."""
        if v < 0:
            raise ValueError("rate_buffer must not be negative")
        return v

    @field_validator("rate_time_frame_seconds")
    @classmethod
    def validate_time_frame(cls, v: float) -> float:
        """Validate the rolling window is positive."""
        if v <= 0:
            raise ValueError("rate_time_frame_seconds must be positive")
        return v

    @field_validator("location")
    @classmethod
    def validate_location(cls, v: Any) -> str:
        """Validate the time zone resolves to an IANA zone."""
        name = str(v).strip()
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone: {name!r}") from e
        return name

    @field_validator("peak_reset_cron", "analytics_cron")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        """Validate cron patterns parse."""
        try:
            CronSchedule.parse(v)
        except ConfigurationError as e:
            raise ValueError(e.message) from e
        return v.strip()

    @field_validator("db_pool_size", "db_max_overflow")
    @classmethod
    def validate_pool_size_positive(cls, v: int) -> int:
        """Validate pool_size is positive."""
        if v < 1:
            raise ValueError("pool size values must be at least 1")
        return v

    @field_validator("http_auth_user", "http_auth_password")
    @classmethod
    def strip_credentials(cls, v: str) -> str:
        # Normalize accidental whitespace/newline from env/secret stores.
        return v.strip()

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


# Global settings instance
settings = Settings()
