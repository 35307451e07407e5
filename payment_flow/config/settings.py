"""Client settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables."""

    # Backend API
    api_base_url: str = Field(
        default="http://localhost:5000", description="Bill tracker backend base URL"
    )
    api_token: Optional[str] = Field(
        default=None, description="Bearer token forwarded on every request"
    )
    request_timeout_seconds: float = Field(
        default=15.0, description="Per-request timeout for gateway calls (seconds)"
    )

    # Payment method catalog
    catalog_cache_ttl_seconds: float = Field(
        default=10.0, description="How long enabled banks are cached per room (seconds)"
    )
    catalog_retry_max_attempts: int = Field(
        default=3, description="Max attempts for fetching the bank list"
    )

    # Abandonment
    background_cancel_threshold_seconds: float = Field(
        default=30.0,
        description="Time in background before a pending transaction is cancelled (seconds)",
    )

    # Application Configuration
    app_name: str = Field(default="payment-flow", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log output format (json/console)")
    debug: bool = Field(default=False, description="Debug mode")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_base_url must start with 'http://' or 'https://'")
        return v.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        v = v.lower()
        if v not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return v

    @field_validator(
        "request_timeout_seconds",
        "catalog_cache_ttl_seconds",
        "background_cancel_threshold_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Durations must not be negative")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env.lower() == "production"

    def auth_headers(self) -> dict[str, str]:
        """Headers carrying the bearer token, if one is configured."""
        if not self.api_token:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
