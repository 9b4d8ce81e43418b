from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Rate limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "ratelimit:"
    redis_ttl_seconds: int = 3600  # Idle buckets expire after 1 hour

    # Rate limiting settings
    rate_limit_requests_per_minute: int = 60
    rate_limit_capacity: Optional[int] = None  # Burst size, defaults to requests per minute
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when Redis is unavailable
    )

    # In-memory eviction settings
    cleanup_interval_seconds: int = 600  # Sweep every 10 minutes
    inactive_threshold_seconds: int = 3600  # Evict buckets idle for 1 hour

    @field_validator("rate_limit_requests_per_minute")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit values are positive."""
        if v < 1:
            raise ValueError("Rate limit values must be at least 1")
        return v

    @field_validator("rate_limit_capacity")
    @classmethod
    def validate_capacity_positive(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("rate_limit_capacity must be at least 1")
        return v

    @field_validator(
        "redis_ttl_seconds",
        "cleanup_interval_seconds",
        "inactive_threshold_seconds",
    )
    @classmethod
    def validate_interval_positive(cls, v: int) -> int:
        """Validate TTL and interval values are positive."""
        if v < 1:
            raise ValueError("TTL and interval values must be at least 1 second")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
