from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from throttler.exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Token bucket defaults used when a limiter is built without explicit options
    throttle_bucket_size: int = 20
    throttle_refill_time: int = 600  # 10 minutes
    throttle_refill_amount: int = 10
    throttle_warning_limit: int = 1
    throttle_key_prefix: str = "rate_limiter"
    throttle_atomic: bool = False  # Use the Redis Lua script instead of read/write round-trips

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | json

    # Redis settings (optional)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    @field_validator(
        "throttle_bucket_size",
        "throttle_refill_time",
        "throttle_refill_amount",
    )
    @classmethod
    def validate_bucket_positive(cls, v: int) -> int:
        """Validate bucket values are positive."""
        if v < 1:
            raise ValueError("Token bucket values must be at least 1")
        return v

    @field_validator("throttle_warning_limit")
    @classmethod
    def validate_warning_limit(cls, v: int) -> int:
        """Validate warning limit is not negative."""
        if v < 0:
            raise ValueError("throttle_warning_limit must not be negative")
        return v

    @field_validator("throttle_key_prefix")
    @classmethod
    def validate_key_prefix(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("throttle_key_prefix must not be empty")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


class ThrottleConfig(BaseModel):
    """Immutable token bucket configuration for one limiter instance.

    Attributes:
        bucket_size: Maximum tokens a bucket can hold
        refill_time: Seconds per refill period
        refill_amount: Tokens credited per elapsed refill period
        warning_limit: Token count at or below which a warning is raised
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    bucket_size: int = Field(default=20, gt=0)
    refill_time: int = Field(default=600, gt=0)
    refill_amount: int = Field(default=10, gt=0)
    warning_limit: int = Field(default=1, ge=0)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any] | None = None) -> "ThrottleConfig":
        """Build a config from an option dictionary merged over the defaults.

        Unknown keys are ignored. Invalid values raise ConfigurationError.
        """
        try:
            return cls.model_validate(dict(options or {}))
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in err["loc"]) for err in e.errors()
            )
            raise ConfigurationError(
                f"Invalid throttle configuration: {fields}",
                errors=e.errors(),
            ) from e

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> "ThrottleConfig":
        """Build a config from the global settings."""
        source = source or settings
        return cls.from_mapping(
            {
                "bucket_size": source.throttle_bucket_size,
                "refill_time": source.throttle_refill_time,
                "refill_amount": source.throttle_refill_amount,
                "warning_limit": source.throttle_warning_limit,
            }
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return self.model_dump()


# Global settings instance
settings = Settings()
