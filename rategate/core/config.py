from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Limiter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Redis settings
    redis_url: str = "redis://localhost:6379/0"

    # Store keys are key_prefix + limiter name
    key_prefix: str = "rate:"

    # Maximum reload-and-retry rounds when Redis reports NOSCRIPT
    script_max_reloads: int = 10

    # Added on top of ceil(reset_after) when setting the key TTL
    key_ttl_margin_seconds: int = 1

    # Local fallback limiter, used only when Redis is unreachable
    fallback_enabled: bool = False
    fallback_rate: float = 1000.0
    fallback_period_seconds: float = 1.0
    fallback_burst: int = 100

    # HTTP middleware defaults
    rate_limit_requests_per_minute: int = 60
    rate_limit_burst_size: int = 10

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator(
        "rate_limit_requests_per_minute",
        "rate_limit_burst_size",
        "fallback_burst",
        "script_max_reloads",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate counters are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("fallback_rate", "fallback_period_seconds")
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        """Validate fallback rate and period are positive."""
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("key_ttl_margin_seconds")
    @classmethod
    def validate_ttl_margin(cls, v: int) -> int:
        if v < 0:
            raise ValueError("key_ttl_margin_seconds must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
