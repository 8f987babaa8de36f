from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Canvas sync settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Remote canvas store
    api_base_url: str = "http://localhost:8080/api"
    api_token: str = ""  # Optional bearer token; public reads work without it

    # HTTP Client connection pool settings
    httpx_timeout: float = 10.0  # Fixed deadline for every remote call
    httpx_connect_timeout: float = 5.0  # Time to establish connection
    httpx_read_timeout: float = 10.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 20
    httpx_max_keepalive_connections: int = 10

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Cache tiers
    memory_cache_ttl_seconds: float = 60.0  # Hot tier TTL; stale until 2x
    store_backend: str = "memory"  # memory | redis
    redis_url: str = "redis://localhost:6379/0"
    store_key_prefix: str = "canvas_sync:v1"

    # Debounce delay per operating mode
    save_debounce_normal_seconds: float = 0.8
    save_debounce_busy_seconds: float = 2.0
    save_debounce_emergency_seconds: float = 5.0

    # Offline recovery
    recovery_max_retries: int = 5
    recovery_min_interval_seconds: float = 10.0

    # Rate limiting
    rate_limit_sweep_interval_seconds: float = 3600.0
    new_account_age_seconds: float = 3600.0
    new_account_limit_factor: float = 0.5
    suspicious_score_threshold: int = 10
    bot_pattern_min_samples: int = 100
    bot_pattern_variance_threshold: float = 0.01  # seconds^2

    @field_validator(
        "httpx_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("memory_cache_ttl_seconds", "recovery_min_interval_seconds")
    @classmethod
    def validate_interval_positive(cls, v: float) -> float:
        """Validate TTL and spacing values are positive."""
        if v <= 0:
            raise ValueError("Interval values must be positive")
        return v

    @field_validator(
        "save_debounce_normal_seconds",
        "save_debounce_busy_seconds",
        "save_debounce_emergency_seconds",
    )
    @classmethod
    def validate_debounce_non_negative(cls, v: float) -> float:
        """Validate debounce delays are not negative (0 flushes on the next turn)."""
        if v < 0:
            raise ValueError("Debounce delays must not be negative")
        return v

    @field_validator("recovery_max_retries", "suspicious_score_threshold")
    @classmethod
    def validate_count_positive(cls, v: int) -> int:
        """Validate counters are at least 1."""
        if v < 1:
            raise ValueError("Values must be at least 1")
        return v

    @field_validator("new_account_limit_factor")
    @classmethod
    def validate_factor(cls, v: float) -> float:
        """Validate the new account factor tightens rather than loosens limits."""
        if not 0 < v <= 1:
            raise ValueError("new_account_limit_factor must be in (0, 1]")
        return v

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Validate the persistent store backend name."""
        v = v.strip().lower()
        if v not in ("memory", "redis"):
            raise ValueError("store_backend must be 'memory' or 'redis'")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
