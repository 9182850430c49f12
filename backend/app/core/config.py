"""Application configuration using pydantic-settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore", # Allow extra env vars without failing
    )

    # App
    app_name: str = "Lengolf VIP Identity"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    # Secret key MUST be provided via environment (e.g. SECRET_KEY in .env).
    # Must match the identity provider that signs session tokens.
    secret_key: str
    algorithm: str = "HS256"

    # API
    api_prefix: str = "/api"
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Database
    database_url: str = "sqlite+aiosqlite:///./lengolf.db"
    crm_database_url: str = "sqlite+aiosqlite:///./crm.db"
    db_ssl_mode: str = "disable" # "require" for production
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Customer matching
    # Two thresholds existed historically (0.6 in the sync script, 0.75 in the
    # matching service). 0.75 is the deployed default.
    match_confidence_threshold: float = 0.75
    vip_status_cache_ttl_seconds: int = 300

    # CRM fetch circuit breaker
    crm_fetch_failure_threshold: int = 3
    crm_fetch_recovery_timeout: int = 60

    # Relink batch job
    relink_batch_size: int = 10
    relink_batch_pause_seconds: float = 2.0
    relink_profile_pause_seconds: float = 0.1


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
