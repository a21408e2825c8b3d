"""Configuration settings for the Mindmate backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from mindmate.types import MOOD_HISTORY_CAP


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Encryption at rest: 64 hex chars (32 bytes). Validated by Cipher at startup.
    server_encryption_key: str

    # JWT
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 1 week

    # Storage
    database_path: str = "mindmate.db"
    mood_history_cap: int = MOOD_HISTORY_CAP

    # Sync
    sync_rate_limit: str = "60/minute"
    # Only these peers may set X-Forwarded-For (JSON list in the env)
    trusted_proxy_cidrs: list[str] = [
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "::1/128",
    ]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # App
    debug: bool = False
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8081",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
