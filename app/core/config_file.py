"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENV: str = "dev"
    DEBUG: bool = False

    # Database
    # SQLite by default for local development; use PostgreSQL in production
    DATABASE_URL: str = "sqlite:///./automation.db"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_PASSWORD: str = ""

    # Redis Streams configuration
    REDIS_STREAM_RECORDS: str = "events:records"
    REDIS_STREAM_FAILED: str = "events:failed"
    REDIS_CONSUMER_GROUP: str = "automation"

    # Automation engine
    AUTOMATION_MAX_CHAIN_DEPTH: int = 10
    AUTOMATION_WRITE_MAX_ATTEMPTS: int = 3
    AUTOMATION_RETRY_BASE_DELAY: float = 0.5  # Seconds, doubled on each attempt
    AUTOMATION_RETRY_MAX_DELAY: float = 8.0
    AUTOMATION_CHAIN_TIMEOUT: float | None = None  # Seconds, None = no timeout
    AUTOMATION_STREAM_CONSUMER: bool = False  # Consume the records stream in the API process

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "human"  # "human" for dev, "json" for prod

    model_config = ConfigDict(
        env_file=[".env", "../.env"],  # Try .env in current dir first, then parent dir
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
