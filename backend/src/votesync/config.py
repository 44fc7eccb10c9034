"""Configuration management for votesync.

Uses pydantic-settings to load configuration from environment variables.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_env_file() -> Path | None:
    """Search for .env file in common locations."""
    cwd = Path.cwd()
    if (cwd / ".env").exists():
        return cwd / ".env"

    # Check parent directories (up to 5 levels) for project root .env
    check_dir = cwd
    for _ in range(5):
        if (check_dir / ".env").exists():
            return check_dir / ".env"
        parent = check_dir.parent
        if parent == check_dir:
            break
        check_dir = parent

    # backend/src/votesync/config.py -> project root
    project_root = Path(__file__).resolve().parent.parent.parent.parent
    if (project_root / ".env").exists():
        return project_root / ".env"

    return None


_env_file = _find_env_file()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(_env_file) if _env_file else ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================
    # Environment
    # =========================
    environment: Literal["development", "staging", "production"] = "development"

    # =========================
    # API Settings
    # =========================
    api_debug: bool = False
    cors_origins: str = "http://localhost:3000"

    # Shared secret expected on trigger endpoints (empty disables the check)
    cron_secret: str = Field(default="", repr=False)

    # =========================
    # Relational store
    # =========================
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "votesync"
    postgres_user: str = "votesync"
    postgres_password: str = Field(default="", repr=False)

    # Full SQLAlchemy URL; overrides the postgres_* parts when set
    database_url: str = Field(default="", repr=False)

    db_pool_size: int = 10
    db_max_overflow: int = 20

    @computed_field
    @property
    def sqlalchemy_url(self) -> str:
        """SQLAlchemy async database URL."""
        if self.database_url:
            return self.database_url
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # =========================
    # Celery
    # =========================
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/0"

    # =========================
    # Logging
    # =========================
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    # =========================
    # Sync run ledger
    # =========================
    run_stale_after_minutes: int = 60
    status_window_days: int = 7

    # =========================
    # Retry queue
    # =========================
    queue_max_attempts: int = 3
    queue_default_priority: int = 5
    queue_backoff_base_seconds: float = 30.0
    queue_backoff_max_seconds: float = 3600.0
    queue_claim_timeout_minutes: int = 30

    # =========================
    # Upstream fetching
    # =========================
    feed_default_delay_seconds: float = 6.0
    feed_delays: dict[str, float] = Field(
        default_factory=lambda: {"andina": 3.0, "infobae": 12.0, "idl": 12.0}
    )
    http_timeout_seconds: float = 30.0
    http_user_agent: str = "votesync/0.1 (+electoral data sync)"

    # =========================
    # Entity resolution
    # =========================
    resolver_min_fuzzy_length: int = 3
    resolver_review_threshold: float = 0.85

    # =========================
    # News
    # =========================
    news_excerpt_length: int = 500

    # =========================
    # Feature Flags
    # =========================
    enable_news_sync: bool = True

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    def feed_delay(self, source_id: str) -> float:
        """Minimum delay between consecutive requests to one feed source."""
        return self.feed_delays.get(source_id, self.feed_default_delay_seconds)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
