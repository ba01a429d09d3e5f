"""
Configuration settings for the hanzi-review engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STATE_DIR = Path.home() / ".hanzi_review"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Local State
    # ========================================
    state_dir: Path = Field(
        default=DEFAULT_STATE_DIR,
        description="Directory for the local cache, sync queue and review log",
    )
    default_user_id: str = Field(
        default="local",
        description="Learner id used when none is given on the command line",
    )

    # ========================================
    # Review Store
    # ========================================
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy URL of the review store (defaults to review.db in state_dir)",
    )
    record_store_url: str | None = Field(
        default=None,
        description="Remote record store URL; when set it replaces the SQL store",
    )
    record_store_api_key: str | None = Field(
        default=None,
        description="Bearer token for the remote record store",
    )
    store_timeout_seconds: float = Field(
        default=10.0,
        description="Seconds before a store call counts as unreachable",
    )

    # ========================================
    # Scheduling (SM-2)
    # ========================================
    mastered_interval_days: int = Field(
        default=180,
        description="Intervals beyond this many days are 'mastered'",
    )
    maximum_easiness: float | None = Field(
        default=None,
        description="Optional ease-factor ceiling (SM-2 has none)",
    )
    review_status_priority: str = Field(
        default="learning,review,new,mastered",
        description="Tie-break order for items due at the same time",
    )

    # ========================================
    # Sessions & Sync
    # ========================================
    session_card_limit: int | None = Field(
        default=None,
        description="Maximum cards per session (None = every due card)",
    )
    session_shuffle: bool = Field(
        default=False,
        description="Shuffle the queue once when a session starts",
    )
    session_shuffle_seed: int | None = Field(
        default=None,
        description="Seed for the session shuffle (fixed seed = fixed order)",
    )
    sync_interval_seconds: float = Field(
        default=60.0,
        description="Seconds between background flushes of the offline queue",
    )
    review_log_max_entries: int = Field(
        default=5000,
        description="Graded cards kept in the local review log",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: str = Field(
        default="WARNING",
        description="Loguru level for the CLI",
    )

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.state_dir / 'review.db'}"

    @property
    def local_db_path(self) -> Path:
        return self.state_dir / "local.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
