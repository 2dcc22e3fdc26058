"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./volleyprono.db"

    # "production" makes admin endpoints fail closed when API_KEY is empty
    ENVIRONMENT: str = "development"

    # API Security
    API_KEY: str = ""  # Optional API key for admin endpoints (manual sync, rescoring)
    API_KEY_HEADER: str = "X-API-Key"

    # ═══════════════════════════════════════════════════════════════
    # Prediction rules
    # ═══════════════════════════════════════════════════════════════

    # Predictions close this many hours before kickoff
    PREDICTION_LOCK_HOURS: int = 24
    # Risky mode may be used once per user per group per cooldown period
    RISKY_COOLDOWN_DAYS: int = 7

    # ═══════════════════════════════════════════════════════════════
    # Reconciliation
    # ═══════════════════════════════════════════════════════════════

    # Team-name fallback matches a stored match within ±N hours of kickoff
    MATCH_WINDOW_HOURS: int = 2
    # Max groups reconciled concurrently during a sync sweep
    SYNC_CONCURRENCY: int = 4

    # JSON observation feed (optional, see etl.feed_provider)
    FEED_TIMEOUT_SECONDS: float = 30.0
    FEED_MAX_RETRIES: int = 3
    FEED_RETRY_DELAY_SECONDS: float = 2.0

    # ═══════════════════════════════════════════════════════════════
    # Scheduler
    # ═══════════════════════════════════════════════════════════════

    SCHEDULER_ENABLED: bool = True
    # Lock sweep: every hour on the hour
    LOCK_SWEEP_MINUTE: int = 0
    # Sync sweep: every N hours
    SYNC_SWEEP_INTERVAL_HOURS: int = 2
    # Scoring sweep: every hour at :30
    SCORING_SWEEP_MINUTE: int = 30

    # Notifications: how far back finished matches are surfaced
    NOTIFICATION_LOOKBACK_DAYS: int = 7

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
