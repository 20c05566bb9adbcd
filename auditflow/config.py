"""
AuditFlow configuration settings.

Loaded from environment variables (and a .env file when present) using
Pydantic Settings.
"""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ===========================================
    # APPLICATION
    # ===========================================
    app_name: str = "AuditFlow"
    debug: bool = False
    log_level: str = "INFO"

    # ===========================================
    # DATABASE
    # PostgreSQL in production, SQLite locally
    # ===========================================
    database_url: str = "sqlite:///./auditflow.db"

    # ===========================================
    # SCORING / ACTIONS
    # ===========================================
    default_pass_threshold: float = 70.0
    default_action_deadline_days: int = 7

    # ===========================================
    # SCHEDULING
    # Window (in days around "as of") in which occurrences get materialized
    # ===========================================
    reconcile_lookback_days: int = 30
    reconcile_lookahead_days: int = 60

    @field_validator("database_url")
    @classmethod
    def fix_postgres_scheme(cls, value: str) -> str:
        # Render/Heroku hand out postgres://, SQLAlchemy needs postgresql://
        if value.startswith("postgres://"):
            return value.replace("postgres://", "postgresql://", 1)
        return value

    @field_validator("reconcile_lookback_days", "reconcile_lookahead_days")
    @classmethod
    def non_negative_window(cls, value: int) -> int:
        if value < 0:
            raise ValueError("reconciliation window must be >= 0 days")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
