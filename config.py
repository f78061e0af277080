"""
Configuration settings for the stitchstream learning engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///./stitchstream.db",
        description="SQLAlchemy connection string for facts and mastery records",
    )

    # ========================================
    # Remote Fact Source
    # ========================================
    fact_api_url: str | None = Field(
        default=None,
        description="Base URL of the remote fact service (None = compute facts from ids)",
    )
    fact_api_timeout_seconds: float = Field(
        default=5.0,
        description="HTTP timeout for remote fact batch requests",
    )

    # ========================================
    # Unit Preparation
    # ========================================
    unit_size: int = Field(
        default=20,
        ge=1,
        description="Maximum facts (and questions) per unit",
    )

    # ─── Prefetch Scheduler ─────────────────────────────────────────────────────
    max_task_retries: int = Field(
        default=3,
        ge=1,
        description="Failed attempts after which a prefetch task is dropped",
    )
    retry_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        description="Pause between drain cycles when failed tasks were re-queued",
    )
    warmup_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Period of the background fact/recipe buffer warm-up",
    )
    buffer_lookahead_units: int = Field(
        default=10,
        ge=0,
        description="Upcoming units per track covered by buffer warm-ups",
    )

    # ─── Mastery Thresholds (ms) ────────────────────────────────────────────────
    # A correct answer faster than the threshold of the current level advances it
    fast_response_ms_level_1: int = Field(default=5000, description="Fast threshold at level 1")
    fast_response_ms_level_2: int = Field(default=4000, description="Fast threshold at level 2")
    fast_response_ms_level_3: int = Field(default=3000, description="Fast threshold at level 3")
    fast_response_ms_level_4: int = Field(default=2500, description="Fast threshold at level 4")
    fast_response_ms_level_5: int = Field(default=2000, description="Fast threshold at level 5")

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # API Server
    # ========================================
    api_host: str = Field(
        default="127.0.0.1",
        description="API server host",
    )
    api_port: int = Field(
        default=8200,
        description="API server port",
    )

    def get_fast_thresholds(self) -> dict[int, int]:
        """Get the per-level fast response thresholds."""
        return {
            1: self.fast_response_ms_level_1,
            2: self.fast_response_ms_level_2,
            3: self.fast_response_ms_level_3,
            4: self.fast_response_ms_level_4,
            5: self.fast_response_ms_level_5,
        }

    def get_prefetch_config(self) -> dict[str, Any]:
        """Get prefetch scheduler configuration as a dictionary."""
        return {
            "max_retries": self.max_task_retries,
            "retry_delay_seconds": self.retry_delay_seconds,
            "warmup_interval_seconds": self.warmup_interval_seconds,
            "lookahead_units": self.buffer_lookahead_units,
        }

    def has_remote_facts(self) -> bool:
        """Check if a remote fact service is configured."""
        return bool(self.fact_api_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
