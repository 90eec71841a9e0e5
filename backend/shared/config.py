"""
Central configuration for the Match Sync service.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models.enums import DataDomain


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Root settings for the sync service."""

    model_config = SettingsConfigDict(
        env_prefix="MS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound to every log line")

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["*"]

    # ── Provider ─────────────────────────────────────────────
    default_provider: str = Field(default="espn", description="Provider used for matches/standings/h2h")
    provider_request_timeout_s: float = 8.0
    espn_base_url: str = "https://site.api.espn.com/apis/site/v2/sports"
    espn_standings_url: str = "https://site.api.espn.com/apis/v2/sports"
    odds_api_base_url: str = "https://api.the-odds-api.com/v4"
    odds_api_key: str = ""
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout_s: float = 60.0

    # ── Fetch policies (seconds) ─────────────────────────────
    matches_stale_after_s: float = 30.0
    matches_retain_for_s: float = 120.0
    matches_max_retries: int = 1
    standings_stale_after_s: float = 300.0
    standings_retain_for_s: float = 600.0
    standings_max_retries: int = 1
    head_to_head_stale_after_s: float = 300.0
    head_to_head_retain_for_s: float = 1800.0
    head_to_head_max_retries: int = 1
    retry_base_delay_s: float = 1.0

    # ── Auto refresh ─────────────────────────────────────────
    live_refresh_interval_s: float = 60.0
    standings_refresh_interval_s: float = 600.0
    tracked_leagues: list[str] = Field(
        default=["NBA", "NFL", "MLB", "NHL"],
        description="Leagues the scheduler keeps fresh in the background.",
    )

    # ── Cache ────────────────────────────────────────────────
    cache_max_entries: int = 500
    evict_interval_s: float = 60.0

    # ── Picks ────────────────────────────────────────────────
    picks_top_n: int = Field(default=2, ge=1)
    picks_min_confidence: float = Field(default=0.0, ge=0.0, le=100.0)

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    def policy_for(self, domain: DataDomain) -> "FetchPolicy":
        """Build the fetch policy configured for a data domain."""
        from sync.policy import FetchPolicy

        prefix = domain.value
        return FetchPolicy(
            stale_after=getattr(self, f"{prefix}_stale_after_s"),
            retain_for=getattr(self, f"{prefix}_retain_for_s"),
            max_retries=getattr(self, f"{prefix}_max_retries"),
            retry_base_delay=self.retry_base_delay_s,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
