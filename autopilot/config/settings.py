"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Alpaca API
    alpaca_api_key: str = Field(..., description="Alpaca API Key ID")
    alpaca_secret_key: str = Field(..., description="Alpaca Secret Key")
    alpaca_base_url: str = Field(
        default="https://paper-api.alpaca.markets",
        description="Alpaca API base URL",
    )
    alpaca_data_feed: Literal["sip", "iex"] = Field(default="iex")
    environment: Literal["paper", "live"] = Field(default="paper")

    # Storage
    database_url: PostgresDsn = Field(
        ..., description="PostgreSQL connection URL (must be set via DATABASE_URL env var)"
    )
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0")

    # API Configuration
    api_secret_key: str = Field(
        ...,
        description="API secret key for authentication (must be set via API_SECRET_KEY env var)",
    )
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)

    # Scoring model
    openai_api_key: str | None = Field(default=None)
    ai_model: str = Field(default="gpt-4o-mini")
    ai_scoring_timeout_seconds: float = Field(default=25.0, gt=0)
    ai_scoring_retry_max: int = Field(default=4, ge=0, le=10)
    ai_scoring_retry_base_seconds: float = Field(default=1.0, ge=0)
    ai_scoring_retry_cap_seconds: float = Field(default=8.0, ge=0)
    ai_breaker_error_threshold: int = Field(default=10, ge=1)
    ai_breaker_window_seconds: int = Field(default=120, ge=1)
    ai_breaker_cooldown_seconds: int = Field(default=120, ge=1)
    ai_qualify_mode: Literal["score", "grade"] = Field(default="score")
    ai_min_score_to_qualify: float = Field(default=7.0, ge=0, le=10)
    ai_min_grade_to_qualify: Literal["A+", "A", "B", "C", "D", "F"] = Field(default="B")
    ai_min_long_score: float = Field(default=7.5, ge=0, le=10)
    ai_min_short_score: float = Field(default=7.5, ge=0, le=10)
    ai_min_edge: float = Field(default=0.7, ge=0, le=10)
    min_bars_for_ai: int = Field(default=20, ge=1)
    ai_min_avg_dollar_volume: float = Field(default=300_000.0, ge=0)
    ai_context_lookback_minutes: int = Field(default=390, ge=30)

    # AI scoring drain
    drain_deadline_seconds: float = Field(default=110.0, gt=0)
    drain_soft_stop_seconds: float = Field(default=8.0, ge=0)
    drain_max_per_run: int = Field(default=25, ge=1, le=500)
    drain_concurrency: int = Field(default=5, ge=1, le=50)
    drain_claim_ttl_seconds: int = Field(default=120, ge=1)
    drain_stale_scoring_minutes: int = Field(default=10, ge=1)
    drain_reclaim_max: int = Field(default=200, ge=0)
    drain_recent_window_hours: int = Field(default=6, ge=1)
    drain_call_buffer_seconds: float = Field(default=0.5, ge=0)

    # Auto-entry
    auto_entry_enabled: bool = Field(default=False)
    auto_entry_paper_only: bool = Field(default=True)
    auto_entry_max_open_positions: int = Field(default=3, ge=0)
    auto_entry_max_entries_per_day: int = Field(default=5, ge=0)
    auto_entry_base_risk: float = Field(default=100.0, gt=0)
    auto_entry_reward_risk: float = Field(default=1.0, gt=0)
    auto_entry_tier_a_min: float = Field(default=8.5, ge=0, le=10)
    auto_entry_tier_b_min: float = Field(default=7.5, ge=0, le=10)
    auto_entry_tier_c_min: float = Field(default=6.5, ge=0, le=10)
    auto_entry_tier_a_risk_mult: float = Field(default=1.5, gt=0)
    auto_entry_tier_b_risk_mult: float = Field(default=1.0, gt=0)
    auto_entry_tier_c_risk_mult: float = Field(default=0.5, gt=0)
    auto_entry_max_age_minutes: int = Field(default=15, ge=1)
    auto_entry_rescore_after_minutes: int = Field(default=10, ge=1)
    auto_entry_allow_carryover: bool = Field(default=False)
    auto_entry_lock_ttl_seconds: int = Field(default=600, ge=1)
    auto_entry_max_consecutive_failures: int = Field(default=3, ge=1)

    # Reconciliation
    reconcile_max_trades: int = Field(default=500, ge=1)
    reconcile_lock_ttl_seconds: int = Field(default=120, ge=1)
    reconcile_deadline_seconds: float = Field(default=50.0, gt=0)
    reconcile_default_close_reason: str = Field(default="reconciled_not_in_broker")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    @property
    def is_paper_trading(self) -> bool:
        """Check if running in paper trading mode."""
        return self.environment == "paper"

    @property
    def use_sip_feed(self) -> bool:
        """Check if using SIP (paid real-time) data feed."""
        return self.alpaca_data_feed.lower() == "sip"

    @property
    def tier_thresholds(self) -> dict[str, float]:
        """Minimum score per tier, best first."""
        return {
            "A": self.auto_entry_tier_a_min,
            "B": self.auto_entry_tier_b_min,
            "C": self.auto_entry_tier_c_min,
        }

    @property
    def tier_risk_multipliers(self) -> dict[str, float]:
        """Risk multiplier applied to the base risk amount per tier."""
        return {
            "A": self.auto_entry_tier_a_risk_mult,
            "B": self.auto_entry_tier_b_risk_mult,
            "C": self.auto_entry_tier_c_risk_mult,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
