"""
Configuration management for the KRX backtesting engine.

Uses pydantic-settings for type-safe environment variable handling.
Every field can be overridden with a KRX_-prefixed environment variable.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="KRX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Data paths
    data_dir: Path = Field(
        default=Path("./data"),
        description="Root directory for CSV bar files and run artefacts",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Emit JSON formatted log lines",
    )

    # Job execution
    job_workers: int = Field(
        default=4,
        description="Worker threads in the job pool",
        ge=1,
        le=64,
    )
    job_queue_capacity: int = Field(
        default=100,
        description="Maximum number of QUEUED jobs before submissions are rejected",
        ge=1,
    )
    progress_interval_bars: int = Field(
        default=100,
        description="Bars between progress callbacks during a replay",
        ge=1,
    )

    # Market calendar (KRX regular session 09:00-15:30)
    trading_days_per_year: int = Field(
        default=252,
        description="Trading days used to annualize ratios",
        ge=1,
        le=366,
    )
    session_minutes: int = Field(
        default=390,
        description="Minutes in one regular trading session",
        ge=1,
        le=1440,
    )
    risk_free_rate: float = Field(
        default=0.0,
        description="Annual risk-free rate used by Sharpe and Sortino",
        ge=0.0,
        le=1.0,
    )

    # Metric policy
    profit_factor_cap: float = Field(
        default=999.99,
        description="Profit factor reported when there are no losing trades",
        gt=0,
    )

    # Backtest defaults
    default_initial_capital: float = Field(
        default=10_000_000.0,
        description="Initial capital in KRW",
        gt=0,
    )
    default_commission_rate: float = Field(
        default=0.001,
        description="Commission as a fraction of fill notional",
        ge=0,
        le=0.1,
    )
    default_slippage_rate: float = Field(
        default=0.0005,
        description="Slippage as a fraction of the close price",
        ge=0,
        le=0.1,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
