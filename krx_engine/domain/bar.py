"""
Bar (OHLCV) domain model.

Represents a single price bar with open, high, low, close, and volume.
Bars are immutable so that a replay cannot alter the history it reads.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


class Timeframe(str, Enum):
    """Supported bar timeframes."""

    M1 = "1m"
    M3 = "3m"
    M5 = "5m"
    M10 = "10m"
    M15 = "15m"
    M30 = "30m"
    M60 = "60m"
    D1 = "1d"
    W1 = "1w"

    @property
    def minutes(self) -> int:
        """Return timeframe in minutes."""
        mapping = {
            "1m": 1,
            "3m": 3,
            "5m": 5,
            "10m": 10,
            "15m": 15,
            "30m": 30,
            "60m": 60,
            "1d": 1440,
            "1w": 10080,
        }
        return mapping[self.value]

    @property
    def is_intraday(self) -> bool:
        return self.minutes < 1440

    def periods_per_year(self, trading_days: int = 252, session_minutes: int = 390) -> float:
        """
        Bars per year for annualizing ratios.

        Intraday bars only exist during the regular session, so a 1m year on
        KRX is 252 * 390 bars rather than 252 * 1440.
        """
        if self == Timeframe.W1:
            return 52.0
        if self == Timeframe.D1:
            return float(trading_days)
        return trading_days * session_minutes / self.minutes


class Bar(BaseModel):
    """A single OHLCV bar."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="KRX ticker, e.g. 005930")
    timestamp: datetime = Field(..., description="Bar timestamp")
    open: float = Field(..., gt=0)
    high: float = Field(..., gt=0)
    low: float = Field(..., gt=0)
    close: float = Field(..., gt=0)
    volume: float = Field(default=0.0, ge=0)

    @field_validator("high")
    @classmethod
    def high_gte_open(cls, v: float, info: ValidationInfo) -> float:
        """Validate high >= open."""
        data = info.data
        if "open" in data and v < data["open"]:
            raise ValueError("high must be >= open")
        return v

    @field_validator("low")
    @classmethod
    def low_lte_open_high(cls, v: float, info: ValidationInfo) -> float:
        """Validate low <= open and low <= high."""
        data = info.data
        if "open" in data and v > data["open"]:
            raise ValueError("low must be <= open")
        if "high" in data and v > data["high"]:
            raise ValueError("low must be <= high")
        return v

    @field_validator("close")
    @classmethod
    def close_within_range(cls, v: float, info: ValidationInfo) -> float:
        """Validate low <= close <= high."""
        data = info.data
        if "high" in data and v > data["high"]:
            raise ValueError("close must be <= high")
        if "low" in data and v < data["low"]:
            raise ValueError("close must be >= low")
        return v

    @property
    def typical_price(self) -> float:
        """(high + low + close) / 3."""
        return (self.high + self.low + self.close) / 3
