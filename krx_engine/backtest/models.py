"""
Backtest data models.

Defines contracts for backtest configs, trades, equity points, metrics and
results. Everything here is immutable once constructed.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from krx_engine.config import get_settings
from krx_engine.data.models import DataSourceConfig
from krx_engine.domain import Timeframe
from krx_engine.strategies import validate_strategy_params


class Side(str, Enum):
    """Side of the fill that opened a position."""

    BUY = "BUY"
    SELL = "SELL"


class ExitReason(str, Enum):
    SIGNAL = "signal"
    END_OF_DATA = "end_of_data"


def _new_id() -> str:
    return uuid4().hex


# =============================================================================
# Config
# =============================================================================


class BacktestConfig(BaseModel):
    """
    One simulation run: strategy, symbols, dates and cost model.

    ``strategy_params`` is validated against the registered strategy's typed
    params model when the config is built. Unknown keys or malformed values
    raise InvalidConfigError here rather than deep inside the replay.
    """

    model_config = ConfigDict(frozen=True)

    backtest_id: str = Field(default_factory=_new_id)
    strategy_type: str = Field(..., description="Registered strategy name")
    symbols: list[str] = Field(default_factory=list, description="KRX tickers, replay order")
    start_date: date = Field(
        ...,
        description="First calendar day (inclusive)",
        validation_alias=AliasChoices("start_date", "start"),
    )
    end_date: date = Field(
        ...,
        description="Last calendar day (inclusive)",
        validation_alias=AliasChoices("end_date", "end"),
    )
    timeframe: Timeframe = Field(default=Timeframe.M1)
    initial_capital: float = Field(
        default_factory=lambda: get_settings().default_initial_capital,
        description="Starting cash in KRW",
    )
    commission_rate: float = Field(
        default_factory=lambda: get_settings().default_commission_rate,
        description="Commission as a fraction of fill notional",
    )
    slippage_rate: float = Field(
        default_factory=lambda: get_settings().default_slippage_rate,
        description="Adverse price adjustment as a fraction of close",
    )
    strategy_params: dict[str, Any] = Field(default_factory=dict)
    data_source: DataSourceConfig | None = None

    @model_validator(mode="before")
    @classmethod
    def normalize_strategy_params(cls, data: Any) -> Any:
        if isinstance(data, dict) and "strategy_type" in data:
            data = dict(data)
            data["strategy_params"] = validate_strategy_params(
                data["strategy_type"], data.get("strategy_params") or {}
            )
        return data

    def derive(self, **changes: Any) -> "BacktestConfig":
        """
        Build a new validated config with some fields replaced.

        A fresh ``backtest_id`` is assigned unless one is passed in.
        """
        data = self.model_dump()
        data.pop("backtest_id")
        data.update(changes)
        return BacktestConfig.model_validate(data)

    def with_params(self, params: dict[str, Any]) -> "BacktestConfig":
        """Merge ``params`` over the current strategy params."""
        return self.derive(strategy_params={**self.strategy_params, **params})


# =============================================================================
# Result Models
# =============================================================================


class EquityPoint(BaseModel):
    """Portfolio value after one timestamp of the replay."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    equity: float
    cash: float
    position_value: float = 0.0


class Trade(BaseModel):
    """A fully or partially closed position."""

    model_config = ConfigDict(frozen=True)

    trade_id: str = Field(default_factory=_new_id)
    symbol: str
    side: Side = Side.BUY
    quantity: int
    entry_time: datetime
    exit_time: datetime
    entry_price: float
    exit_price: float
    commission: float = Field(description="Entry share plus exit commission")
    gross_pnl: float
    net_pnl: float
    return_pct: float = Field(description="Net P&L over entry notional, in percent")
    exit_reason: ExitReason = ExitReason.SIGNAL

    @property
    def is_winner(self) -> bool:
        return self.net_pnl > 0


class PerformanceMetrics(BaseModel):
    """Summary statistics for one run."""

    model_config = ConfigDict(frozen=True)

    total_return_pct: float = 0.0
    total_pnl: float = 0.0
    annualized_return_pct: float = 0.0

    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    volatility_pct: float = 0.0

    max_drawdown_pct: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_duration_bars: int = 0

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    avg_trade_return_pct: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0


class RiskMetrics(BaseModel):
    """
    Trade-level risk profile.

    Computed from per-trade returns in percent, so VaR and CVaR read as
    "the 5% worst trades lose at least / on average this much".
    """

    model_config = ConfigDict(frozen=True)

    volatility_pct: float = Field(default=0.0, description="Population stdev of trade returns")
    downside_deviation_pct: float = Field(
        default=0.0, description="Root mean square of the losing trade returns"
    )
    var_95_pct: float = 0.0
    cvar_95_pct: float = 0.0
    recovery_factor: float = Field(default=0.0, description="Total return / max drawdown")
    omega_ratio: float = 0.0
    skewness: float = 0.0
    kurtosis: float = Field(default=3.0, description="Fourth standardized moment; 3 for a normal")
    excess_kurtosis: float = 0.0
    kelly_fraction: float = Field(default=0.0, ge=0, le=1)
    half_kelly: float = 0.0
    tail_ratio: float = Field(default=1.0, description="|95th pct| / |5th pct| trade return")
    gain_to_pain_ratio: float = 0.0


class BacktestResult(BaseModel):
    """Output of exactly one simulation run."""

    model_config = ConfigDict(frozen=True)

    config: BacktestConfig
    final_capital: float
    total_return_pct: float
    trades: list[Trade] = Field(default_factory=list)
    equity_curve: list[EquityPoint] = Field(default_factory=list)
    metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    risk: RiskMetrics = Field(default_factory=RiskMetrics)
    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0
    bars_processed: int = 0
    warnings: list[str] = Field(default_factory=list)

    @property
    def backtest_id(self) -> str:
        return self.config.backtest_id

    @property
    def total_trades(self) -> int:
        return len(self.trades)
