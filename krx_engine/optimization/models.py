"""
Data models for the optimization module.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from krx_engine.backtest.models import BacktestConfig, BacktestResult, PerformanceMetrics


class SearchMethod(str, Enum):
    GRID_SEARCH = "GRID_SEARCH"
    RANDOM_SEARCH = "RANDOM_SEARCH"


class Objective(str, Enum):
    """Scalar metric the optimizer maximizes."""

    TOTAL_RETURN = "TOTAL_RETURN"
    SHARPE_RATIO = "SHARPE_RATIO"
    SORTINO_RATIO = "SORTINO_RATIO"
    PROFIT_FACTOR = "PROFIT_FACTOR"
    CALMAR_RATIO = "CALMAR_RATIO"

    def value_of(self, metrics: PerformanceMetrics) -> float:
        mapping = {
            Objective.TOTAL_RETURN: metrics.total_return_pct,
            Objective.SHARPE_RATIO: metrics.sharpe_ratio,
            Objective.SORTINO_RATIO: metrics.sortino_ratio,
            Objective.PROFIT_FACTOR: metrics.profit_factor,
            Objective.CALMAR_RATIO: metrics.calmar_ratio,
        }
        return mapping[self]


class WindowType(str, Enum):
    """Walk-forward window type."""

    ROLLING = "ROLLING"  # Fixed-size rolling in-sample window
    ANCHORED = "ANCHORED"  # In-sample window grows from the analysis start


# Objective recorded for a candidate whose run failed
FAILED_OBJECTIVE = float("-inf")


# =============================================================================
# Optimizer Models
# =============================================================================


class OptimizationConfig(BaseModel):
    """Parameter search over a base backtest config."""

    model_config = ConfigDict(frozen=True)

    optimization_id: str = Field(default_factory=lambda: uuid4().hex)
    base_config: BacktestConfig
    parameter_ranges: dict[str, list[Any]] = Field(
        default_factory=dict, description="Parameter name -> candidate values, in search order"
    )
    method: SearchMethod = SearchMethod.GRID_SEARCH
    objective: Objective = Objective.SHARPE_RATIO
    max_runs: int = Field(default=1000, ge=1, description="Evaluation budget")
    random_seed: int | None = None


class OptimizationRun(BaseModel):
    """One evaluated candidate."""

    model_config = ConfigDict(frozen=True)

    index: int
    parameters: dict[str, Any]
    objective_value: float
    succeeded: bool = True
    error: str | None = None
    total_return_pct: float = 0.0
    sharpe_ratio: float = 0.0
    total_trades: int = 0


class OptimizationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    config: OptimizationConfig
    best_parameters: dict[str, Any] | None = None
    best_objective_value: float | None = None
    best_result: BacktestResult | None = None
    runs: list[OptimizationRun] = Field(default_factory=list)
    total_evaluations: int = 0
    failed_evaluations: int = 0
    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0

    @property
    def has_best(self) -> bool:
        return self.best_result is not None


# =============================================================================
# Walk-Forward Models
# =============================================================================


class WalkForwardConfig(BaseModel):
    """Configuration for walk-forward analysis."""

    model_config = ConfigDict(frozen=True)

    walk_forward_id: str = Field(default_factory=lambda: uuid4().hex)
    base_config: BacktestConfig
    optimization: OptimizationConfig = Field(
        ..., description="Search run on each in-sample window; its base_config is replaced per window"
    )
    analysis_start: date
    analysis_end: date
    in_sample_days: int = Field(default=180, ge=1)
    out_of_sample_days: int = Field(default=90, ge=1)
    step_days: int = Field(default=30, ge=1)
    min_windows: int = Field(default=3, ge=1)
    window_type: WindowType = WindowType.ROLLING

    @model_validator(mode="after")
    def check_range(self) -> "WalkForwardConfig":
        if self.analysis_start > self.analysis_end:
            raise ValueError("analysis_start must not be after analysis_end")
        return self

    @property
    def analysis_days(self) -> int:
        """Calendar days in the analysis range, both ends included."""
        return (self.analysis_end - self.analysis_start).days + 1


class WalkForwardWindow(BaseModel):
    """Results for a single walk-forward window. Date ranges are inclusive."""

    model_config = ConfigDict(frozen=True)

    index: int
    in_sample_start: date
    in_sample_end: date
    out_of_sample_start: date
    out_of_sample_end: date

    optimized_parameters: dict[str, Any] | None = None
    in_sample_objective: float | None = None
    in_sample_return_pct: float = 0.0
    in_sample_sharpe: float = 0.0
    in_sample_trades: int = 0
    out_of_sample_return_pct: float = 0.0
    out_of_sample_sharpe: float = 0.0
    out_of_sample_trades: int = 0
    degradation_pct: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class WalkForwardResult(BaseModel):
    """Complete walk-forward analysis result."""

    model_config = ConfigDict(frozen=True)

    config: WalkForwardConfig
    windows: list[WalkForwardWindow] = Field(default_factory=list)
    total_windows: int = 0
    successful_windows: int = 0

    combined_oos_return_pct: float = 0.0
    avg_is_return_pct: float = 0.0
    avg_oos_return_pct: float = 0.0
    avg_is_sharpe: float = 0.0
    avg_oos_sharpe: float = 0.0
    stability_score: float = 0.0
    consistency_score: float = 0.0
    profitable_windows_pct: float = 0.0

    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0
