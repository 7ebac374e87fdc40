"""
Data models for Monte Carlo robustness analysis.
"""

from datetime import datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from krx_engine.backtest.models import BacktestResult


class SimulationMethod(str, Enum):
    BOOTSTRAP = "BOOTSTRAP"  # Draw trades with replacement
    PERMUTATION = "PERMUTATION"  # Reorder the same trades
    PARAMETRIC = "PARAMETRIC"  # Draw from a normal fit of trade returns


class MonteCarloConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    simulation_id: str = Field(default_factory=lambda: uuid4().hex)
    base_result: BacktestResult
    num_simulations: int = Field(default=1000, ge=1, le=1_000_000)
    method: SimulationMethod = SimulationMethod.BOOTSTRAP
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    preserve_correlation: bool = Field(
        default=False, description="Resample contiguous blocks of trades"
    )
    block_size: int = Field(default=5, ge=1)
    random_seed: int | None = None
    distribution_bins: int = Field(default=50, ge=1, le=10_000)
    ruin_threshold_pct: float = Field(
        default=-50.0, description="Final return below which a path counts as ruined"
    )


class DistributionBin(BaseModel):
    model_config = ConfigDict(frozen=True)

    lower: float
    upper: float
    count: int
    frequency: float


class SimulationPath(BaseModel):
    """One simulated equity path, sampled to at most 100 points."""

    model_config = ConfigDict(frozen=True)

    simulation_index: int
    final_return_pct: float
    max_drawdown_pct: float
    equity_curve: list[float] = Field(default_factory=list)


class MonteCarloResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    config: MonteCarloConfig
    num_simulations: int = 0
    num_trades: int = 0
    original_return_pct: float = Field(
        default=0.0, description="Compounded return of the base trade sequence"
    )

    mean_return_pct: float = 0.0
    median_return_pct: float = 0.0
    std_return_pct: float = 0.0
    confidence_lower_pct: float = 0.0
    confidence_upper_pct: float = 0.0
    value_at_risk_pct: float = 0.0
    conditional_var_pct: float = 0.0
    probability_of_profit: float = 0.0
    probability_of_ruin: float = 0.0
    best_return_pct: float = 0.0
    worst_return_pct: float = 0.0
    percentiles: dict[int, float] = Field(default_factory=dict)

    mean_max_drawdown_pct: float = 0.0
    median_max_drawdown_pct: float = 0.0
    worst_max_drawdown_pct: float = 0.0

    distribution: list[DistributionBin] = Field(default_factory=list)
    best_path: SimulationPath | None = None
    worst_path: SimulationPath | None = None
    median_path: SimulationPath | None = None

    warnings: list[str] = Field(default_factory=list)
    started_at: datetime
    completed_at: datetime
    duration_ms: int = 0
