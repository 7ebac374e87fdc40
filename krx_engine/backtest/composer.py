"""
Portfolio composer.

Runs the engine independently per symbol with a weighted slice of capital,
then aligns the per-symbol equity curves with pandas to build a portfolio
curve, portfolio metrics and a return correlation matrix.
"""

import threading
import time
from collections.abc import Callable
from datetime import date
from typing import Any
from uuid import uuid4

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from krx_engine.backtest.engine import BacktestEngine
from krx_engine.backtest.metrics import calculate_risk_metrics, compute_performance_metrics
from krx_engine.backtest.models import (
    BacktestConfig,
    BacktestResult,
    EquityPoint,
    PerformanceMetrics,
    RiskMetrics,
)
from krx_engine.config import get_settings
from krx_engine.domain import Timeframe
from krx_engine.logging import get_logger
from krx_engine.strategies import validate_strategy_params

logger = get_logger(__name__)

WEIGHT_TOLERANCE = 1e-6


class PortfolioConfig(BaseModel):
    """Weighted multi-symbol run. Weights must sum to 1."""

    model_config = ConfigDict(frozen=True)

    portfolio_id: str = Field(default_factory=lambda: uuid4().hex)
    strategy_type: str
    strategy_params: dict[str, Any] = Field(default_factory=dict)
    weights: dict[str, float] = Field(..., min_length=1, description="Symbol -> capital weight")
    start_date: date
    end_date: date
    timeframe: Timeframe = Timeframe.D1
    initial_capital: float = Field(
        default_factory=lambda: get_settings().default_initial_capital, gt=0
    )
    commission_rate: float = Field(default=0.0015, ge=0, lt=1)
    slippage_rate: float = Field(
        default_factory=lambda: get_settings().default_slippage_rate, ge=0, lt=1
    )

    @model_validator(mode="before")
    @classmethod
    def normalize_strategy_params(cls, data: Any) -> Any:
        if isinstance(data, dict) and "strategy_type" in data:
            data = dict(data)
            data["strategy_params"] = validate_strategy_params(
                data["strategy_type"], data.get("strategy_params") or {}
            )
        return data

    @field_validator("weights")
    @classmethod
    def weights_sum_to_one(cls, v: dict[str, float]) -> dict[str, float]:
        for symbol, weight in v.items():
            if not 0 < weight <= 1:
                raise ValueError(f"Weight for {symbol} must be in (0, 1], got {weight}")
        total = sum(v.values())
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ValueError(f"Weights must sum to 1.0, got {total:.6f}")
        return v

    def symbol_config(self, symbol: str) -> BacktestConfig:
        """Single-symbol config with this symbol's share of capital."""
        return BacktestConfig(
            backtest_id=f"{self.portfolio_id}-{symbol}",
            strategy_type=self.strategy_type,
            strategy_params=self.strategy_params,
            symbols=[symbol],
            start_date=self.start_date,
            end_date=self.end_date,
            timeframe=self.timeframe,
            initial_capital=self.initial_capital * self.weights[symbol],
            commission_rate=self.commission_rate,
            slippage_rate=self.slippage_rate,
        )


class PortfolioResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    config: PortfolioConfig
    symbol_results: dict[str, BacktestResult]
    allocations: dict[str, float]
    final_capital: float
    total_return_pct: float
    equity_curve: list[EquityPoint]
    metrics: PerformanceMetrics
    risk: RiskMetrics
    correlation: dict[str, dict[str, float]]
    duration_ms: int = 0


class PortfolioComposer:
    """Thin layer over BacktestEngine for weighted portfolios."""

    def __init__(self, engine: BacktestEngine) -> None:
        self._engine = engine

    def run(
        self,
        config: PortfolioConfig,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> PortfolioResult:
        t0 = time.perf_counter()
        settings = self._engine.settings
        symbols = list(config.weights)
        logger.info(
            "Starting portfolio %s: %d symbols, capital=%.0f",
            config.portfolio_id,
            len(symbols),
            config.initial_capital,
        )

        results: dict[str, BacktestResult] = {}
        for i, symbol in enumerate(symbols):
            results[symbol] = self._engine.run(config.symbol_config(symbol), cancel_event=cancel_event)
            if progress_callback:
                progress_callback(i + 1, len(symbols))

        allocations = {s: config.initial_capital * config.weights[s] for s in symbols}
        equity, cash = _align_curves(results, allocations)
        curve = [
            EquityPoint(
                timestamp=ts.to_pydatetime(),
                equity=float(equity.loc[ts]),
                cash=float(cash.loc[ts]),
                position_value=float(equity.loc[ts] - cash.loc[ts]),
            )
            for ts in equity.index
        ]

        trades = sorted(
            (t for r in results.values() for t in r.trades),
            key=lambda t: (t.exit_time, t.symbol),
        )
        metrics = compute_performance_metrics(
            trades,
            curve,
            config.initial_capital,
            periods_per_year=config.timeframe.periods_per_year(
                settings.trading_days_per_year, settings.session_minutes
            ),
            profit_factor_cap=settings.profit_factor_cap,
            risk_free_rate=settings.risk_free_rate,
        )
        final_capital = sum(r.final_capital for r in results.values())

        logger.info(
            "Portfolio completed %s: return=%.2f%%, Sharpe=%.2f",
            config.portfolio_id,
            metrics.total_return_pct,
            metrics.sharpe_ratio,
        )

        return PortfolioResult(
            config=config,
            symbol_results=results,
            allocations=allocations,
            final_capital=final_capital,
            total_return_pct=(final_capital - config.initial_capital) / config.initial_capital * 100.0,
            equity_curve=curve,
            metrics=metrics,
            risk=calculate_risk_metrics(
                trades,
                metrics.total_return_pct,
                metrics.max_drawdown_pct,
                cap=settings.profit_factor_cap,
            ),
            correlation=_return_correlation(results),
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )


def _curve_frame(results: dict[str, BacktestResult], field: str) -> pd.DataFrame:
    return pd.DataFrame(
        {
            symbol: pd.Series(
                [getattr(p, field) for p in r.equity_curve],
                index=pd.DatetimeIndex([p.timestamp for p in r.equity_curve]),
                dtype=float,
            )
            for symbol, r in results.items()
        }
    ).sort_index()


def _align_curves(
    results: dict[str, BacktestResult], allocations: dict[str, float]
) -> tuple["pd.Series[float]", "pd.Series[float]"]:
    """
    Sum per-symbol curves on the union of timestamps.

    A symbol's last value carries forward; before its first point it counts
    at its allocated capital.
    """
    equity = _curve_frame(results, "equity").ffill().fillna(allocations)
    cash = _curve_frame(results, "cash").ffill().fillna(allocations)
    return equity.sum(axis=1), cash.sum(axis=1)


def _return_correlation(results: dict[str, BacktestResult]) -> dict[str, dict[str, float]]:
    """Pearson correlation of per-symbol period returns; undefined pairs are 0."""
    returns = _curve_frame(results, "equity").ffill().pct_change(fill_method=None)
    corr = returns.corr().fillna(0.0)
    matrix = corr.to_dict()
    for symbol in matrix:
        matrix[symbol][symbol] = 1.0
    return {a: {b: float(v) for b, v in row.items()} for a, row in matrix.items()}
