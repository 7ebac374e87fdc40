"""
Backtest engine module.

Provides deterministic, bar-driven backtesting with:
- BrokerSim for fill simulation
- Portfolio for average-cost position and P&L tracking
- Metrics calculation (Sharpe, drawdown, profit factor, trade risk profile)
- PortfolioComposer for weighted multi-symbol runs
"""

from krx_engine.backtest.models import (
    BacktestConfig,
    BacktestResult,
    EquityPoint,
    PerformanceMetrics,
    RiskMetrics,
    Side,
    Trade,
)

__all__ = [
    "BacktestConfig",
    "BacktestResult",
    "EquityPoint",
    "PerformanceMetrics",
    "RiskMetrics",
    "Side",
    "Trade",
]
