"""
KRX Backtesting Engine

Deterministic bar-replay backtesting for Korean equities:
- Multi-symbol replay with commission and slippage
- Grid and random parameter search
- Walk-forward and Monte Carlo robustness analysis
- Weighted portfolio composition
- Background jobs with progress and cancellation
"""

__version__ = "0.1.0"

from krx_engine.config import Settings, get_settings

__all__ = ["__version__", "Settings", "get_settings"]
