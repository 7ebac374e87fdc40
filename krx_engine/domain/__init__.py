"""
Domain models for the KRX backtesting engine.

- Bar: OHLCV price data for one symbol and period
- Timeframe: bar interval and its annualization factor
- Decision: a strategy's BUY/SELL/HOLD output for a bar
"""

from krx_engine.domain.bar import Bar, Timeframe
from krx_engine.domain.decision import HOLD, Action, Decision

__all__ = [
    "HOLD",
    "Action",
    "Bar",
    "Decision",
    "Timeframe",
]
