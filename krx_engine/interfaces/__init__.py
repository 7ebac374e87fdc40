"""
Interfaces (abstract base classes) consumed by the backtesting core.

- BarDataProvider: historical bar access
- StrategyEvaluator: bar window + params -> Decision
"""

from krx_engine.interfaces.data_provider import BarDataProvider
from krx_engine.interfaces.strategy import StrategyEvaluator, StrategyParams

__all__ = [
    "BarDataProvider",
    "StrategyEvaluator",
    "StrategyParams",
]
