"""
Strategy evaluators for the KRX backtesting engine.

Importing this package registers the built-in strategies.
"""

from krx_engine.strategies.ma_crossover import MACrossoverParams, MACrossoverStrategy
from krx_engine.strategies.registry import (
    available_strategies,
    get_strategy,
    register_strategy,
    unregister_strategy,
    validate_strategy_params,
)
from krx_engine.strategies.rsi_reversion import RSIParams, RSIReversionStrategy

__all__ = [
    "MACrossoverParams",
    "MACrossoverStrategy",
    "RSIParams",
    "RSIReversionStrategy",
    "available_strategies",
    "get_strategy",
    "register_strategy",
    "unregister_strategy",
    "validate_strategy_params",
]
