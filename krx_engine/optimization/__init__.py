"""
Optimization module.

Provides:
- Grid and random parameter search
- Rolling and anchored walk-forward analysis
"""

from krx_engine.optimization.models import (
    FAILED_OBJECTIVE,
    Objective,
    OptimizationConfig,
    OptimizationResult,
    OptimizationRun,
    SearchMethod,
    WalkForwardConfig,
    WalkForwardResult,
    WalkForwardWindow,
    WindowType,
)
from krx_engine.optimization.optimizer import ParameterOptimizer
from krx_engine.optimization.walk_forward import WalkForwardAnalyzer

__all__ = [
    "FAILED_OBJECTIVE",
    "Objective",
    "OptimizationConfig",
    "OptimizationResult",
    "OptimizationRun",
    "ParameterOptimizer",
    "SearchMethod",
    "WalkForwardAnalyzer",
    "WalkForwardConfig",
    "WalkForwardResult",
    "WalkForwardWindow",
    "WindowType",
]
