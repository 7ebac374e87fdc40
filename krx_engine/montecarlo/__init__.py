"""
Monte Carlo robustness analysis over a finished backtest's trades.
"""

from krx_engine.montecarlo.models import (
    DistributionBin,
    MonteCarloConfig,
    MonteCarloResult,
    SimulationMethod,
    SimulationPath,
)
from krx_engine.montecarlo.simulator import (
    MonteCarloSimulator,
    bootstrap_sample,
    build_histogram,
    compound_path,
    parametric_sample,
    percentile,
    permutation_sample,
)

__all__ = [
    "DistributionBin",
    "MonteCarloConfig",
    "MonteCarloResult",
    "MonteCarloSimulator",
    "SimulationMethod",
    "SimulationPath",
    "bootstrap_sample",
    "build_histogram",
    "compound_path",
    "parametric_sample",
    "percentile",
    "permutation_sample",
]
