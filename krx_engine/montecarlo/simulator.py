"""
Monte Carlo resampler.

Treats a finished backtest's trades as a sequence of per-trade returns and
builds synthetic equity paths by bootstrap, permutation or parametric
resampling. Every path compounds from the base run's initial capital.
All draws come from one seeded numpy Generator, so a fixed seed reproduces
the result exactly.

Only final returns and drawdowns are kept per simulation. The best, worst
and median paths are rebuilt at the end by restoring the generator state
saved at the start of their checkpoint block and redrawing.
"""

import threading
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

import numpy as np

from krx_engine.errors import BacktestCancelled
from krx_engine.logging import get_logger
from krx_engine.montecarlo.models import (
    DistributionBin,
    MonteCarloConfig,
    MonteCarloResult,
    SimulationMethod,
    SimulationPath,
)

logger = get_logger(__name__)

PERCENTILE_LEVELS = (5, 10, 25, 50, 75, 90, 95)
MAX_PATH_POINTS = 100


# =============================================================================
# Resampling
# =============================================================================


def bootstrap_sample(
    returns: Sequence[float] | np.ndarray, rng: np.random.Generator, block_size: int = 1
) -> np.ndarray:
    """
    len(returns) draws with replacement.

    With block_size > 1, draws runs of consecutive trades from random starts,
    wrapping at the end, until len(returns) values are collected.
    """
    values = np.asarray(returns)
    n = len(values)
    if block_size <= 1:
        return values[rng.integers(0, n, size=n)]

    starts = rng.integers(0, n, size=-(-n // block_size))
    index = (starts[:, None] + np.arange(block_size)) % n
    return values[index.ravel()[:n]]


def permutation_sample(
    returns: Sequence[float] | np.ndarray, rng: np.random.Generator, block_size: int = 1
) -> np.ndarray:
    """Same trades in a random order; with block_size > 1, whole blocks are shuffled."""
    values = np.asarray(returns)
    if block_size <= 1:
        return rng.permutation(values)

    blocks = [values[i : i + block_size] for i in range(0, len(values), block_size)]
    order = rng.permutation(len(blocks))
    return np.concatenate([blocks[j] for j in order])


def parametric_sample(returns: Sequence[float] | np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """len(returns) draws from N(mean, population std) of the trade returns."""
    values = np.asarray(returns, dtype=float)
    return rng.normal(float(np.mean(values)), float(np.std(values)), size=len(values))


def compound_path(
    returns: Sequence[float] | np.ndarray, initial_capital: float
) -> tuple[np.ndarray, float]:
    """
    Apply fractional returns in order.

    Returns (equity path including the starting point, max drawdown in percent).
    A return of -100% or worse wipes the path out at zero.
    """
    growth = np.maximum(0.0, 1.0 + np.asarray(returns, dtype=float))
    path = initial_capital * np.concatenate(([1.0], np.cumprod(growth)))
    peaks = np.maximum.accumulate(path)
    drawdown = (peaks - path) / peaks
    return path, float(drawdown.max() * 100.0)


# =============================================================================
# Statistics
# =============================================================================


def percentile(values: Sequence[float] | np.ndarray, pct: float) -> float:
    """Linear-interpolated percentile; 0.0 for no values."""
    if len(values) == 0:
        return 0.0
    return float(np.percentile(values, pct, method="linear"))


def build_histogram(values: Sequence[float] | np.ndarray, bins: int) -> list[DistributionBin]:
    """
    Equal-width bins between min and max; the last bin includes the max.

    When every value is equal there is a single bin.
    """
    data = np.asarray(values, dtype=float)
    if data.size == 0:
        return []
    total = int(data.size)
    lo, hi = float(data.min()), float(data.max())
    if hi == lo:
        return [DistributionBin(lower=lo, upper=hi, count=total, frequency=1.0)]

    counts, edges = np.histogram(data, bins=bins, range=(lo, hi))
    return [
        DistributionBin(
            lower=float(edges[i]),
            upper=float(edges[i + 1]),
            count=int(count),
            frequency=int(count) / total,
        )
        for i, count in enumerate(counts)
    ]


def _sample_curve(path: np.ndarray) -> list[float]:
    if len(path) <= MAX_PATH_POINTS:
        return path.tolist()
    index = np.round(np.linspace(0, len(path) - 1, MAX_PATH_POINTS)).astype(int)
    return path[index].tolist()


class MonteCarloSimulator:
    """Resamples a backtest's trades into a distribution of outcomes."""

    def simulate(
        self,
        config: MonteCarloConfig,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> MonteCarloResult:
        """
        Run ``config.num_simulations`` simulations.

        Raises:
            BacktestCancelled: ``cancel_event`` was set
        """
        started_at = datetime.now(UTC)
        t0 = time.perf_counter()
        base = config.base_result
        returns = np.array([t.return_pct / 100.0 for t in base.trades], dtype=float)
        capital = base.config.initial_capital

        if returns.size == 0:
            logger.warning("Monte Carlo %s: base result has no trades", config.simulation_id)
            return MonteCarloResult(
                config=config,
                warnings=["Base result has no trades; nothing to resample"],
                started_at=started_at,
                completed_at=datetime.now(UTC),
            )

        logger.info(
            "Starting Monte Carlo %s: %s, %d simulations over %d trades",
            config.simulation_id,
            config.method.value,
            config.num_simulations,
            returns.size,
        )

        rng = np.random.default_rng(config.random_seed)
        block_size = config.block_size if config.preserve_correlation else 1
        n = config.num_simulations
        block = max(1, n // 100)

        finals = np.empty(n)
        drawdowns = np.empty(n)
        # Generator state at the start of every block of `block` simulations
        checkpoints: list[dict[str, Any]] = []
        for i in range(n):
            if cancel_event is not None and cancel_event.is_set():
                raise BacktestCancelled(f"Monte Carlo {config.simulation_id} cancelled")
            if i % block == 0:
                checkpoints.append(rng.bit_generator.state)

            sample = self._resample(config.method, returns, rng, block_size)
            path, max_dd = compound_path(sample, capital)
            finals[i] = (path[-1] / capital - 1.0) * 100.0
            drawdowns[i] = max_dd

            if progress_callback and ((i + 1) % block == 0 or i + 1 == n):
                progress_callback(i + 1, n)

        def replay(index: int) -> np.ndarray:
            generator = np.random.default_rng()
            generator.bit_generator.state = checkpoints[index // block]
            for _ in range(index % block):
                self._resample(config.method, returns, generator, block_size)
            return self._resample(config.method, returns, generator, block_size)

        result = self._summarize(config, returns, capital, finals, drawdowns, replay, started_at, t0)
        logger.info(
            "Monte Carlo %s completed: mean=%.2f%%, CI=[%.2f%%, %.2f%%], P(profit)=%.3f",
            config.simulation_id,
            result.mean_return_pct,
            result.confidence_lower_pct,
            result.confidence_upper_pct,
            result.probability_of_profit,
        )
        return result

    @staticmethod
    def _resample(
        method: SimulationMethod,
        returns: np.ndarray,
        rng: np.random.Generator,
        block_size: int,
    ) -> np.ndarray:
        if method == SimulationMethod.PERMUTATION:
            return permutation_sample(returns, rng, block_size)
        if method == SimulationMethod.PARAMETRIC:
            return parametric_sample(returns, rng)
        return bootstrap_sample(returns, rng, block_size)

    @staticmethod
    def _summarize(
        config: MonteCarloConfig,
        returns: np.ndarray,
        capital: float,
        finals: np.ndarray,
        drawdowns: np.ndarray,
        replay: Callable[[int], np.ndarray],
        started_at: datetime,
        t0: float,
    ) -> MonteCarloResult:
        n = len(finals)
        alpha = 1.0 - config.confidence_level
        var = percentile(finals, alpha * 100.0)
        tail = finals[finals <= var]

        # Stable ranking: ties resolve to the earliest simulation
        ranking = np.argsort(finals, kind="stable")

        def path(index: int) -> SimulationPath:
            curve, max_dd = compound_path(replay(index), capital)
            return SimulationPath(
                simulation_index=index,
                final_return_pct=float(finals[index]),
                max_drawdown_pct=max_dd,
                equity_curve=_sample_curve(curve),
            )

        original_curve, _ = compound_path(returns, capital)

        return MonteCarloResult(
            config=config,
            num_simulations=n,
            num_trades=len(returns),
            original_return_pct=float((original_curve[-1] / capital - 1.0) * 100.0),
            mean_return_pct=float(np.mean(finals)),
            median_return_pct=float(np.median(finals)),
            std_return_pct=float(np.std(finals)),
            confidence_lower_pct=percentile(finals, alpha / 2.0 * 100.0),
            confidence_upper_pct=percentile(finals, (1.0 - alpha / 2.0) * 100.0),
            value_at_risk_pct=var,
            conditional_var_pct=float(np.mean(tail)) if tail.size else var,
            probability_of_profit=float(np.count_nonzero(finals > 0)) / n,
            probability_of_ruin=float(np.count_nonzero(finals < config.ruin_threshold_pct)) / n,
            best_return_pct=float(finals[ranking[-1]]),
            worst_return_pct=float(finals[ranking[0]]),
            percentiles={p: percentile(finals, p) for p in PERCENTILE_LEVELS},
            mean_max_drawdown_pct=float(np.mean(drawdowns)),
            median_max_drawdown_pct=float(np.median(drawdowns)),
            worst_max_drawdown_pct=float(np.max(drawdowns)),
            distribution=build_histogram(finals, config.distribution_bins),
            best_path=path(int(ranking[-1])),
            worst_path=path(int(ranking[0])),
            median_path=path(int(ranking[n // 2])),
            started_at=started_at,
            completed_at=datetime.now(UTC),
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
