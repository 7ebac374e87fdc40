"""
Walk-forward analyzer.

Splits the analysis range into in-sample/out-of-sample windows, optimizes on
each in-sample window, validates the winning parameters on the adjoining
out-of-sample window, and aggregates the out-of-sample results.
"""

import math
import threading
import time
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

from krx_engine.backtest.engine import BacktestEngine, validate_config
from krx_engine.errors import BacktestCancelled, BacktestError, InsufficientWindowsError
from krx_engine.logging import get_logger
from krx_engine.optimization.models import (
    WalkForwardConfig,
    WalkForwardResult,
    WalkForwardWindow,
    WindowType,
)
from krx_engine.optimization.optimizer import ParameterOptimizer
from krx_engine.optimization.parameter_space import check_space

logger = get_logger(__name__)

WindowBounds = tuple[date, date, date, date]

_ZERO = 1e-12


def count_windows(length: int, in_sample: int, out_of_sample: int, step: int) -> int:
    """floor((L - I - O) / S) + 1, clamped at 0."""
    if length < in_sample + out_of_sample:
        return 0
    return (length - in_sample - out_of_sample) // step + 1


def generate_windows(config: WalkForwardConfig) -> list[WindowBounds]:
    """
    Generate walk-forward windows.

    Returns (in_sample_start, in_sample_end, oos_start, oos_end) tuples with
    inclusive ends, i.e. in-sample covers [t, t + I) and out-of-sample
    covers [t + I, t + I + O).

    ROLLING: in-sample start slides forward by step_days.
    ANCHORED: in-sample start stays at analysis_start, its end grows by step_days.
    """
    windows: list[WindowBounds] = []
    one_day = timedelta(days=1)
    total = count_windows(
        config.analysis_days, config.in_sample_days, config.out_of_sample_days, config.step_days
    )

    for k in range(total):
        rolling_start = config.analysis_start + timedelta(days=k * config.step_days)
        oos_start = rolling_start + timedelta(days=config.in_sample_days)
        oos_end = oos_start + timedelta(days=config.out_of_sample_days) - one_day
        is_start = config.analysis_start if config.window_type == WindowType.ANCHORED else rolling_start
        windows.append((is_start, oos_start - one_day, oos_start, oos_end))

    return windows


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class WalkForwardAnalyzer:
    """
    Walk-forward analysis engine.

    1. Split the range into in-sample (training) and out-of-sample (test) windows
    2. Optimize on in-sample
    3. Re-run the winning parameters on out-of-sample
    4. Step forward and repeat
    5. Aggregate out-of-sample results into stability scores
    """

    def __init__(
        self,
        engine: BacktestEngine,
        optimizer: ParameterOptimizer | None = None,
    ) -> None:
        self._engine = engine
        self._optimizer = optimizer or ParameterOptimizer(engine)

    def analyze(
        self,
        config: WalkForwardConfig,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> WalkForwardResult:
        """
        Run walk-forward analysis.

        Raises:
            InsufficientWindowsError: Fewer than ``min_windows`` windows fit the range
            EmptyParameterSpaceError: Nested optimization has nothing to search
            BacktestCancelled: ``cancel_event`` was set
        """
        started_at = datetime.now(UTC)
        t0 = time.perf_counter()

        validate_config(config.base_config)
        check_space(config.optimization.parameter_ranges)

        bounds = generate_windows(config)
        if len(bounds) < config.min_windows:
            raise InsufficientWindowsError(len(bounds), config.min_windows)

        logger.info(
            "Starting walk-forward %s: %d %s windows (IS=%dd, OOS=%dd, step=%dd)",
            config.walk_forward_id,
            len(bounds),
            config.window_type.value,
            config.in_sample_days,
            config.out_of_sample_days,
            config.step_days,
        )

        windows: list[WalkForwardWindow] = []
        for index, window_bounds in enumerate(bounds):
            windows.append(self._run_window(index, window_bounds, config, cancel_event))
            if progress_callback:
                progress_callback(index + 1, len(bounds))

        result = self._aggregate(config, windows, started_at, t0)
        logger.info(
            "Walk-forward %s completed: %d/%d windows ok, combined OOS return=%.2f%%, stability=%.3f",
            config.walk_forward_id,
            result.successful_windows,
            result.total_windows,
            result.combined_oos_return_pct,
            result.stability_score,
        )
        return result

    def _run_window(
        self,
        index: int,
        bounds: WindowBounds,
        config: WalkForwardConfig,
        cancel_event: threading.Event | None,
    ) -> WalkForwardWindow:
        """Process a single walk-forward window."""
        is_start, is_end, oos_start, oos_end = bounds
        window = WalkForwardWindow(
            index=index,
            in_sample_start=is_start,
            in_sample_end=is_end,
            out_of_sample_start=oos_start,
            out_of_sample_end=oos_end,
        )
        logger.debug(
            "Window %d: IS %s..%s, OOS %s..%s", index, is_start, is_end, oos_start, oos_end
        )

        base = config.base_config
        try:
            is_config = base.derive(
                backtest_id=f"{config.walk_forward_id}-w{index}-is",
                start_date=is_start,
                end_date=is_end,
            )
            optimization = self._optimizer.optimize(
                config.optimization.model_copy(update={"base_config": is_config}),
                cancel_event=cancel_event,
            )
        except BacktestCancelled:
            raise
        except BacktestError as exc:
            logger.warning("Window %d in-sample optimization failed: %s", index, exc)
            return window.model_copy(update={"error": f"{exc.code}: {exc}"})

        if not optimization.has_best:
            return window.model_copy(update={"error": "no successful in-sample candidate"})

        is_metrics = optimization.best_result.metrics  # type: ignore[union-attr]
        window = window.model_copy(
            update={
                "optimized_parameters": optimization.best_parameters,
                "in_sample_objective": optimization.best_objective_value,
                "in_sample_return_pct": is_metrics.total_return_pct,
                "in_sample_sharpe": is_metrics.sharpe_ratio,
                "in_sample_trades": is_metrics.total_trades,
            }
        )

        try:
            oos_config = base.derive(
                backtest_id=f"{config.walk_forward_id}-w{index}-oos",
                start_date=oos_start,
                end_date=oos_end,
                strategy_params={**base.strategy_params, **(optimization.best_parameters or {})},
            )
            oos = self._engine.run(oos_config, cancel_event=cancel_event)
        except BacktestCancelled:
            raise
        except BacktestError as exc:
            logger.warning("Window %d out-of-sample run failed: %s", index, exc)
            return window.model_copy(update={"error": f"{exc.code}: {exc}"})

        is_return = is_metrics.total_return_pct
        oos_return = oos.metrics.total_return_pct
        degradation = (is_return - oos_return) / abs(is_return) * 100.0 if abs(is_return) > _ZERO else 0.0

        return window.model_copy(
            update={
                "out_of_sample_return_pct": oos_return,
                "out_of_sample_sharpe": oos.metrics.sharpe_ratio,
                "out_of_sample_trades": oos.metrics.total_trades,
                "degradation_pct": degradation,
            }
        )

    @staticmethod
    def _aggregate(
        config: WalkForwardConfig,
        windows: list[WalkForwardWindow],
        started_at: datetime,
        t0: float,
    ) -> WalkForwardResult:
        ok = [w for w in windows if w.succeeded]
        oos_returns = [w.out_of_sample_return_pct for w in ok]

        growth = 1.0
        for r in oos_returns:
            growth *= 1.0 + r / 100.0
        combined = (growth - 1.0) * 100.0 if ok else 0.0

        avg_is_sharpe = _mean([w.in_sample_sharpe for w in ok])
        avg_oos_sharpe = _mean([w.out_of_sample_sharpe for w in ok])
        stability = avg_oos_sharpe / avg_is_sharpe if abs(avg_is_sharpe) > _ZERO else 0.0

        if oos_returns:
            mean_oos = _mean(oos_returns)
            std_oos = math.sqrt(sum((r - mean_oos) ** 2 for r in oos_returns) / len(oos_returns))
            consistency = 1.0 / (1.0 + std_oos / 100.0)
            profitable = sum(1 for r in oos_returns if r > 0) / len(oos_returns) * 100.0
        else:
            consistency = 0.0
            profitable = 0.0

        return WalkForwardResult(
            config=config,
            windows=windows,
            total_windows=len(windows),
            successful_windows=len(ok),
            combined_oos_return_pct=combined,
            avg_is_return_pct=_mean([w.in_sample_return_pct for w in ok]),
            avg_oos_return_pct=_mean(oos_returns),
            avg_is_sharpe=avg_is_sharpe,
            avg_oos_sharpe=avg_oos_sharpe,
            stability_score=stability,
            consistency_score=consistency,
            profitable_windows_pct=profitable,
            started_at=started_at,
            completed_at=datetime.now(UTC),
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
