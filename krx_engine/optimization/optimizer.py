"""
Parameter optimizer.

Evaluates candidates from the parameter space one after another through the
backtest engine and folds them into the best run. A candidate that fails is
recorded with FAILED_OBJECTIVE and the search continues.
"""

import math
import threading
import time
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from functools import reduce
from typing import Any

from pydantic import ValidationError

from krx_engine.backtest.engine import BacktestEngine, validate_config
from krx_engine.backtest.models import BacktestResult
from krx_engine.errors import (
    BacktestCancelled,
    BacktestError,
    InvalidConfigError,
    SimulationFailure,
)
from krx_engine.logging import get_logger
from krx_engine.optimization.models import (
    FAILED_OBJECTIVE,
    OptimizationConfig,
    OptimizationResult,
    OptimizationRun,
)
from krx_engine.optimization.parameter_space import (
    check_space,
    generate_candidates,
    planned_evaluations,
)
from krx_engine.strategies import get_strategy

logger = get_logger(__name__)

Evaluation = tuple[OptimizationRun, BacktestResult | None]


def keep_better(best: Evaluation | None, candidate: Evaluation) -> Evaluation | None:
    """
    Fold step for selecting the best run.

    Failed runs never win. A strictly greater objective is required to
    replace the incumbent, so the first-found candidate wins ties.
    """
    run, _ = candidate
    if not run.succeeded:
        return best
    if best is None or run.objective_value > best[0].objective_value:
        return candidate
    return best


class ParameterOptimizer:
    """Grid and random search over strategy parameters."""

    def __init__(self, engine: BacktestEngine) -> None:
        self._engine = engine

    def optimize(
        self,
        config: OptimizationConfig,
        cancel_event: threading.Event | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> OptimizationResult:
        """
        Run the search.

        Raises:
            EmptyParameterSpaceError: No parameters or a parameter with no candidates
            InvalidConfigError: Bad base config or a parameter unknown to the strategy
            BacktestCancelled: ``cancel_event`` was set
        """
        started_at = datetime.now(UTC)
        t0 = time.perf_counter()

        check_space(config.parameter_ranges)
        validate_config(config.base_config)
        self._check_parameter_names(config)

        total = planned_evaluations(config)
        logger.info(
            "Starting optimization %s: %s, objective=%s, %d candidates",
            config.optimization_id,
            config.method.value,
            config.objective.value,
            total,
        )

        runs: list[OptimizationRun] = []

        def evaluations() -> Iterator[Evaluation]:
            for index, params in enumerate(generate_candidates(config)):
                evaluation = self._evaluate(index, params, config, cancel_event)
                runs.append(evaluation[0])
                if progress_callback:
                    progress_callback(index + 1, total)
                yield evaluation

        best = reduce(keep_better, evaluations(), None)

        failed = sum(1 for r in runs if not r.succeeded)
        completed_at = datetime.now(UTC)
        duration_ms = int((time.perf_counter() - t0) * 1000)

        if best is None:
            logger.warning(
                "Optimization %s: all %d candidates failed", config.optimization_id, len(runs)
            )
            return OptimizationResult(
                config=config,
                runs=runs,
                total_evaluations=len(runs),
                failed_evaluations=failed,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=duration_ms,
            )

        best_run, best_result = best
        logger.info(
            "Optimization %s completed: best %s=%.4f with %s (%d evaluated, %d failed)",
            config.optimization_id,
            config.objective.value,
            best_run.objective_value,
            best_run.parameters,
            len(runs),
            failed,
        )
        return OptimizationResult(
            config=config,
            best_parameters=best_run.parameters,
            best_objective_value=best_run.objective_value,
            best_result=best_result,
            runs=runs,
            total_evaluations=len(runs),
            failed_evaluations=failed,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _check_parameter_names(config: OptimizationConfig) -> None:
        strategy = get_strategy(config.base_config.strategy_type)
        known = set(strategy.params_model.model_fields)
        unknown = sorted(set(config.parameter_ranges) - known)
        if unknown:
            raise InvalidConfigError(
                f"Unknown parameters for {config.base_config.strategy_type}: {unknown}"
            )

    def _evaluate(
        self,
        index: int,
        params: dict[str, Any],
        config: OptimizationConfig,
        cancel_event: threading.Event | None,
    ) -> Evaluation:
        try:
            candidate = config.base_config.with_params(params)
            result = self._engine.run(candidate, cancel_event=cancel_event)
            value = config.objective.value_of(result.metrics)
            if math.isnan(value):
                raise SimulationFailure(f"{config.objective.value} is NaN")
        except BacktestCancelled:
            raise
        except ValidationError as exc:
            return self._failed(index, params, InvalidConfigError.from_validation(exc))
        except BacktestError as exc:
            return self._failed(index, params, exc)

        run = OptimizationRun(
            index=index,
            parameters=params,
            objective_value=value,
            total_return_pct=result.metrics.total_return_pct,
            sharpe_ratio=result.metrics.sharpe_ratio,
            total_trades=result.metrics.total_trades,
        )
        return run, result

    @staticmethod
    def _failed(index: int, params: dict[str, Any], exc: BacktestError) -> Evaluation:
        logger.warning("Candidate %d %s failed: %s", index, params, exc)
        run = OptimizationRun(
            index=index,
            parameters=params,
            objective_value=FAILED_OBJECTIVE,
            succeeded=False,
            error=f"{exc.code}: {exc}",
        )
        return run, None
