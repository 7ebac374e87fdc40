"""
Service facade over the backtesting core.

The synchronous entry points never raise engine errors: they return an
``Outcome`` holding either the result or a typed error. The ``*_async``
entry points queue the same work on the job registry and return a job id.
"""

import threading
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from krx_engine.backtest.composer import PortfolioComposer, PortfolioConfig, PortfolioResult
from krx_engine.backtest.engine import BacktestEngine
from krx_engine.backtest.models import BacktestConfig, BacktestResult
from krx_engine.config import Settings, get_settings
from krx_engine.errors import BacktestError, InvalidConfigError, Outcome
from krx_engine.interfaces.data_provider import BarDataProvider
from krx_engine.logging import get_logger
from krx_engine.montecarlo import MonteCarloConfig, MonteCarloResult, MonteCarloSimulator
from krx_engine.optimization import (
    OptimizationConfig,
    OptimizationResult,
    ParameterOptimizer,
    WalkForwardAnalyzer,
    WalkForwardConfig,
    WalkForwardResult,
)
from krx_engine.runtime.jobs import JobKind, JobProgress, JobRegistry, ProgressReporter

logger = get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

ConfigInput = BaseModel | Mapping[str, Any]


def _coerce(model: type[M], config: ConfigInput) -> M:
    """Accept a built config or a raw mapping; raw input is validated here."""
    if isinstance(config, model):
        return config
    try:
        return model.model_validate(config)
    except ValidationError as exc:
        raise InvalidConfigError.from_validation(exc) from exc


class BacktestService:
    """
    Entry point for callers.

    Example:
        service = BacktestService(provider=CsvBarProvider(source))
        outcome = service.run({"strategy_type": "MA_CROSSOVER", ...})
        if outcome.ok:
            print(outcome.value.metrics.sharpe_ratio)
    """

    def __init__(
        self,
        provider: BarDataProvider | None = None,
        settings: Settings | None = None,
        registry: JobRegistry | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._engine = BacktestEngine(provider, self._settings)
        self._optimizer = ParameterOptimizer(self._engine)
        self._analyzer = WalkForwardAnalyzer(self._engine, self._optimizer)
        self._simulator = MonteCarloSimulator()
        self._composer = PortfolioComposer(self._engine)
        self._registry = registry or JobRegistry(self._settings)

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Synchronous entry points
    # -------------------------------------------------------------------------

    def run(self, config: ConfigInput) -> Outcome[BacktestResult]:
        return self._outcome(lambda: self._run(_coerce(BacktestConfig, config), None, None))

    def optimize(self, config: ConfigInput) -> Outcome[OptimizationResult]:
        return self._outcome(lambda: self._optimize(_coerce(OptimizationConfig, config), None, None))

    def analyze(self, config: ConfigInput) -> Outcome[WalkForwardResult]:
        return self._outcome(lambda: self._analyze(_coerce(WalkForwardConfig, config), None, None))

    def simulate(self, config: ConfigInput) -> Outcome[MonteCarloResult]:
        return self._outcome(lambda: self._simulate(_coerce(MonteCarloConfig, config), None, None))

    def compose(self, config: ConfigInput) -> Outcome[PortfolioResult]:
        return self._outcome(lambda: self._compose(_coerce(PortfolioConfig, config), None, None))

    # -------------------------------------------------------------------------
    # Background jobs
    # -------------------------------------------------------------------------

    def run_async(self, config: ConfigInput) -> str:
        """
        Queue a backtest and return its job id.

        Raises:
            InvalidConfigError: Raw config failed validation
            JobRejectedError: Job queue is full
        """
        built = _coerce(BacktestConfig, config)
        return self._registry.submit(
            JobKind.BACKTEST, lambda event, report: self._run(built, event, report)
        )

    def optimize_async(self, config: ConfigInput) -> str:
        built = _coerce(OptimizationConfig, config)
        return self._registry.submit(
            JobKind.OPTIMIZATION, lambda event, report: self._optimize(built, event, report)
        )

    def analyze_async(self, config: ConfigInput) -> str:
        built = _coerce(WalkForwardConfig, config)
        return self._registry.submit(
            JobKind.WALK_FORWARD, lambda event, report: self._analyze(built, event, report)
        )

    def simulate_async(self, config: ConfigInput) -> str:
        built = _coerce(MonteCarloConfig, config)
        return self._registry.submit(
            JobKind.MONTE_CARLO, lambda event, report: self._simulate(built, event, report)
        )

    def compose_async(self, config: ConfigInput) -> str:
        built = _coerce(PortfolioConfig, config)
        return self._registry.submit(
            JobKind.PORTFOLIO, lambda event, report: self._compose(built, event, report)
        )

    def get_progress(self, job_id: str) -> JobProgress | None:
        return self._registry.get_progress(job_id)

    def cancel(self, job_id: str) -> bool:
        return self._registry.cancel(job_id)

    def get_result(self, job_id: str) -> Outcome[Any]:
        return self._outcome(lambda: self._registry.get_result(job_id))

    def shutdown(self, wait: bool = True) -> None:
        self._registry.shutdown(wait=wait)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _outcome(call: Callable[[], T]) -> Outcome[T]:
        try:
            return Outcome.success(call())
        except ValidationError as exc:
            return Outcome.failure(InvalidConfigError.from_validation(exc))
        except BacktestError as exc:
            logger.info("Request failed: %s: %s", exc.code, exc)
            return Outcome.failure(exc)

    def _run(
        self,
        config: BacktestConfig,
        cancel_event: threading.Event | None,
        report: ProgressReporter | None,
    ) -> BacktestResult:
        def on_progress(event: dict[str, Any]) -> None:
            if report is not None:
                report(event["done"], event["total"], event["stage"])

        return self._engine.run(config, cancel_event=cancel_event, progress_callback=on_progress)

    def _optimize(
        self,
        config: OptimizationConfig,
        cancel_event: threading.Event | None,
        report: ProgressReporter | None,
    ) -> OptimizationResult:
        return self._optimizer.optimize(
            config, cancel_event=cancel_event, progress_callback=_phase(report, "optimizing")
        )

    def _analyze(
        self,
        config: WalkForwardConfig,
        cancel_event: threading.Event | None,
        report: ProgressReporter | None,
    ) -> WalkForwardResult:
        return self._analyzer.analyze(
            config, cancel_event=cancel_event, progress_callback=_phase(report, "windows")
        )

    def _simulate(
        self,
        config: MonteCarloConfig,
        cancel_event: threading.Event | None,
        report: ProgressReporter | None,
    ) -> MonteCarloResult:
        return self._simulator.simulate(
            config, cancel_event=cancel_event, progress_callback=_phase(report, "simulating")
        )

    def _compose(
        self,
        config: PortfolioConfig,
        cancel_event: threading.Event | None,
        report: ProgressReporter | None,
    ) -> PortfolioResult:
        return self._composer.run(
            config, cancel_event=cancel_event, progress_callback=_phase(report, "symbols")
        )


def _phase(report: ProgressReporter | None, phase: str) -> Callable[[int, int], None] | None:
    """Adapt a (done, total) callback onto the registry reporter."""
    if report is None:
        return None

    def callback(done: int, total: int) -> None:
        report(done, total, phase)

    return callback
