"""
Bar replay backtest engine.

Runs one BacktestConfig:
- Multi-symbol replay interleaved by timestamp
- Strategy decisions from a trailing window that ends at the current bar
- Fills via BrokerSim, average-cost accounting via Portfolio
- Forced liquidation at the end of data
- Cooperative cancellation checked once per bar
"""

import heapq
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from datetime import UTC, datetime
from itertools import groupby
from typing import Any

from krx_engine.backtest.broker_sim import BrokerSim
from krx_engine.backtest.metrics import calculate_risk_metrics, compute_performance_metrics
from krx_engine.backtest.models import (
    BacktestConfig,
    BacktestResult,
    EquityPoint,
    ExitReason,
    Side,
)
from krx_engine.backtest.portfolio import Portfolio
from krx_engine.config import Settings, get_settings
from krx_engine.data import DataSourceConfig, DataSourceType, resolve_provider
from krx_engine.domain import Bar, Decision
from krx_engine.errors import (
    BacktestCancelled,
    BacktestError,
    InsufficientDataError,
    InvalidConfigError,
    SimulationFailure,
)
from krx_engine.interfaces.data_provider import BarDataProvider
from krx_engine.interfaces.strategy import StrategyEvaluator, StrategyParams
from krx_engine.logging import get_logger
from krx_engine.strategies import get_strategy

logger = get_logger(__name__)

# Bars handed to the strategy per evaluation, unless it needs more
DEFAULT_WINDOW_BARS = 250

ProgressCallback = Callable[[dict[str, Any]], None]


def validate_config(config: BacktestConfig) -> None:
    """
    Check the parts of a config the model itself does not constrain.

    Raises:
        InvalidConfigError: Empty symbol set, empty date range, non-positive
            capital, or a negative cost rate.
    """
    if not config.symbols:
        raise InvalidConfigError("At least one symbol is required")
    if config.start_date > config.end_date:
        raise InvalidConfigError(
            f"Empty date range: start {config.start_date} is after end {config.end_date}"
        )
    if config.initial_capital <= 0:
        raise InvalidConfigError(f"Initial capital must be positive, got {config.initial_capital}")
    if not 0 <= config.commission_rate < 1:
        raise InvalidConfigError(f"Commission rate out of range: {config.commission_rate}")
    if not 0 <= config.slippage_rate < 1:
        raise InvalidConfigError(f"Slippage rate out of range: {config.slippage_rate}")


class BacktestEngine:
    """
    Deterministic bar-driven backtest engine.

    The engine holds no per-run state, so one instance can serve several
    jobs at once.
    """

    def __init__(
        self,
        provider: BarDataProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize backtest engine.

        Args:
            provider: Default bar source; a CSV data-source override on a
                config takes precedence
            settings: Engine settings, defaults to the cached settings
        """
        self._provider = provider
        self._settings = settings or get_settings()
        # CSV overrides, keyed by their serialized source so repeated runs
        # over one file share its parsed frames
        self._csv_providers: dict[str, BarDataProvider] = {}
        self._providers_lock = threading.Lock()

    @property
    def settings(self) -> Settings:
        return self._settings

    def provider_for(self, source: DataSourceConfig | None) -> BarDataProvider:
        """
        Provider for a run, reusing one CsvBarProvider per distinct CSV source.

        Raises:
            InvalidConfigError: Neither an override nor a default provider
        """
        if source is None or source.type != DataSourceType.CSV:
            return resolve_provider(source, self._provider)
        key = source.model_dump_json()
        with self._providers_lock:
            provider = self._csv_providers.get(key)
            if provider is None:
                provider = resolve_provider(source, self._provider)
                self._csv_providers[key] = provider
        return provider

    def run(
        self,
        config: BacktestConfig,
        cancel_event: threading.Event | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> BacktestResult:
        """
        Replay ``config`` and return its result.

        Raises:
            InvalidConfigError: Config fails validation
            InsufficientDataError: A symbol has fewer bars than the lookback
            BacktestCancelled: ``cancel_event`` was set during the replay
            SimulationFailure: Any unexpected fault while loading bars or replaying
        """
        started_at = datetime.now(UTC)
        t0 = time.perf_counter()

        validate_config(config)
        strategy = get_strategy(config.strategy_type)
        params = strategy.parse_params(config.strategy_params)
        min_bars = strategy.min_bars(params)
        provider = self.provider_for(config.data_source)

        logger.info(
            "Starting backtest %s: %s on %d symbols, %s to %s (%s)",
            config.backtest_id,
            config.strategy_type,
            len(config.symbols),
            config.start_date.isoformat(),
            config.end_date.isoformat(),
            config.timeframe.value,
        )

        try:
            series = self._load_bars(provider, config, min_bars)
            portfolio, curve, bars_processed = self._replay(
                config, strategy, params, min_bars, series, cancel_event, progress_callback
            )
            periods_per_year = config.timeframe.periods_per_year(
                self._settings.trading_days_per_year, self._settings.session_minutes
            )
            metrics = compute_performance_metrics(
                portfolio.trades,
                curve,
                config.initial_capital,
                periods_per_year=periods_per_year,
                profit_factor_cap=self._settings.profit_factor_cap,
                risk_free_rate=self._settings.risk_free_rate,
            )
            risk = calculate_risk_metrics(
                portfolio.trades,
                metrics.total_return_pct,
                metrics.max_drawdown_pct,
                cap=self._settings.profit_factor_cap,
            )
        except BacktestError:
            raise
        except Exception as exc:
            raise SimulationFailure(
                f"Backtest {config.backtest_id} failed: {type(exc).__name__}: {exc}"
            ) from exc

        duration_ms = int((time.perf_counter() - t0) * 1000)
        logger.info(
            "Backtest completed %s: %d trades, return=%.2f%%, Sharpe=%.2f, MaxDD=%.2f%%",
            config.backtest_id,
            len(portfolio.trades),
            metrics.total_return_pct,
            metrics.sharpe_ratio,
            metrics.max_drawdown_pct,
        )

        return BacktestResult(
            config=config,
            final_capital=portfolio.cash,
            total_return_pct=metrics.total_return_pct,
            trades=portfolio.trades,
            equity_curve=curve,
            metrics=metrics,
            risk=risk,
            started_at=started_at,
            completed_at=datetime.now(UTC),
            duration_ms=duration_ms,
            bars_processed=bars_processed,
        )

    def _load_bars(
        self,
        provider: BarDataProvider,
        config: BacktestConfig,
        min_bars: int,
    ) -> dict[str, list[Bar]]:
        """Fetch, range-filter and sort each symbol's bars."""
        series: dict[str, list[Bar]] = {}
        for symbol in dict.fromkeys(config.symbols):
            bars = provider.get_bars(symbol, config.timeframe, config.start_date, config.end_date)
            bars = sorted(
                (b for b in bars if config.start_date <= b.timestamp.date() <= config.end_date),
                key=lambda b: b.timestamp,
            )
            if len(bars) < min_bars:
                raise InsufficientDataError(symbol, len(bars), min_bars)
            logger.debug("Loaded %d bars for %s", len(bars), symbol)
            series[symbol] = bars
        return series

    def _replay(
        self,
        config: BacktestConfig,
        strategy: StrategyEvaluator,
        params: StrategyParams,
        min_bars: int,
        series: dict[str, list[Bar]],
        cancel_event: threading.Event | None,
        progress_callback: ProgressCallback | None,
    ) -> tuple[Portfolio, list[EquityPoint], int]:
        broker = BrokerSim(
            commission_rate=config.commission_rate,
            slippage_rate=config.slippage_rate,
        )
        portfolio = Portfolio(initial_cash=config.initial_capital)
        symbols = list(series)
        histories: dict[str, list[Bar]] = {s: [] for s in symbols}
        last_seen: dict[str, datetime] = {}
        window_size = max(min_bars, DEFAULT_WINDOW_BARS)
        interval = self._settings.progress_interval_bars
        total = sum(len(bars) for bars in series.values())
        processed = 0
        curve: list[EquityPoint] = []

        self._emit_progress(progress_callback, {"stage": "running", "done": 0, "total": total})

        for timestamp, group in groupby(_interleave(series), key=lambda item: item[1].timestamp):
            for symbol, bar in group:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Backtest %s cancelled at bar %d/%d", config.backtest_id, processed, total)
                    raise BacktestCancelled(f"Backtest {config.backtest_id} cancelled")

                history = histories[symbol]
                history.append(bar)
                portfolio.mark(symbol, bar.close)
                last_seen[symbol] = bar.timestamp

                if len(history) >= min_bars:
                    # Slice copy: the strategy never sees bars after this one
                    decision = strategy.evaluate(history[-window_size:], params)
                    self._apply_decision(decision, symbol, bar, portfolio, broker, len(symbols))

                processed += 1
                if processed % interval == 0:
                    self._emit_progress(
                        progress_callback, {"stage": "running", "done": processed, "total": total}
                    )

            curve.append(portfolio.snapshot(timestamp))

        for symbol in list(portfolio.positions):
            position = portfolio.positions[symbol]
            fill = broker.execute(
                symbol,
                Side.SELL,
                position.quantity,
                portfolio.last_prices[symbol],
                last_seen[symbol],
            )
            portfolio.apply_sell(fill, ExitReason.END_OF_DATA)

        if curve:
            curve[-1] = portfolio.snapshot(curve[-1].timestamp)

        self._emit_progress(progress_callback, {"stage": "completed", "done": processed, "total": total})
        return portfolio, curve, processed

    def _apply_decision(
        self,
        decision: Decision,
        symbol: str,
        bar: Bar,
        portfolio: Portfolio,
        broker: BrokerSim,
        num_symbols: int,
    ) -> None:
        """Turn a BUY/SELL decision into a fill. SELL without a position is ignored."""
        position = portfolio.get_position(symbol)

        if decision.is_buy:
            if decision.quantity is not None:
                quantity = decision.quantity
            else:
                weight = decision.weight if decision.weight is not None else 1.0 / num_symbols
                target_value = portfolio.equity * weight
                held = position.quantity if position else 0
                fill_price = broker.calculate_fill_price(bar.close, Side.BUY)
                quantity = int(target_value // fill_price) - held
            quantity = min(quantity, broker.max_affordable_quantity(portfolio.cash, bar.close))
            if quantity <= 0:
                return
            portfolio.apply_buy(broker.execute(symbol, Side.BUY, quantity, bar.close, bar.timestamp))

        elif decision.is_sell:
            if position is None:
                return
            quantity = min(decision.quantity or position.quantity, position.quantity)
            fill = broker.execute(symbol, Side.SELL, quantity, bar.close, bar.timestamp)
            portfolio.apply_sell(fill, ExitReason.SIGNAL)

    def _emit_progress(self, callback: ProgressCallback | None, data: dict[str, Any]) -> None:
        """Emit progress event."""
        if callback:
            callback({
                "type": "backtest_progress",
                "ts": datetime.now(UTC).isoformat(),
                **data,
            })


def _interleave(series: dict[str, list[Bar]]) -> Iterator[tuple[str, Bar]]:
    """
    Merge per-symbol bar lists into one time-ordered stream.

    Bars sharing a timestamp come out in config symbol order.
    """
    order = {symbol: i for i, symbol in enumerate(series)}
    streams: list[Sequence[tuple[str, Bar]]] = [
        [(symbol, bar) for bar in bars] for symbol, bars in series.items()
    ]
    return heapq.merge(*streams, key=lambda item: (item[1].timestamp, order[item[0]]))
