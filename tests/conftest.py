"""
Pytest configuration and shared fixtures.
"""

import threading
import time
from collections.abc import Callable, Generator, Sequence
from datetime import date, datetime
from pathlib import Path
from typing import Any, ClassVar

import pytest
from pydantic import Field

from krx_engine.backtest.engine import BacktestEngine
from krx_engine.backtest.models import BacktestConfig
from krx_engine.config import get_settings
from krx_engine.data import InMemoryBarProvider
from krx_engine.domain import HOLD, Bar, Decision
from krx_engine.interfaces.strategy import StrategyEvaluator, StrategyParams
from krx_engine.strategies import register_strategy, unregister_strategy
from tests.synthetic_data import wave_bars


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Point settings at a temp data dir and drop any cached instance."""
    monkeypatch.setenv("KRX_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("KRX_PROFIT_FACTOR_CAP", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Test strategies
# =============================================================================


class ScriptedParams(StrategyParams):
    lookback: int = Field(default=1, ge=1)
    delay: float = Field(default=0.0, ge=0)


class ScriptedStrategy(StrategyEvaluator):
    """
    Plays back decisions keyed by (symbol, timestamp) and records what it saw.

    ``delay`` sleeps on every evaluation, for cancellation tests.
    """

    name = "SCRIPTED"
    params_model = ScriptedParams

    script: ClassVar[dict[tuple[str, datetime], Decision]] = {}
    seen: ClassVar[list[tuple[str, datetime, int]]] = []

    def min_bars(self, params: ScriptedParams) -> int:  # type: ignore[override]
        return params.lookback

    def evaluate(self, window: Sequence[Bar], params: ScriptedParams) -> Decision:  # type: ignore[override]
        last = window[-1]
        type(self).seen.append((last.symbol, last.timestamp, len(window)))
        if params.delay:
            time.sleep(params.delay)
        return type(self).script.get((last.symbol, last.timestamp), HOLD)


class BrokenStrategy(StrategyEvaluator):
    name = "BROKEN"

    def min_bars(self, params: StrategyParams) -> int:
        return 1

    def evaluate(self, window: Sequence[Bar], params: StrategyParams) -> Decision:
        raise RuntimeError("indicator blew up")


@pytest.fixture
def scripted() -> Generator[type[ScriptedStrategy], None, None]:
    """Register SCRIPTED with an empty script."""
    ScriptedStrategy.script = {}
    ScriptedStrategy.seen = []
    register_strategy(ScriptedStrategy)
    yield ScriptedStrategy
    unregister_strategy(ScriptedStrategy.name)


@pytest.fixture
def broken() -> Generator[None, None, None]:
    register_strategy(BrokenStrategy)
    yield
    unregister_strategy(BrokenStrategy.name)


# =============================================================================
# Data and configs
# =============================================================================


@pytest.fixture
def wave_provider() -> InMemoryBarProvider:
    """120 daily bars of a 20-day sine wave for two tickers."""
    return InMemoryBarProvider(
        {
            "005930": wave_bars("005930", 120),
            "000660": wave_bars("000660", 120, base=120_000.0, amplitude=9_000.0, period=30),
        }
    )


@pytest.fixture
def engine(wave_provider: InMemoryBarProvider) -> BacktestEngine:
    return BacktestEngine(wave_provider)


@pytest.fixture
def make_config() -> Callable[..., BacktestConfig]:
    """Factory for MA crossover configs over the wave data."""

    def _make(**overrides: Any) -> BacktestConfig:
        data: dict[str, Any] = {
            "strategy_type": "MA_CROSSOVER",
            "strategy_params": {"short_period": 3, "long_period": 10},
            "symbols": ["005930"],
            "start_date": date(2024, 1, 1),
            "end_date": date(2024, 12, 31),
            "timeframe": "1d",
            "initial_capital": 10_000_000.0,
            "commission_rate": 0.001,
            "slippage_rate": 0.0005,
        }
        data.update(overrides)
        return BacktestConfig(**data)

    return _make


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def gate() -> Generator[threading.Event, None, None]:
    """An event tests use to hold a job open; always released on teardown."""
    event = threading.Event()
    yield event
    event.set()
