"""
Basic tests for the backtest engine.

Uses deterministic bar data to verify replay, fills and accounting.
"""

import threading
from collections.abc import Callable
from datetime import date, timedelta

import pytest

from krx_engine.backtest.engine import BacktestEngine
from krx_engine.backtest.metrics import calculate_risk_metrics
from krx_engine.backtest.models import BacktestConfig, ExitReason
from krx_engine.data import InMemoryBarProvider
from krx_engine.domain import Action, Decision
from krx_engine.errors import (
    BacktestCancelled,
    InsufficientDataError,
    InvalidConfigError,
    SimulationFailure,
)
from tests.conftest import ScriptedStrategy
from tests.synthetic_data import START, bars_from_closes, wave_bars

SYMBOL = "005930"


def scripted_config(**overrides) -> BacktestConfig:
    data = {
        "strategy_type": "SCRIPTED",
        "symbols": [SYMBOL],
        "start_date": date(2024, 1, 1),
        "end_date": date(2024, 12, 31),
        "timeframe": "1d",
        "initial_capital": 1_000_000.0,
        "commission_rate": 0.001,
        "slippage_rate": 0.0,
    }
    data.update(overrides)
    return BacktestConfig(**data)


def day(i: int):
    return START + timedelta(days=i)


# =============================================================================
# Engine Tests
# =============================================================================


class TestBacktestEngine:
    """Tests for BacktestEngine.run."""

    def test_engine_runs_successfully(
        self, engine: BacktestEngine, make_config: Callable[..., BacktestConfig]
    ) -> None:
        """MA crossover over a wave produces trades and a full equity curve."""
        result = engine.run(make_config())

        assert result.bars_processed == 120
        assert len(result.equity_curve) == 120
        assert result.total_trades > 0
        assert result.completed_at >= result.started_at

    def test_engine_produces_deterministic_results(
        self, wave_provider: InMemoryBarProvider, make_config: Callable[..., BacktestConfig]
    ) -> None:
        """Same inputs should produce same outputs."""
        config = make_config(symbols=["005930", "000660"])

        first = BacktestEngine(wave_provider).run(config)
        second = BacktestEngine(wave_provider).run(config)

        assert [t.net_pnl for t in first.trades] == [t.net_pnl for t in second.trades]
        assert [p.equity for p in first.equity_curve] == [p.equity for p in second.equity_curve]
        assert first.metrics == second.metrics

    def test_net_pnl_sums_to_capital_change(
        self, engine: BacktestEngine, make_config: Callable[..., BacktestConfig]
    ) -> None:
        """After forced liquidation, trade P&L accounts for every won."""
        config = make_config(symbols=["005930", "000660"])
        result = engine.run(config)

        total_pnl = sum(t.net_pnl for t in result.trades)
        assert total_pnl == pytest.approx(result.final_capital - config.initial_capital, abs=1e-4)
        assert result.equity_curve[-1].equity == pytest.approx(result.final_capital)
        assert result.equity_curve[-1].position_value == pytest.approx(0.0)

    def test_risk_profile_attached(
        self, engine: BacktestEngine, make_config: Callable[..., BacktestConfig]
    ) -> None:
        result = engine.run(make_config())

        assert result.risk == calculate_risk_metrics(
            result.trades, result.metrics.total_return_pct, result.metrics.max_drawdown_pct
        )
        assert result.risk.cvar_95_pct <= result.risk.var_95_pct


class TestNoLookAhead:
    def test_window_ends_at_current_bar(self, scripted: type[ScriptedStrategy]) -> None:
        """Each evaluation sees bars up to and including the current one, never later."""
        bars = wave_bars(SYMBOL, 40)
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: bars}))

        engine.run(scripted_config(strategy_params={"lookback": 5}))

        assert [ts for _, ts, _ in scripted.seen] == [b.timestamp for b in bars[4:]]
        assert [n for _, _, n in scripted.seen] == list(range(5, 41))

    def test_truncated_data_gives_same_prefix(
        self, wave_provider: InMemoryBarProvider, make_config: Callable[..., BacktestConfig]
    ) -> None:
        """Trades closed before the cut are unaffected by later bars."""
        full = BacktestEngine(wave_provider).run(make_config())
        cut = BacktestEngine(wave_provider).run(make_config(end_date=date(2024, 3, 31)))

        closed_early = [
            (t.entry_time, t.exit_time, t.quantity)
            for t in cut.trades
            if t.exit_reason == ExitReason.SIGNAL
        ]
        assert closed_early == [
            (t.entry_time, t.exit_time, t.quantity) for t in full.trades[: len(closed_early)]
        ]


class TestFillsAndAccounting:
    def test_forced_close_at_end_of_data(self, scripted: type[ScriptedStrategy]) -> None:
        """An open position is liquidated at the last close."""
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: bars_from_closes(SYMBOL, [100, 110, 120])}))
        scripted.script[(SYMBOL, day(0))] = Decision(action=Action.BUY, quantity=10)

        result = engine.run(scripted_config())

        assert len(result.trades) == 1
        trade = result.trades[0]
        assert trade.exit_reason == ExitReason.END_OF_DATA
        assert trade.quantity == 10
        assert trade.entry_price == pytest.approx(100.0)
        assert trade.exit_price == pytest.approx(120.0)
        assert trade.commission == pytest.approx(1.0 + 1.2)
        assert trade.net_pnl == pytest.approx(197.8)
        assert result.final_capital == pytest.approx(1_000_197.8)
        assert result.equity_curve[-1].equity == pytest.approx(1_000_197.8)

    def test_slippage_is_adverse_on_both_sides(self, scripted: type[ScriptedStrategy]) -> None:
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: bars_from_closes(SYMBOL, [100, 100])}))
        scripted.script[(SYMBOL, day(0))] = Decision(action=Action.BUY, quantity=10)

        result = engine.run(scripted_config(commission_rate=0.0, slippage_rate=0.01))

        trade = result.trades[0]
        assert trade.entry_price == pytest.approx(101.0)
        assert trade.exit_price == pytest.approx(99.0)
        assert trade.net_pnl == pytest.approx(-20.0)

    def test_partial_sell_then_liquidation(self, scripted: type[ScriptedStrategy]) -> None:
        """A partial SELL closes part of the position; the rest closes at the end."""
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: bars_from_closes(SYMBOL, [100, 110, 120])}))
        scripted.script[(SYMBOL, day(0))] = Decision(action=Action.BUY, quantity=10)
        scripted.script[(SYMBOL, day(1))] = Decision(action=Action.SELL, quantity=4)

        config = scripted_config()
        result = engine.run(config)

        assert [(t.quantity, t.exit_reason) for t in result.trades] == [
            (4, ExitReason.SIGNAL),
            (6, ExitReason.END_OF_DATA),
        ]
        # Entry commission (1.0) split 40/60
        assert result.trades[0].commission == pytest.approx(0.4 + 0.44)
        assert sum(t.net_pnl for t in result.trades) == pytest.approx(
            result.final_capital - config.initial_capital
        )

    def test_sell_without_position_is_ignored(self, scripted: type[ScriptedStrategy]) -> None:
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: bars_from_closes(SYMBOL, [100, 90, 80])}))
        scripted.script[(SYMBOL, day(0))] = Decision(action=Action.SELL)

        result = engine.run(scripted_config())

        assert result.trades == []
        assert result.final_capital == pytest.approx(1_000_000.0)

    def test_weight_sizes_buy_as_fraction_of_equity(self, scripted: type[ScriptedStrategy]) -> None:
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: bars_from_closes(SYMBOL, [100, 100])}))
        scripted.script[(SYMBOL, day(0))] = Decision(action=Action.BUY, weight=0.5)

        result = engine.run(scripted_config(initial_capital=10_000.0, commission_rate=0.0))

        assert result.trades[0].quantity == 50

    def test_buy_is_capped_by_cash(self, scripted: type[ScriptedStrategy]) -> None:
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: bars_from_closes(SYMBOL, [100, 100])}))
        scripted.script[(SYMBOL, day(0))] = Decision(action=Action.BUY, quantity=1_000)

        result = engine.run(scripted_config(initial_capital=10_000.0, commission_rate=0.001))

        # 100 shares would cost 10,010 with commission
        assert result.trades[0].quantity == 99

    def test_one_equity_point_per_timestamp(self, scripted: type[ScriptedStrategy]) -> None:
        """Symbols with partly overlapping dates share points on common timestamps."""
        provider = InMemoryBarProvider(
            {
                "A": bars_from_closes("A", [100] * 5),
                "B": bars_from_closes("B", [200] * 5, start=day(2)),
            }
        )
        result = BacktestEngine(provider).run(scripted_config(symbols=["A", "B"]))

        assert [p.timestamp for p in result.equity_curve] == [day(i) for i in range(7)]
        assert result.bars_processed == 10

    def test_same_timestamp_bars_follow_symbol_order(self, scripted: type[ScriptedStrategy]) -> None:
        provider = InMemoryBarProvider(
            {"A": bars_from_closes("A", [100] * 2), "B": bars_from_closes("B", [200] * 2)}
        )
        BacktestEngine(provider).run(scripted_config(symbols=["B", "A"]))

        assert [s for s, _, _ in scripted.seen] == ["B", "A", "B", "A"]


class TestEngineErrors:
    def test_empty_symbols(self, engine: BacktestEngine, make_config) -> None:
        with pytest.raises(InvalidConfigError):
            engine.run(make_config(symbols=[]))

    def test_start_after_end(self, engine: BacktestEngine, make_config) -> None:
        with pytest.raises(InvalidConfigError, match="Empty date range"):
            engine.run(make_config(start_date=date(2024, 6, 1), end_date=date(2024, 1, 1)))

    def test_non_positive_capital(self, engine: BacktestEngine, make_config) -> None:
        with pytest.raises(InvalidConfigError):
            engine.run(make_config(initial_capital=0))

    def test_negative_commission(self, engine: BacktestEngine, make_config) -> None:
        with pytest.raises(InvalidConfigError):
            engine.run(make_config(commission_rate=-0.01))

    def test_insufficient_data(self, engine: BacktestEngine, make_config) -> None:
        """Fewer bars than the long MA needs."""
        with pytest.raises(InsufficientDataError) as exc_info:
            engine.run(make_config(end_date=date(2024, 1, 5)))
        assert exc_info.value.required == 11
        assert exc_info.value.available == 5

    def test_no_provider(self, make_config) -> None:
        with pytest.raises(InvalidConfigError):
            BacktestEngine().run(make_config())

    def test_unexpected_fault_becomes_simulation_failure(self, broken: None, make_config) -> None:
        engine = BacktestEngine(InMemoryBarProvider({SYMBOL: wave_bars(SYMBOL, 10)}))
        with pytest.raises(SimulationFailure, match="indicator blew up"):
            engine.run(make_config(strategy_type="BROKEN", strategy_params={}))

    def test_cancelled_run(self, engine: BacktestEngine, make_config) -> None:
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(BacktestCancelled):
            engine.run(make_config(), cancel_event=cancel)


class TestProgress:
    def test_progress_events(self, engine: BacktestEngine, make_config) -> None:
        events: list[dict] = []
        engine.run(make_config(), progress_callback=events.append)

        assert all(e["type"] == "backtest_progress" for e in events)
        assert events[0]["done"] == 0
        assert events[-1]["stage"] == "completed"
        assert events[-1]["done"] == events[-1]["total"] == 120
        # Start, one event at bar 100, completion
        assert len(events) == 3
