"""
Tests for the weighted portfolio composer.
"""

from datetime import date

import pytest
from pydantic import ValidationError

from krx_engine.backtest.composer import PortfolioComposer, PortfolioConfig
from krx_engine.backtest.engine import BacktestEngine
from krx_engine.backtest.metrics import calculate_returns, calculate_sharpe_ratio
from krx_engine.config import Settings
from krx_engine.data import InMemoryBarProvider
from krx_engine.errors import InvalidConfigError


def portfolio(**overrides) -> PortfolioConfig:
    data = {
        "strategy_type": "MA_CROSSOVER",
        "strategy_params": {"short_period": 3, "long_period": 10},
        "weights": {"005930": 0.6, "000660": 0.4},
        "start_date": date(2024, 1, 1),
        "end_date": date(2024, 12, 31),
        "initial_capital": 10_000_000.0,
    }
    data.update(overrides)
    return PortfolioConfig(**data)


class TestPortfolioConfig:
    def test_weights_must_sum_to_one(self) -> None:
        with pytest.raises(ValidationError, match="sum to 1.0"):
            portfolio(weights={"005930": 0.6, "000660": 0.3})

    def test_weight_must_be_positive(self) -> None:
        with pytest.raises(ValidationError, match="000660"):
            portfolio(weights={"005930": 1.0, "000660": 0.0})

    def test_strategy_params_validated(self) -> None:
        with pytest.raises(InvalidConfigError):
            portfolio(strategy_params={"short_period": 30, "long_period": 10})

    def test_symbol_config_slices_capital(self) -> None:
        config = portfolio()
        sliced = config.symbol_config("000660")

        assert sliced.symbols == ["000660"]
        assert sliced.initial_capital == pytest.approx(4_000_000)
        assert sliced.strategy_params == config.strategy_params


class TestPortfolioComposer:
    def test_weighted_run(self, engine: BacktestEngine) -> None:
        progress: list[tuple[int, int]] = []
        result = PortfolioComposer(engine).run(
            portfolio(), progress_callback=lambda d, t: progress.append((d, t))
        )

        assert result.allocations == pytest.approx({"005930": 6_000_000, "000660": 4_000_000})
        assert set(result.symbol_results) == {"005930", "000660"}
        assert result.symbol_results["005930"].config.initial_capital == pytest.approx(6_000_000)
        assert result.final_capital == pytest.approx(
            sum(r.final_capital for r in result.symbol_results.values())
        )
        assert result.total_return_pct == pytest.approx(
            (result.final_capital - 10_000_000) / 10_000_000 * 100
        )
        assert progress == [(1, 2), (2, 2)]

    def test_equity_curve_sums_symbols(self, engine: BacktestEngine) -> None:
        result = PortfolioComposer(engine).run(portfolio())
        samsung = result.symbol_results["005930"].equity_curve
        hynix = result.symbol_results["000660"].equity_curve

        assert len(result.equity_curve) == len(samsung) == len(hynix)
        for point, a, b in zip(result.equity_curve, samsung, hynix, strict=True):
            assert point.equity == pytest.approx(a.equity + b.equity)
            assert point.cash == pytest.approx(a.cash + b.cash)

    def test_correlation_matrix(self, engine: BacktestEngine) -> None:
        corr = PortfolioComposer(engine).run(portfolio()).correlation

        assert set(corr) == {"005930", "000660"}
        assert corr["005930"]["005930"] == 1.0
        assert corr["000660"]["000660"] == 1.0
        assert corr["005930"]["000660"] == pytest.approx(corr["000660"]["005930"])
        assert -1.0 <= corr["005930"]["000660"] <= 1.0

    def test_trades_pooled_into_metrics(self, engine: BacktestEngine) -> None:
        result = PortfolioComposer(engine).run(portfolio())
        assert result.metrics.total_trades == sum(
            len(r.trades) for r in result.symbol_results.values()
        )

    def test_uses_engine_settings(self, wave_provider: InMemoryBarProvider) -> None:
        settings = Settings(risk_free_rate=0.05, trading_days_per_year=250)
        result = PortfolioComposer(BacktestEngine(wave_provider, settings)).run(portfolio())

        returns = calculate_returns(result.equity_curve)
        assert result.metrics.sharpe_ratio == pytest.approx(
            calculate_sharpe_ratio(returns, periods_per_year=250, risk_free_rate=0.05)
        )
        assert result.metrics.sharpe_ratio != pytest.approx(calculate_sharpe_ratio(returns))
