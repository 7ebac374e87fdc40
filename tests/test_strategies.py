"""
Tests for strategy evaluators, indicators and the registry.
"""

import pytest

from krx_engine.backtest.models import BacktestConfig
from krx_engine.domain import Action
from krx_engine.errors import InvalidConfigError
from krx_engine.strategies import (
    MACrossoverParams,
    MACrossoverStrategy,
    RSIParams,
    RSIReversionStrategy,
    available_strategies,
    get_strategy,
    validate_strategy_params,
)
from krx_engine.strategies.indicators import crossed_above, ema, rsi, sma
from tests.synthetic_data import bars_from_closes


class TestIndicators:
    def test_sma(self) -> None:
        assert sma([1, 2, 3, 4], 2) == [None, 1.5, 2.5, 3.5]

    def test_ema_seeded_with_sma(self) -> None:
        values = ema([1, 2, 3, 4], 3)
        assert values[:2] == [None, None]
        assert values[2] == pytest.approx(2.0)
        assert values[3] == pytest.approx(3.0)

    def test_rsi_all_gains(self) -> None:
        assert rsi([1, 2, 3, 4], 2)[-1] == 100.0

    def test_rsi_prefix_stable(self) -> None:
        """Earlier values never change when later closes are appended."""
        closes = [10, 11, 10.5, 12, 11, 13, 12.5, 14]
        assert rsi(closes[:6], 3) == rsi(closes, 3)[:6]

    def test_crossed_above_needs_values(self) -> None:
        assert crossed_above(None, 1.0, 2.0, 1.0) is False
        assert crossed_above(1.0, 1.0, 2.0, 1.0) is True

    def test_invalid_period(self) -> None:
        with pytest.raises(ValueError):
            sma([1, 2], 0)


class TestMACrossover:
    strategy = MACrossoverStrategy()
    params = MACrossoverParams(short_period=2, long_period=3)

    def test_min_bars(self) -> None:
        assert self.strategy.min_bars(self.params) == 4

    def test_golden_cross_buys(self) -> None:
        window = bars_from_closes("005930", [10, 10, 10, 10, 13])
        assert self.strategy.evaluate(window, self.params).action == Action.BUY

    def test_death_cross_sells(self) -> None:
        window = bars_from_closes("005930", [10, 10, 10, 10, 7])
        assert self.strategy.evaluate(window, self.params).action == Action.SELL

    def test_flat_holds(self) -> None:
        window = bars_from_closes("005930", [10] * 6)
        assert self.strategy.evaluate(window, self.params).is_hold

    def test_short_window_holds(self) -> None:
        window = bars_from_closes("005930", [10, 13])
        assert self.strategy.evaluate(window, self.params).is_hold

    def test_ema_variant(self) -> None:
        params = MACrossoverParams(short_period=2, long_period=3, ma_type="EMA")
        window = bars_from_closes("005930", [10, 10, 10, 10, 13])
        assert self.strategy.evaluate(window, params).action == Action.BUY

    def test_weight_passed_through(self) -> None:
        params = MACrossoverParams(short_period=2, long_period=3, weight=0.25)
        window = bars_from_closes("005930", [10, 10, 10, 10, 13])
        assert self.strategy.evaluate(window, params).weight == 0.25


class TestRSIReversion:
    strategy = RSIReversionStrategy()
    params = RSIParams(period=2)

    def test_exit_oversold_buys(self) -> None:
        window = bars_from_closes("005930", [10, 9, 8, 7, 8])
        assert self.strategy.evaluate(window, self.params).action == Action.BUY

    def test_exit_overbought_sells(self) -> None:
        window = bars_from_closes("005930", [10, 11, 12, 13, 12])
        assert self.strategy.evaluate(window, self.params).action == Action.SELL

    def test_thresholds_ordered(self) -> None:
        with pytest.raises(ValueError):
            RSIParams(oversold=80, overbought=70)


class TestRegistry:
    def test_builtins_registered(self) -> None:
        assert {"MA_CROSSOVER", "RSI"} <= set(available_strategies())

    def test_lookup_is_case_insensitive(self) -> None:
        assert isinstance(get_strategy("ma_crossover"), MACrossoverStrategy)

    def test_unknown_strategy(self) -> None:
        with pytest.raises(InvalidConfigError, match="Unknown strategy"):
            get_strategy("ICHIMOKU")

    def test_defaults_filled(self) -> None:
        params = validate_strategy_params("MA_CROSSOVER", {"short_period": 7})
        assert params["short_period"] == 7
        assert params["long_period"] == 20
        assert params["ma_type"] == "SMA"

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(InvalidConfigError, match="short_perod"):
            validate_strategy_params("MA_CROSSOVER", {"short_perod": 7})

    def test_malformed_value_rejected(self) -> None:
        with pytest.raises(InvalidConfigError):
            validate_strategy_params("MA_CROSSOVER", {"short_period": "fast"})

    def test_short_must_be_below_long(self) -> None:
        with pytest.raises(InvalidConfigError, match="less than"):
            validate_strategy_params("MA_CROSSOVER", {"short_period": 20, "long_period": 10})


class TestConfigValidation:
    """Params are validated when the config is built, not during the replay."""

    def test_config_rejects_bad_params(self) -> None:
        with pytest.raises(InvalidConfigError):
            BacktestConfig(
                strategy_type="MA_CROSSOVER",
                strategy_params={"long_period": 1},
                symbols=["005930"],
                start_date="2024-01-01",
                end_date="2024-06-30",
            )

    def test_config_normalizes_params(self) -> None:
        config = BacktestConfig(
            strategy_type="RSI",
            symbols=["005930"],
            start="2024-01-01",
            end="2024-06-30",
        )
        assert config.strategy_params["period"] == 14
        assert config.timeframe.value == "1m"

    def test_with_params_revalidates(self) -> None:
        config = BacktestConfig(
            strategy_type="MA_CROSSOVER",
            symbols=["005930"],
            start_date="2024-01-01",
            end_date="2024-06-30",
        )
        derived = config.with_params({"short_period": 8})

        assert derived.strategy_params["short_period"] == 8
        assert derived.backtest_id != config.backtest_id
        with pytest.raises(InvalidConfigError):
            config.with_params({"short_period": 50})
