"""
Moving average crossover.

BUY on a golden cross (short MA crosses above long MA), SELL on a death
cross. Needs ``long_period + 1`` bars so that both the current and the
previous long MA exist.
"""

from collections.abc import Sequence
from enum import Enum

from pydantic import Field, model_validator

from krx_engine.domain import HOLD, Action, Bar, Decision
from krx_engine.interfaces.strategy import StrategyEvaluator, StrategyParams
from krx_engine.strategies.indicators import crossed_above, crossed_below, ema, sma
from krx_engine.strategies.registry import register_strategy


class MovingAverageType(str, Enum):
    SMA = "SMA"
    EMA = "EMA"


class MACrossoverParams(StrategyParams):
    short_period: int = Field(default=5, ge=1, le=500)
    long_period: int = Field(default=20, ge=2, le=1000)
    ma_type: MovingAverageType = MovingAverageType.SMA
    weight: float | None = Field(default=None, gt=0, le=1)

    @model_validator(mode="after")
    def short_below_long(self) -> "MACrossoverParams":
        if self.short_period >= self.long_period:
            raise ValueError(
                f"short_period ({self.short_period}) must be less than "
                f"long_period ({self.long_period})"
            )
        return self


@register_strategy
class MACrossoverStrategy(StrategyEvaluator):
    name = "MA_CROSSOVER"
    params_model = MACrossoverParams

    def min_bars(self, params: MACrossoverParams) -> int:  # type: ignore[override]
        return params.long_period + 1

    def evaluate(self, window: Sequence[Bar], params: MACrossoverParams) -> Decision:  # type: ignore[override]
        if len(window) < self.min_bars(params):
            return HOLD

        average = ema if params.ma_type == MovingAverageType.EMA else sma
        # SMA only needs the tail; EMA uses the full window for its seed
        closes = [b.close for b in window]
        if params.ma_type == MovingAverageType.SMA:
            closes = closes[-(params.long_period + 1) :]

        short = average(closes, params.short_period)
        long = average(closes, params.long_period)

        if crossed_above(short[-2], long[-2], short[-1], long[-1]):
            return Decision(action=Action.BUY, weight=params.weight, reason="golden_cross")
        if crossed_below(short[-2], long[-2], short[-1], long[-1]):
            return Decision(action=Action.SELL, reason="death_cross")
        return HOLD
