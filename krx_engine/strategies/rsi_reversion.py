"""
RSI mean reversion.

BUY when RSI climbs back above the oversold line, SELL when it falls back
below the overbought line.
"""

from collections.abc import Sequence

from pydantic import Field, model_validator

from krx_engine.domain import HOLD, Action, Bar, Decision
from krx_engine.interfaces.strategy import StrategyEvaluator, StrategyParams
from krx_engine.strategies.indicators import rsi
from krx_engine.strategies.registry import register_strategy


class RSIParams(StrategyParams):
    period: int = Field(default=14, ge=2, le=200)
    oversold: float = Field(default=30.0, gt=0, lt=100)
    overbought: float = Field(default=70.0, gt=0, lt=100)
    weight: float | None = Field(default=None, gt=0, le=1)

    @model_validator(mode="after")
    def thresholds_ordered(self) -> "RSIParams":
        if self.oversold >= self.overbought:
            raise ValueError("oversold must be below overbought")
        return self


@register_strategy
class RSIReversionStrategy(StrategyEvaluator):
    name = "RSI"
    params_model = RSIParams

    def min_bars(self, params: RSIParams) -> int:  # type: ignore[override]
        return params.period + 2

    def evaluate(self, window: Sequence[Bar], params: RSIParams) -> Decision:  # type: ignore[override]
        if len(window) < self.min_bars(params):
            return HOLD

        values = rsi([b.close for b in window], params.period)
        prev, curr = values[-2], values[-1]
        if prev is None or curr is None:
            return HOLD

        if prev <= params.oversold < curr:
            return Decision(action=Action.BUY, weight=params.weight, reason="rsi_exit_oversold")
        if prev >= params.overbought > curr:
            return Decision(action=Action.SELL, reason="rsi_exit_overbought")
        return HOLD
