"""
Strategy decision model.

A Decision is what a strategy evaluator returns for one bar: an action and,
optionally, how much to trade.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Decision(BaseModel):
    """Strategy output for a single bar."""

    model_config = ConfigDict(frozen=True)

    action: Action = Action.HOLD
    quantity: int | None = Field(default=None, ge=1, description="Shares to trade; BUY adds, SELL reduces")
    weight: float | None = Field(
        default=None, gt=0, le=1, description="Target fraction of equity for the position on BUY"
    )
    reason: str = ""

    @property
    def is_buy(self) -> bool:
        return self.action == Action.BUY

    @property
    def is_sell(self) -> bool:
        return self.action == Action.SELL

    @property
    def is_hold(self) -> bool:
        return self.action == Action.HOLD


HOLD = Decision()
