"""
StrategyEvaluator interface.

The engine talks to strategies only through this capability: validate a
parameter set, report the lookback it needs, and turn a bar window into a
Decision.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from krx_engine.domain import Bar, Decision


class StrategyParams(BaseModel):
    """
    Base class for typed strategy parameters.

    Unknown keys are rejected so that a typo in a parameter map fails at
    config construction instead of silently falling back to a default.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)


class StrategyEvaluator(ABC):
    """
    Abstract base class for strategy evaluators.

    Evaluators are stateless and deterministic: the same window and params
    always produce the same Decision. The window ends at the bar being
    evaluated and never contains later bars.
    """

    name: ClassVar[str]
    params_model: ClassVar[type[StrategyParams]] = StrategyParams

    def parse_params(self, raw: Mapping[str, Any]) -> StrategyParams:
        """Validate a raw parameter map into the typed params model."""
        return self.params_model.model_validate(dict(raw))

    @abstractmethod
    def min_bars(self, params: StrategyParams) -> int:
        """Number of bars needed before the first non-HOLD decision."""

    @abstractmethod
    def evaluate(self, window: Sequence[Bar], params: StrategyParams) -> Decision:
        """
        Decide what to do at the last bar of ``window``.

        Args:
            window: Trailing bars for one symbol, oldest first
            params: Validated parameters

        Returns:
            Decision for the last bar.
        """
