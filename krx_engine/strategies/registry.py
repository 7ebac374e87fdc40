"""
Registry of named strategy evaluators.

The engine resolves ``BacktestConfig.strategy_type`` here and never imports a
concrete strategy class.
"""

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from krx_engine.errors import InvalidConfigError
from krx_engine.interfaces.strategy import StrategyEvaluator
from krx_engine.logging import get_logger

logger = get_logger(__name__)

_REGISTRY: dict[str, StrategyEvaluator] = {}


def register_strategy(
    cls: type[StrategyEvaluator],
) -> type[StrategyEvaluator]:
    """
    Register an evaluator class under its ``name``. Usable as a decorator.

    Re-registering a name replaces the previous evaluator.
    """
    key = cls.name.upper()
    if key in _REGISTRY:
        logger.warning("Replacing registered strategy %s", key)
    _REGISTRY[key] = cls()
    return cls


def unregister_strategy(name: str) -> None:
    _REGISTRY.pop(name.upper(), None)


def get_strategy(name: str) -> StrategyEvaluator:
    """
    Look up an evaluator by name (case-insensitive).

    Raises:
        InvalidConfigError: If no evaluator is registered under ``name``.
    """
    evaluator = _REGISTRY.get(name.upper())
    if evaluator is None:
        raise InvalidConfigError(
            f"Unknown strategy type: {name}. Available: {available_strategies()}"
        )
    return evaluator


def available_strategies() -> list[str]:
    return sorted(_REGISTRY)


def validate_strategy_params(name: str, raw: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate a raw parameter map against the strategy's params model.

    Returns:
        Normalized parameter dict with defaults filled in.

    Raises:
        InvalidConfigError: Unknown strategy, unknown key, or malformed value.
    """
    evaluator = get_strategy(name)
    try:
        params = evaluator.parse_params(raw)
    except ValidationError as exc:
        raise InvalidConfigError.from_validation(exc) from exc
    return params.model_dump()
