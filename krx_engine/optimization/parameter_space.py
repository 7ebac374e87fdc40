"""
Candidate generation for parameter search.

Grid search walks the cartesian product in insertion order. Random search
draws flat indices into the same product with a seeded RNG and decodes them,
so both methods agree on what candidate ``i`` of the space is.
"""

import math
import random
from collections.abc import Iterator, Mapping, Sequence
from itertools import islice, product
from typing import Any

from krx_engine.errors import EmptyParameterSpaceError
from krx_engine.optimization.models import OptimizationConfig, SearchMethod

ParameterRanges = Mapping[str, Sequence[Any]]


def check_space(ranges: ParameterRanges) -> None:
    """
    Raises:
        EmptyParameterSpaceError: No parameters, or a parameter without candidates.
    """
    if not ranges:
        raise EmptyParameterSpaceError("Parameter space is empty")
    for name, values in ranges.items():
        if len(values) == 0:
            raise EmptyParameterSpaceError(f"Parameter '{name}' has no candidate values")


def space_size(ranges: ParameterRanges) -> int:
    return math.prod(len(values) for values in ranges.values())


def decode_index(index: int, ranges: ParameterRanges) -> dict[str, Any]:
    """Map a flat index to a candidate; the last parameter varies fastest, as in product()."""
    names = list(ranges)
    picked: dict[str, Any] = {}
    for name in reversed(names):
        values = ranges[name]
        index, offset = divmod(index, len(values))
        picked[name] = values[offset]
    return {name: picked[name] for name in names}


def grid_candidates(ranges: ParameterRanges, max_runs: int) -> Iterator[dict[str, Any]]:
    """Cartesian product in generation order, stopping at ``max_runs``."""
    names = list(ranges)
    for combo in islice(product(*(ranges[n] for n in names)), max_runs):
        yield dict(zip(names, combo, strict=True))


def random_candidates(
    ranges: ParameterRanges,
    max_runs: int,
    seed: int | None = None,
) -> Iterator[dict[str, Any]]:
    """
    ``max_runs`` uniform draws from the space.

    Draws are without replacement; only when the space holds fewer than
    ``max_runs`` candidates are they drawn with replacement.
    """
    rng = random.Random(seed)
    size = space_size(ranges)
    if size >= max_runs:
        indices = rng.sample(range(size), max_runs)
    else:
        indices = rng.choices(range(size), k=max_runs)
    for index in indices:
        yield decode_index(index, ranges)


def planned_evaluations(config: OptimizationConfig) -> int:
    size = space_size(config.parameter_ranges)
    if config.method == SearchMethod.GRID_SEARCH:
        return min(size, config.max_runs)
    return config.max_runs


def generate_candidates(config: OptimizationConfig) -> Iterator[dict[str, Any]]:
    check_space(config.parameter_ranges)
    if config.method == SearchMethod.RANDOM_SEARCH:
        return random_candidates(config.parameter_ranges, config.max_runs, config.random_seed)
    return grid_candidates(config.parameter_ranges, config.max_runs)
