"""
Technical indicators for strategy calculations.

All functions are pure and deterministic. Output index i depends only on
input indices <= i, so feeding a truncated series never changes earlier values.
"""

from collections.abc import Sequence


def sma(values: Sequence[float], period: int) -> list[float | None]:
    """
    Simple Moving Average.

    Args:
        values: Price series
        period: Window length

    Returns:
        SMA per index; None until ``period`` values are available.
    """
    if period < 1:
        raise ValueError("period must be >= 1")

    result: list[float | None] = [None] * len(values)
    running = 0.0
    for i, value in enumerate(values):
        running += value
        if i >= period:
            running -= values[i - period]
        if i >= period - 1:
            result[i] = running / period
    return result


def ema(values: Sequence[float], period: int) -> list[float | None]:
    """
    Exponential Moving Average seeded with the SMA of the first ``period`` values.

    Returns:
        EMA per index; None until the seed is available.
    """
    if period < 1:
        raise ValueError("period must be >= 1")

    result: list[float | None] = [None] * len(values)
    if len(values) < period:
        return result

    alpha = 2.0 / (period + 1)
    prev = sum(values[:period]) / period
    result[period - 1] = prev
    for i in range(period, len(values)):
        prev = prev + alpha * (values[i] - prev)
        result[i] = prev
    return result


def rsi(closes: Sequence[float], period: int = 14) -> list[float | None]:
    """
    Relative Strength Index with Wilder smoothing.

    Returns:
        RSI (0-100) per index; None for the first ``period`` indices.
    """
    if period < 1:
        raise ValueError("period must be >= 1")

    result: list[float | None] = [None] * len(closes)
    if len(closes) <= period:
        return result

    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]
    avg_gain = sum(max(d, 0.0) for d in deltas[:period]) / period
    avg_loss = sum(max(-d, 0.0) for d in deltas[:period]) / period
    result[period] = _rsi_value(avg_gain, avg_loss)

    for i in range(period, len(deltas)):
        d = deltas[i]
        avg_gain = (avg_gain * (period - 1) + max(d, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-d, 0.0)) / period
        result[i + 1] = _rsi_value(avg_gain, avg_loss)

    return result


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    return 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)


def crossed_above(
    prev_a: float | None, prev_b: float | None, curr_a: float | None, curr_b: float | None
) -> bool:
    """True when series a moves from <= b to > b."""
    if prev_a is None or prev_b is None or curr_a is None or curr_b is None:
        return False
    return prev_a <= prev_b and curr_a > curr_b


def crossed_below(
    prev_a: float | None, prev_b: float | None, curr_a: float | None, curr_b: float | None
) -> bool:
    """True when series a moves from >= b to < b."""
    if prev_a is None or prev_b is None or curr_a is None or curr_b is None:
        return False
    return prev_a >= prev_b and curr_a < curr_b
