"""Deterministic synthetic OHLCV generators for engine tests."""

import math
from collections.abc import Sequence
from datetime import datetime, timedelta

from krx_engine.domain import Bar

START = datetime(2024, 1, 1, 9, 0)
ONE_DAY = timedelta(days=1)


def bars_from_closes(
    symbol: str,
    closes: Sequence[float],
    start: datetime = START,
    step: timedelta = ONE_DAY,
) -> list[Bar]:
    """One bar per close; open equals close and the range is +/- 1%."""
    return [
        Bar(
            symbol=symbol,
            timestamp=start + step * i,
            open=close,
            high=close * 1.01,
            low=close * 0.99,
            close=close,
            volume=1000.0 + (i % 7) * 10,
        )
        for i, close in enumerate(closes)
    ]


def wave_closes(n: int, base: float = 50_000.0, amplitude: float = 5_000.0, period: int = 20) -> list[float]:
    """Sine wave around ``base``; crosses its own moving averages every half period."""
    return [base + amplitude * math.sin(2 * math.pi * i / period) for i in range(n)]


def trend_closes(n: int, start: float = 50_000.0, step: float = 100.0) -> list[float]:
    return [start + step * i for i in range(n)]


def flat_closes(n: int, price: float = 50_000.0) -> list[float]:
    return [price] * n


def wave_bars(symbol: str, n: int, **kwargs: float) -> list[Bar]:
    return bars_from_closes(symbol, wave_closes(n, **kwargs))  # type: ignore[arg-type]
