"""
In-memory bar provider.

Holds pre-built bar lists per symbol. Used by tests and by callers that
already have bars loaded, e.g. from a DataFrame.
"""

from collections.abc import Iterable, Mapping
from datetime import date

from krx_engine.domain import Bar, Timeframe
from krx_engine.interfaces.data_provider import BarDataProvider


class InMemoryBarProvider(BarDataProvider):
    """
    Serves bars from a dict of symbol -> bars.

    The same series is served for every timeframe; callers load bars of the
    timeframe they intend to replay.
    """

    def __init__(self, bars: Mapping[str, Iterable[Bar]] | None = None) -> None:
        self._bars: dict[str, list[Bar]] = {}
        for symbol, series in (bars or {}).items():
            self.add_bars(symbol, series)

    def add_bars(self, symbol: str, bars: Iterable[Bar]) -> None:
        merged = self._bars.get(symbol, []) + list(bars)
        self._bars[symbol] = sorted(merged, key=lambda b: b.timestamp)

    @property
    def symbols(self) -> list[str]:
        return sorted(self._bars)

    def get_bars(
        self,
        symbol: str,
        timeframe: Timeframe,
        start_date: date,
        end_date: date,
    ) -> list[Bar]:
        return [
            b
            for b in self._bars.get(symbol, [])
            if start_date <= b.timestamp.date() <= end_date
        ]
