"""
BarDataProvider interface.

Defines the contract for historical bar access.
"""

from abc import ABC, abstractmethod
from datetime import date

from krx_engine.domain import Bar, Timeframe


class BarDataProvider(ABC):
    """
    Abstract base class for historical bar sources.

    Implementations may read from memory, files or a database. The engine
    only ever asks for a closed date range of one symbol at a time.
    """

    @abstractmethod
    def get_bars(
        self,
        symbol: str,
        timeframe: Timeframe,
        start_date: date,
        end_date: date,
    ) -> list[Bar]:
        """
        Get historical bars for a symbol.

        Args:
            symbol: KRX ticker
            timeframe: Bar timeframe
            start_date: First calendar day to include
            end_date: Last calendar day to include

        Returns:
            Bars in ascending timestamp order. An empty list means no data
            and is not an error.
        """
