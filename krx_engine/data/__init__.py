"""
Bar data providers.

- InMemoryBarProvider: bars already in memory
- CsvBarProvider: CSV files read with pandas
"""

from krx_engine.data.csv_provider import CsvBarProvider
from krx_engine.data.memory import InMemoryBarProvider
from krx_engine.data.models import CsvFormat, DataSourceConfig, DataSourceType
from krx_engine.errors import InvalidConfigError
from krx_engine.interfaces.data_provider import BarDataProvider


def resolve_provider(
    source: DataSourceConfig | None,
    default: BarDataProvider | None,
) -> BarDataProvider:
    """
    Pick the provider for a run: a CSV override wins over the default.

    Raises:
        InvalidConfigError: If there is neither an override nor a default.
    """
    if source is not None and source.type == DataSourceType.CSV:
        return CsvBarProvider(source)
    if default is None:
        raise InvalidConfigError("No bar data provider configured")
    return default


__all__ = [
    "CsvBarProvider",
    "CsvFormat",
    "DataSourceConfig",
    "DataSourceType",
    "InMemoryBarProvider",
    "resolve_provider",
]
