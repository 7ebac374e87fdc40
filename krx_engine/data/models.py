"""
Data source configuration.

A BacktestConfig may carry a DataSourceConfig to replay bars from a CSV file
instead of the engine's default provider.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DataSourceType(str, Enum):
    DEFAULT = "DEFAULT"
    CSV = "CSV"


class CsvFormat(str, Enum):
    """Column layouts understood by the CSV provider."""

    STANDARD = "STANDARD"  # timestamp,open,high,low,close,volume
    YAHOO = "YAHOO"  # Date,Open,High,Low,Close,Adj Close,Volume
    INVESTING = "INVESTING"  # Date,Price,Open,High,Low,Vol.
    CUSTOM = "CUSTOM"


PRESET_COLUMNS: dict[CsvFormat, dict[str, str]] = {
    CsvFormat.STANDARD: {
        "timestamp": "timestamp",
        "open": "open",
        "high": "high",
        "low": "low",
        "close": "close",
        "volume": "volume",
    },
    CsvFormat.YAHOO: {
        "timestamp": "Date",
        "open": "Open",
        "high": "High",
        "low": "Low",
        "close": "Close",
        "volume": "Volume",
    },
    CsvFormat.INVESTING: {
        "timestamp": "Date",
        "open": "Open",
        "high": "High",
        "low": "Low",
        "close": "Price",
        "volume": "Vol.",
    },
}


class DataSourceConfig(BaseModel):
    """Where a backtest reads its bars from."""

    model_config = ConfigDict(frozen=True)

    type: DataSourceType = DataSourceType.DEFAULT
    csv_path: Path | None = Field(
        default=None,
        description="CSV file, or directory holding one <symbol>.csv per symbol",
    )
    csv_format: CsvFormat = CsvFormat.STANDARD
    columns: dict[str, str] | None = Field(
        default=None,
        description="Field -> column name mapping, required for CUSTOM",
    )
    symbol_column: str | None = Field(
        default=None,
        description="Column used to filter a multi-symbol file",
    )
    date_format: str | None = Field(
        default=None,
        description="strftime pattern; inferred by pandas when omitted",
    )
    delimiter: str = ","

    @model_validator(mode="after")
    def check_csv_settings(self) -> "DataSourceConfig":
        if self.type == DataSourceType.CSV and self.csv_path is None:
            raise ValueError("csv_path is required for CSV data sources")
        if self.csv_format == CsvFormat.CUSTOM:
            required = {"timestamp", "open", "high", "low", "close"}
            missing = required - set(self.columns or {})
            if missing:
                raise ValueError(f"CUSTOM format is missing columns: {sorted(missing)}")
        return self

    def column_map(self) -> dict[str, str]:
        """Field name -> CSV column name for the configured format."""
        if self.csv_format == CsvFormat.CUSTOM:
            return dict(self.columns or {})
        mapping = dict(PRESET_COLUMNS[self.csv_format])
        if self.columns:
            mapping.update(self.columns)
        return mapping
