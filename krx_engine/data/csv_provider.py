"""
CSV bar provider backed by pandas.

Reads STANDARD, YAHOO, INVESTING or CUSTOM column layouts. ``csv_path`` may
point at a single file (optionally filtered by a symbol column) or at a
directory containing one ``<symbol>.csv`` per symbol.
"""

from datetime import date
from pathlib import Path

import pandas as pd
from pydantic import ValidationError

from krx_engine.data.models import DataSourceConfig
from krx_engine.domain import Bar, Timeframe
from krx_engine.errors import InvalidConfigError
from krx_engine.interfaces.data_provider import BarDataProvider
from krx_engine.logging import get_logger

logger = get_logger(__name__)

_VOLUME_SUFFIXES = {"K": 1e3, "M": 1e6, "B": 1e9}


def _parse_volume(value: object) -> float:
    """Parse plain numbers and investing.com style '1.25M' volumes."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return 0.0
    if isinstance(value, int | float):
        return float(value)
    text = str(value).strip().replace(",", "")
    if text in ("", "-"):
        return 0.0
    multiplier = _VOLUME_SUFFIXES.get(text[-1].upper())
    if multiplier is not None:
        return float(text[:-1]) * multiplier
    return float(text)


def _to_number(column: pd.Series) -> pd.Series:
    """Numeric column, tolerating "1,234.5" style thousands separators."""
    if not pd.api.types.is_numeric_dtype(column):
        column = column.astype(str).str.replace(",", "", regex=False)
    return pd.to_numeric(column, errors="coerce")


class CsvBarProvider(BarDataProvider):
    """Loads bars from CSV with pandas, caching each parsed file."""

    def __init__(self, source: DataSourceConfig) -> None:
        if source.csv_path is None:
            raise InvalidConfigError("CSV data source requires csv_path")
        self.source = source
        self._frames: dict[Path, pd.DataFrame] = {}

    def _file_for(self, symbol: str) -> Path:
        path = Path(self.source.csv_path)  # type: ignore[arg-type]
        if path.is_dir():
            return path / f"{symbol}.csv"
        return path

    def _load(self, path: Path) -> pd.DataFrame:
        cached = self._frames.get(path)
        if cached is not None:
            return cached

        if not path.exists():
            logger.warning("CSV file not found: %s", path)
            df = pd.DataFrame(columns=["timestamp", "open", "high", "low", "close", "volume"])
            self._frames[path] = df
            return df

        # Tickers like 005930 must keep their leading zeros
        dtype = {self.source.symbol_column: str} if self.source.symbol_column else None
        try:
            raw = pd.read_csv(path, sep=self.source.delimiter, dtype=dtype)
        except (pd.errors.ParserError, UnicodeDecodeError) as exc:
            raise InvalidConfigError(f"Cannot parse {path.name}: {exc}") from exc
        mapping = self.source.column_map()
        missing = [col for field, col in mapping.items() if field != "volume" and col not in raw.columns]
        if missing:
            raise InvalidConfigError(f"{path.name} is missing columns {missing}")

        try:
            timestamps = pd.to_datetime(raw[mapping["timestamp"]], format=self.source.date_format)
        except (ValueError, TypeError) as exc:
            raise InvalidConfigError(f"Unparseable date in {path.name}: {exc}") from exc

        df = pd.DataFrame(
            {
                "timestamp": timestamps,
                "open": _to_number(raw[mapping["open"]]),
                "high": _to_number(raw[mapping["high"]]),
                "low": _to_number(raw[mapping["low"]]),
                "close": _to_number(raw[mapping["close"]]),
            }
        )
        volume_col = mapping.get("volume")
        if volume_col and volume_col in raw.columns:
            df["volume"] = raw[volume_col].map(_parse_volume)
        else:
            df["volume"] = 0.0
        if self.source.symbol_column:
            df["symbol"] = raw[self.source.symbol_column].astype(str)

        before = len(df)
        df = df.dropna(subset=["open", "high", "low", "close"])
        if len(df) < before:
            logger.warning("Dropped %d incomplete rows from %s", before - len(df), path.name)

        # investing.com exports newest first
        df = df.sort_values("timestamp", kind="mergesort").reset_index(drop=True)

        self._frames[path] = df
        logger.info("Loaded %d rows from %s", len(df), path)
        return df

    def get_bars(
        self,
        symbol: str,
        timeframe: Timeframe,
        start_date: date,
        end_date: date,
    ) -> list[Bar]:
        df = self._load(self._file_for(symbol))
        if df.empty:
            return []

        if "symbol" in df.columns:
            df = df[df["symbol"] == symbol]

        days = df["timestamp"].dt.date
        df = df[(days >= start_date) & (days <= end_date)]

        bars: list[Bar] = []
        skipped = 0
        for row in df.itertuples(index=False):
            try:
                bars.append(
                    Bar(
                        symbol=symbol,
                        timestamp=row.timestamp.to_pydatetime(),
                        open=float(row.open),
                        high=float(row.high),
                        low=float(row.low),
                        close=float(row.close),
                        volume=float(row.volume),
                    )
                )
            except ValidationError:
                skipped += 1

        if skipped:
            logger.warning("Skipped %d invalid bars for %s", skipped, symbol)
        return bars
