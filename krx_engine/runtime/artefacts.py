"""
Artefact output for finished runs.

Directory structure:
{data_dir}/
    runs/
        {backtest_id}/
            config.json      # Config snapshot
            metrics.json     # Performance metrics, risk profile under "risk"
            trades.parquet   # Closed trades
            equity.parquet   # Equity curve
"""

import json
from pathlib import Path
from typing import Any

import pandas as pd

from krx_engine.backtest.models import BacktestResult
from krx_engine.logging import get_logger

logger = get_logger(__name__)

TRADE_COLUMNS = [
    "trade_id",
    "symbol",
    "side",
    "quantity",
    "entry_time",
    "entry_price",
    "exit_time",
    "exit_price",
    "commission",
    "gross_pnl",
    "net_pnl",
    "return_pct",
    "exit_reason",
]
EQUITY_COLUMNS = ["timestamp", "equity", "cash", "position_value"]


class ArtefactWriter:
    """Writes and lists per-run artefact directories."""

    def __init__(self, base_dir: Path) -> None:
        """
        Args:
            base_dir: Data directory; runs go under ``base_dir / "runs"``
        """
        self.base_dir = base_dir
        self.runs_dir = base_dir / "runs"
        self.runs_dir.mkdir(parents=True, exist_ok=True)

    def write_backtest(self, result: BacktestResult) -> Path:
        """
        Persist one backtest result.

        Returns:
            Path to the run directory.
        """
        run_dir = self.runs_dir / result.backtest_id
        run_dir.mkdir(parents=True, exist_ok=True)

        self._write_json(run_dir / "config.json", result.config.model_dump(mode="json"))
        self._write_json(
            run_dir / "metrics.json",
            {
                "final_capital": result.final_capital,
                "bars_processed": result.bars_processed,
                "duration_ms": result.duration_ms,
                "warnings": result.warnings,
                **result.metrics.model_dump(mode="json"),
                "risk": result.risk.model_dump(mode="json"),
            },
        )

        trades = pd.DataFrame(
            [t.model_dump(mode="json") for t in result.trades], columns=TRADE_COLUMNS
        )
        for column in ("entry_time", "exit_time"):
            trades[column] = pd.to_datetime(trades[column], utc=True)
        trades.to_parquet(run_dir / "trades.parquet", index=False)

        equity = pd.DataFrame(
            [p.model_dump() for p in result.equity_curve], columns=EQUITY_COLUMNS
        )
        equity["timestamp"] = pd.to_datetime(equity["timestamp"], utc=True)
        equity.to_parquet(run_dir / "equity.parquet", index=False)

        logger.info("Wrote artefacts for %s to %s", result.backtest_id, run_dir)
        return run_dir

    def get_run_directory(self, run_id: str) -> Path | None:
        run_dir = self.runs_dir / run_id
        if run_dir.exists():
            return run_dir
        return None

    def list_runs(self, limit: int = 100) -> list[dict[str, Any]]:
        """Config snapshots of stored runs, newest directory first."""
        runs = []
        for run_dir in sorted(self.runs_dir.iterdir(), key=lambda p: p.stat().st_mtime, reverse=True):
            config_path = run_dir / "config.json"
            if not run_dir.is_dir() or not config_path.exists():
                continue
            with open(config_path) as f:
                runs.append(json.load(f))
            if len(runs) >= limit:
                break
        return runs

    def load_trades(self, run_id: str) -> pd.DataFrame:
        return pd.read_parquet(self.runs_dir / run_id / "trades.parquet")

    def load_equity(self, run_id: str) -> pd.DataFrame:
        return pd.read_parquet(self.runs_dir / run_id / "equity.parquet")

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        with open(path, "w") as f:
            json.dump(payload, f, indent=2, default=str)
