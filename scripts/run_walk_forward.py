#!/usr/bin/env python3
"""
Walk-Forward Optimization Runner.

Usage:
    python scripts/run_walk_forward.py --csv data/005930.csv --symbols 005930 \
        --range short_period=3,5,8 --range long_period=20,30
"""

import argparse
import json
import sys
from datetime import date

from krx_engine.config import get_settings
from krx_engine.data import CsvFormat, DataSourceConfig, DataSourceType
from krx_engine.logging import setup_logging
from krx_engine.optimization import Objective, SearchMethod, WindowType
from krx_engine.service import BacktestService


def parse_ranges(args: list[str]) -> dict[str, list]:
    """name=v1,v2,... with values decoded as JSON where possible."""
    ranges: dict[str, list] = {}
    for arg in args:
        name, _, raw = arg.partition("=")
        values = []
        for item in raw.split(","):
            try:
                values.append(json.loads(item))
            except json.JSONDecodeError:
                values.append(item)
        ranges[name] = values
    return ranges


def main() -> int:
    parser = argparse.ArgumentParser(description="Run walk-forward optimization over CSV bars")
    parser.add_argument("--csv", required=True, help="CSV file or directory of <symbol>.csv files")
    parser.add_argument("--format", default=CsvFormat.STANDARD.value, help="CSV column layout")
    parser.add_argument("--symbols", nargs="+", required=True, help="KRX tickers")
    parser.add_argument("--strategy", default="MA_CROSSOVER", help="Strategy name")
    parser.add_argument("--range", action="append", default=[], help="Parameter range name=v1,v2")
    parser.add_argument("--timeframe", default="1d", help="Bar timeframe")
    parser.add_argument("--start", default="2022-01-01", help="Analysis start")
    parser.add_argument("--end", default=date.today().isoformat(), help="Analysis end")
    parser.add_argument("--in-sample-days", type=int, default=180)
    parser.add_argument("--out-of-sample-days", type=int, default=90)
    parser.add_argument("--step-days", type=int, default=30)
    parser.add_argument("--min-windows", type=int, default=3)
    parser.add_argument("--anchored", action="store_true", help="Grow the in-sample window")
    parser.add_argument(
        "--objective",
        default=Objective.SHARPE_RATIO.value,
        choices=[o.value for o in Objective],
    )
    parser.add_argument("--random", type=int, default=0, help="Random search budget (0 = grid)")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    base_config = {
        "strategy_type": args.strategy,
        "symbols": args.symbols,
        "start_date": args.start,
        "end_date": args.end,
        "timeframe": args.timeframe,
        "data_source": DataSourceConfig(
            type=DataSourceType.CSV, csv_path=args.csv, csv_format=CsvFormat(args.format)
        ),
    }
    optimization = {
        "base_config": base_config,
        "parameter_ranges": parse_ranges(args.range),
        "method": SearchMethod.RANDOM_SEARCH if args.random else SearchMethod.GRID_SEARCH,
        "objective": args.objective,
        "random_seed": args.seed,
    }
    if args.random:
        optimization["max_runs"] = args.random

    service = BacktestService()
    try:
        outcome = service.analyze(
            {
                "base_config": base_config,
                "optimization": optimization,
                "analysis_start": args.start,
                "analysis_end": args.end,
                "in_sample_days": args.in_sample_days,
                "out_of_sample_days": args.out_of_sample_days,
                "step_days": args.step_days,
                "min_windows": args.min_windows,
                "window_type": WindowType.ANCHORED if args.anchored else WindowType.ROLLING,
            }
        )
        if not outcome.ok:
            print(f"Error [{outcome.error.code}]: {outcome.error.message}")  # type: ignore[union-attr]
            return 1

        result = outcome.unwrap()
        print(f"\n{'=' * 60}")
        print("WALK-FORWARD RESULTS")
        print(f"{'=' * 60}")
        for w in result.windows:
            if w.succeeded:
                print(
                    f"  #{w.index:<3} OOS {w.out_of_sample_start}..{w.out_of_sample_end} | "
                    f"IS {w.in_sample_return_pct:7.2f}% | OOS {w.out_of_sample_return_pct:7.2f}% | "
                    f"params {w.optimized_parameters}"
                )
            else:
                print(f"  #{w.index:<3} FAILED: {w.error}")

        print(f"\nWindows: {result.successful_windows}/{result.total_windows}")
        print(f"Combined OOS return: {result.combined_oos_return_pct:.2f}%")
        print(f"Stability: {result.stability_score:.3f}")
        print(f"Consistency: {result.consistency_score:.3f}")
        print(f"Profitable windows: {result.profitable_windows_pct:.1f}%")
        return 0
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
