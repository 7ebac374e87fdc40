#!/usr/bin/env python3
"""
Backtest runner over CSV bars.

Usage:
    python scripts/run_backtest.py --csv data/005930.csv --symbols 005930 \
        --strategy MA_CROSSOVER --param short_period=5 --param long_period=20
    python scripts/run_backtest.py --csv data/bars --symbols 005930 000660 \
        --timeframe 1d --monte-carlo 1000 --save
"""

import argparse
import json
import sys
from datetime import date, datetime

from krx_engine.config import get_settings
from krx_engine.data import CsvFormat, DataSourceConfig, DataSourceType
from krx_engine.logging import setup_logging
from krx_engine.montecarlo import MonteCarloConfig
from krx_engine.runtime import ArtefactWriter
from krx_engine.service import BacktestService
from krx_engine.strategies import available_strategies


def parse_params(pairs: list[str]) -> dict:
    """key=value pairs; values are decoded as JSON where possible."""
    params = {}
    for pair in pairs:
        key, _, raw = pair.partition("=")
        try:
            params[key] = json.loads(raw)
        except json.JSONDecodeError:
            params[key] = raw
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a KRX backtest over CSV bars")
    parser.add_argument("--csv", required=True, help="CSV file or directory of <symbol>.csv files")
    parser.add_argument(
        "--format",
        default=CsvFormat.STANDARD.value,
        choices=[f.value for f in CsvFormat if f != CsvFormat.CUSTOM],
        help="CSV column layout",
    )
    parser.add_argument("--symbols", nargs="+", required=True, help="KRX tickers")
    parser.add_argument("--strategy", default="MA_CROSSOVER", help=f"One of {available_strategies()}")
    parser.add_argument("--param", action="append", default=[], help="Strategy param key=value")
    parser.add_argument("--timeframe", default="1d", help="Bar timeframe")
    parser.add_argument("--start", default="2023-01-01", help="Start date")
    parser.add_argument("--end", default=date.today().isoformat(), help="End date")
    parser.add_argument("--capital", type=float, default=None, help="Initial capital in KRW")
    parser.add_argument("--monte-carlo", type=int, default=0, help="Bootstrap simulations to run")
    parser.add_argument("--seed", type=int, default=42, help="Monte Carlo seed")
    parser.add_argument("--save", action="store_true", help="Write artefacts under data_dir/runs")
    return parser


def main() -> int:
    args = build_parser().parse_args()
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_json)

    config = {
        "strategy_type": args.strategy,
        "strategy_params": parse_params(args.param),
        "symbols": args.symbols,
        "start_date": args.start,
        "end_date": args.end,
        "timeframe": args.timeframe,
        "data_source": DataSourceConfig(
            type=DataSourceType.CSV, csv_path=args.csv, csv_format=CsvFormat(args.format)
        ),
    }
    if args.capital is not None:
        config["initial_capital"] = args.capital

    service = BacktestService()
    try:
        print(f"\n{'=' * 60}")
        print(f"KRX BACKTEST - {datetime.now().strftime('%Y-%m-%d %H:%M')}")
        print(f"{'=' * 60}")

        outcome = service.run(config)
        if not outcome.ok:
            print(f"Error [{outcome.error.code}]: {outcome.error.message}")  # type: ignore[union-attr]
            return 1

        result = outcome.unwrap()
        print(f"Backtest ID: {result.backtest_id}")
        print(f"Bars: {result.bars_processed}  Trades: {result.total_trades}")
        print(f"Final capital: {result.final_capital:,.0f}")
        print("\nMetrics:")
        for key, value in result.metrics.model_dump().items():
            print(f"  {key}: {value:.4f}" if isinstance(value, float) else f"  {key}: {value}")

        if args.save:
            run_dir = ArtefactWriter(settings.data_dir).write_backtest(result)
            print(f"\nArtefacts: {run_dir}")

        if args.monte_carlo > 0:
            mc = service.simulate(
                MonteCarloConfig(
                    base_result=result, num_simulations=args.monte_carlo, random_seed=args.seed
                )
            )
            if not mc.ok:
                print(f"Monte Carlo error [{mc.error.code}]: {mc.error.message}")  # type: ignore[union-attr]
                return 1
            summary = mc.unwrap()
            print(f"\nMonte Carlo ({summary.num_simulations} runs)")
            print(f"  Mean return: {summary.mean_return_pct:.2f}%")
            print(
                f"  {summary.config.confidence_level:.0%} CI: "
                f"[{summary.confidence_lower_pct:.2f}%, {summary.confidence_upper_pct:.2f}%]"
            )
            print(f"  VaR: {summary.value_at_risk_pct:.2f}%  CVaR: {summary.conditional_var_pct:.2f}%")
            print(f"  P(profit): {summary.probability_of_profit:.1%}")
            print(f"  P(ruin): {summary.probability_of_ruin:.1%}")
            for warning in summary.warnings:
                print(f"  ! {warning}")
        return 0
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
