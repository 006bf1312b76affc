#!/usr/bin/env python3
"""
Optimizer CLI - grid search over (min edge x Kelly fraction).

The optimizer:
1. Loads data once into a DataBundle
2. Splits the range chronologically into train and test periods
3. Runs the grid on both periods
4. Applies hard gates
5. Stress-tests the top survivors on the test period
6. Scores and selects the winner
7. Writes <output-dir>/optimizer-report.{json,md}

Usage:
    python scripts/run_optimizer.py --from 2025-10-15 --to 2026-02-12
    python scripts/run_optimizer.py --initial-capital 1000 --top-n 5 --workers 4
"""

import sys
import argparse
from dataclasses import replace
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import OPTIMIZER
from src.backtest.data_loader import DEFAULT_DATA_DIR, load_bundle
from src.backtest.models import date_to_ms
from src.optimizer.pipeline import run_optimizer
from src.optimizer.report import print_grid_summary, print_stress_results, print_winner, save_report
from src.utils.logging import setup_logger


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Optimizer - Kelly sizing with chronological train/test",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Grid: edge {edges}% x Kelly {kellys}

Hard gates:
  1. Min 30 trades on train
  2. Train P&L > 0
  3. Test P&L > 0
  4. |DD_test| <= 1.5 x |DD_train|
  5. Test Sharpe >= 0.5 x Train Sharpe
  6. |DD_test| <= 30% of capital

Stress scenarios: slippage 300bps, vol x0.90, vol x1.10
Score: P&L_test - 0.5 x |MaxDD_test|
""".format(edges=OPTIMIZER.edge_values, kellys=OPTIMIZER.kelly_values),
    )
    parser.add_argument('--data-dir', type=str, default=str(DEFAULT_DATA_DIR), help='Dataset directory')
    parser.add_argument('--from', dest='date_from', type=str, default=None, help='Start date YYYY-MM-DD (UTC)')
    parser.add_argument('--to', dest='date_to', type=str, default=None, help='End date YYYY-MM-DD (UTC)')
    parser.add_argument('--initial-capital', type=float, default=OPTIMIZER.initial_capital)
    parser.add_argument('--train-ratio', type=float, default=OPTIMIZER.train_ratio)
    parser.add_argument('--top-n', type=int, default=OPTIMIZER.top_n, help='Gate survivors to stress test')
    parser.add_argument('--workers', type=int, default=OPTIMIZER.max_workers, help='Parallel grid workers')
    parser.add_argument('--output-dir', type=str, default=OPTIMIZER.output_dir)
    return parser.parse_args(argv)


def parse_date(value):
    return date_to_ms(value) if value else None


def print_progress(completed: int, total: int, label: str):
    print(f"\r  [{completed}/{total}] {label:<40}", end='', flush=True)


def main(argv=None) -> int:
    args = parse_args(argv)
    logger = setup_logger('src')

    config = replace(
        OPTIMIZER,
        initial_capital=args.initial_capital,
        train_ratio=args.train_ratio,
        top_n=args.top_n,
        max_workers=args.workers,
        output_dir=args.output_dir,
    )

    bundle = load_bundle(args.data_dir, parse_date(args.date_from), parse_date(args.date_to))

    print("\n" + "=" * 70)
    print("  OPTIMIZER - Kelly sizing + chronological train/test")
    print("=" * 70)

    outcome = run_optimizer(bundle, bundle.start, bundle.end, config, on_progress=print_progress)
    print()

    print_grid_summary(outcome.results, outcome.rejects, outcome.survivors)
    print_stress_results(outcome.stress_results)
    print_winner(outcome.winner, outcome.ranked)

    save_report(outcome.report, config.output_dir)

    if outcome.winner:
        cell = outcome.winner.cell.cell
        logger.info(
            f"Recommended: min_edge={cell.min_edge:.2f}, kelly_fraction={cell.kelly_fraction:g}, "
            f"capital=${max(config.initial_capital, outcome.winner.minimum_bankroll):,.0f}"
        )

    return 0


if __name__ == "__main__":
    sys.exit(main())
