#!/usr/bin/env python3
"""
Backtest CLI - run one simulator configuration, or sweep a single parameter,
over historical data.

Usage:
    python scripts/run_backtest.py --data-dir data/backtest --from 2025-10-15 --to 2025-11-15
    python scripts/run_backtest.py --conservative --fees --slippage 200 --spread 6
    python scripts/run_backtest.py --sizing kelly --kelly-fraction 0.3 --initial-capital 500
    python scripts/run_backtest.py --adjustment-method ema --adjustment-window 2 --export-dir data/output
    python scripts/run_backtest.py --max-order-usd 50 --max-position-usd 200 --max-pos 500
    python scripts/run_backtest.py --sweep --sweep-min 0 --sweep-max 20 --sweep-step 2
    python scripts/run_backtest.py --sweep --sweep-param vol-mult --sweep-values 1.0 1.5 2.0
"""

import sys
import argparse
import math
from pathlib import Path
from typing import Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import ADJUSTMENT_METHODS, BACKTEST, BacktestConfig, parse_adjustment
from src.backtest.data_loader import DEFAULT_DATA_DIR, load_bundle
from src.backtest.models import date_to_ms
from src.backtest.simulator import Simulator
from src.backtest.statistics import calculate_statistics, print_edge_distribution, print_statistics
from src.backtest.sweep import (
    DEFAULT_ADJUSTMENTS, DEFAULT_VOL_MULTIPLIERS, edge_range, print_sweep_results,
    run_adjustment_sweep, run_edge_sweep, run_vol_mult_sweep
)
from src.backtest.trade_log import (
    export_backtest_result, print_drawdown_analysis, print_pnl_curve,
    print_resolution_log, print_trade_log
)
from src.utils.logging import setup_logger


SWEEP_PARAMS = ['edge', 'vol-mult', 'adjustment']


def parse_date(value: Optional[str]) -> Optional[int]:
    return date_to_ms(value) if value else None


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Binary-option backtest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    data = parser.add_argument_group('data')
    data.add_argument('--data-dir', type=str, default=str(DEFAULT_DATA_DIR), help='Dataset directory')
    data.add_argument('--from', dest='date_from', type=str, default=None, help='Start date YYYY-MM-DD (UTC)')
    data.add_argument('--to', dest='date_to', type=str, default=None, help='End date YYYY-MM-DD (UTC)')

    execution = parser.add_argument_group('execution')
    execution.add_argument('--spread', type=float, default=BACKTEST.spread_cents, help='Spread in cents')
    execution.add_argument('--slippage', type=float, default=BACKTEST.slippage_bps, help='Slippage in bps')
    execution.add_argument('--fees', action='store_true', help='Charge exchange taker fees')
    execution.add_argument('--lag', type=float, default=BACKTEST.lag_seconds, help='Spot lag in seconds')
    execution.add_argument('--latency-ms', type=int, default=None,
                           help='Execution latency (default: 200 conservative, 0 normal)')
    mode = execution.add_mutually_exclusive_group()
    mode.add_argument('--conservative', dest='mode', action='store_const', const='conservative',
                      help='Price each side off the worst-case candle extreme')
    mode.add_argument('--normal', dest='mode', action='store_const', const='normal', help='Price off the close')
    parser.set_defaults(mode=BACKTEST.mode)

    signal = parser.add_argument_group('signal')
    signal.add_argument('--min-edge', type=float, default=BACKTEST.min_edge * 100, help='Minimum edge in percent')
    signal.add_argument('--vol-mult', type=float, default=BACKTEST.vol_multiplier, help='Volatility multiplier')
    signal.add_argument('--cooldown-ms', type=int, default=BACKTEST.cooldown_ms, help='Per market+side cooldown')
    signal.add_argument('--max-trades', type=int, default=BACKTEST.max_trades_per_market,
                        help='Max trades per market')
    signal.add_argument('--adjustment', type=float, default=0.0, help='Static spot adjustment in USD')
    signal.add_argument('--adjustment-method', choices=ADJUSTMENT_METHODS, default='static')
    signal.add_argument('--adjustment-window', type=float, default=2.0, help='Adaptive window in hours')
    signal.add_argument('--use-oracle', action='store_true', help='Use oracle price for fair value')

    sizing = parser.add_argument_group('sizing')
    sizing.add_argument('--sizing', choices=['fixed', 'kelly'], default=BACKTEST.sizing_mode)
    sizing.add_argument('--order-size', type=int, default=BACKTEST.order_size, help='Shares per order (fixed)')
    sizing.add_argument('--kelly-fraction', type=float, default=BACKTEST.kelly_fraction)
    sizing.add_argument('--initial-capital', type=float, default=math.inf)
    sizing.add_argument('--max-order-usd', type=float, default=BACKTEST.max_order_usd, help='USD cap per order')
    sizing.add_argument('--max-position-usd', type=float, default=BACKTEST.max_position_usd,
                        help='USD cap per market position')
    sizing.add_argument('--max-pos', type=int, default=BACKTEST.max_position_per_market,
                        help='Max shares per market side')

    sweep = parser.add_argument_group('sweep')
    sweep.add_argument('--sweep', action='store_true', help='Run a single-parameter sweep instead of one backtest')
    sweep.add_argument('--sweep-param', choices=SWEEP_PARAMS, default='edge', help='Parameter to sweep')
    sweep.add_argument('--sweep-min', type=float, default=0.0, help='Min edge sweep start (percent)')
    sweep.add_argument('--sweep-max', type=float, default=30.0, help='Min edge sweep end (percent, inclusive)')
    sweep.add_argument('--sweep-step', type=float, default=2.0, help='Min edge sweep step (percent)')
    sweep.add_argument('--sweep-values', type=float, nargs='+', default=None,
                       help='Explicit values (edge in percent, vol multipliers or USD adjustments)')

    output = parser.add_argument_group('output')
    output.add_argument('--export-dir', type=str, default=None, help='Export trades/resolutions/P&L here')
    output.add_argument('--verbose', '-v', action='store_true', help='Print trade and resolution logs')

    return parser.parse_args(argv)


def build_config(args, start: int, end: int) -> BacktestConfig:
    return BacktestConfig(
        start=start,
        end=end,
        initial_capital=args.initial_capital,
        spread_cents=args.spread,
        slippage_bps=args.slippage,
        include_fees=args.fees,
        mode=args.mode,
        lag_seconds=args.lag,
        execution_latency_ms=args.latency_ms,
        min_edge=args.min_edge / 100,
        order_size=args.order_size,
        cooldown_ms=args.cooldown_ms,
        max_trades_per_market=args.max_trades,
        sizing_mode=args.sizing,
        kelly_fraction=args.kelly_fraction,
        max_position_per_market=args.max_pos,
        max_order_usd=args.max_order_usd,
        max_position_usd=args.max_position_usd,
        vol_multiplier=args.vol_mult,
        adjustment=parse_adjustment(args.adjustment_method, args.adjustment, args.adjustment_window),
        use_oracle_for_fair_value=args.use_oracle,
    )


def run_sweep_command(args, bundle, config) -> int:
    """Run the requested sweep and print its table, optimum and chart."""
    print("\n" + "=" * 60)
    print(f"PARAMETER SWEEP: {args.sweep_param}")
    print("=" * 60)

    if args.sweep_param == 'edge':
        edges = args.sweep_values or edge_range(args.sweep_min, args.sweep_max, args.sweep_step)
        results = run_edge_sweep(bundle, config, edges)
        name = 'min_edge %'
    elif args.sweep_param == 'vol-mult':
        results = run_vol_mult_sweep(bundle, config, args.sweep_values or DEFAULT_VOL_MULTIPLIERS)
        name = 'vol_multiplier'
    else:
        results = run_adjustment_sweep(bundle, config, args.sweep_values or DEFAULT_ADJUSTMENTS)
        name = 'adjustment $'

    print_sweep_results(results, name)
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    logger = setup_logger('src')

    bundle = load_bundle(args.data_dir, parse_date(args.date_from), parse_date(args.date_to))
    config = build_config(args, bundle.start, bundle.end)
    logger.info(config.describe())

    if args.sweep:
        return run_sweep_command(args, bundle, config)

    result = Simulator(config).run(bundle)
    stats = calculate_statistics(result)

    print_statistics(stats)
    if result.pnl_curve:
        print_pnl_curve(result.pnl_curve)
        print_drawdown_analysis(result.pnl_curve)
    if result.trades:
        print_edge_distribution(result.trades)

    if args.verbose:
        if result.trades:
            print_trade_log(result.trades, limit=30)
        if result.resolutions:
            print_resolution_log(result.resolutions, limit=20)

    if args.export_dir:
        export_backtest_result(result, args.export_dir)

    return 0


if __name__ == "__main__":
    sys.exit(main())
