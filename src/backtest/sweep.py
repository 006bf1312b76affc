"""
Single-Parameter Sweeps

Re-runs the simulator over one DataBundle while varying a single setting
(min edge, volatility multiplier or static spot adjustment) and selects the
run with the highest P&L.

Key components:
- edge_range: Inclusive min-edge grid in percent
- run_sweep: One backtest per labelled override set -> results DataFrame
- run_edge_sweep / run_vol_mult_sweep / run_adjustment_sweep: Named sweeps
- find_optimal: Highest-P&L row (first value wins ties)
- print_sweep_results: Results table, optimum and P&L bar chart
"""

import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from config.settings import BacktestConfig, StaticAdjustment
from .data_bundle import DataBundle
from .simulator import Simulator
from .statistics import calculate_statistics
from src.utils.logging import get_logger


logger = get_logger(__name__)

SWEEP_COLUMNS = [
    'value', 'pnl', 'trades', 'yes_trades', 'no_trades', 'markets', 'win_rate',
    'avg_edge', 'edge_capture', 'sharpe', 'roi', 'total_fees', 'yes_pnl', 'no_pnl',
]

DEFAULT_VOL_MULTIPLIERS = [1.0, 1.5, 2.0, 2.5, 3.0, 3.5, 4.0]
DEFAULT_ADJUSTMENTS = [0.0, -50.0, -75.0, -100.0, -104.0, -120.0, -150.0]

BAR_WIDTH = 40


def edge_range(min_edge: float = 0.0, max_edge: float = 30.0, step: float = 2.0) -> List[float]:
    """
    Min-edge grid in percent, both ends inclusive.

    Raises:
        ValueError: If step is not positive or min_edge > max_edge
    """
    if step <= 0:
        raise ValueError(f"step must be > 0, got {step}")
    if min_edge > max_edge:
        raise ValueError(f"min_edge ({min_edge}) must be <= max_edge ({max_edge})")

    count = int(math.floor((max_edge - min_edge) / step + 1e-9)) + 1
    return [round(min_edge + i * step, 10) for i in range(count)]


def run_sweep(
    bundle: DataBundle,
    base_config: BacktestConfig,
    runs: Sequence[Tuple[float, Dict[str, Any]]],
    name: str = "value",
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Run one backtest per (value, overrides) pair.

    Args:
        bundle: Shared read-only input data
        base_config: Config every run starts from
        runs: Swept value and the config overrides it maps to
        name: Parameter name for progress output
        verbose: Print one progress line per run

    Returns:
        DataFrame with one row per run (SWEEP_COLUMNS)
    """
    rows = []
    total = len(runs)

    for i, (value, overrides) in enumerate(runs, 1):
        config = base_config.with_overrides(silent=True, **overrides)
        result = Simulator(config).run(bundle)
        stats = calculate_statistics(result)

        if config.capital_is_bounded:
            roi = stats.total_pnl / config.initial_capital
        else:
            roi = stats.avg_realized_edge

        rows.append({
            'value': value,
            'pnl': stats.total_pnl,
            'trades': stats.total_trades,
            'yes_trades': stats.yes_trades,
            'no_trades': stats.no_trades,
            'markets': stats.total_markets,
            'win_rate': stats.win_rate,
            'avg_edge': stats.avg_edge_at_trade,
            'edge_capture': stats.edge_capture,
            'sharpe': stats.sharpe_ratio,
            'roi': roi,
            'total_fees': stats.total_fees_paid,
            'yes_pnl': stats.yes_pnl,
            'no_pnl': stats.no_pnl,
        })

        if verbose:
            print(f"  [{i}/{total}] {name}={value:g}: P&L ${stats.total_pnl:+.2f}, "
                  f"{stats.total_trades} trades")

    logger.info(f"Sweep over {name} finished: {total} runs")
    return pd.DataFrame(rows, columns=SWEEP_COLUMNS)


def run_edge_sweep(bundle: DataBundle, base_config: BacktestConfig,
                   edges_pct: Sequence[float], verbose: bool = True) -> pd.DataFrame:
    """Sweep min edge; values are in percent."""
    runs = [(edge, {'min_edge': edge / 100}) for edge in edges_pct]
    return run_sweep(bundle, base_config, runs, name="min_edge", verbose=verbose)


def run_vol_mult_sweep(bundle: DataBundle, base_config: BacktestConfig,
                       multipliers: Sequence[float] = DEFAULT_VOL_MULTIPLIERS,
                       verbose: bool = True) -> pd.DataFrame:
    runs = [(m, {'vol_multiplier': m}) for m in multipliers]
    return run_sweep(bundle, base_config, runs, name="vol_multiplier", verbose=verbose)


def run_adjustment_sweep(bundle: DataBundle, base_config: BacktestConfig,
                         adjustments: Sequence[float] = DEFAULT_ADJUSTMENTS,
                         verbose: bool = True) -> pd.DataFrame:
    """Sweep the static USD spot adjustment."""
    runs = [(a, {'adjustment': StaticAdjustment(value=a)}) for a in adjustments]
    return run_sweep(bundle, base_config, runs, name="adjustment", verbose=verbose)


def find_optimal(results_df: pd.DataFrame) -> Optional[pd.Series]:
    """Row with the highest P&L, or None for an empty sweep."""
    if results_df.empty:
        return None
    return results_df.loc[results_df['pnl'].idxmax()]


def format_pnl_bars(results_df: pd.DataFrame, width: int = BAR_WIDTH) -> List[str]:
    """One bar per run, scaled between the lowest and highest P&L."""
    if results_df.empty:
        return []

    lo = results_df['pnl'].min()
    span = (results_df['pnl'].max() - lo) or 1.0
    optimal_value = find_optimal(results_df)['value']

    lines = []
    for _, row in results_df.iterrows():
        bar = "#" * round((row['pnl'] - lo) / span * width)
        marker = "*" if row['value'] == optimal_value else " "
        lines.append(f"{marker} {row['value']:>8g} | {bar:<{width}} ${row['pnl']:+.0f}")
    return lines


def print_sweep_results(results_df: pd.DataFrame, name: str = "value"):
    """Print the results table, the optimal setting and a P&L bar chart."""
    print("\n" + "=" * 100)
    print(f"SWEEP RESULTS: {name}")
    print("=" * 100)

    if results_df.empty:
        print("No runs")
        return

    optimal = find_optimal(results_df)

    print(f"  {name:>14} {'P&L':>10} {'Trades':>7} {'YES/NO':>9} {'Markets':>8} {'Win%':>6} "
          f"{'AvgEdge':>8} {'Sharpe':>7} {'ROI':>8} {'Fees':>9}")
    print("-" * 100)
    for _, row in results_df.iterrows():
        marker = "*" if row['value'] == optimal['value'] else " "
        sides = f"{int(row['yes_trades'])}/{int(row['no_trades'])}"
        print(f"{marker} {row['value']:>14g} {row['pnl']:>+10.2f} {int(row['trades']):>7} {sides:>9} "
              f"{int(row['markets']):>8} {row['win_rate'] * 100:>5.1f}% {row['avg_edge'] * 100:>7.2f}% "
              f"{row['sharpe']:>7.2f} {row['roi'] * 100:>7.2f}% {row['total_fees']:>9.2f}")
    print("-" * 100)

    print(f"\nOptimal {name}: {optimal['value']:g}")
    print(f"  P&L:      ${optimal['pnl']:+.2f}")
    print(f"  Trades:   {int(optimal['trades'])}")
    print(f"  Win Rate: {optimal['win_rate'] * 100:.1f}%")
    print(f"  Sharpe:   {optimal['sharpe']:.2f}")
    print(f"  ROI:      {optimal['roi'] * 100:.2f}%")

    print(f"\nP&L by {name}")
    for line in format_pnl_bars(results_df):
        print(line)
    print("=" * 100)
