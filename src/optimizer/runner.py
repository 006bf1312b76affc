"""
Optimizer Runner

Runs each GridCell on the train and test periods of a DateSplit against a
shared DataBundle and collects results plus statistics for gating and
scoring.

Every run gets its own Simulator (and so its own order matcher and position
tracker); the bundle is read-only, so cells can run on a thread pool.
"""

import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Any, Optional, Tuple

from config.settings import Adjustment, BacktestConfig, BacktestMode, StaticAdjustment
from src.backtest.data_bundle import DataBundle
from src.backtest.models import BacktestResult
from src.backtest.simulator import Simulator
from src.backtest.statistics import Statistics, calculate_statistics
from src.utils.logging import get_logger
from .grid import GridCell, cell_label
from .split import DateSplit


logger = get_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class RunnerBaseConfig:
    """Settings passed to every simulator run that the grid does not vary."""
    initial_capital: float
    spread_cents: float = 6.0
    slippage_bps: float = 200.0
    include_fees: bool = True
    mode: BacktestMode = 'conservative'
    vol_multiplier: float = 1.0
    use_oracle_for_fair_value: bool = False
    adjustment: Adjustment = field(default_factory=StaticAdjustment)
    cooldown_ms: int = 60_000
    max_trades_per_market: int = 3
    max_order_usd: float = math.inf
    max_position_usd: float = math.inf


@dataclass(frozen=True)
class CellResult:
    """One grid cell evaluated on both periods."""
    cell: GridCell
    train_result: BacktestResult
    train_stats: Statistics
    test_result: BacktestResult
    test_stats: Statistics

    @property
    def label(self) -> str:
        return cell_label(self.cell)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.cell.to_dict(),
            'train_pnl': self.train_stats.total_pnl,
            'test_pnl': self.test_stats.total_pnl,
            'train_trades': self.train_result.total_trades,
            'test_trades': self.test_result.total_trades,
            'train_sharpe': self.train_stats.sharpe_ratio,
            'test_sharpe': self.test_stats.sharpe_ratio,
            'train_max_dd': self.train_stats.max_drawdown,
            'test_max_dd': self.test_stats.max_drawdown,
        }


def build_cell_config(cell: GridCell, start: int, end: int, base: RunnerBaseConfig) -> BacktestConfig:
    """Kelly-sized, silent BacktestConfig for one cell over [start, end]."""
    return BacktestConfig(
        start=start,
        end=end,
        initial_capital=base.initial_capital,
        spread_cents=base.spread_cents,
        slippage_bps=base.slippage_bps,
        include_fees=base.include_fees,
        mode=base.mode,
        sizing_mode='kelly',
        kelly_fraction=cell.kelly_fraction,
        min_edge=cell.min_edge,
        order_size=100,
        vol_multiplier=base.vol_multiplier,
        use_oracle_for_fair_value=base.use_oracle_for_fair_value,
        adjustment=base.adjustment,
        cooldown_ms=base.cooldown_ms,
        max_trades_per_market=base.max_trades_per_market,
        max_order_usd=base.max_order_usd,
        max_position_usd=base.max_position_usd,
        silent=True,
    )


def run_config(config: BacktestConfig, bundle: DataBundle) -> Tuple[BacktestResult, Statistics]:
    result = Simulator(config).run(bundle)
    return result, calculate_statistics(result)


def run_cell(cell: GridCell, split: DateSplit, bundle: DataBundle, base: RunnerBaseConfig) -> CellResult:
    """Run one cell on the train period, then the test period."""
    train_result, train_stats = run_config(
        build_cell_config(cell, split.train_start, split.train_end, base), bundle
    )
    test_result, test_stats = run_config(
        build_cell_config(cell, split.test_start, split.test_end, base), bundle
    )
    return CellResult(
        cell=cell,
        train_result=train_result,
        train_stats=train_stats,
        test_result=test_result,
        test_stats=test_stats,
    )


def run_grid(
    grid: List[GridCell],
    split: DateSplit,
    bundle: DataBundle,
    base: RunnerBaseConfig,
    max_workers: int = 1,
    on_progress: Optional[ProgressCallback] = None
) -> List[CellResult]:
    """
    Evaluate every cell on train and test.

    Args:
        grid: Cells to evaluate
        split: Train/test ranges
        bundle: Shared data covering the full range
        base: Non-grid settings
        max_workers: >1 runs cells on a thread pool
        on_progress: Called as (completed, total, label) after each cell

    Returns:
        CellResults in grid order
    """
    total = len(grid)

    if max_workers <= 1:
        results = []
        for i, cell in enumerate(grid):
            results.append(run_cell(cell, split, bundle, base))
            if on_progress:
                on_progress(i + 1, total, cell_label(cell))
        return results

    ordered: List[Optional[CellResult]] = [None] * total
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(run_cell, cell, split, bundle, base): i
            for i, cell in enumerate(grid)
        }
        completed = 0
        for future in as_completed(futures):
            idx = futures[future]
            ordered[idx] = future.result()
            completed += 1
            if on_progress:
                on_progress(completed, total, cell_label(grid[idx]))

    return ordered
