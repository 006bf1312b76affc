"""
Optimizer pipeline:

    split -> grid -> gates -> top-N by provisional score -> stress -> rank -> winner

run_optimizer always produces an OptimizerOutcome with a report; "no viable
configuration" is a report with winner = None, never an exception.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Tuple

from config.settings import OptimizerConfig, OPTIMIZER, parse_adjustment
from src.backtest.data_bundle import DataBundle
from src.utils.logging import get_logger
from .gates import apply_gates
from .grid import generate_grid
from .report import build_report
from .runner import CellResult, ProgressCallback, RunnerBaseConfig, run_grid
from .scoring import ScoredCell, compute_score, score_and_rank, select_winner
from .split import DateSplit, split_date_range
from .stress import StressResult, run_stress_tests


logger = get_logger(__name__)


@dataclass
class OptimizerOutcome:
    split: DateSplit
    results: List[CellResult]
    survivors: List[CellResult]
    rejects: List[Tuple[CellResult, str]]
    stress_results: List[StressResult] = field(default_factory=list)
    ranked: List[ScoredCell] = field(default_factory=list)
    winner: Optional[ScoredCell] = None
    used_stress_fallback: bool = False
    report: Dict[str, Any] = field(default_factory=dict)


def base_config_from(config: OptimizerConfig) -> RunnerBaseConfig:
    return RunnerBaseConfig(
        initial_capital=config.initial_capital,
        spread_cents=config.spread_cents,
        slippage_bps=config.slippage_bps,
        include_fees=config.include_fees,
        mode=config.mode,
        adjustment=parse_adjustment(config.adjustment_method, 0.0, config.adjustment_window_hours),
        cooldown_ms=config.cooldown_ms,
        max_trades_per_market=config.max_trades_per_market,
    )


def run_optimizer(
    bundle: DataBundle,
    start: int,
    end: int,
    config: OptimizerConfig = OPTIMIZER,
    on_progress: Optional[ProgressCallback] = None
) -> OptimizerOutcome:
    """
    Run the full optimizer over [start, end].

    Raises:
        ValueError: If the date range or train ratio is invalid (before any run)
    """
    split = split_date_range(start, end, config.train_ratio)
    base = base_config_from(config)
    grid = generate_grid(config.edge_values, config.kelly_values)

    logger.info(
        f"Optimizer: {len(grid)} cells, train {split.train_days} days, "
        f"test {split.test_days} days, capital ${config.initial_capital:,.0f}"
    )

    results = run_grid(grid, split, bundle, base, config.max_workers, on_progress)
    survivors, rejects = apply_gates(results, config.initial_capital)
    logger.info(f"Gate survivors: {len(survivors)} / {len(results)}")

    outcome = OptimizerOutcome(split=split, results=results, survivors=survivors, rejects=rejects)

    if survivors:
        top_n = sorted(survivors, key=compute_score, reverse=True)[:config.top_n]
        logger.info(f"Stress testing top {len(top_n)} survivors")
        outcome.stress_results = run_stress_tests(top_n, split, bundle, base)

        outcome.ranked, outcome.used_stress_fallback = score_and_rank(outcome.stress_results, survivors)
        outcome.winner = select_winner(outcome.ranked)
        if outcome.used_stress_fallback:
            logger.warning("No cell passed stress tests; ranking gate survivors instead")
    else:
        logger.warning("No cells passed hard gates; report will have no winner")

    outcome.report = build_report(
        split, results, survivors, rejects, outcome.stress_results,
        outcome.winner, outcome.used_stress_fallback
    )
    return outcome
