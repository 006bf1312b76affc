"""
Scoring and winner selection.

    score = P&L_test - 0.5 * |MaxDrawdown_test|

The ranking pool is the set of stress survivors; if none survived, all gate
survivors are ranked instead and the fallback is reported to the caller.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .grid import minimum_bankroll
from .runner import CellResult
from .stress import StressResult


DRAWDOWN_PENALTY = 0.5


@dataclass(frozen=True)
class ScoredCell:
    cell: CellResult
    score: float
    stress_result: Optional[StressResult]
    label: str
    minimum_bankroll: int


def compute_score(cr: CellResult) -> float:
    return cr.test_stats.total_pnl - DRAWDOWN_PENALTY * abs(cr.test_stats.max_drawdown)


def score_and_rank(
    stress_results: Sequence[StressResult],
    gate_survivors: Sequence[CellResult]
) -> Tuple[List[ScoredCell], bool]:
    """
    Score and sort the ranking pool, best first.

    Returns:
        (ranked cells, used_fallback) where used_fallback is True when no
        cell passed stress and gate survivors were ranked instead
    """
    stress_survivors = [sr for sr in stress_results if sr.all_passed]

    if stress_survivors:
        pool = [(sr.cell, sr) for sr in stress_survivors]
        used_fallback = False
    else:
        pool = [(cr, None) for cr in gate_survivors]
        used_fallback = True

    ranked = [
        ScoredCell(
            cell=cr,
            score=compute_score(cr),
            stress_result=stress,
            label=cr.label,
            minimum_bankroll=minimum_bankroll(cr.cell),
        )
        for cr, stress in pool
    ]
    ranked.sort(key=lambda s: s.score, reverse=True)
    return ranked, used_fallback


def select_winner(ranked: Sequence[ScoredCell]) -> Optional[ScoredCell]:
    return ranked[0] if ranked else None
