"""
Hard Gates - reject unreliable optimizer configurations.

Gates run in order and the first failure short-circuits:
1. Minimum 30 trades on the train period
2. Train P&L > 0
3. Test P&L > 0
4. Drawdown stability: |DD_test| <= 1.5 x |DD_train|
5. Consistency: test Sharpe >= 0.5 x train Sharpe (when train Sharpe > 0)
6. Max drawdown: |DD_test| <= 30% of initial capital (bounded capital only)
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .runner import CellResult


MIN_TRAIN_TRADES = 30
DD_STABILITY_RATIO = 1.5
SHARPE_COLLAPSE_RATIO = 0.5
MAX_DD_CAPITAL_FRACTION = 0.30


@dataclass(frozen=True)
class GateResult:
    """passed, or the rejection reason of the first failed gate."""
    passed: bool
    reason: Optional[str] = None


def evaluate_gates(cr: CellResult, initial_capital: float) -> GateResult:
    train, test = cr.train_stats, cr.test_stats

    if cr.train_result.total_trades < MIN_TRAIN_TRADES:
        return GateResult(False, f"Train trades {cr.train_result.total_trades} < {MIN_TRAIN_TRADES}")

    if train.total_pnl <= 0:
        return GateResult(False, f"Train P&L ${train.total_pnl:.2f} ≤ 0")

    if test.total_pnl <= 0:
        return GateResult(False, f"Test P&L ${test.total_pnl:.2f} ≤ 0")

    dd_train = abs(train.max_drawdown)
    dd_test = abs(test.max_drawdown)
    if dd_train > 0 and dd_test > DD_STABILITY_RATIO * dd_train:
        return GateResult(
            False, f"DD instability: test DD ${dd_test:.2f} > 1.5 × train DD ${dd_train:.2f}"
        )

    if train.sharpe_ratio > 0 and test.sharpe_ratio < SHARPE_COLLAPSE_RATIO * train.sharpe_ratio:
        return GateResult(
            False, f"Sharpe collapse: test {test.sharpe_ratio:.2f} < 0.5 × train {train.sharpe_ratio:.2f}"
        )

    if math.isfinite(initial_capital) and dd_test > MAX_DD_CAPITAL_FRACTION * initial_capital:
        return GateResult(False, f"Test DD ${dd_test:.2f} > 30% of capital ${initial_capital:g}")

    return GateResult(True)


def apply_gates(
    results: List[CellResult],
    initial_capital: float
) -> Tuple[List[CellResult], List[Tuple[CellResult, str]]]:
    """
    Split results into survivors and (rejected cell, reason) pairs.
    """
    survivors = []
    rejects = []
    for cr in results:
        gate = evaluate_gates(cr, initial_capital)
        if gate.passed:
            survivors.append(cr)
        else:
            rejects.append((cr, gate.reason))
    return survivors, rejects
