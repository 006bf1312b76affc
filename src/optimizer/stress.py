"""
Stress Tests - rerun top survivors under adverse conditions.

Scenarios run on the TEST period only. A cell passes a scenario if it stays
profitable (P&L > 0); it passes stress if it passes every scenario.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Sequence

from src.backtest.data_bundle import DataBundle
from src.backtest.statistics import Statistics
from src.utils.logging import get_logger
from .runner import CellResult, RunnerBaseConfig, build_cell_config, run_config
from .split import DateSplit


logger = get_logger(__name__)


@dataclass(frozen=True)
class StressScenario:
    """Named set of BacktestConfig overrides."""
    name: str
    overrides: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScenarioOutcome:
    scenario: StressScenario
    stats: Statistics
    passed: bool


@dataclass(frozen=True)
class StressResult:
    cell: CellResult
    scenarios: List[ScenarioOutcome]
    all_passed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.cell.label,
            'all_passed': self.all_passed,
            'scenarios': [
                {'name': s.scenario.name, 'pnl': s.stats.total_pnl, 'passed': s.passed}
                for s in self.scenarios
            ],
        }


STRESS_SCENARIOS: List[StressScenario] = [
    StressScenario('slippage_300bps', {'slippage_bps': 300}),
    StressScenario('low_vol_0.90', {'vol_multiplier': 0.90}),
    StressScenario('high_vol_1.10', {'vol_multiplier': 1.10}),
]


def run_stress_tests(
    survivors: Sequence[CellResult],
    split: DateSplit,
    bundle: DataBundle,
    base: RunnerBaseConfig,
    scenarios: Sequence[StressScenario] = STRESS_SCENARIOS
) -> List[StressResult]:
    """
    Run every scenario for every survivor on the test period.

    Scenario overrides are applied on top of the cell config.

    Returns:
        One StressResult per survivor, in input order
    """
    results = []
    for cr in survivors:
        cell_config = build_cell_config(cr.cell, split.test_start, split.test_end, base)
        outcomes = []
        for scenario in scenarios:
            _, stats = run_config(cell_config.with_overrides(**scenario.overrides), bundle)
            outcomes.append(ScenarioOutcome(scenario=scenario, stats=stats, passed=stats.total_pnl > 0))

        all_passed = all(o.passed for o in outcomes)
        logger.debug(f"Stress {cr.label}: {'ALL PASS' if all_passed else 'FAILED'}")
        results.append(StressResult(cell=cr, scenarios=outcomes, all_passed=all_passed))

    return results
