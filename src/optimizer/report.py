"""
Optimizer Report

Outputs:
1. Console summaries during a run (grid table, stress results, winner)
2. <output_dir>/optimizer-report.json - machine-readable results
3. <output_dir>/optimizer-report.md  - human-readable Markdown summary
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Any, Optional, Sequence, Tuple, Union

from src.backtest.models import ms_to_iso
from src.utils.logging import get_logger
from .runner import CellResult
from .scoring import ScoredCell
from .split import DateSplit
from .stress import StressResult


logger = get_logger(__name__)

REPORT_BASENAME = 'optimizer-report'


def _date(timestamp_ms: int) -> str:
    return ms_to_iso(timestamp_ms)[:10]


# =============================================================================
# REPORT DICT
# =============================================================================

def build_report(
    split: DateSplit,
    results: Sequence[CellResult],
    survivors: Sequence[CellResult],
    rejects: Sequence[Tuple[CellResult, str]],
    stress_results: Sequence[StressResult],
    winner: Optional[ScoredCell],
    used_stress_fallback: bool = False
) -> Dict[str, Any]:
    """
    Assemble the serializable optimizer report.

    Every evaluated cell appears in allCells with its gate result ('PASS' or
    the rejection reason); winner is None when no viable configuration exists.
    """
    reject_reasons = {cr.label: reason for cr, reason in rejects}

    winner_dict = None
    if winner is not None:
        cr = winner.cell
        winner_dict = {
            'minEdgePct': cr.cell.min_edge_pct,
            'kellyFraction': cr.cell.kelly_fraction,
            'score': winner.score,
            'trainPnL': cr.train_stats.total_pnl,
            'testPnL': cr.test_stats.total_pnl,
            'trainSharpe': cr.train_stats.sharpe_ratio,
            'testSharpe': cr.test_stats.sharpe_ratio,
            'trainMaxDD': cr.train_stats.max_drawdown,
            'testMaxDD': cr.test_stats.max_drawdown,
            'trainTrades': cr.train_result.total_trades,
            'testTrades': cr.test_result.total_trades,
            'minimumBankroll': winner.minimum_bankroll,
        }

    return {
        'generatedAt': datetime.now(timezone.utc).isoformat(),
        'dateRange': {
            'full': {'start': _date(split.train_start), 'end': _date(split.test_end)},
            'train': {'start': _date(split.train_start), 'end': _date(split.train_end), 'days': split.train_days},
            'test': {'start': _date(split.test_start), 'end': _date(split.test_end), 'days': split.test_days},
        },
        'gridSize': len(results),
        'gateSurvivors': len(survivors),
        'stressSurvivors': sum(1 for sr in stress_results if sr.all_passed),
        'usedStressFallback': used_stress_fallback,
        'winner': winner_dict,
        'allCells': [
            {
                'minEdgePct': cr.cell.min_edge_pct,
                'kellyFraction': cr.cell.kelly_fraction,
                'trainPnL': cr.train_stats.total_pnl,
                'testPnL': cr.test_stats.total_pnl,
                'trainTrades': cr.train_result.total_trades,
                'testTrades': cr.test_result.total_trades,
                'gateResult': reject_reasons.get(cr.label, 'PASS'),
            }
            for cr in results
        ],
        'stressTests': [
            {
                'label': sr.cell.label,
                'allPassed': sr.all_passed,
                'scenarios': [
                    {'name': s.scenario.name, 'pnl': s.stats.total_pnl, 'passed': s.passed}
                    for s in sr.scenarios
                ],
            }
            for sr in stress_results
        ],
    }


def render_markdown(report: Dict[str, Any]) -> str:
    dr = report['dateRange']
    lines = [
        '# Optimizer Report',
        f"Generated: {report['generatedAt']}",
        '',
        '## Date Range',
        f"- Full: {dr['full']['start']} to {dr['full']['end']}",
        f"- Train: {dr['train']['start']} to {dr['train']['end']} ({dr['train']['days']} days)",
        f"- Test: {dr['test']['start']} to {dr['test']['end']} ({dr['test']['days']} days)",
        '',
        '## Summary',
        f"- Grid size: {report['gridSize']} cells",
        f"- Gate survivors: {report['gateSurvivors']}",
        f"- Stress survivors: {report['stressSurvivors']}",
    ]
    if report['usedStressFallback'] and report['winner'] is not None:
        lines.append('- No cell passed stress; winner ranked from gate survivors')
    lines.append('')

    lines.append('## Winner')
    w = report['winner']
    if w:
        lines += [
            f"- **minEdge**: {w['minEdgePct']:g}%",
            f"- **kellyFraction**: {w['kellyFraction']:g}",
            f"- **Score**: {w['score']:.2f}",
            f"- **Minimum bankroll**: ${w['minimumBankroll']}",
            '',
            '| Metric | Train | Test |',
            '|--------|-------|------|',
            f"| P&L | ${w['trainPnL']:.2f} | ${w['testPnL']:.2f} |",
            f"| Trades | {w['trainTrades']} | {w['testTrades']} |",
            f"| Sharpe | {w['trainSharpe']:.2f} | {w['testSharpe']:.2f} |",
            f"| Max DD | ${w['trainMaxDD']:.2f} | ${w['testMaxDD']:.2f} |",
        ]
    else:
        lines.append('No viable configuration found.')

    lines += [
        '',
        '## All Cells',
        '| Edge% | Kelly | Train P&L | Test P&L | Trades | Gate |',
        '|-------|-------|-----------|----------|--------|------|',
    ]
    for c in report['allCells']:
        lines.append(
            f"| {c['minEdgePct']:g} | {c['kellyFraction']:g} | ${c['trainPnL']:.2f} | "
            f"${c['testPnL']:.2f} | {c['trainTrades'] + c['testTrades']} | {c['gateResult']} |"
        )

    if report['stressTests']:
        lines += ['', '## Stress Tests']
        for sr in report['stressTests']:
            status = 'ALL PASS' if sr['allPassed'] else 'FAILED'
            lines += [
                '',
                f"### {sr['label']} - {status}",
                '| Scenario | P&L | Result |',
                '|----------|-----|--------|',
            ]
            for s in sr['scenarios']:
                lines.append(f"| {s['name']} | ${s['pnl']:.2f} | {'PASS' if s['passed'] else 'FAIL'} |")

    lines.append('')
    return '\n'.join(lines)


def save_report(report: Dict[str, Any], output_dir: Union[str, Path]) -> Tuple[Path, Path]:
    """
    Write optimizer-report.json and optimizer-report.md.

    Returns:
        (json_path, md_path)
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    json_path = output_dir / f'{REPORT_BASENAME}.json'
    with open(json_path, 'w') as f:
        json.dump(report, f, indent=2)

    md_path = output_dir / f'{REPORT_BASENAME}.md'
    md_path.write_text(render_markdown(report))

    logger.info(f"Report saved: {json_path}")
    logger.info(f"Report saved: {md_path}")
    return json_path, md_path


# =============================================================================
# CONSOLE OUTPUT
# =============================================================================

def print_grid_summary(
    results: Sequence[CellResult],
    rejects: Sequence[Tuple[CellResult, str]],
    survivors: Sequence[CellResult]
):
    rejected = {cr.label for cr, _ in rejects}

    print("\n" + "=" * 70)
    print("  GRID RESULTS")
    print("=" * 70)
    print(f"\n  {'Cell':<28} {'Train P&L':>12} {'Test P&L':>12} {'Trades':>8} {'Gate':>6}")
    print("  " + "-" * 68)

    for cr in results:
        trades = cr.train_result.total_trades + cr.test_result.total_trades
        gate = 'FAIL' if cr.label in rejected else 'PASS'
        print(f"  {cr.label:<28} ${cr.train_stats.total_pnl:>11.2f} ${cr.test_stats.total_pnl:>11.2f} "
              f"{trades:>8} {gate:>6}")

    print(f"\n  Survivors: {len(survivors)} / {len(results)}")


def print_stress_results(stress_results: Sequence[StressResult]):
    if not stress_results:
        return

    print("\n" + "=" * 70)
    print("  STRESS TESTS")
    print("=" * 70)

    for sr in stress_results:
        print(f"\n  {sr.cell.label} - {'ALL PASS' if sr.all_passed else 'FAILED'}")
        for s in sr.scenarios:
            mark = 'PASS' if s.passed else 'FAIL'
            print(f"    {s.scenario.name:<20} P&L=${s.stats.total_pnl:>10.2f}  [{mark}]")


def print_winner(winner: Optional[ScoredCell], ranked: List[ScoredCell]):
    print("\n" + "=" * 70)
    print("  WINNER")
    print("=" * 70)

    if winner is None:
        print("\n  No viable configuration found. All cells rejected.")
        return

    cr = winner.cell
    print(f"\n  Config:       {winner.label}")
    print(f"  Score:        {winner.score:.2f}")
    print(f"  Min Bankroll: ${winner.minimum_bankroll}")
    print(f"  Train P&L:    ${cr.train_stats.total_pnl:.2f} "
          f"({cr.train_result.total_trades} trades, Sharpe {cr.train_stats.sharpe_ratio:.2f})")
    print(f"  Test P&L:     ${cr.test_stats.total_pnl:.2f} "
          f"({cr.test_result.total_trades} trades, Sharpe {cr.test_stats.sharpe_ratio:.2f})")
    print(f"  Train MaxDD:  ${cr.train_stats.max_drawdown:.2f}")
    print(f"  Test MaxDD:   ${cr.test_stats.max_drawdown:.2f}")

    if len(ranked) > 1:
        print("\n  Runner-ups:")
        for i, r in enumerate(ranked[1:4], start=2):
            print(f"    #{i} {r.label} - score={r.score:.2f}, test P&L=${r.cell.test_stats.total_pnl:.2f}")
