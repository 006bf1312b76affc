"""Tests for single-parameter sweeps."""

import pytest
import sys
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import BacktestConfig
from src.backtest.sweep import (
    SWEEP_COLUMNS, edge_range, find_optimal, format_pnl_bars, print_sweep_results,
    run_adjustment_sweep, run_edge_sweep, run_vol_mult_sweep
)


def _config(**overrides) -> BacktestConfig:
    # Same flat market as the simulator tests: 3 YES buys at 0.51 per market
    params = dict(spread_cents=2, mode='normal', min_edge=0.02, silent=True)
    params.update(overrides)
    return BacktestConfig(**params)


class TestEdgeRange:
    """Tests for the min-edge grid."""

    def test_defaults(self):
        edges = edge_range()
        assert len(edges) == 16
        assert edges[0] == 0.0
        assert edges[-1] == 30.0

    def test_max_inclusive_only_when_on_step(self):
        assert edge_range(0, 5, 2) == [0.0, 2.0, 4.0]
        assert edge_range(0, 6, 2) == [0.0, 2.0, 4.0, 6.0]

    def test_fractional_step(self):
        assert edge_range(1, 2, 0.1) == pytest.approx([1 + i / 10 for i in range(11)])

    def test_single_value(self):
        assert edge_range(3, 3, 1) == [3.0]

    @pytest.mark.parametrize("args", [(0, 10, 0), (0, 10, -1), (5, 1, 1)])
    def test_invalid(self, args):
        with pytest.raises(ValueError):
            edge_range(*args)


class TestSweeps:
    """Tests for sweep runs over the synthetic bundle."""

    def test_edge_sweep_filters_trades(self, build_bundle):
        # Edge at trade is 0.49; a 60% threshold admits nothing
        results = run_edge_sweep(build_bundle(), _config(), [2, 60], verbose=False)

        assert list(results.columns) == SWEEP_COLUMNS
        assert list(results['value']) == [2, 60]
        assert list(results['trades']) == [3, 0]
        assert results.loc[0, 'pnl'] == pytest.approx(3 * 100 * 0.49)
        assert results.loc[1, 'pnl'] == 0.0
        assert find_optimal(results)['value'] == 2

    def test_roi_unbounded_capital_is_pnl_over_staked(self, build_bundle):
        results = run_edge_sweep(build_bundle(), _config(), [2], verbose=False)
        assert results.loc[0, 'roi'] == pytest.approx(0.49 / 0.51)

    def test_roi_bounded_capital(self, build_bundle):
        results = run_edge_sweep(build_bundle(), _config(initial_capital=1000), [2], verbose=False)
        assert results.loc[0, 'roi'] == pytest.approx(3 * 100 * 0.49 / 1000)

    def test_vol_mult_sweep(self, build_bundle):
        """Deep in the money, the multiplier does not change the decision."""
        results = run_vol_mult_sweep(build_bundle(), _config(), [1.0, 2.0], verbose=False)
        assert list(results['value']) == [1.0, 2.0]
        assert list(results['trades']) == [3, 3]

    def test_adjustment_sweep(self, build_bundle):
        # -10 moves the decision spot to 90 < strike, so NO is bought and loses
        results = run_adjustment_sweep(build_bundle(), _config(), [0.0, -10.0], verbose=False)

        assert list(results['yes_trades']) == [3, 0]
        assert list(results['no_trades']) == [0, 3]
        assert results.loc[1, 'pnl'] == pytest.approx(-3 * 100 * 0.51)
        assert find_optimal(results)['value'] == 0.0

    def test_progress_line_per_run(self, build_bundle, capsys):
        run_edge_sweep(build_bundle(), _config(silent=False), [2], verbose=True)
        out = capsys.readouterr().out
        assert "[1/1] min_edge=2" in out


class TestSweepOutput:
    """Tests for optimum selection and console output."""

    @pytest.fixture
    def results(self):
        return pd.DataFrame([
            {**dict.fromkeys(SWEEP_COLUMNS, 0), 'value': v, 'pnl': p}
            for v, p in [(0.0, -20.0), (2.0, 80.0), (4.0, 80.0), (6.0, 30.0)]
        ], columns=SWEEP_COLUMNS)

    def test_optimal_first_on_ties(self, results):
        assert find_optimal(results)['value'] == 2.0

    def test_optimal_empty(self):
        assert find_optimal(pd.DataFrame(columns=SWEEP_COLUMNS)) is None

    def test_bars_scaled_to_range(self, results):
        lines = format_pnl_bars(results, width=40)
        assert len(lines) == 4
        assert lines[0].count("#") == 0
        assert lines[1].count("#") == 40
        assert lines[3].count("#") == 20
        assert lines[1].startswith("*")
        assert not lines[2].startswith("*")

    def test_bars_flat_pnl(self):
        flat = pd.DataFrame([{**dict.fromkeys(SWEEP_COLUMNS, 0), 'value': v} for v in (1.0, 2.0)])
        assert all(line.count("#") == 0 for line in format_pnl_bars(flat))

    def test_print_results(self, results, capsys):
        print_sweep_results(results, "min_edge %")
        out = capsys.readouterr().out
        assert "SWEEP RESULTS: min_edge %" in out
        assert "Optimal min_edge %: 2" in out
        assert "P&L by min_edge %" in out

    def test_print_empty(self, capsys):
        print_sweep_results(pd.DataFrame(columns=SWEEP_COLUMNS))
        assert "No runs" in capsys.readouterr().out


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
