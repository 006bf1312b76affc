"""Tests for the backtest and optimizer command line entry points."""

import json
import logging
import math
import pytest
import sys
from pathlib import Path

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent / 'scripts'))

import run_backtest as backtest_cli
import run_optimizer as optimizer_cli
from config.settings import MS_PER_MINUTE


T0 = 1_704_067_200_000


@pytest.fixture
def data_dir(tmp_path):
    """Two flat-spot markets on disk as CSV."""
    markets = [
        {'market_id': f'm{i}', 'strike': 95.0, 'start': T0 + i * 15 * MS_PER_MINUTE,
         'end': T0 + (i + 1) * 15 * MS_PER_MINUTE}
        for i in range(2)
    ]
    pd.DataFrame(markets).to_csv(tmp_path / 'markets.csv', index=False)
    pd.DataFrame([
        {'timestamp': T0 + i * MS_PER_MINUTE, 'open': 100, 'high': 100, 'low': 100, 'close': 100}
        for i in range(-60, 60)
    ]).to_csv(tmp_path / 'klines.csv', index=False)
    pd.DataFrame([
        {'market_id': m['market_id'], 'timestamp': m['start'] + k * MS_PER_MINUTE, 'price': 0.5}
        for m in markets for k in range(16)
    ]).to_csv(tmp_path / 'market_prices.csv', index=False)
    pd.DataFrame([{'timestamp': m['end'], 'price': 100.0} for m in markets]).to_csv(
        tmp_path / 'oracle.csv', index=False
    )
    return tmp_path


class TestBacktestCli:
    """Tests for scripts/run_backtest.py."""

    def test_defaults(self):
        args = backtest_cli.parse_args([])
        config = backtest_cli.build_config(args, 0, 1000)
        assert config.mode == 'normal'
        assert config.sizing_mode == 'fixed'
        assert config.adjustment.method == 'static'

    def test_flags(self):
        args = backtest_cli.parse_args([
            '--conservative', '--fees', '--spread', '6', '--slippage', '200',
            '--min-edge', '5', '--sizing', 'kelly', '--kelly-fraction', '0.3',
            '--initial-capital', '500', '--adjustment-method', 'ema', '--adjustment-window', '3',
        ])
        config = backtest_cli.build_config(args, 0, 1000)
        assert config.mode == 'conservative'
        assert config.latency_ms == 200
        assert config.include_fees
        assert config.min_edge == pytest.approx(0.05)
        assert config.kelly_fraction == 0.3
        assert config.initial_capital == 500
        assert config.adjustment.method == 'ema'
        assert config.adjustment.window_hours == 3

    def test_cap_flags(self):
        args = backtest_cli.parse_args(['--max-order-usd', '50', '--max-position-usd', '200', '--max-pos', '500'])
        config = backtest_cli.build_config(args, 0, 1000)
        assert config.max_order_usd == 50
        assert config.max_position_usd == 200
        assert config.max_position_per_market == 500

    def test_cap_defaults_unbounded(self):
        config = backtest_cli.build_config(backtest_cli.parse_args([]), 0, 1000)
        assert config.max_order_usd == math.inf
        assert config.max_position_usd == math.inf
        assert config.max_position_per_market == 1000

    def test_sweep_defaults(self):
        args = backtest_cli.parse_args([])
        assert not args.sweep
        assert args.sweep_param == 'edge'
        assert (args.sweep_min, args.sweep_max, args.sweep_step) == (0.0, 30.0, 2.0)
        assert args.sweep_values is None

    def test_parse_date(self):
        assert backtest_cli.parse_date('2024-01-01') == T0
        assert backtest_cli.parse_date(None) is None

    def test_main_exports(self, data_dir, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(backtest_cli, 'setup_logger', logging.getLogger)
        out = tmp_path / 'out'
        code = backtest_cli.main(['--data-dir', str(data_dir), '--spread', '2', '--export-dir', str(out)])
        assert code == 0
        assert "BACKTEST STATISTICS" in capsys.readouterr().out

        summary = json.loads((out / 'backtest_summary.json').read_text())
        assert summary['results']['total_trades'] == 6
        assert len(pd.read_csv(out / 'backtest_trades.csv')) == 6

    def test_main_prints_curve_and_drawdown(self, data_dir, monkeypatch, capsys):
        monkeypatch.setattr(backtest_cli, 'setup_logger', logging.getLogger)
        assert backtest_cli.main(['--data-dir', str(data_dir), '--spread', '2']) == 0
        out = capsys.readouterr().out
        assert "P&L Curve" in out
        assert "Drawdown Analysis" in out
        assert "Resolution Log" not in out

    def test_main_verbose_logs(self, data_dir, monkeypatch, capsys):
        monkeypatch.setattr(backtest_cli, 'setup_logger', logging.getLogger)
        backtest_cli.main(['--data-dir', str(data_dir), '--spread', '2', '--verbose'])
        out = capsys.readouterr().out
        assert "Trade Log" in out
        assert "Resolution Log" in out

    def test_main_edge_sweep(self, data_dir, monkeypatch, capsys):
        monkeypatch.setattr(backtest_cli, 'setup_logger', logging.getLogger)
        code = backtest_cli.main([
            '--data-dir', str(data_dir), '--spread', '2',
            '--sweep', '--sweep-min', '0', '--sweep-max', '4', '--sweep-step', '2',
        ])
        assert code == 0
        out = capsys.readouterr().out
        assert "[3/3] min_edge=4" in out
        assert "SWEEP RESULTS: min_edge %" in out
        assert "Optimal min_edge %" in out
        assert "BACKTEST STATISTICS" not in out

    def test_main_vol_mult_sweep_values(self, data_dir, monkeypatch, capsys):
        monkeypatch.setattr(backtest_cli, 'setup_logger', logging.getLogger)
        backtest_cli.main([
            '--data-dir', str(data_dir), '--sweep', '--sweep-param', 'vol-mult',
            '--sweep-values', '1.0', '2.5',
        ])
        out = capsys.readouterr().out
        assert "[2/2] vol_multiplier=2.5" in out


class TestOptimizerCli:
    """Tests for scripts/run_optimizer.py."""

    def test_defaults(self):
        args = optimizer_cli.parse_args([])
        assert args.train_ratio == 0.70
        assert args.top_n == 3
        assert args.workers == 1

    def test_main_writes_report(self, data_dir, tmp_path, monkeypatch):
        monkeypatch.setattr(optimizer_cli, 'setup_logger', logging.getLogger)
        out = tmp_path / 'report'
        code = optimizer_cli.main(['--data-dir', str(data_dir), '--output-dir', str(out)])
        assert code == 0

        report = json.loads((out / 'optimizer-report.json').read_text())
        assert report['gridSize'] == 40
        # Two markets cannot reach the minimum trade count
        assert report['winner'] is None
        assert (out / 'optimizer-report.md').exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
