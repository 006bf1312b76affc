"""Tests for the backtest simulator."""

import logging
import pytest
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import BacktestConfig, StaticAdjustment, MS_PER_MINUTE
from src.backtest.fair_value import calculate_fair_value
from src.backtest.fees import calculate_taker_fee
from src.backtest.data_bundle import DataBundle
from src.backtest.models import Kline, Market, PricePoint, VolPoint
from src.backtest.simulator import Simulator, run_backtest


# Must match the build_bundle fixture
T0 = 1_704_067_200_000
MARKET_MS = 15 * MS_PER_MINUTE


def _config(**overrides) -> BacktestConfig:
    # Flat spot at 100, strike 95: P(UP) ~ 1, YES mid 0.50 -> YES buys at 0.51
    params = dict(spread_cents=2, mode='normal', min_edge=0.02, silent=True)
    params.update(overrides)
    return BacktestConfig(**params)


class TestSimulatorBasics:
    """Tests for signal generation and resolution on a flat market."""

    def test_buys_yes_until_trade_cap(self, build_bundle):
        result = Simulator(_config()).run(build_bundle())

        assert result.total_trades == 3
        assert all(t.side == 'YES' for t in result.trades)
        assert [t.timestamp for t in result.trades] == [T0, T0 + MS_PER_MINUTE, T0 + 2 * MS_PER_MINUTE]
        assert all(t.price == pytest.approx(0.51) for t in result.trades)
        assert all(t.fair_value == pytest.approx(1.0) for t in result.trades)

    def test_resolution_up(self, build_bundle):
        result = Simulator(_config()).run(build_bundle())

        assert result.total_markets == 1
        resolution = result.resolutions[0]
        assert resolution.outcome == 'UP'
        assert resolution.timestamp == T0 + MARKET_MS
        assert result.total_pnl == pytest.approx(3 * 100 * (1 - 0.51))
        assert result.win_rate == 1.0
        assert result.market_win_rate == 1.0

    def test_pnl_curve_point_per_resolution(self, build_bundle):
        result = Simulator(_config()).run(build_bundle(n_markets=3))
        assert len(result.pnl_curve) == 3
        assert [p.timestamp for p in result.pnl_curve] == [T0 + (i + 1) * MARKET_MS for i in range(3)]
        assert result.pnl_curve[-1].cumulative_pnl == pytest.approx(result.total_pnl)

    def test_settlement_at_strike_is_down(self, build_bundle):
        """UP requires final price strictly above the strike."""
        result = Simulator(_config()).run(build_bundle(oracle=95.0))
        assert result.resolutions[0].outcome == 'DOWN'
        assert result.total_pnl == pytest.approx(-3 * 100 * 0.51)
        assert result.win_rate == 0.0

    def test_spot_fallback_without_oracle(self, build_bundle, caplog):
        with caplog.at_level(logging.WARNING):
            result = Simulator(_config()).run(build_bundle(with_oracle=False))
        assert result.resolutions[0].final_price == 100.0
        assert "using spot" in caplog.text

    def test_fees_included_in_cost(self, build_bundle):
        result = Simulator(_config(include_fees=True)).run(build_bundle())
        fee = calculate_taker_fee(100, 0.51)
        assert all(t.fee == pytest.approx(fee) for t in result.trades)
        assert result.total_fees == pytest.approx(3 * fee)
        assert result.total_pnl == pytest.approx(3 * (100 * 0.49 - fee))

    def test_no_edge_no_trades(self, build_bundle):
        result = Simulator(_config()).run(build_bundle(mid=0.995))
        assert result.total_trades == 0
        assert result.resolutions == []
        assert result.total_pnl == 0.0

    def test_realized_edge(self, build_bundle):
        result = Simulator(_config()).run(build_bundle())
        expected = sum(t.edge * t.size for t in result.trades)
        assert result.realized_edge == pytest.approx(result.total_pnl / expected)


class TestSimulatorEdgeCases:
    """Tests for empty inputs and skipped markets."""

    def test_no_markets_in_range(self, build_bundle):
        bundle = build_bundle()
        config = _config(start=T0 + 10 * MARKET_MS, end=T0 + 20 * MARKET_MS)
        result = Simulator(config).run(bundle)
        assert result.total_trades == 0
        assert result.total_markets == 0
        assert result.total_pnl == 0.0
        assert result.pnl_curve == []
        assert result.config is config

    def test_uses_bundle_range_when_config_empty(self, build_bundle):
        result = Simulator(_config(start=0, end=0)).run(build_bundle(n_markets=2))
        assert result.total_markets == 2

    def test_market_without_strike_skipped(self, build_bundle):
        result = Simulator(_config()).run(build_bundle(strike=None))
        assert result.total_trades == 0

    def test_min_time_remaining(self, build_bundle):
        config = _config(min_time_remaining_s=14.5 * 60, max_trades_per_market=10, cooldown_ms=0)
        result = Simulator(config).run(build_bundle())
        # Only the tick at market start has >= 14.5 minutes left
        assert result.total_trades == 1

    def test_run_is_repeatable(self, build_bundle):
        bundle = build_bundle(n_markets=2)
        simulator = Simulator(_config())
        first = simulator.run(bundle)
        second = simulator.run(bundle)
        assert first.total_trades == second.total_trades
        assert first.total_pnl == pytest.approx(second.total_pnl)
        assert second.trades[0].id == "trade_1"

    def test_run_backtest_wrapper(self, build_bundle):
        assert run_backtest(_config(), build_bundle()).total_trades == 3


class TestRiskControls:
    """Tests for cooldown, trade caps and sizing."""

    def test_max_trades_per_market(self, build_bundle):
        result = Simulator(_config(max_trades_per_market=1)).run(build_bundle())
        assert result.total_trades == 1

    def test_cooldown(self, build_bundle):
        config = _config(cooldown_ms=5 * MS_PER_MINUTE, max_trades_per_market=10)
        result = Simulator(config).run(build_bundle())
        offsets = [(t.timestamp - T0) // MS_PER_MINUTE for t in result.trades]
        assert offsets == [0, 5, 10]

    def test_position_limit(self, build_bundle):
        config = _config(order_size=400, max_position_per_market=1000, max_trades_per_market=10)
        result = Simulator(config).run(build_bundle())
        assert sum(t.size for t in result.trades) == 800

    def test_kelly_sizing(self, build_bundle):
        # f* = 1 at fair value 1.0, stake = 0.5 * 1000 = $500 -> 980 shares at 0.51
        config = _config(sizing_mode='kelly', kelly_fraction=0.5, initial_capital=1000)
        result = Simulator(config).run(build_bundle())
        assert result.trades[0].size == 980
        # Second order would breach the 1000-share position limit
        assert result.total_trades == 1

    def test_kelly_unbounded_capital_uses_order_size(self, build_bundle):
        result = Simulator(_config(sizing_mode='kelly')).run(build_bundle())
        assert all(t.size == 100 for t in result.trades)

    def test_max_order_usd(self, build_bundle):
        result = Simulator(_config(max_order_usd=10.2)).run(build_bundle())
        assert all(t.size == 20 for t in result.trades)

    def test_max_position_usd(self, build_bundle):
        config = _config(max_position_usd=76.5, max_trades_per_market=10, cooldown_ms=0)
        result = Simulator(config).run(build_bundle())
        assert [t.size for t in result.trades] == [100, 50]


class TestModes:
    """Tests for conservative pricing, latency, lag and adjustments."""

    def test_normal_mode_uses_close(self, build_bundle):
        result = Simulator(_config()).run(build_bundle(low=99.0, high=101.0))
        assert all(t.spot_price == 100.0 for t in result.trades)

    def test_conservative_mode_uses_low_for_yes(self, build_bundle):
        result = Simulator(_config(mode='conservative')).run(build_bundle(low=99.0, high=101.0))
        assert result.total_trades == 3
        assert all(t.spot_price == 99.0 for t in result.trades)

    def test_conservative_fair_value_not_above_normal(self, build_bundle):
        """Worst-case extremes make YES look less valuable near the strike."""
        bundle = build_bundle(strike=100.0, low=99.0, high=101.0, mid=0.2)
        normal = Simulator(_config()).run(bundle)
        conservative = Simulator(_config(mode='conservative')).run(bundle)
        assert normal.total_trades > 0
        assert conservative.total_trades == 0

    def test_latency_skips_fills_past_end(self, build_bundle):
        config = _config(execution_latency_ms=MARKET_MS, max_trades_per_market=10, cooldown_ms=0)
        result = Simulator(config).run(build_bundle())
        assert len(result.trades) == 1

    def test_static_adjustment_shifts_spot(self, build_bundle):
        config = _config(adjustment=StaticAdjustment(value=-2.5))
        result = Simulator(config).run(build_bundle())
        assert all(t.spot_price == pytest.approx(97.5) for t in result.trades)

    def test_oracle_for_fair_value(self, build_bundle):
        bundle = build_bundle(oracle=101.0)
        result = Simulator(_config(use_oracle_for_fair_value=True)).run(bundle)
        # The only oracle sample is at market end, after every decision
        assert result.total_trades == 0

    @pytest.mark.parametrize("implied,multiplier,expected", [
        (5.0, 1.10, 3.0 * 1.10),
        (0.01, 0.90, 0.10 * 0.90),
        (0.50, 1.10, 0.50 * 1.10),
    ])
    def test_vol_multiplier_applied_after_clamp(self, build_bundle, monkeypatch,
                                                implied, multiplier, expected):
        """Flat spot has no realized vol, so the blend falls back to implied."""
        seen = []

        def recording_fair_value(spot, strike, seconds, vol, **kwargs):
            seen.append(vol)
            return calculate_fair_value(spot, strike, seconds, vol, **kwargs)

        monkeypatch.setattr('src.backtest.simulator.calculate_fair_value', recording_fair_value)
        bundle = build_bundle(vol_points=[VolPoint(timestamp=T0 - 60 * MS_PER_MINUTE, vol=implied)])
        Simulator(_config(vol_multiplier=multiplier)).run(bundle)

        assert seen
        assert all(v == pytest.approx(expected) for v in seen)

    def test_decision_uses_last_closed_candle(self):
        """Spot drops in the candle opening at T0; the decision at T0 must not see it."""
        klines = [
            Kline(T0 + i * MS_PER_MINUTE, 100.0, 100.0, 100.0, 100.0 if i < 0 else 90.0)
            for i in range(-300, 20)
        ]
        bundle = DataBundle.from_records(
            markets=[Market("m0", 95.0, T0, T0 + MARKET_MS)],
            klines=klines,
            vol_points=[],
            oracle_prices=[],
            market_prices={"m0": [PricePoint(T0, 0.5)]},
            start=T0,
            end=T0 + MARKET_MS,
        )
        result = Simulator(_config()).run(bundle)

        assert len(result.trades) == 1
        assert result.trades[0].side == 'YES'
        assert result.trades[0].spot_price == 100.0

    def test_lag_reads_earlier_spot(self, build_bundle):
        result = Simulator(_config(lag_seconds=30)).run(build_bundle())
        assert result.total_trades == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
