"""Tests for fair value, fee and volatility models."""

import math
import pytest
import sys
from dataclasses import replace
from pathlib import Path

import numpy as np
from scipy.stats import norm

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import FAIR_VALUE, VOL_BLEND
from src.backtest.fair_value import (
    DEGENERATE_D, SECONDS_PER_YEAR, apply_kurtosis, apply_vol_smile,
    calculate_fair_value, kelly_fraction, normal_cdf
)
from src.backtest.fees import calculate_taker_fee, effective_fee_rate
from src.backtest.volatility import (
    blend_volatility, blended_vol_at, calculate_log_returns, calculate_realized_vol
)


PLAIN = replace(FAIR_VALUE, smile_enabled=False, kurtosis_enabled=False)


class TestNormalCdf:
    """Tests for the normal CDF."""

    @pytest.mark.parametrize("x", [-6.0, -3.0, -1.5, -0.5, 0.0, 0.25, 1.0, 2.33, 4.0])
    def test_matches_closed_form(self, x):
        assert normal_cdf(x) == pytest.approx(0.5 * math.erfc(-x / math.sqrt(2)), abs=1e-12)

    def test_returns_python_float(self):
        assert type(normal_cdf(0.3)) is float

    def test_extreme_d(self):
        assert normal_cdf(DEGENERATE_D) == 1.0
        assert normal_cdf(-DEGENERATE_D) == 0.0

    def test_symmetry(self):
        for x in (0.1, 0.7, 1.9, 3.2):
            assert normal_cdf(x) + normal_cdf(-x) == pytest.approx(1.0, abs=1e-12)

    def test_center(self):
        assert normal_cdf(0.0) == pytest.approx(0.5, abs=1e-9)


class TestFairValue:
    """Tests for the binary fair value model."""

    def test_matches_black_scholes_digital(self):
        """Without adjustments the model is the drift-corrected digital."""
        spot, strike, seconds, vol = 101.0, 100.0, 600.0, 0.6
        fv = calculate_fair_value(spot, strike, seconds, vol, params=PLAIN)

        tau = seconds / SECONDS_PER_YEAR
        d = (math.log(spot / strike) - vol ** 2 / 2 * tau) / (vol * math.sqrt(tau))
        assert fv.d == pytest.approx(d)
        assert fv.p_up == pytest.approx(norm.cdf(d), abs=1e-4)

    def test_probabilities_sum_to_one(self):
        for spot in (90.0, 99.9, 100.0, 100.1, 110.0):
            fv = calculate_fair_value(spot, 100.0, 300, 0.5)
            assert fv.p_up + fv.p_down == pytest.approx(1.0)
            assert 0.0 <= fv.p_up <= 1.0

    def test_monotonic_in_spot(self):
        values = [calculate_fair_value(s, 100.0, 600, 0.5, params=PLAIN).p_up
                  for s in np.linspace(99.0, 101.0, 21)]
        assert all(b >= a for a, b in zip(values, values[1:]))

    def test_at_the_money_slightly_below_half(self):
        """Negative drift puts ATM P(UP) just under 0.5."""
        fv = calculate_fair_value(100.0, 100.0, 900, 0.5, params=PLAIN)
        assert fv.p_up < 0.5
        assert fv.p_up == pytest.approx(0.5, abs=1e-3)

    @pytest.mark.parametrize("spot,expected_p,expected_d", [
        (101.0, 1.0, DEGENERATE_D),
        (99.0, 0.0, -DEGENERATE_D),
        (100.0, 0.5, 0.0),
    ])
    def test_expired_market(self, spot, expected_p, expected_d):
        fv = calculate_fair_value(spot, 100.0, 0, 0.5)
        assert fv.p_up == expected_p
        assert fv.p_down == 1.0 - expected_p
        assert fv.d == expected_d

    @pytest.mark.parametrize("spot,boundary", [(101.0, 1.0), (99.0, 0.0), (100.0, 0.5)])
    def test_converges_to_boundary_as_expiry_nears(self, spot, boundary):
        """P(UP) moves monotonically toward its expiry value as tau shrinks."""
        seconds = [900, 600, 300, 120, 60, 30, 10, 1]
        values = [calculate_fair_value(spot, 100.0, s, 0.5, params=PLAIN).p_up for s in seconds]
        distances = [abs(v - boundary) for v in values]

        assert all(b <= a for a, b in zip(distances, distances[1:]))
        assert distances[-1] == pytest.approx(0.0, abs=1e-4)
        assert calculate_fair_value(spot, 100.0, 0, 0.5, params=PLAIN).p_up == boundary

    def test_at_the_money_stays_near_half(self):
        for seconds in (900, 300, 60, 1):
            p_up = calculate_fair_value(100.0, 100.0, seconds, 0.5, params=PLAIN).p_up
            assert 0.499 < p_up <= 0.5

    def test_adjusted_model_reaches_boundary_near_expiry(self):
        assert calculate_fair_value(101.0, 100.0, 1, 0.5).p_up == pytest.approx(1.0, abs=1e-9)
        assert calculate_fair_value(99.0, 100.0, 1, 0.5).p_up == pytest.approx(0.0, abs=1e-9)

    def test_zero_vol_is_degenerate(self):
        assert calculate_fair_value(101.0, 100.0, 600, 0.0).p_up == 1.0
        assert calculate_fair_value(99.0, 100.0, 600, -0.1).p_up == 0.0

    def test_tiny_sigma_t_is_degenerate(self):
        assert calculate_fair_value(101.0, 100.0, 1e-12, 1e-6).p_up == 1.0

    def test_adjustment_master_switch(self):
        on = calculate_fair_value(100.2, 100.0, 600, 0.5, apply_adjustments=True)
        off = calculate_fair_value(100.2, 100.0, 600, 0.5, apply_adjustments=False)
        plain = calculate_fair_value(100.2, 100.0, 600, 0.5, params=PLAIN)
        assert off.p_up == pytest.approx(plain.p_up)
        assert on.p_up < off.p_up

    def test_adjustments_pull_tails_toward_center(self):
        """Smile and kurtosis both make deep ITM less certain."""
        smile_only = replace(FAIR_VALUE, kurtosis_enabled=False)
        kurt_only = replace(FAIR_VALUE, smile_enabled=False)
        plain = calculate_fair_value(100.5, 100.0, 600, 0.5, params=PLAIN).p_up
        assert calculate_fair_value(100.5, 100.0, 600, 0.5, params=smile_only).p_up < plain
        assert calculate_fair_value(100.5, 100.0, 600, 0.5, params=kurt_only).p_up < plain


class TestAdjustments:
    """Tests for smile and kurtosis helpers."""

    def test_smile_capped(self):
        boosted = apply_vol_smile(0.5, 150.0, 100.0, 0.01)
        assert boosted == pytest.approx(0.5 * FAIR_VALUE.smile_max_boost)

    def test_smile_atm_unchanged(self):
        assert apply_vol_smile(0.5, 100.0, 100.0, 0.01) == pytest.approx(0.5)

    def test_kurtosis_inside_threshold(self):
        assert apply_kurtosis(1.2) == 1.2
        assert apply_kurtosis(-1.5) == -1.5

    def test_kurtosis_compresses_excess(self):
        expected = 1.5 + 1.5 / 1.15
        assert apply_kurtosis(3.0) == pytest.approx(expected)
        assert apply_kurtosis(-3.0) == pytest.approx(-expected)


class TestKelly:
    """Tests for Kelly fraction."""

    def test_positive_edge(self):
        assert kelly_fraction(0.6, 0.5) == pytest.approx(0.2)

    def test_no_edge(self):
        assert kelly_fraction(0.4, 0.5) == 0.0
        assert kelly_fraction(0.5, 0.5) == 0.0

    def test_price_bounds(self):
        assert kelly_fraction(0.9, 0.0) == 0.0
        assert kelly_fraction(0.9, 1.0) == 0.0


class TestFees:
    """Tests for the taker fee curve."""

    def test_fee_at_half(self):
        # 100 * 0.5 * 0.25 * 0.0625
        assert calculate_taker_fee(100, 0.5) == pytest.approx(0.78125)

    @pytest.mark.parametrize("price,rate", [(0.5, 0.0156), (0.3, 0.0110), (0.8, 0.0064)])
    def test_effective_rates(self, price, rate):
        assert effective_fee_rate(price) == pytest.approx(rate, abs=1e-4)

    def test_fee_symmetric_in_price_shape(self):
        assert effective_fee_rate(0.2) == pytest.approx(effective_fee_rate(0.8))

    def test_zero_at_bounds(self):
        assert calculate_taker_fee(100, 0.0) == 0.0
        assert calculate_taker_fee(100, 1.0) == 0.0


class TestVolatility:
    """Tests for realized and blended volatility."""

    def test_log_returns(self):
        returns = list(calculate_log_returns([100.0, 110.0, 99.0]))
        assert returns == pytest.approx([math.log(1.1), math.log(0.9)])

    def test_realized_vol_matches_numpy(self):
        closes = [100.0, 100.5, 99.8, 100.2, 101.0, 100.7]
        expected = np.std(np.diff(np.log(closes)), ddof=1) * math.sqrt(525_600)
        assert calculate_realized_vol(closes) == pytest.approx(expected)

    def test_realized_vol_degenerate(self):
        assert calculate_realized_vol([100.0, 101.0]) == 0.0
        assert calculate_realized_vol([100.0, 0.0, 101.0]) == 0.0
        assert calculate_realized_vol([100.0] * 10) == 0.0

    def test_blend_weights(self):
        assert blend_volatility(1.0, 0.5, 0.5) == pytest.approx(0.7 + 0.1 + 0.05)

    def test_blend_falls_back_to_4h(self):
        assert blend_volatility(0.0, 0.8, 0.5) == pytest.approx(0.9 * 0.8 + 0.1 * 0.5)

    def test_blend_implied_only_is_clamped(self):
        assert blend_volatility(0.0, 0.0, 0.6) == pytest.approx(0.6)
        assert blend_volatility(0.0, 0.0, 0.01) == VOL_BLEND.min_vol
        assert blend_volatility(0.0, 0.0, 9.0) == VOL_BLEND.max_vol

    def test_blended_vol_is_causal(self):
        """Closes after end_idx do not affect the estimate."""
        rng = np.random.default_rng(7)
        closes = 100 * np.exp(np.cumsum(rng.normal(0, 0.001, 400)))
        spiked = closes.copy()
        spiked[301:] *= 1.5
        assert blended_vol_at(closes, 300, 0.5) == pytest.approx(blended_vol_at(spiked, 300, 0.5))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
