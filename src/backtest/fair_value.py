"""
Fair Value Model

Prices the probability that a 15-minute up/down market resolves UP, using the
Black-Scholes digital (cash-or-nothing) formula with drift correction:

    d = [ln(S/K) + (r - sigma^2/2) * tau] / (sigma * sqrt(tau))
    P(UP) = Phi(d),  P(DOWN) = 1 - P(UP)

Two optional post-hoc adjustments can be toggled independently of the base
formula:
- Volatility smile: OTM strikes get a quadratic vol boost (capped)
- Kurtosis: |d| beyond a threshold is compressed toward it (fat tails)

Key components:
- normal_cdf: Phi via scipy.stats
- calculate_fair_value: Base formula + optional adjustments
- kelly_fraction: Full-Kelly stake fraction for a binary contract
"""

import math
from dataclasses import dataclass
from typing import Dict, Any

from scipy import stats

from config.settings import FairValueParams, FAIR_VALUE


SECONDS_PER_YEAR = 365 * 24 * 3600

# Finite stand-in for +/- infinity when the distribution collapses
DEGENERATE_D = 1e9
MIN_SIGMA_T = 1e-10


@dataclass(frozen=True)
class FairValue:
    """Model output for one (spot, strike, tau, vol) evaluation."""
    p_up: float
    p_down: float
    d: float
    sigma_t: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'p_up': self.p_up,
            'p_down': self.p_down,
            'd': self.d,
            'sigma_t': self.sigma_t,
        }


# ==============================================================================
# NORMAL CDF
# ==============================================================================

def normal_cdf(x: float) -> float:
    """Standard normal CDF."""
    return float(stats.norm.cdf(x))


# ==============================================================================
# ADJUSTMENTS
# ==============================================================================

def apply_vol_smile(
    base_vol: float,
    spot: float,
    strike: float,
    sigma_t: float,
    params: FairValueParams = FAIR_VALUE
) -> float:
    """
    Quadratic smile: vol * min(1 + coef * moneyness^2, max_boost).

    Moneyness is the distance from the strike in sigma units,
    |ln(S/K)| / (sigma * sqrt(tau)).
    """
    if sigma_t < MIN_SIGMA_T:
        return base_vol

    moneyness = abs(math.log(spot / strike)) / sigma_t
    multiplier = min(1.0 + params.smile_coefficient * moneyness ** 2, params.smile_max_boost)
    return base_vol * multiplier


def apply_kurtosis(d: float, params: FairValueParams = FAIR_VALUE) -> float:
    """Compress the excess of |d| over the threshold by the kurtosis factor."""
    if abs(d) <= params.kurtosis_threshold:
        return d
    sign = 1.0 if d > 0 else -1.0
    excess = abs(d) - params.kurtosis_threshold
    return sign * (params.kurtosis_threshold + excess / params.kurtosis_factor)


def _boundary(spot: float, strike: float) -> FairValue:
    if spot > strike:
        return FairValue(p_up=1.0, p_down=0.0, d=DEGENERATE_D, sigma_t=0.0)
    if spot < strike:
        return FairValue(p_up=0.0, p_down=1.0, d=-DEGENERATE_D, sigma_t=0.0)
    return FairValue(p_up=0.5, p_down=0.5, d=0.0, sigma_t=0.0)


# ==============================================================================
# FAIR VALUE
# ==============================================================================

def calculate_fair_value(
    spot: float,
    strike: float,
    seconds_remaining: float,
    vol: float,
    apply_adjustments: bool = True,
    params: FairValueParams = FAIR_VALUE
) -> FairValue:
    """
    Compute P(UP) / P(DOWN) for a binary up/down market.

    Args:
        spot: Current underlying price
        strike: Market strike (price to beat)
        seconds_remaining: Time to resolution in seconds
        vol: Annualized volatility as decimal (0.50 = 50%)
        apply_adjustments: Master switch for smile and kurtosis
        params: Model parameters (each adjustment also has its own flag)

    Returns:
        FairValue. Degenerate inputs (tau <= 0, vol <= 0, sigma*sqrt(tau)
        below 1e-10, non-positive prices) return the boundary probability:
        1.0 if S > K, 0.0 if S < K, 0.5 at S == K.
    """
    if seconds_remaining <= 0 or vol <= 0 or spot <= 0 or strike <= 0:
        return _boundary(spot, strike)

    tau = seconds_remaining / SECONDS_PER_YEAR
    base_sigma_t = vol * math.sqrt(tau)
    if base_sigma_t < MIN_SIGMA_T:
        return _boundary(spot, strike)

    effective_vol = vol
    if apply_adjustments and params.smile_enabled:
        effective_vol = apply_vol_smile(vol, spot, strike, base_sigma_t, params)

    sigma_t = effective_vol * math.sqrt(tau)
    drift = (params.risk_free_rate - effective_vol ** 2 / 2) * tau
    d = (math.log(spot / strike) + drift) / sigma_t

    if apply_adjustments and params.kurtosis_enabled:
        d = apply_kurtosis(d, params)

    p_up = normal_cdf(d)
    return FairValue(p_up=p_up, p_down=1.0 - p_up, d=d, sigma_t=sigma_t)


# ==============================================================================
# EDGE AND SIZING
# ==============================================================================

def calculate_edge(fair_value: float, price: float) -> float:
    """Per-share edge of buying at price."""
    return fair_value - price


def kelly_fraction(probability: float, price: float) -> float:
    """
    Full-Kelly fraction of equity for a binary contract bought at price.

    Net odds b = (1 - price) / price, so f* = (p*b - q) / b = (p - price) / (1 - price).
    Returns 0 for non-positive edge or prices outside (0, 1).
    """
    if price <= 0 or price >= 1:
        return 0.0
    return max(0.0, (probability - price) / (1.0 - price))
