"""
Volatility estimation for short-dated binary options.

Realized vol is the annualized sample standard deviation of 1-minute close
to close log returns:

    sigma = std(ln(C_t / C_{t-1}), ddof=1) * sqrt(525600 / interval_minutes)

Blended vol mixes two trailing realized windows with implied vol:

    0.70 * RV(1h) + 0.20 * RV(4h) + 0.10 * IV, clamped to [10%, 300%]
"""

from typing import Sequence

import numpy as np

from config.settings import VolBlendConfig, VOL_BLEND


MINUTES_PER_YEAR = 365 * 24 * 60


def calculate_log_returns(closes: Sequence[float]) -> np.ndarray:
    """Log returns of consecutive closes (length n - 1)."""
    arr = np.asarray(closes, dtype=float)
    if arr.size < 2:
        return np.empty(0)
    return np.diff(np.log(arr))


def annualize_volatility(std_dev: float, interval_minutes: float = 1.0) -> float:
    """Scale a per-interval standard deviation to annual."""
    return float(std_dev * np.sqrt(MINUTES_PER_YEAR / interval_minutes))


def calculate_realized_vol(closes: Sequence[float], interval_minutes: float = 1.0) -> float:
    """
    Annualized realized volatility from close prices.

    Returns 0 with fewer than two returns, or if any close is non-positive.
    """
    arr = np.asarray(closes, dtype=float)
    if arr.size < 3 or np.any(arr <= 0):
        return 0.0

    log_returns = calculate_log_returns(arr)
    std_dev = float(np.std(log_returns, ddof=1))
    return annualize_volatility(std_dev, interval_minutes)


def blend_volatility(
    realized_1h: float,
    realized_4h: float,
    implied: float,
    config: VolBlendConfig = VOL_BLEND
) -> float:
    """
    Blend realized and implied vol with fallbacks.

    If the 1h window is empty the 4h value stands in for it; if both are
    empty the implied vol is returned alone. The result is clamped to
    [config.min_vol, config.max_vol].
    """
    if realized_1h <= 0 and realized_4h <= 0:
        blended = implied
    else:
        vol_1h = realized_1h if realized_1h > 0 else realized_4h
        vol_4h = realized_4h if realized_4h > 0 else vol_1h
        blended = (
            config.realized_1h_weight * vol_1h
            + config.realized_4h_weight * vol_4h
            + config.implied_weight * implied
        )
    return float(min(config.max_vol, max(config.min_vol, blended)))


def blended_vol_at(
    closes: Sequence[float],
    end_idx: int,
    implied: float,
    config: VolBlendConfig = VOL_BLEND
) -> float:
    """
    Blended vol using closes[:end_idx + 1] (no lookahead past end_idx).

    Args:
        closes: Full 1-minute close series
        end_idx: Index of the current candle
        implied: Implied vol at the current timestamp
        config: Blend weights and window sizes
    """
    stop = end_idx + 1
    rv_1h = calculate_realized_vol(closes[max(0, stop - config.window_1h):stop])
    rv_4h = calculate_realized_vol(closes[max(0, stop - config.window_4h):stop])
    return blend_volatility(rv_1h, rv_4h, implied, config)
