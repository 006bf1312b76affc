"""
Spot -> Oracle Divergence Adjustment

Markets settle on the oracle price, but fair value is computed from the
exchange spot feed. The two drift apart by a slowly varying basis; this
module estimates that basis from history and turns it into a USD offset
added to the spot price.

Adjustment variants (see config.settings):
- StaticAdjustment: fixed offset
- RollingMeanAdjustment: -mean(divergence) over the trailing window
- MedianAdjustment: -median(divergence) over the trailing window
- EmaAdjustment: -running EMA of divergence (alpha from half-life)

All adaptive estimates are causal: only samples strictly before the query
timestamp are used, and fewer than MIN_WARMUP_POINTS samples yields 0.
"""

import math
from dataclasses import dataclass
from typing import Dict, Any, Sequence

import numpy as np

from config.settings import (
    Adjustment, StaticAdjustment, RollingMeanAdjustment, EmaAdjustment,
    MedianAdjustment, MS_PER_MINUTE, MS_PER_HOUR
)
from .models import Kline, PricePoint
from src.utils.logging import get_logger


logger = get_logger(__name__)

MIN_WARMUP_POINTS = 5
DEFAULT_EMA_HALF_LIFE_MINUTES = 30.0


@dataclass(frozen=True)
class DivergenceStats:
    """Summary of spot - oracle divergence over a window."""
    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    ema: float = 0.0
    std_dev: float = 0.0
    min: float = 0.0
    max: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'mean': self.mean,
            'median': self.median,
            'ema': self.ema,
            'std_dev': self.std_dev,
            'min': self.min,
            'max': self.max,
        }


def ema_alpha(half_life_minutes: float) -> float:
    """Per-sample decay for 1-minute samples: 1 - exp(-ln2 / half_life)."""
    return 1.0 - math.exp(-math.log(2) / half_life_minutes)


class DivergenceCalculator:
    """
    Aligns oracle samples to spot candles and answers windowed queries.

    Args:
        oracle_prices: Oracle samples sorted by timestamp
        klines: 1-minute spot candles
        ema_half_life_minutes: Half-life of the running EMA
    """

    def __init__(
        self,
        oracle_prices: Sequence[PricePoint],
        klines: Sequence[Kline],
        ema_half_life_minutes: float = DEFAULT_EMA_HALF_LIFE_MINUTES
    ):
        self.alpha = ema_alpha(ema_half_life_minutes)
        self.timestamps = np.empty(0, dtype=np.int64)
        self.divergences = np.empty(0, dtype=float)
        self.running_ema = np.empty(0, dtype=float)
        self._build(oracle_prices, klines)

    def _build(self, oracle_prices: Sequence[PricePoint], klines: Sequence[Kline]):
        if not oracle_prices or not klines:
            logger.debug("DivergenceCalculator: empty price data, adjustments will be 0")
            return

        close_by_minute = {(k.timestamp // MS_PER_MINUTE) * MS_PER_MINUTE: k.close for k in klines}

        points = []
        for sample in oracle_prices:
            if sample.price <= 0:
                continue
            minute = (sample.timestamp // MS_PER_MINUTE) * MS_PER_MINUTE
            spot = close_by_minute.get(minute)
            if spot is None:
                spot = close_by_minute.get(minute - MS_PER_MINUTE) or close_by_minute.get(minute + MS_PER_MINUTE)
            if spot:
                points.append((sample.timestamp, spot - sample.price))

        if not points:
            return

        points.sort(key=lambda p: p[0])
        self.timestamps = np.array([p[0] for p in points], dtype=np.int64)
        self.divergences = np.array([p[1] for p in points], dtype=float)

        # Running EMA over the full history
        ema = np.empty_like(self.divergences)
        ema[0] = self.divergences[0]
        for i in range(1, len(ema)):
            ema[i] = self.alpha * self.divergences[i] + (1 - self.alpha) * ema[i - 1]
        self.running_ema = ema

        logger.debug(f"DivergenceCalculator: built {len(points)} divergence points")

    @property
    def point_count(self) -> int:
        return len(self.divergences)

    def stats_at(self, timestamp: int, window_hours: float) -> DivergenceStats:
        """Stats over samples with timestamp - window <= t < timestamp."""
        lo = int(np.searchsorted(self.timestamps, timestamp - window_hours * MS_PER_HOUR, side='left'))
        hi = int(np.searchsorted(self.timestamps, timestamp, side='left'))
        if hi <= lo:
            return DivergenceStats()

        window = self.divergences[lo:hi]
        return DivergenceStats(
            count=int(window.size),
            mean=float(np.mean(window)),
            median=float(np.median(window)),
            ema=float(self.running_ema[hi - 1]),
            std_dev=float(np.std(window)),
            min=float(np.min(window)),
            max=float(np.max(window)),
        )

    def overall_stats(self) -> DivergenceStats:
        if self.point_count == 0:
            return DivergenceStats()
        span_hours = (int(self.timestamps[-1]) - int(self.timestamps[0])) / MS_PER_HOUR
        return self.stats_at(int(self.timestamps[-1]) + 1, span_hours + 1)

    def adjustment_for(self, adjustment: Adjustment, timestamp: int) -> float:
        """
        USD offset to add to spot at timestamp.

        Returns the static value for StaticAdjustment; for adaptive variants
        the negated window statistic, or 0 during warmup.
        """
        if isinstance(adjustment, StaticAdjustment):
            return adjustment.value

        stats = self.stats_at(timestamp, adjustment.window_hours)
        if stats.count < MIN_WARMUP_POINTS:
            return 0.0

        if isinstance(adjustment, RollingMeanAdjustment):
            return -stats.mean
        if isinstance(adjustment, MedianAdjustment):
            return -stats.median
        if isinstance(adjustment, EmaAdjustment):
            return -stats.ema
        raise TypeError(f"Unsupported adjustment: {adjustment!r}")


class AdjustmentModel:
    """Binds one adjustment variant to its data (calculator built only if needed)."""

    def __init__(
        self,
        adjustment: Adjustment,
        oracle_prices: Sequence[PricePoint] = (),
        klines: Sequence[Kline] = ()
    ):
        self.adjustment = adjustment
        self.calculator = None
        if not isinstance(adjustment, StaticAdjustment):
            half_life = (
                adjustment.half_life_minutes if isinstance(adjustment, EmaAdjustment)
                else DEFAULT_EMA_HALF_LIFE_MINUTES
            )
            self.calculator = DivergenceCalculator(oracle_prices, klines, half_life)

    def offset_at(self, timestamp: int) -> float:
        if self.calculator is None:
            return self.adjustment.value
        return self.calculator.adjustment_for(self.adjustment, timestamp)
