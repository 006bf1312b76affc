"""
DataBundle - read-only snapshot of all historical inputs for a date range.

Loaded once per optimizer invocation and shared by reference across every
simulator run (grid cells, train/test periods, stress scenarios). Nothing in
the simulation core mutates it.

Every lookup follows the same causal contract: "value at or immediately
before T", returning None only when T precedes the first sample. Candle
lookups are stricter and take the last candle opened before T.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Iterable

import numpy as np

from .models import Market, Kline, PricePoint, VolPoint


def index_at_or_before(timestamps: np.ndarray, timestamp: int) -> int:
    """
    Binary search for the last sample with ts <= timestamp.

    Returns:
        Index into timestamps, or -1 if timestamp precedes the first sample
    """
    if len(timestamps) == 0:
        return -1
    return int(np.searchsorted(timestamps, timestamp, side='right')) - 1


def index_before(timestamps: np.ndarray, timestamp: int) -> int:
    """Binary search for the last sample with ts < timestamp, or -1."""
    if len(timestamps) == 0:
        return -1
    return int(np.searchsorted(timestamps, timestamp, side='left')) - 1


def value_at_or_before(points: Sequence[PricePoint], timestamps: np.ndarray, timestamp: int) -> Optional[float]:
    """Price of the last sample at or before timestamp, or None."""
    idx = index_at_or_before(timestamps, timestamp)
    return points[idx].price if idx >= 0 else None


def closest_within(
    points: Sequence[PricePoint],
    timestamps: np.ndarray,
    timestamp: int,
    tolerance_ms: int
) -> Optional[PricePoint]:
    """Sample nearest to timestamp within +/- tolerance_ms (earlier wins ties)."""
    if len(timestamps) == 0:
        return None
    right = int(np.searchsorted(timestamps, timestamp, side='left'))
    best = None
    best_dist = None
    for idx in (right - 1, right):
        if 0 <= idx < len(points):
            dist = abs(int(timestamps[idx]) - timestamp)
            if dist <= tolerance_ms and (best_dist is None or dist < best_dist):
                best, best_dist = points[idx], dist
    return best


def _timestamps(records: Sequence) -> np.ndarray:
    return np.fromiter((r.timestamp for r in records), dtype=np.int64, count=len(records))


@dataclass(frozen=True, eq=False)
class DataBundle:
    """
    Pre-loaded, immutable inputs.

    Attributes:
        markets: Markets sorted by start time
        klines: 1-minute spot candles sorted by timestamp
        vol_points: Implied vol samples sorted by timestamp
        oracle_prices: Settlement oracle samples sorted by timestamp
        market_prices: YES-token mid price series per market id
        start / end: Covered range in ms
    """
    markets: List[Market]
    klines: List[Kline]
    vol_points: List[VolPoint]
    oracle_prices: List[PricePoint]
    market_prices: Dict[str, List[PricePoint]]
    start: int
    end: int

    # Derived search arrays
    kline_ts: np.ndarray = field(init=False, repr=False)
    kline_closes: np.ndarray = field(init=False, repr=False)
    vol_ts: np.ndarray = field(init=False, repr=False)
    oracle_ts: np.ndarray = field(init=False, repr=False)
    _market_price_ts: Dict[str, np.ndarray] = field(init=False, repr=False)

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Invalid bundle range: {self.start} > {self.end}")
        object.__setattr__(self, 'kline_ts', _timestamps(self.klines))
        object.__setattr__(
            self, 'kline_closes',
            np.fromiter((k.close for k in self.klines), dtype=float, count=len(self.klines))
        )
        object.__setattr__(self, 'vol_ts', _timestamps(self.vol_points))
        object.__setattr__(self, 'oracle_ts', _timestamps(self.oracle_prices))
        object.__setattr__(
            self, '_market_price_ts',
            {mid: _timestamps(series) for mid, series in self.market_prices.items()}
        )

    @classmethod
    def from_records(
        cls,
        markets: Iterable[Market],
        klines: Iterable[Kline],
        vol_points: Iterable[VolPoint],
        oracle_prices: Iterable[PricePoint],
        market_prices: Dict[str, Iterable[PricePoint]],
        start: int,
        end: int
    ) -> 'DataBundle':
        """Build a bundle, sorting every series ascending by timestamp."""
        return cls(
            markets=sorted(markets, key=lambda m: (m.start, m.market_id)),
            klines=sorted(klines, key=lambda k: k.timestamp),
            vol_points=sorted(vol_points, key=lambda v: v.timestamp),
            oracle_prices=sorted(oracle_prices, key=lambda p: p.timestamp),
            market_prices={
                mid: sorted(series, key=lambda p: p.timestamp)
                for mid, series in market_prices.items()
            },
            start=start,
            end=end,
        )

    # =========================================================================
    # COUNTS
    # =========================================================================

    @property
    def market_count(self) -> int:
        return len(self.markets)

    @property
    def kline_count(self) -> int:
        return len(self.klines)

    def markets_in_range(self, start: int, end: int) -> List[Market]:
        """Markets fully contained in [start, end]."""
        return [m for m in self.markets if m.start >= start and m.end <= end]

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def kline_index_at(self, timestamp: int) -> int:
        """
        Last candle opened strictly before timestamp.

        Candles are keyed by open time and their close/high/low are only known
        a minute later, so a candle opening exactly at T is not used at T.
        """
        return index_before(self.kline_ts, timestamp)

    def kline_at(self, timestamp: int) -> Optional[Kline]:
        idx = self.kline_index_at(timestamp)
        return self.klines[idx] if idx >= 0 else None

    def spot_at(self, timestamp: int) -> Optional[float]:
        kline = self.kline_at(timestamp)
        return kline.close if kline else None

    def implied_vol_at(self, timestamp: int) -> Optional[float]:
        idx = index_at_or_before(self.vol_ts, timestamp)
        return self.vol_points[idx].vol if idx >= 0 else None

    def oracle_at(self, timestamp: int) -> Optional[float]:
        return value_at_or_before(self.oracle_prices, self.oracle_ts, timestamp)

    def oracle_closest(self, timestamp: int, tolerance_ms: int) -> Optional[PricePoint]:
        """Oracle sample nearest to timestamp within +/- tolerance_ms."""
        return closest_within(self.oracle_prices, self.oracle_ts, timestamp, tolerance_ms)

    def price_series(self, market_id: str) -> List[PricePoint]:
        return self.market_prices.get(market_id, [])

    def market_price_at(self, market_id: str, timestamp: int) -> Optional[float]:
        """YES mid at or before timestamp for a market."""
        ts = self._market_price_ts.get(market_id)
        if ts is None:
            return None
        return value_at_or_before(self.market_prices[market_id], ts, timestamp)

    # =========================================================================
    # SLICING
    # =========================================================================

    def restrict(self, start: int, end: int) -> 'DataBundle':
        """
        Bundle narrowed to markets inside [start, end].

        Time series are shared by reference so lookbacks before start (vol
        windows, adjustment warmup) keep working.
        """
        markets = self.markets_in_range(start, end)
        market_ids = {m.market_id for m in markets}
        return DataBundle(
            markets=markets,
            klines=self.klines,
            vol_points=self.vol_points,
            oracle_prices=self.oracle_prices,
            market_prices={mid: s for mid, s in self.market_prices.items() if mid in market_ids},
            start=start,
            end=end,
        )
