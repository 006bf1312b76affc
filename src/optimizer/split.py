"""
Chronological train/test split.

No shuffling: the train period is the first train_ratio of the range and
the test period is the remainder, sharing the split point.
"""

import math
from dataclasses import dataclass
from typing import Dict, Any

from config.settings import MS_PER_DAY
from src.backtest.models import ms_to_iso


@dataclass(frozen=True)
class DateSplit:
    """Train and test ranges (ms epoch) partitioning [train_start, test_end]."""
    train_start: int
    train_end: int
    test_start: int
    test_end: int
    train_days: float
    test_days: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'train_start': ms_to_iso(self.train_start),
            'train_end': ms_to_iso(self.train_end),
            'test_start': ms_to_iso(self.test_start),
            'test_end': ms_to_iso(self.test_end),
            'train_days': self.train_days,
            'test_days': self.test_days,
        }


def split_date_range(start: int, end: int, train_ratio: float = 0.70) -> DateSplit:
    """
    Split [start, end] chronologically.

    Args:
        start: Range start in ms
        end: Range end in ms
        train_ratio: Fraction of the range used for training, in (0, 1)

    Returns:
        DateSplit with train_end == test_start

    Raises:
        ValueError: If end <= start or train_ratio is outside (0, 1)
    """
    total_ms = end - start
    if total_ms <= 0:
        raise ValueError(f"Invalid date range: {ms_to_iso(start)} to {ms_to_iso(end)}")
    if not 0 < train_ratio < 1:
        raise ValueError(f"train_ratio must be in (0, 1), got {train_ratio}")

    train_ms = math.floor(total_ms * train_ratio)
    split_point = start + train_ms

    return DateSplit(
        train_start=start,
        train_end=split_point,
        test_start=split_point,
        test_end=end,
        train_days=round(train_ms / MS_PER_DAY, 1),
        test_days=round((total_ms - train_ms) / MS_PER_DAY, 1),
    )
