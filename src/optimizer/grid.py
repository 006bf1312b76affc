"""
Parameter grid for the optimizer search space.

Dimensions:
- min_edge_pct: edge thresholds in PERCENT (25 means 25%), converted to a
  decimal when building a BacktestConfig
- kelly_fraction: fraction of full Kelly
"""

import math
from dataclasses import dataclass
from itertools import product
from typing import Dict, List, Any, Sequence

from config.settings import GRID_EDGE_VALUES, GRID_KELLY_VALUES


@dataclass(frozen=True)
class GridCell:
    """A single cell in the optimizer grid."""
    min_edge_pct: float
    kelly_fraction: float

    @property
    def min_edge(self) -> float:
        return self.min_edge_pct / 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'min_edge_pct': self.min_edge_pct,
            'kelly_fraction': self.kelly_fraction,
        }


def generate_grid(
    edge_values: Sequence[float] = GRID_EDGE_VALUES,
    kelly_values: Sequence[float] = GRID_KELLY_VALUES
) -> List[GridCell]:
    """
    Cartesian product of edge x kelly values, edges outer.

    Returns:
        List of len(edge_values) * len(kelly_values) cells
    """
    return [GridCell(edge, kelly) for edge, kelly in product(edge_values, kelly_values)]


def minimum_bankroll(cell: GridCell) -> int:
    """Smallest bankroll that funds a $0.50 order: ceil(0.50 / (kelly * edge))."""
    return math.ceil(0.50 / (cell.kelly_fraction * cell.min_edge))


def cell_label(cell: GridCell) -> str:
    return f"edge={cell.min_edge_pct:g}%_kelly={cell.kelly_fraction:g}"
