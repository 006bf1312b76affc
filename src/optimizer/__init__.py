# Optimizer module for (min edge x Kelly fraction) grid search
"""
Chronological train/test grid search with hard gates, stress scenarios and
scoring.

Key components:
- grid: GridCell generation, labels and minimum bankroll
- split: Chronological train/test split
- runner: Run grid cells on both periods (optionally on a thread pool)
- gates: Hard gates that reject unreliable cells
- stress: Adverse-condition reruns on the test period
- scoring: Score, rank and select the winner
- report: JSON/Markdown report and console summaries
- pipeline: run_optimizer end to end
"""

from .grid import GridCell, generate_grid, minimum_bankroll, cell_label
from .split import DateSplit, split_date_range
from .pipeline import OptimizerOutcome, run_optimizer

__version__ = "0.1.0"
