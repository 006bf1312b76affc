# Backtest module for 15-minute up/down binary markets
"""
Replays historical spot, volatility, market-price and oracle data through a
Black-Scholes fair-value model and resolves trades against realized outcomes.

Key components:
- models: Data model dataclasses (Market, Trade, MarketResolution, ...)
- fair_value: Digital option pricing with smile/kurtosis adjustments
- fees: Exchange taker-fee curve
- volatility: Realized and blended volatility
- order_matcher: Executable prices, fees and fills
- position_tracker: Per-market positions and resolution
- data_bundle / data_loader: Read-only input snapshot and file loader
- adjustment: Spot -> oracle divergence adjustment variants
- simulator: Tick alignment, signal generation, resolution
- statistics: Performance and risk statistics
- trade_log: CSV/JSON export, drawdown curve and console logs/charts
- sweep: Single-parameter sweeps (min edge, vol multiplier, adjustment)
"""

from .models import Market, Kline, PricePoint, VolPoint, Trade, MarketResolution, PnLPoint, BacktestResult
from .data_bundle import DataBundle
from .simulator import Simulator, run_backtest
from .statistics import Statistics, calculate_statistics

__version__ = "0.1.0"
