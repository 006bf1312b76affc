"""
Central configuration for the backtest and optimizer.

All settings are defined here for easy management. Every config object is
validated once at construction; invalid combinations raise ValueError before
any simulation work begins.
"""

import math
from dataclasses import dataclass, field, replace, asdict
from typing import Dict, Any, Optional, List, Union, Literal


MS_PER_SECOND = 1000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


# =============================================================================
# FAIR VALUE MODEL
# =============================================================================

@dataclass(frozen=True)
class FairValueParams:
    """Black-Scholes digital model parameters."""
    risk_free_rate: float = 0.0          # Crypto has no risk-free rate

    # Fat tails: compress |d| beyond the threshold
    kurtosis_enabled: bool = True
    kurtosis_factor: float = 1.15
    kurtosis_threshold: float = 1.5

    # Quadratic smile: vol *= 1 + coef * moneyness^2, capped
    smile_enabled: bool = True
    smile_coefficient: float = 0.08
    smile_max_boost: float = 1.40


# =============================================================================
# VOLATILITY BLEND
# =============================================================================

@dataclass(frozen=True)
class VolBlendConfig:
    """Blend weights for short-dated (< 30 min) options."""
    realized_1h_weight: float = 0.70
    realized_4h_weight: float = 0.20
    implied_weight: float = 0.10

    window_1h: int = 60      # 1-minute candles
    window_4h: int = 240

    min_vol: float = 0.10
    max_vol: float = 3.00
    default_implied_vol: float = 0.50   # Used when no implied samples exist


# =============================================================================
# SPOT / ORACLE ADJUSTMENT VARIANTS
# =============================================================================

@dataclass(frozen=True)
class StaticAdjustment:
    """Fixed USD offset added to the spot price."""
    value: float = 0.0

    @property
    def method(self) -> str:
        return "static"


@dataclass(frozen=True)
class RollingMeanAdjustment:
    """Negative mean of spot-oracle divergence over a trailing window."""
    window_hours: float = 2.0

    def __post_init__(self):
        if self.window_hours <= 0:
            raise ValueError(f"window_hours must be > 0, got {self.window_hours}")

    @property
    def method(self) -> str:
        return "rolling-mean"


@dataclass(frozen=True)
class EmaAdjustment:
    """Negative running EMA of divergence (half-life in minutes)."""
    window_hours: float = 2.0
    half_life_minutes: float = 30.0

    def __post_init__(self):
        if self.window_hours <= 0:
            raise ValueError(f"window_hours must be > 0, got {self.window_hours}")
        if self.half_life_minutes <= 0:
            raise ValueError(f"half_life_minutes must be > 0, got {self.half_life_minutes}")

    @property
    def method(self) -> str:
        return "ema"


@dataclass(frozen=True)
class MedianAdjustment:
    """Negative median of divergence over a trailing window."""
    window_hours: float = 2.0

    def __post_init__(self):
        if self.window_hours <= 0:
            raise ValueError(f"window_hours must be > 0, got {self.window_hours}")

    @property
    def method(self) -> str:
        return "median"


Adjustment = Union[StaticAdjustment, RollingMeanAdjustment, EmaAdjustment, MedianAdjustment]

ADJUSTMENT_METHODS: List[str] = ["static", "rolling-mean", "ema", "median"]


def parse_adjustment(method: str, value: float = 0.0, window_hours: float = 2.0) -> Adjustment:
    """
    Build an adjustment variant from CLI-style arguments.

    Args:
        method: One of ADJUSTMENT_METHODS
        value: USD offset (static only)
        window_hours: Trailing window (adaptive methods only)

    Returns:
        Adjustment variant

    Raises:
        ValueError: If method is unknown
    """
    if method == "static":
        return StaticAdjustment(value=value)
    if method == "rolling-mean":
        return RollingMeanAdjustment(window_hours=window_hours)
    if method == "ema":
        return EmaAdjustment(window_hours=window_hours)
    if method == "median":
        return MedianAdjustment(window_hours=window_hours)
    raise ValueError(f"Unknown adjustment method: {method}. Supported: {ADJUSTMENT_METHODS}")


# =============================================================================
# BACKTEST CONFIGURATION
# =============================================================================

BacktestMode = Literal['normal', 'conservative']
SizingMode = Literal['fixed', 'kelly']

CONSERVATIVE_LATENCY_MS = 200


@dataclass(frozen=True)
class BacktestConfig:
    """
    Configuration for a single simulator run.

    Timestamps are milliseconds since the epoch (UTC). Prices are in USD,
    market prices in [0, 1].

    MODES:
    - normal: fair value from the kline close
    - conservative: fair value from the worst-case kline extreme for the side
      (low for YES, high for NO) plus a default 200ms execution latency
    """
    start: int = 0
    end: int = 0
    initial_capital: float = math.inf

    # Execution model
    spread_cents: float = 1.0
    slippage_bps: float = 0.0
    include_fees: bool = False
    mode: BacktestMode = 'normal'
    lag_seconds: float = 0.0                       # Spot observed at T - lag
    execution_latency_ms: Optional[int] = None     # None -> mode default

    # Signal / risk
    min_edge: float = 0.02
    order_size: int = 100
    max_position_per_market: int = 1000            # Shares per side
    cooldown_ms: int = 60_000                      # Per market+side
    max_trades_per_market: int = 3
    min_time_remaining_s: float = 30.0

    # Sizing
    sizing_mode: SizingMode = 'fixed'
    kelly_fraction: float = 0.25
    max_order_usd: float = math.inf
    max_position_usd: float = math.inf

    # Pricing inputs
    vol_multiplier: float = 1.0
    adjustment: Adjustment = field(default_factory=StaticAdjustment)
    use_oracle_for_fair_value: bool = False
    apply_model_adjustments: bool = True

    # Resolution
    oracle_tolerance_ms: int = 60_000
    divergence_alert_usd: float = 50.0

    silent: bool = False

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")
        if self.mode not in ('normal', 'conservative'):
            raise ValueError(f"Unknown mode: {self.mode}")
        if self.sizing_mode not in ('fixed', 'kelly'):
            raise ValueError(f"Unknown sizing mode: {self.sizing_mode}")
        if self.spread_cents < 0:
            raise ValueError(f"spread_cents must be >= 0, got {self.spread_cents}")
        if self.slippage_bps < 0:
            raise ValueError(f"slippage_bps must be >= 0, got {self.slippage_bps}")
        if self.order_size < 0:
            raise ValueError(f"order_size must be >= 0, got {self.order_size}")
        if self.max_trades_per_market < 1:
            raise ValueError(f"max_trades_per_market must be >= 1, got {self.max_trades_per_market}")
        if self.cooldown_ms < 0:
            raise ValueError(f"cooldown_ms must be >= 0, got {self.cooldown_ms}")
        if self.lag_seconds < 0:
            raise ValueError(f"lag_seconds must be >= 0, got {self.lag_seconds}")
        if self.execution_latency_ms is not None and self.execution_latency_ms < 0:
            raise ValueError(f"execution_latency_ms must be >= 0, got {self.execution_latency_ms}")
        if self.vol_multiplier <= 0:
            raise ValueError(f"vol_multiplier must be > 0, got {self.vol_multiplier}")
        if not 0 <= self.kelly_fraction <= 1:
            raise ValueError(f"kelly_fraction must be in [0, 1], got {self.kelly_fraction}")
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be > 0, got {self.initial_capital}")
        if self.max_order_usd <= 0 or self.max_position_usd <= 0:
            raise ValueError("max_order_usd and max_position_usd must be > 0")

    @property
    def latency_ms(self) -> int:
        """Effective execution latency (decide at T, fill at T + latency)."""
        if self.execution_latency_ms is not None:
            return self.execution_latency_ms
        return CONSERVATIVE_LATENCY_MS if self.mode == 'conservative' else 0

    @property
    def capital_is_bounded(self) -> bool:
        return math.isfinite(self.initial_capital)

    def with_overrides(self, **overrides) -> 'BacktestConfig':
        """Return a validated copy with the given fields replaced."""
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['adjustment'] = {'method': self.adjustment.method, **asdict(self.adjustment)}
        d['latency_ms'] = self.latency_ms
        return d

    def describe(self) -> str:
        """Human-readable description."""
        capital = f"${self.initial_capital:,.0f}" if self.capital_is_bounded else "unlimited"
        return (
            f"BacktestConfig(mode={self.mode}, spread={self.spread_cents}c, "
            f"slippage={self.slippage_bps}bps, min_edge={self.min_edge:.1%}, "
            f"sizing={self.sizing_mode}, capital={capital}, "
            f"adjustment={self.adjustment.method})"
        )


# =============================================================================
# OPTIMIZER CONFIGURATION
# =============================================================================

GRID_EDGE_VALUES: List[float] = [22, 24, 25, 26, 28, 30, 33, 36]   # Percent
GRID_KELLY_VALUES: List[float] = [0.10, 0.20, 0.30, 0.40, 0.50]


@dataclass(frozen=True)
class OptimizerConfig:
    """Grid search, split and selection settings."""
    edge_values: List[float] = field(default_factory=lambda: list(GRID_EDGE_VALUES))
    kelly_values: List[float] = field(default_factory=lambda: list(GRID_KELLY_VALUES))
    train_ratio: float = 0.70
    top_n: int = 3
    initial_capital: float = 500.0
    max_workers: int = 1
    output_dir: str = "data"

    # Base (non-grid) run settings
    spread_cents: float = 6.0
    slippage_bps: float = 200.0
    include_fees: bool = True
    mode: BacktestMode = 'conservative'
    cooldown_ms: int = 60_000
    max_trades_per_market: int = 3
    adjustment_method: str = "static"
    adjustment_window_hours: float = 2.0

    def __post_init__(self):
        if not 0 < self.train_ratio < 1:
            raise ValueError(f"train_ratio must be in (0, 1), got {self.train_ratio}")
        if self.top_n < 1:
            raise ValueError(f"top_n must be >= 1, got {self.top_n}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        if not self.edge_values or not self.kelly_values:
            raise ValueError("edge_values and kelly_values must be non-empty")
        if any(e <= 0 for e in self.edge_values):
            raise ValueError(f"edge_values must be positive, got {self.edge_values}")
        if any(not 0 < k <= 1 for k in self.kelly_values):
            raise ValueError(f"kelly_values must be in (0, 1], got {self.kelly_values}")
        if self.adjustment_method not in ADJUSTMENT_METHODS:
            raise ValueError(f"Unknown adjustment method: {self.adjustment_method}")
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be > 0, got {self.initial_capital}")


# =============================================================================
# GLOBAL CONFIGURATION INSTANCES
# =============================================================================

FAIR_VALUE = FairValueParams()
VOL_BLEND = VolBlendConfig()
BACKTEST = BacktestConfig()
OPTIMIZER = OptimizerConfig()
