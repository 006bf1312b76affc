"""
Backtest data model.

Input records (Market, Kline, PricePoint, VolPoint) are immutable snapshots of
historical data. Trade and MarketResolution are immutable once created;
MarketPosition is the only mutable aggregate and is owned by PositionTracker.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Any, Optional, Tuple, Literal


Side = Literal['YES', 'NO']
Action = Literal['BUY', 'SELL']
Outcome = Literal['UP', 'DOWN']


def ms_to_iso(timestamp_ms: int) -> str:
    """Format a millisecond epoch timestamp as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()


def date_to_ms(date_str: str) -> int:
    """Parse YYYY-MM-DD as UTC midnight, in ms since epoch."""
    dt = datetime.strptime(date_str, '%Y-%m-%d').replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def side_wins(side: str, outcome: Optional[str]) -> bool:
    """YES pays on UP, NO pays on DOWN."""
    return (side == 'YES' and outcome == 'UP') or (side == 'NO' and outcome == 'DOWN')


def determine_outcome(final_price: float, strike: float) -> Outcome:
    """UP only if the settlement price is strictly above the strike."""
    return 'UP' if final_price > strike else 'DOWN'


# =============================================================================
# INPUT RECORDS
# =============================================================================

@dataclass(frozen=True)
class Market:
    """A historical 15-minute up/down market."""
    market_id: str
    strike: Optional[float]
    start: int
    end: int
    token_ids: Tuple[str, str] = ("", "")    # (YES, NO)
    outcome: Optional[Outcome] = None
    question: str = ""

    @property
    def duration_ms(self) -> int:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        return {
            'market_id': self.market_id,
            'strike': self.strike,
            'start': self.start,
            'end': self.end,
            'token_ids': list(self.token_ids),
            'outcome': self.outcome,
            'question': self.question,
        }


@dataclass(frozen=True)
class Kline:
    """One-minute spot candle."""
    timestamp: int
    open: float
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class PricePoint:
    """Timestamped price sample (market mid or oracle)."""
    timestamp: int
    price: float


@dataclass(frozen=True)
class VolPoint:
    """Timestamped implied volatility sample (annualized decimal)."""
    timestamp: int
    vol: float


# =============================================================================
# SIMULATION RECORDS
# =============================================================================

@dataclass
class Tick:
    """
    One aligned observation for a single market.

    spot is the (adjusted) decision price at timestamp - lag; spot_low and
    spot_high bound it over the sampling interval.
    """
    timestamp: int
    spot: float
    spot_low: float
    spot_high: float
    mid_yes: float
    mid_no: float
    vol: float
    time_remaining_ms: int


@dataclass
class TradeSignal:
    """A proposed order."""
    timestamp: int
    market_id: str
    side: Side
    fair_value: float
    market_price: float
    edge: float
    size: int


@dataclass(frozen=True)
class Trade:
    """
    An executed fill.

    cost is signed: positive cash out for buys, negative cash in for sells.
    total_cost is cash out including fees.
    """
    id: str
    timestamp: int
    market_id: str
    side: Side
    action: Action
    price: float
    size: int
    fair_value: float
    edge: float
    spot_price: float
    strike: float
    time_remaining_ms: int
    cost: float
    fee: float
    total_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'timestamp': self.timestamp,
            'market_id': self.market_id,
            'side': self.side,
            'action': self.action,
            'price': self.price,
            'size': self.size,
            'fair_value': self.fair_value,
            'edge': self.edge,
            'spot_price': self.spot_price,
            'strike': self.strike,
            'time_remaining_ms': self.time_remaining_ms,
            'cost': self.cost,
            'fee': self.fee,
            'total_cost': self.total_cost,
        }


@dataclass
class MarketPosition:
    """Open position in one market (fees included in cost)."""
    market_id: str
    yes_shares: float = 0.0
    no_shares: float = 0.0
    yes_cost: float = 0.0
    no_cost: float = 0.0
    trades: List[Trade] = field(default_factory=list)

    @property
    def total_cost(self) -> float:
        return self.yes_cost + self.no_cost


@dataclass(frozen=True)
class MarketResolution:
    """Settlement record for a resolved market."""
    market_id: str
    outcome: Outcome
    final_price: float
    strike: float
    timestamp: int
    yes_shares: float
    no_shares: float
    yes_cost: float
    no_cost: float
    yes_payout: float
    no_payout: float
    total_payout: float
    total_cost: float
    pnl: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'market_id': self.market_id,
            'outcome': self.outcome,
            'final_price': self.final_price,
            'strike': self.strike,
            'timestamp': self.timestamp,
            'yes_shares': self.yes_shares,
            'no_shares': self.no_shares,
            'yes_cost': self.yes_cost,
            'no_cost': self.no_cost,
            'yes_payout': self.yes_payout,
            'no_payout': self.no_payout,
            'total_payout': self.total_payout,
            'total_cost': self.total_cost,
            'pnl': self.pnl,
        }


@dataclass(frozen=True)
class PnLPoint:
    """Cumulative realized P&L sampled at a resolution."""
    timestamp: int
    cumulative_pnl: float
    realized_pnl: float
    unrealized_pnl: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'cumulative_pnl': self.cumulative_pnl,
            'realized_pnl': self.realized_pnl,
            'unrealized_pnl': self.unrealized_pnl,
        }


@dataclass
class BacktestResult:
    """Output of one simulator run."""
    config: Any
    total_markets: int = 0
    total_trades: int = 0
    total_pnl: float = 0.0
    total_fees: float = 0.0
    total_volume: float = 0.0
    win_rate: float = 0.0
    market_win_rate: float = 0.0
    avg_edge: float = 0.0
    realized_edge: float = 0.0
    trades: List[Trade] = field(default_factory=list)
    resolutions: List[MarketResolution] = field(default_factory=list)
    pnl_curve: List[PnLPoint] = field(default_factory=list)

    def to_dict(self, include_records: bool = False) -> Dict[str, Any]:
        d = {
            'total_markets': self.total_markets,
            'total_trades': self.total_trades,
            'total_pnl': self.total_pnl,
            'total_fees': self.total_fees,
            'total_volume': self.total_volume,
            'win_rate': self.win_rate,
            'market_win_rate': self.market_win_rate,
            'avg_edge': self.avg_edge,
            'realized_edge': self.realized_edge,
        }
        if include_records:
            d['trades'] = [t.to_dict() for t in self.trades]
            d['resolutions'] = [r.to_dict() for r in self.resolutions]
            d['pnl_curve'] = [p.to_dict() for p in self.pnl_curve]
        return d
