"""
Backtest Statistics

Computes performance and risk statistics from a BacktestResult.

Key components:
- calculate_statistics: Full Statistics record (pure function)
- extract_daily_pnl: Daily P&L deltas from the cumulative P&L curve
- calculate_sharpe / calculate_sortino: Annualized on absolute daily P&L
- calculate_drawdown_metrics: Max drawdown (USD) and its duration (ms)
- calculate_edge_distribution: Trade counts per edge bucket

Risk ratios use absolute daily P&L rather than percentage returns: capital is
locked in 15-minute markets with gaps between them, so normalizing by staked
capital inflates the ratios.
"""

import math
from dataclasses import dataclass, asdict
from typing import Dict, List, Any, Sequence, Tuple

import numpy as np

from config.settings import MS_PER_DAY, MS_PER_MINUTE
from .models import BacktestResult, PnLPoint, Trade, side_wins


TRADING_DAYS_PER_YEAR = 252
RATIO_SENTINEL = 99.0

EDGE_BUCKETS = ['0-1%', '1-2%', '2-3%', '3-4%', '4-5%', '5%+']


@dataclass
class Statistics:
    """Performance statistics for one backtest run."""
    total_pnl: float = 0.0
    total_trades: int = 0
    total_markets: int = 0
    total_staked: float = 0.0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0

    # Fees
    total_fees_paid: float = 0.0
    avg_fee_per_trade: float = 0.0
    avg_fee_rate: float = 0.0

    # By side
    yes_trades: int = 0
    no_trades: int = 0
    yes_pnl: float = 0.0
    no_pnl: float = 0.0

    # Edge
    avg_edge_at_trade: float = 0.0
    avg_realized_edge: float = 0.0
    edge_capture: float = 0.0

    # Per share
    avg_expected_return_per_share: float = 0.0
    avg_realized_return_per_share: float = 0.0
    winning_trades_avg_edge: float = 0.0
    winning_trades_avg_return: float = 0.0
    losing_trades_avg_edge: float = 0.0
    losing_trades_avg_return: float = 0.0
    avg_fair_value_on_wins: float = 0.0
    avg_fair_value_on_losses: float = 0.0

    # Risk
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    profit_factor: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_duration_ms: int = 0

    # Per market
    avg_pnl_per_market: float = 0.0
    avg_trades_per_market: float = 0.0
    profitable_markets: int = 0
    unprofitable_markets: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if len(values) > 0 else 0.0


def _safe_div(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

def calculate_statistics(result: BacktestResult) -> Statistics:
    """
    Calculate full statistics from a backtest result.

    A trade wins iff its side matches the resolved outcome of its market
    (YES on UP, NO on DOWN); trades in unresolved markets count as losses.

    Args:
        result: Output of Simulator.run

    Returns:
        Statistics
    """
    trades = result.trades
    resolutions = result.resolutions
    outcomes = {r.market_id: r.outcome for r in resolutions}

    total_trades = len(trades)
    total_markets = len(resolutions)

    won = [side_wins(t.side, outcomes.get(t.market_id)) for t in trades]
    winning_trades = sum(won)

    total_pnl = sum(r.pnl for r in resolutions)

    total_fees = sum(t.fee for t in trades)
    gross_cost = sum(abs(t.cost) for t in trades)
    total_staked = sum(t.cost for t in trades)
    expected_pnl = sum(t.edge * t.size for t in trades)

    # Per-share: expected = fair value - price, realized = payout - price
    expected_edges = [t.fair_value - t.price for t in trades]
    realized_returns = [(1.0 if w else 0.0) - t.price for t, w in zip(trades, won)]

    win_idx = [i for i, w in enumerate(won) if w]
    loss_idx = [i for i, w in enumerate(won) if not w]

    gross_profit = sum(r.pnl for r in resolutions if r.pnl > 0)
    gross_loss = abs(sum(r.pnl for r in resolutions if r.pnl < 0))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    else:
        profit_factor = RATIO_SENTINEL if gross_profit > 0 else 0.0

    max_dd, max_dd_duration = calculate_drawdown_metrics(result.pnl_curve)
    profitable = sum(1 for r in resolutions if r.pnl > 0)

    return Statistics(
        total_pnl=total_pnl,
        total_trades=total_trades,
        total_markets=total_markets,
        total_staked=total_staked,
        winning_trades=winning_trades,
        losing_trades=total_trades - winning_trades,
        win_rate=winning_trades / total_trades if total_trades else 0.0,
        total_fees_paid=total_fees,
        avg_fee_per_trade=total_fees / total_trades if total_trades else 0.0,
        avg_fee_rate=_safe_div(total_fees, gross_cost),
        yes_trades=sum(1 for t in trades if t.side == 'YES'),
        no_trades=sum(1 for t in trades if t.side == 'NO'),
        yes_pnl=sum(r.yes_payout - r.yes_cost for r in resolutions),
        no_pnl=sum(r.no_payout - r.no_cost for r in resolutions),
        avg_edge_at_trade=_mean([t.edge for t in trades]),
        avg_realized_edge=_safe_div(total_pnl, total_staked),
        edge_capture=_safe_div(total_pnl, expected_pnl),
        avg_expected_return_per_share=_mean(expected_edges),
        avg_realized_return_per_share=_mean(realized_returns),
        winning_trades_avg_edge=_mean([expected_edges[i] for i in win_idx]),
        winning_trades_avg_return=_mean([realized_returns[i] for i in win_idx]),
        losing_trades_avg_edge=_mean([expected_edges[i] for i in loss_idx]),
        losing_trades_avg_return=_mean([realized_returns[i] for i in loss_idx]),
        avg_fair_value_on_wins=_mean([trades[i].fair_value for i in win_idx]),
        avg_fair_value_on_losses=_mean([trades[i].fair_value for i in loss_idx]),
        sharpe_ratio=calculate_sharpe(result.pnl_curve),
        sortino_ratio=calculate_sortino(result.pnl_curve),
        profit_factor=profit_factor,
        max_drawdown=max_dd,
        max_drawdown_duration_ms=max_dd_duration,
        avg_pnl_per_market=total_pnl / total_markets if total_markets else 0.0,
        avg_trades_per_market=total_trades / total_markets if total_markets else 0.0,
        profitable_markets=profitable,
        unprofitable_markets=total_markets - profitable,
    )


# =============================================================================
# RISK METRICS
# =============================================================================

def extract_daily_pnl(pnl_curve: Sequence[PnLPoint]) -> List[float]:
    """
    Daily P&L deltas from a cumulative P&L curve.

    Days are consecutive 24h windows starting at the first curve timestamp.
    Each day's value is the last cumulative P&L inside the window minus the
    previous day's, starting from 0. Days without points contribute 0.
    """
    if not pnl_curve:
        return []

    timestamps = np.array([p.timestamp for p in pnl_curve], dtype=np.int64)
    cumulative = np.array([p.cumulative_pnl for p in pnl_curve], dtype=float)
    day_index = (timestamps - timestamps[0]) // MS_PER_DAY

    daily = []
    prev = 0.0
    for day in range(int(day_index[-1]) + 1):
        idx = int(np.searchsorted(day_index, day, side='right')) - 1
        day_end_pnl = float(cumulative[idx]) if idx >= 0 else prev
        daily.append(day_end_pnl - prev)
        prev = day_end_pnl

    return daily


def _daily_series(pnl_curve: Sequence[PnLPoint]) -> np.ndarray:
    if len(pnl_curve) < 2:
        return np.empty(0)
    daily = np.asarray(extract_daily_pnl(pnl_curve), dtype=float)
    return daily if daily.size >= 2 else np.empty(0)


def calculate_sharpe(pnl_curve: Sequence[PnLPoint]) -> float:
    """Sharpe = mean(daily) / std(daily, ddof=1) * sqrt(252)."""
    daily = _daily_series(pnl_curve)
    if daily.size == 0:
        return 0.0

    mean = float(np.mean(daily))
    std = float(np.std(daily, ddof=1))
    if std == 0:
        return RATIO_SENTINEL if mean > 0 else 0.0
    return mean / std * math.sqrt(TRADING_DAYS_PER_YEAR)


def calculate_sortino(pnl_curve: Sequence[PnLPoint]) -> float:
    """Sortino with downside deviation sqrt(sum(neg^2) / N) over all N days."""
    daily = _daily_series(pnl_curve)
    if daily.size == 0:
        return 0.0

    mean = float(np.mean(daily))
    negative = daily[daily < 0]
    downside = math.sqrt(float(np.sum(negative ** 2)) / daily.size) if negative.size else 0.0
    if downside == 0:
        return RATIO_SENTINEL if mean > 0 else 0.0
    return mean / downside * math.sqrt(TRADING_DAYS_PER_YEAR)


def calculate_drawdown_metrics(pnl_curve: Sequence[PnLPoint]) -> Tuple[float, int]:
    """
    Max drawdown from a running peak (starting at 0) and the longest
    drawdown duration in ms.

    A drawdown starts at the first point at or below the peak and ends at
    the next new high; one still open at the end runs to the last point.
    """
    peak = 0.0
    max_dd = 0.0
    max_duration = 0
    dd_start = 0
    in_drawdown = False

    for point in pnl_curve:
        if point.cumulative_pnl > peak:
            peak = point.cumulative_pnl
            if in_drawdown:
                max_duration = max(max_duration, point.timestamp - dd_start)
                in_drawdown = False
        else:
            max_dd = max(max_dd, peak - point.cumulative_pnl)
            if not in_drawdown:
                dd_start = point.timestamp
                in_drawdown = True

    if in_drawdown and pnl_curve:
        max_duration = max(max_duration, pnl_curve[-1].timestamp - dd_start)

    return max_dd, max_duration


# =============================================================================
# DISTRIBUTIONS & FORMATTING
# =============================================================================

def calculate_edge_distribution(trades: Sequence[Trade]) -> Dict[str, int]:
    """Count trades per 1%-wide edge bucket (5%+ is open-ended)."""
    buckets = {label: 0 for label in EDGE_BUCKETS}
    for trade in trades:
        idx = min(int(max(trade.edge * 100, 0)), len(EDGE_BUCKETS) - 1)
        buckets[EDGE_BUCKETS[idx]] += 1
    return buckets


def format_statistics_summary(stats: Statistics) -> str:
    lines = [
        f"P&L: ${stats.total_pnl:.2f} | Staked: ${stats.total_staked:.2f}",
        f"Markets: {stats.total_markets} | Trades: {stats.total_trades}",
        f"Win Rate: {stats.win_rate * 100:.1f}%",
        f"Sharpe: {stats.sharpe_ratio:.2f} | Max DD: ${stats.max_drawdown:.2f}",
        f"Avg Edge: {stats.avg_edge_at_trade * 100:.2f}% | ROI: {stats.avg_realized_edge * 100:.2f}%",
    ]
    return "\n".join(lines)


def print_statistics(stats: Statistics):
    """Print a full statistics block to stdout."""
    print("\n" + "=" * 60)
    print("BACKTEST STATISTICS")
    print("=" * 60)

    print("\nOverall Performance")
    print("-" * 60)
    print(f"  Total P&L:             ${stats.total_pnl:+.2f}")
    print(f"  Total Staked:          ${stats.total_staked:.2f}")
    print(f"  Total Markets:         {stats.total_markets}")
    print(f"  Total Trades:          {stats.total_trades}")
    print(f"  Win Rate:              {stats.win_rate * 100:.1f}% "
          f"({stats.winning_trades}W / {stats.losing_trades}L)")

    if stats.total_fees_paid > 0:
        print("\nFees")
        print("-" * 60)
        print(f"  Total Fees Paid:       ${stats.total_fees_paid:.2f}")
        print(f"  Avg Fee/Trade:         ${stats.avg_fee_per_trade:.4f}")
        print(f"  Avg Fee Rate:          {stats.avg_fee_rate * 100:.2f}%")
        print(f"  P&L Before Fees:       ${stats.total_pnl + stats.total_fees_paid:.2f}")

    print("\nPer Market")
    print("-" * 60)
    print(f"  Avg P&L per Market:    ${stats.avg_pnl_per_market:.4f}")
    print(f"  Avg Trades per Market: {stats.avg_trades_per_market:.1f}")
    print(f"  Profitable Markets:    {stats.profitable_markets}")
    print(f"  Unprofitable Markets:  {stats.unprofitable_markets}")

    print("\nBy Side")
    print("-" * 60)
    print(f"  YES Trades:            {stats.yes_trades} (P&L: ${stats.yes_pnl:.2f})")
    print(f"  NO Trades:             {stats.no_trades} (P&L: ${stats.no_pnl:.2f})")

    print("\nEdge")
    print("-" * 60)
    print(f"  Avg Edge at Trade:     {stats.avg_edge_at_trade * 100:.2f}%")
    print(f"  ROI (P&L/Staked):      {stats.avg_realized_edge * 100:.2f}%")
    print(f"  Edge Capture:          {stats.edge_capture * 100:.1f}%")
    print(f"  Expected Return/Share: {stats.avg_expected_return_per_share * 100:.1f}c")
    print(f"  Realized Return/Share: {stats.avg_realized_return_per_share * 100:.1f}c")
    print(f"  Avg FV on Wins:        {stats.avg_fair_value_on_wins * 100:.1f}%")
    print(f"  Avg FV on Losses:      {stats.avg_fair_value_on_losses * 100:.1f}%")

    print("\nRisk")
    print("-" * 60)
    print(f"  Sharpe Ratio:          {stats.sharpe_ratio:.2f}")
    print(f"  Sortino Ratio:         {stats.sortino_ratio:.2f}")
    print(f"  Profit Factor:         {stats.profit_factor:.2f}")
    print(f"  Max Drawdown:          ${stats.max_drawdown:.2f}")
    print(f"  Max DD Duration:       {stats.max_drawdown_duration_ms / MS_PER_MINUTE:.0f} minutes")
    print("=" * 60)


def print_edge_distribution(trades: Sequence[Trade]):
    dist = calculate_edge_distribution(trades)
    total = len(trades)

    print("\nEdge Distribution")
    print("-" * 40)
    for label, count in dist.items():
        share = count / total if total else 0.0
        bar = "#" * round(share * 30)
        print(f"{label:<8} {count:>5} ({share * 100:5.1f}%) {bar}")
    print("-" * 40)
