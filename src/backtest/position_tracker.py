"""
Position Tracker

Per-market position bookkeeping and settlement. Each market moves through

    (none) -> OPEN (first trade) -> RESOLVED (resolve(); position deleted)

so a traded market always has exactly one of {open position, resolution}.

Cost includes fees. The P&L curve is sampled only at resolution time: capital
is not marked to market between trades, so trade-time samples would distort
the daily variance used for Sharpe/Sortino.
"""

import copy
from typing import Callable, Dict, List, Optional, Any

from .models import (
    Trade, MarketPosition, MarketResolution, PnLPoint, Outcome, Side
)
from src.utils.logging import get_logger


logger = get_logger(__name__)


class PositionTracker:
    """Owns all open positions and the settlement log for one run."""

    def __init__(self):
        self._positions: Dict[str, MarketPosition] = {}
        self._resolutions: List[MarketResolution] = []
        self._trades: List[Trade] = []
        self._pnl_curve: List[PnLPoint] = []
        self._realized_pnl = 0.0
        self._total_cost = 0.0

    # =========================================================================
    # TRADES
    # =========================================================================

    def record_trade(self, trade: Trade):
        """
        Apply a fill to its market's position, opening the position if needed.

        BUY adds shares, SELL removes them. The trade's signed cost plus its
        fee is added to the side's cumulative cost.
        """
        position = self._positions.get(trade.market_id)
        if position is None:
            position = MarketPosition(market_id=trade.market_id)
            self._positions[trade.market_id] = position

        share_delta = trade.size if trade.action == 'BUY' else -trade.size
        cost_delta = trade.total_cost

        if trade.side == 'YES':
            position.yes_shares += share_delta
            position.yes_cost += cost_delta
        else:
            position.no_shares += share_delta
            position.no_cost += cost_delta

        position.trades.append(trade)
        self._trades.append(trade)
        self._total_cost += cost_delta

    def can_trade(self, market_id: str, side: Side, size: float, max_position: float) -> bool:
        """True if adding size shares keeps the side within max_position."""
        position = self._positions.get(market_id)
        if position is None:
            return size <= max_position
        current = position.yes_shares if side == 'YES' else position.no_shares
        return current + size <= max_position

    def market_cost(self, market_id: str) -> float:
        """USD committed to an open market (0 if none)."""
        position = self._positions.get(market_id)
        return position.total_cost if position else 0.0

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve(
        self,
        market_id: str,
        outcome: Outcome,
        final_price: float,
        strike: float,
        timestamp: Optional[int] = None
    ) -> Optional[MarketResolution]:
        """
        Settle an open market: winning shares pay 1.0, losing shares 0.

        Args:
            market_id: Market identifier
            outcome: 'UP' (YES wins) or 'DOWN' (NO wins)
            final_price: Settlement price of the underlying
            strike: Market strike
            timestamp: Resolution time for the P&L curve (defaults to last trade)

        Returns:
            MarketResolution, or None if the market has no open position
            (never traded, or already resolved).
        """
        position = self._positions.pop(market_id, None)
        if position is None:
            return None

        yes_payout = position.yes_shares * (1.0 if outcome == 'UP' else 0.0)
        no_payout = position.no_shares * (1.0 if outcome == 'DOWN' else 0.0)
        total_payout = yes_payout + no_payout
        total_cost = position.yes_cost + position.no_cost
        pnl = total_payout - total_cost

        if timestamp is None:
            timestamp = position.trades[-1].timestamp if position.trades else 0

        resolution = MarketResolution(
            market_id=market_id,
            outcome=outcome,
            final_price=final_price,
            strike=strike,
            timestamp=timestamp,
            yes_shares=position.yes_shares,
            no_shares=position.no_shares,
            yes_cost=position.yes_cost,
            no_cost=position.no_cost,
            yes_payout=yes_payout,
            no_payout=no_payout,
            total_payout=total_payout,
            total_cost=total_cost,
            pnl=pnl,
        )

        self._resolutions.append(resolution)
        self._realized_pnl += pnl
        self._pnl_curve.append(PnLPoint(
            timestamp=timestamp,
            cumulative_pnl=self._realized_pnl,
            realized_pnl=self._realized_pnl,
        ))

        logger.debug(
            f"Resolved {market_id[:16]} {outcome}: payout=${total_payout:.2f} "
            f"cost=${total_cost:.2f} pnl=${pnl:+.2f}"
        )
        return resolution

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_position(self, market_id: str) -> Optional[MarketPosition]:
        """Snapshot of an open position (mutating it does not affect the tracker)."""
        position = self._positions.get(market_id)
        return copy.deepcopy(position) if position else None

    def has_position(self, market_id: str) -> bool:
        return market_id in self._positions

    def open_positions(self) -> List[MarketPosition]:
        return [copy.deepcopy(p) for p in self._positions.values()]

    @property
    def trades(self) -> List[Trade]:
        return list(self._trades)

    @property
    def resolutions(self) -> List[MarketResolution]:
        return list(self._resolutions)

    @property
    def pnl_curve(self) -> List[PnLPoint]:
        return list(self._pnl_curve)

    @property
    def realized_pnl(self) -> float:
        return self._realized_pnl

    def unrealized_pnl(self, price_fn: Callable[[str, Side], float]) -> float:
        """
        Mark open positions to current market prices.

        Args:
            price_fn: (market_id, side) -> current price of that outcome token
        """
        unrealized = 0.0
        for position in self._positions.values():
            if position.yes_shares > 0:
                unrealized += position.yes_shares * price_fn(position.market_id, 'YES') - position.yes_cost
            if position.no_shares > 0:
                unrealized += position.no_shares * price_fn(position.market_id, 'NO') - position.no_cost
        return unrealized

    def total_pnl(self, price_fn: Callable[[str, Side], float]) -> float:
        return self._realized_pnl + self.unrealized_pnl(price_fn)

    def summary(self) -> Dict[str, Any]:
        return {
            'total_trades': len(self._trades),
            'total_markets': len(self._resolutions) + len(self._positions),
            'resolved_markets': len(self._resolutions),
            'open_positions': len(self._positions),
            'realized_pnl': self._realized_pnl,
            'total_cost': self._total_cost,
        }

    def reset(self):
        """Clear all state."""
        self._positions.clear()
        self._resolutions = []
        self._trades = []
        self._pnl_curve = []
        self._realized_pnl = 0.0
        self._total_cost = 0.0
