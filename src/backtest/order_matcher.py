"""
Order Matcher

Maps an observed mid price to an executable taker price under a fixed spread
and optional slippage, then builds Trade records with fees.

    buy  = round(clamp((mid + spread/2) * (1 + slippage), min, max), tick)
    sell = round(clamp((mid - spread/2) * (1 - slippage), min, max), tick)

Each instance owns its own trade counter; one matcher per simulator run.
"""

from dataclasses import dataclass
from typing import Dict, Any

from .fees import calculate_taker_fee
from .models import Trade, TradeSignal


@dataclass(frozen=True)
class OrderMatcherConfig:
    """Execution price model configuration."""
    spread_cents: float = 1.0      # Full spread in cents (1 = 0.01)
    slippage_bps: float = 0.0      # Extra adverse slippage in basis points
    min_price: float = 0.01
    max_price: float = 0.99
    include_fees: bool = False
    tick_size: float = 0.01

    def __post_init__(self):
        if self.spread_cents < 0:
            raise ValueError(f"spread_cents must be >= 0, got {self.spread_cents}")
        if self.slippage_bps < 0:
            raise ValueError(f"slippage_bps must be >= 0, got {self.slippage_bps}")
        if not 0 <= self.min_price < self.max_price <= 1:
            raise ValueError(f"Invalid price bounds [{self.min_price}, {self.max_price}]")
        if self.tick_size <= 0:
            raise ValueError(f"tick_size must be > 0, got {self.tick_size}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'spread_cents': self.spread_cents,
            'slippage_bps': self.slippage_bps,
            'min_price': self.min_price,
            'max_price': self.max_price,
            'include_fees': self.include_fees,
            'tick_size': self.tick_size,
        }


class OrderMatcher:
    """Simulates taker fills with spread, slippage and fees."""

    def __init__(self, config: OrderMatcherConfig = None):
        self.config = config or OrderMatcherConfig()
        self._trade_counter = 0

    def _round_to_tick(self, price: float) -> float:
        tick = self.config.tick_size
        return round(round(price / tick) * tick, 10)

    def _clamp(self, price: float) -> float:
        return max(self.config.min_price, min(self.config.max_price, price))

    def get_buy_price(self, mid_price: float) -> float:
        """Executable buy price: mid + half spread, worsened by slippage."""
        half_spread = self.config.spread_cents / 100 / 2
        slippage = 1 + self.config.slippage_bps / 10_000
        return self._round_to_tick(self._clamp((mid_price + half_spread) * slippage))

    def get_sell_price(self, mid_price: float) -> float:
        """Executable sell price: mid - half spread, worsened by slippage."""
        half_spread = self.config.spread_cents / 100 / 2
        slippage = 1 - self.config.slippage_bps / 10_000
        return self._round_to_tick(self._clamp((mid_price - half_spread) * slippage))

    def calculate_buy_edge(self, mid_price: float, fair_value: float) -> float:
        return fair_value - self.get_buy_price(mid_price)

    def calculate_sell_edge(self, mid_price: float, fair_value: float) -> float:
        return self.get_sell_price(mid_price) - fair_value

    def _in_bounds(self, price: float) -> bool:
        return self.config.min_price <= price <= self.config.max_price

    def can_buy(self, mid_price: float, fair_value: float, min_edge: float) -> bool:
        """True if buying clears min_edge at an in-bounds price."""
        price = self.get_buy_price(mid_price)
        return fair_value - price >= min_edge and self._in_bounds(price)

    def can_sell(self, mid_price: float, fair_value: float, min_edge: float) -> bool:
        """True if selling clears min_edge at an in-bounds price."""
        price = self.get_sell_price(mid_price)
        return price - fair_value >= min_edge and self._in_bounds(price)

    def _fee(self, size: float, price: float) -> float:
        return calculate_taker_fee(size, price) if self.config.include_fees else 0.0

    def _next_id(self) -> str:
        self._trade_counter += 1
        return f"trade_{self._trade_counter}"

    def execute_buy(
        self,
        signal: TradeSignal,
        spot_price: float,
        strike: float,
        time_remaining_ms: int
    ) -> Trade:
        """
        Fill a buy at the executable price.

        Args:
            signal: Trade signal (market_price is the observed mid)
            spot_price: Underlying price used for the decision
            strike: Market strike
            time_remaining_ms: Time to resolution at fill

        Returns:
            Trade with cost = price * size and total_cost = cost + fee
        """
        price = self.get_buy_price(signal.market_price)
        cost = price * signal.size
        fee = self._fee(signal.size, price)

        return Trade(
            id=self._next_id(),
            timestamp=signal.timestamp,
            market_id=signal.market_id,
            side=signal.side,
            action='BUY',
            price=price,
            size=signal.size,
            fair_value=signal.fair_value,
            edge=signal.edge,
            spot_price=spot_price,
            strike=strike,
            time_remaining_ms=time_remaining_ms,
            cost=cost,
            fee=fee,
            total_cost=cost + fee,
        )

    def execute_sell(
        self,
        signal: TradeSignal,
        spot_price: float,
        strike: float,
        time_remaining_ms: int
    ) -> Trade:
        """Fill a sell; cost is negative (cash in) and the fee reduces proceeds."""
        price = self.get_sell_price(signal.market_price)
        proceeds = price * signal.size
        fee = self._fee(signal.size, price)

        return Trade(
            id=self._next_id(),
            timestamp=signal.timestamp,
            market_id=signal.market_id,
            side=signal.side,
            action='SELL',
            price=price,
            size=signal.size,
            fair_value=signal.fair_value,
            edge=signal.edge,
            spot_price=spot_price,
            strike=strike,
            time_remaining_ms=time_remaining_ms,
            cost=-proceeds,
            fee=fee,
            total_cost=-proceeds + fee,
        )

    @property
    def trade_count(self) -> int:
        return self._trade_counter

    def reset(self):
        """Reset trade counter."""
        self._trade_counter = 0
