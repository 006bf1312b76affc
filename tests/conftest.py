"""Shared fixtures: record factories and a synthetic in-memory DataBundle."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import MS_PER_MINUTE
from src.backtest.data_bundle import DataBundle
from src.backtest.models import Market, Kline, PricePoint, VolPoint, Trade, MarketResolution


# 2024-01-01T00:00:00Z
T0 = 1_704_067_200_000
MARKET_MS = 15 * MS_PER_MINUTE


@pytest.fixture
def make_trade():
    """Factory for Trade records with sensible defaults."""
    counter = {'n': 0}

    def _make(market_id="m1", side='YES', price=0.50, size=100, fair_value=0.60,
              timestamp=T0, fee=0.0, action='BUY'):
        counter['n'] += 1
        cost = price * size if action == 'BUY' else -price * size
        return Trade(
            id=f"trade_{counter['n']}",
            timestamp=timestamp,
            market_id=market_id,
            side=side,
            action=action,
            price=price,
            size=size,
            fair_value=fair_value,
            edge=fair_value - price,
            spot_price=100.0,
            strike=95.0,
            time_remaining_ms=600_000,
            cost=cost,
            fee=fee,
            total_cost=cost + fee,
        )

    return _make


@pytest.fixture
def make_resolution():
    """Factory for MarketResolution records."""

    def _make(market_id="m1", outcome='UP', yes_shares=0.0, no_shares=0.0,
              yes_cost=0.0, no_cost=0.0, timestamp=T0 + MARKET_MS):
        yes_payout = yes_shares if outcome == 'UP' else 0.0
        no_payout = no_shares if outcome == 'DOWN' else 0.0
        return MarketResolution(
            market_id=market_id,
            outcome=outcome,
            final_price=100.0,
            strike=95.0,
            timestamp=timestamp,
            yes_shares=yes_shares,
            no_shares=no_shares,
            yes_cost=yes_cost,
            no_cost=no_cost,
            yes_payout=yes_payout,
            no_payout=no_payout,
            total_payout=yes_payout + no_payout,
            total_cost=yes_cost + no_cost,
            pnl=yes_payout + no_payout - yes_cost - no_cost,
        )

    return _make


@pytest.fixture
def build_bundle():
    """
    Factory for a flat-spot bundle.

    Spot closes at `spot` every minute from 5h before the first market to
    30 min after the last; each market gets a YES mid of `mid` every minute
    of its life and an oracle sample at its end.
    """

    def _build(n_markets=1, strike=95.0, spot=100.0, low=None, high=None, mid=0.50,
               oracle=None, vol_points=None, gap_ms=MARKET_MS, with_oracle=True):
        markets = []
        market_prices = {}
        oracle_prices = []
        for i in range(n_markets):
            start = T0 + i * gap_ms
            end = start + MARKET_MS
            market_id = f"m{i + 1}"
            markets.append(Market(market_id=market_id, strike=strike, start=start, end=end))
            market_prices[market_id] = [
                PricePoint(start + k * MS_PER_MINUTE, mid) for k in range(16)
            ]
            if with_oracle:
                oracle_prices.append(PricePoint(end, spot if oracle is None else oracle))

        last_end = markets[-1].end if markets else T0
        klines = [
            Kline(ts, spot, spot if high is None else high, spot if low is None else low, spot)
            for ts in range(T0 - 300 * MS_PER_MINUTE, last_end + 30 * MS_PER_MINUTE, MS_PER_MINUTE)
        ]

        return DataBundle.from_records(
            markets=markets,
            klines=klines,
            vol_points=vol_points or [],
            oracle_prices=oracle_prices,
            market_prices=market_prices,
            start=T0,
            end=last_end,
        )

    return _build
