"""
Backtest Simulator

Replays a DataBundle through the fair-value model and produces trades,
resolutions and a P&L curve for one configuration.

For each market, independently and in timestamp order:
1. The market's own mid-price series is the execution timeline
2. Spot is looked up at T - lag ("last value at or before")
3. Volatility = blend(RV 1h, RV 4h, implied), clamped, times vol_multiplier
4. Ticks too close to expiry are skipped
5. Fair value per side; conservative mode uses the worst-case candle extreme
6. Edge, cooldown, per-market trade cap and position limits gate each fill
7. At market end the position is settled on the oracle price

A Simulator owns its OrderMatcher and PositionTracker; the bundle is shared
read-only, so independent runs can execute concurrently with one Simulator
each.
"""

import logging
import math
from typing import Dict, Optional, Tuple

from config.settings import BacktestConfig, VOL_BLEND, MS_PER_MINUTE
from .adjustment import AdjustmentModel
from .data_bundle import DataBundle
from .fair_value import calculate_fair_value, kelly_fraction
from .models import (
    BacktestResult, Market, PricePoint, Side, Tick, TradeSignal,
    determine_outcome, ms_to_iso, side_wins
)
from .order_matcher import OrderMatcher, OrderMatcherConfig
from .position_tracker import PositionTracker
from .volatility import blended_vol_at
from src.utils.logging import get_logger


logger = get_logger(__name__)

SIDES: Tuple[Side, Side] = ('YES', 'NO')


class Simulator:
    """Single-configuration backtest run."""

    def __init__(self, config: BacktestConfig):
        self.config = config
        self.order_matcher = OrderMatcher(OrderMatcherConfig(
            spread_cents=config.spread_cents,
            slippage_bps=config.slippage_bps,
            include_fees=config.include_fees,
        ))
        self.position_tracker = PositionTracker()
        self._last_trade_ts: Dict[Tuple[str, str], int] = {}
        self._market_trade_counts: Dict[str, int] = {}
        self._log_level = logging.DEBUG if config.silent else logging.INFO

    def _log(self, message: str):
        logger.log(self._log_level, message)

    def _reset(self):
        self.order_matcher.reset()
        self.position_tracker.reset()
        self._last_trade_ts.clear()
        self._market_trade_counts.clear()

    # =========================================================================
    # RUN
    # =========================================================================

    def run(self, bundle: DataBundle) -> BacktestResult:
        """
        Run the backtest over the configured range.

        If the config range is empty (end <= start) the bundle's range is used.

        Args:
            bundle: Pre-loaded read-only data

        Returns:
            BacktestResult with trades, resolutions, P&L curve and totals
        """
        cfg = self.config
        self._reset()

        start, end = (cfg.start, cfg.end) if cfg.end > cfg.start else (bundle.start, bundle.end)
        markets = bundle.markets_in_range(start, end)

        self._log(f"Backtest {ms_to_iso(start)} -> {ms_to_iso(end)}: {cfg.describe()}")

        if not markets:
            self._log("No markets found in date range")
            return BacktestResult(config=cfg)

        adjustment = AdjustmentModel(cfg.adjustment, bundle.oracle_prices, bundle.klines)

        processed = 0
        for market in markets:
            if not market.strike or market.strike <= 0:
                logger.debug(f"Skipping {market.market_id[:16]}: no strike price")
                continue

            self._process_market(market, bundle, adjustment)
            processed += 1

            if processed % 100 == 0:
                self._log(f"Processed {processed}/{len(markets)} markets...")

        self._log(f"Processed {processed} markets, {self.position_tracker.summary()['total_trades']} trades")
        return self._build_result()

    # =========================================================================
    # PER-MARKET PROCESSING
    # =========================================================================

    def _process_market(self, market: Market, bundle: DataBundle, adjustment: AdjustmentModel):
        series = bundle.price_series(market.market_id)
        if not series:
            logger.debug(f"Skipping {market.market_id[:16]}: no market price data")
            return

        for point in series:
            if point.timestamp < market.start or point.timestamp > market.end:
                continue

            tick = self._align_tick(market, point, bundle, adjustment)
            if tick is None:
                continue

            self._process_tick(market, tick, bundle)

        self._resolve_market(market, bundle)

    def _align_tick(
        self,
        market: Market,
        point: PricePoint,
        bundle: DataBundle,
        adjustment: AdjustmentModel
    ) -> Optional[Tick]:
        """
        Merge spot, volatility and market price at one execution timestamp.

        Spot comes from T - lag; time remaining is measured from T.
        Returns None on any data gap.
        """
        cfg = self.config
        ts = point.timestamp
        decision_ts = ts - int(cfg.lag_seconds * 1000)

        if decision_ts < market.start - MS_PER_MINUTE:
            return None

        kline_idx = bundle.kline_index_at(decision_ts)
        if kline_idx < 0:
            return None
        kline = bundle.klines[kline_idx]

        if cfg.use_oracle_for_fair_value:
            spot = bundle.oracle_at(decision_ts)
            if spot is None:
                return None
            spot_low = spot_high = spot
        else:
            offset = adjustment.offset_at(decision_ts)
            spot = kline.close + offset
            spot_low = kline.low + offset
            spot_high = kline.high + offset

        implied = bundle.implied_vol_at(decision_ts)
        if implied is None:
            implied = VOL_BLEND.default_implied_vol

        vol = blended_vol_at(bundle.kline_closes, kline_idx, implied) * cfg.vol_multiplier

        return Tick(
            timestamp=ts,
            spot=spot,
            spot_low=spot_low,
            spot_high=spot_high,
            mid_yes=point.price,
            mid_no=1.0 - point.price,
            vol=vol,
            time_remaining_ms=market.end - ts,
        )

    def _process_tick(self, market: Market, tick: Tick, bundle: DataBundle):
        cfg = self.config
        if tick.time_remaining_ms < cfg.min_time_remaining_s * 1000:
            return

        mid_yes = tick.mid_yes
        latency = cfg.latency_ms
        if latency > 0:
            fill_ts = tick.timestamp + latency
            if fill_ts > market.end:
                return
            mid_yes = bundle.market_price_at(market.market_id, fill_ts)

        for side in SIDES:
            mid = mid_yes if side == 'YES' else 1.0 - mid_yes
            self._check_and_trade(market, tick, side, mid)

    def _check_and_trade(self, market: Market, tick: Tick, side: Side, mid_price: float):
        """Evaluate one side and record a buy if every check passes."""
        cfg = self.config

        # Buying YES loses if spot was really at the low; NO if at the high
        if cfg.mode == 'conservative':
            decision_spot = tick.spot_low if side == 'YES' else tick.spot_high
        else:
            decision_spot = tick.spot

        fv = calculate_fair_value(
            decision_spot,
            market.strike,
            tick.time_remaining_ms / 1000,
            tick.vol,
            apply_adjustments=cfg.apply_model_adjustments,
        )
        fair_value = fv.p_up if side == 'YES' else fv.p_down

        if not self.order_matcher.can_buy(mid_price, fair_value, cfg.min_edge):
            return

        key = (market.market_id, side)
        last_ts = self._last_trade_ts.get(key)
        if last_ts is not None and tick.timestamp - last_ts < cfg.cooldown_ms:
            return

        if self._market_trade_counts.get(market.market_id, 0) >= cfg.max_trades_per_market:
            return

        price = self.order_matcher.get_buy_price(mid_price)
        size = self._order_size(market.market_id, fair_value, price)
        if size <= 0:
            return

        if not self.position_tracker.can_trade(market.market_id, side, size, cfg.max_position_per_market):
            return

        signal = TradeSignal(
            timestamp=tick.timestamp,
            market_id=market.market_id,
            side=side,
            fair_value=fair_value,
            market_price=mid_price,
            edge=fair_value - price,
            size=size,
        )
        trade = self.order_matcher.execute_buy(
            signal, decision_spot, market.strike, tick.time_remaining_ms
        )
        self.position_tracker.record_trade(trade)

        self._last_trade_ts[key] = tick.timestamp
        self._market_trade_counts[market.market_id] = self._market_trade_counts.get(market.market_id, 0) + 1

    def _order_size(self, market_id: str, fair_value: float, price: float) -> int:
        """
        Shares to buy.

        fixed: order_size shares.
        kelly: kelly_fraction * f* * equity in USD, where equity is initial
        capital plus realized P&L; falls back to order_size when capital is
        unbounded. Both modes respect max_order_usd and the remaining
        max_position_usd allowance for the market.
        """
        cfg = self.config
        if price <= 0:
            return 0

        if cfg.sizing_mode == 'kelly' and cfg.capital_is_bounded:
            equity = cfg.initial_capital + self.position_tracker.realized_pnl
            if equity <= 0:
                return 0
            stake = cfg.kelly_fraction * kelly_fraction(fair_value, price) * equity
        else:
            stake = cfg.order_size * price

        remaining = cfg.max_position_usd - self.position_tracker.market_cost(market_id)
        stake = min(stake, cfg.max_order_usd, remaining)
        if stake <= 0:
            return 0

        # Guard against 99.99999 -> 99 from float division
        return int(math.floor(stake / price + 1e-9))

    def _resolve_market(self, market: Market, bundle: DataBundle):
        """Settle on the oracle price closest to market end; spot is the fallback."""
        cfg = self.config
        oracle = bundle.oracle_closest(market.end, cfg.oracle_tolerance_ms)
        spot = bundle.spot_at(market.end)

        if oracle is not None:
            final_price = oracle.price
            if spot is not None and abs(final_price - spot) > cfg.divergence_alert_usd:
                self._log(
                    f"Oracle divergence at {ms_to_iso(market.end)}: "
                    f"oracle=${final_price:,.2f}, spot=${spot:,.2f}"
                )
        elif spot is not None:
            logger.warning(f"No oracle price for {ms_to_iso(market.end)}, using spot")
            final_price = spot
        else:
            logger.warning(f"No settlement price for {market.market_id[:16]}; left unresolved")
            return

        outcome = determine_outcome(final_price, market.strike)
        self.position_tracker.resolve(
            market.market_id, outcome, final_price, market.strike, timestamp=market.end
        )

    # =========================================================================
    # RESULTS
    # =========================================================================

    def _build_result(self) -> BacktestResult:
        tracker = self.position_tracker
        trades = tracker.trades
        resolutions = tracker.resolutions
        outcomes = {r.market_id: r.outcome for r in resolutions}

        total_pnl = tracker.realized_pnl
        wins = sum(1 for t in trades if side_wins(t.side, outcomes.get(t.market_id)))
        profitable_markets = sum(1 for r in resolutions if r.pnl > 0)
        expected_pnl = sum(t.edge * t.size for t in trades)

        return BacktestResult(
            config=self.config,
            total_markets=len(resolutions),
            total_trades=len(trades),
            total_pnl=total_pnl,
            total_fees=sum(t.fee for t in trades),
            total_volume=sum(abs(t.cost) for t in trades),
            win_rate=wins / len(trades) if trades else 0.0,
            market_win_rate=profitable_markets / len(resolutions) if resolutions else 0.0,
            avg_edge=sum(t.edge for t in trades) / len(trades) if trades else 0.0,
            realized_edge=total_pnl / expected_pnl if expected_pnl > 0 else 0.0,
            trades=trades,
            resolutions=resolutions,
            pnl_curve=tracker.pnl_curve,
        )


def run_backtest(config: BacktestConfig, bundle: DataBundle) -> BacktestResult:
    """Convenience wrapper: fresh Simulator, one run."""
    return Simulator(config).run(bundle)
