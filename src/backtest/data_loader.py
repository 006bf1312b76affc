"""
Data Loader

Builds a DataBundle from files on disk. Each dataset is read from
<name>.parquet if present, falling back to <name>.csv.

Expected datasets (timestamps in ms since epoch, UTC):
- markets:        market_id, strike, start, end [, yes_token_id, no_token_id, outcome, question]
- klines:         timestamp, open, high, low, close   (1-minute spot candles)
- vol:            timestamp, vol                      (implied vol, optional)
- oracle:         timestamp, price                    (settlement oracle, optional)
- market_prices:  market_id, timestamp, price         (YES mid)

Time series are loaded with a lookback before start so trailing windows
(realized vol, adjustment warmup) are populated at the first market.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from config.settings import MS_PER_HOUR, VOL_BLEND, MS_PER_MINUTE
from .data_bundle import DataBundle
from .models import Market, Kline, PricePoint, VolPoint
from src.utils.logging import get_logger


logger = get_logger(__name__)

DEFAULT_DATA_DIR = Path('data/backtest')
DEFAULT_LOOKBACK_MS = max(VOL_BLEND.window_4h * MS_PER_MINUTE, 6 * MS_PER_HOUR)

REQUIRED_COLUMNS = {
    'markets': ['market_id', 'strike', 'start', 'end'],
    'klines': ['timestamp', 'open', 'high', 'low', 'close'],
    'vol': ['timestamp', 'vol'],
    'oracle': ['timestamp', 'price'],
    'market_prices': ['market_id', 'timestamp', 'price'],
}


def read_dataset(data_dir: Path, name: str, required: bool = True) -> Optional[pd.DataFrame]:
    """
    Read one dataset (parquet preferred, CSV fallback).

    Raises:
        FileNotFoundError: If a required dataset is missing
        ValueError: If required columns are missing
    """
    parquet_path = data_dir / f'{name}.parquet'
    csv_path = data_dir / f'{name}.csv'

    if parquet_path.exists():
        df = pd.read_parquet(parquet_path)
    elif csv_path.exists():
        df = pd.read_csv(csv_path)
    elif required:
        raise FileNotFoundError(f"Dataset '{name}' not found in {data_dir} (.parquet or .csv)")
    else:
        logger.warning(f"Optional dataset '{name}' not found in {data_dir}")
        return None

    missing = [c for c in REQUIRED_COLUMNS[name] if c not in df.columns]
    if missing:
        raise ValueError(f"Dataset '{name}' is missing columns: {missing}")
    return df


def _in_window(df: pd.DataFrame, start: int, end: int) -> pd.DataFrame:
    return df[(df['timestamp'] >= start) & (df['timestamp'] <= end)]


def _optional_str(value) -> str:
    return "" if pd.isna(value) else str(value)


def _markets_from_frame(df: pd.DataFrame) -> List[Market]:
    markets = []
    for row in df.itertuples(index=False):
        strike = row.strike
        outcome = getattr(row, 'outcome', None)
        markets.append(Market(
            market_id=str(row.market_id),
            strike=None if pd.isna(strike) else float(strike),
            start=int(row.start),
            end=int(row.end),
            token_ids=(
                _optional_str(getattr(row, 'yes_token_id', "")),
                _optional_str(getattr(row, 'no_token_id', "")),
            ),
            outcome=outcome if outcome in ('UP', 'DOWN') else None,
            question=_optional_str(getattr(row, 'question', "")),
        ))
    return markets


def load_bundle(
    data_dir: Union[str, Path] = DEFAULT_DATA_DIR,
    start: Optional[int] = None,
    end: Optional[int] = None,
    lookback_ms: int = DEFAULT_LOOKBACK_MS
) -> DataBundle:
    """
    Load a DataBundle for [start, end].

    Args:
        data_dir: Directory holding the datasets
        start: Range start in ms (default: first market start)
        end: Range end in ms (default: last market end)
        lookback_ms: History loaded before start for trailing windows

    Returns:
        DataBundle with every series sorted by timestamp
    """
    data_dir = Path(data_dir)

    markets_df = read_dataset(data_dir, 'markets')
    if start is None:
        start = int(markets_df['start'].min()) if not markets_df.empty else 0
    if end is None:
        end = int(markets_df['end'].max()) if not markets_df.empty else start
    if end < start:
        raise ValueError(f"Invalid range: start {start} > end {end}")

    markets_df = markets_df[(markets_df['start'] >= start) & (markets_df['end'] <= end)]
    markets = _markets_from_frame(markets_df)
    market_ids = {m.market_id for m in markets}

    history_start = start - lookback_ms

    klines_df = _in_window(read_dataset(data_dir, 'klines'), history_start, end)
    klines = [
        Kline(int(ts), float(o), float(h), float(l), float(c))
        for ts, o, h, l, c in klines_df[['timestamp', 'open', 'high', 'low', 'close']].itertuples(index=False)
    ]

    vol_points: List[VolPoint] = []
    vol_df = read_dataset(data_dir, 'vol', required=False)
    if vol_df is not None:
        vol_df = _in_window(vol_df, history_start, end)
        vol_points = [VolPoint(int(ts), float(v)) for ts, v in vol_df[['timestamp', 'vol']].itertuples(index=False)]

    oracle_prices: List[PricePoint] = []
    oracle_df = read_dataset(data_dir, 'oracle', required=False)
    if oracle_df is not None:
        # Resolution looks up to the tolerance past market end
        oracle_df = _in_window(oracle_df, history_start, end + MS_PER_HOUR)
        oracle_prices = [
            PricePoint(int(ts), float(p)) for ts, p in oracle_df[['timestamp', 'price']].itertuples(index=False)
        ]

    prices_df = read_dataset(data_dir, 'market_prices')
    prices_df = prices_df[prices_df['market_id'].astype(str).isin(market_ids)]
    market_prices: Dict[str, List[PricePoint]] = {}
    for market_id, group in prices_df.groupby(prices_df['market_id'].astype(str)):
        ts = group['timestamp'].to_numpy(dtype=np.int64)
        px = group['price'].to_numpy(dtype=float)
        market_prices[market_id] = [PricePoint(int(t), float(p)) for t, p in zip(ts, px)]

    bundle = DataBundle.from_records(
        markets=markets,
        klines=klines,
        vol_points=vol_points,
        oracle_prices=oracle_prices,
        market_prices=market_prices,
        start=start,
        end=end,
    )

    logger.info(
        f"Loaded {bundle.market_count} markets, {bundle.kline_count:,} klines, "
        f"{len(vol_points):,} vol points, {len(oracle_prices):,} oracle prices, "
        f"{len(market_prices)} market price series from {data_dir}"
    )
    return bundle
