"""
Trade Log Export

Writes trades, resolutions and the P&L curve to CSV or JSON, and derives a
drawdown curve from the P&L curve. File format is chosen by path suffix.
Also prints trade and resolution logs, a text P&L chart and a drawdown
summary to the console.
"""

import json
from pathlib import Path
from typing import Dict, List, Any, Sequence, Union

import numpy as np
import pandas as pd

from .models import BacktestResult, MarketResolution, PnLPoint, Trade, ms_to_iso
from src.utils.logging import get_logger


logger = get_logger(__name__)

PathLike = Union[str, Path]

TRADE_COLUMNS = [
    'id', 'timestamp', 'market_id', 'side', 'action', 'price', 'size',
    'fair_value', 'edge', 'spot_price', 'strike', 'time_remaining_ms',
    'cost', 'fee', 'total_cost',
]
RESOLUTION_COLUMNS = [
    'market_id', 'outcome', 'final_price', 'strike', 'timestamp',
    'yes_shares', 'no_shares', 'yes_cost', 'no_cost', 'yes_payout',
    'no_payout', 'total_payout', 'total_cost', 'pnl',
]
PNL_COLUMNS = ['timestamp', 'cumulative_pnl', 'realized_pnl', 'unrealized_pnl']


# =============================================================================
# FRAMES
# =============================================================================

def _to_frame(records: Sequence[Any], columns: List[str]) -> pd.DataFrame:
    df = pd.DataFrame([r.to_dict() for r in records], columns=columns)
    if not df.empty:
        df.insert(df.columns.get_loc('timestamp') + 1, 'datetime', df['timestamp'].map(ms_to_iso))
    return df


def trades_to_frame(trades: Sequence[Trade]) -> pd.DataFrame:
    return _to_frame(trades, TRADE_COLUMNS)


def resolutions_to_frame(resolutions: Sequence[MarketResolution]) -> pd.DataFrame:
    return _to_frame(resolutions, RESOLUTION_COLUMNS)


def pnl_curve_to_frame(curve: Sequence[PnLPoint]) -> pd.DataFrame:
    return _to_frame(curve, PNL_COLUMNS)


def calculate_drawdown_curve(curve: Sequence[PnLPoint]) -> pd.DataFrame:
    """
    Drawdown at each P&L point from a running peak starting at 0.

    Returns:
        DataFrame with timestamp, drawdown (USD) and drawdown_pct (of peak,
        0 while the peak is not positive)
    """
    rows = []
    peak = 0.0
    for point in curve:
        peak = max(peak, point.cumulative_pnl)
        drawdown = peak - point.cumulative_pnl
        rows.append({
            'timestamp': point.timestamp,
            'drawdown': drawdown,
            'drawdown_pct': drawdown / peak if peak > 0 else 0.0,
        })
    return pd.DataFrame(rows, columns=['timestamp', 'drawdown', 'drawdown_pct'])


# =============================================================================
# EXPORT
# =============================================================================

def _write_frame(df: pd.DataFrame, path: PathLike) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    suffix = path.suffix.lower()
    if suffix == '.csv':
        df.to_csv(path, index=False)
    elif suffix == '.json':
        df.to_json(path, orient='records', indent=2)
    else:
        raise ValueError(f"Unsupported export format '{suffix}' (use .csv or .json)")

    logger.info(f"Exported {len(df)} rows to {path}")
    return path


def export_trades(trades: Sequence[Trade], path: PathLike) -> Path:
    return _write_frame(trades_to_frame(trades), path)


def export_resolutions(resolutions: Sequence[MarketResolution], path: PathLike) -> Path:
    return _write_frame(resolutions_to_frame(resolutions), path)


def export_pnl_curve(curve: Sequence[PnLPoint], path: PathLike) -> Path:
    return _write_frame(pnl_curve_to_frame(curve), path)


def export_backtest_result(result: BacktestResult, output_dir: PathLike, prefix: str = "backtest") -> Dict[str, Path]:
    """
    Export trades, resolutions, P&L curve (CSV) and a JSON summary.

    Returns:
        Dict of artifact name -> written path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = {
        'trades': export_trades(result.trades, output_dir / f"{prefix}_trades.csv"),
        'resolutions': export_resolutions(result.resolutions, output_dir / f"{prefix}_resolutions.csv"),
        'pnl_curve': export_pnl_curve(result.pnl_curve, output_dir / f"{prefix}_pnl_curve.csv"),
    }

    summary = {
        'config': result.config.to_dict(),
        'results': result.to_dict(),
    }
    summary_path = output_dir / f"{prefix}_summary.json"
    with open(summary_path, 'w') as f:
        json.dump(summary, f, indent=2, default=str)
    paths['summary'] = summary_path

    logger.info(f"Exported backtest artifacts to {output_dir}")
    return paths


def print_trade_log(trades: Sequence[Trade], limit: int = 20):
    """Print the most recent trades."""
    print("\nTrade Log (most recent)")
    print("-" * 100)
    print(f"{'Time':<10}{'Side':<6}{'Price':<9}{'Size':<8}{'Fair':<9}{'Edge':<9}"
          f"{'Spot':<13}{'Strike':<13}{'Left'}")
    print("-" * 100)

    for t in list(trades)[-limit:]:
        print(f"{ms_to_iso(t.timestamp)[11:19]:<10}{t.side:<6}${t.price:<8.2f}{t.size:<8}"
              f"{t.fair_value * 100:<8.1f}%{t.edge * 100:<+8.1f}%"
              f"${t.spot_price:<12,.0f}${t.strike:<12,.0f}{t.time_remaining_ms / 60000:.1f}m")

    print("-" * 100)
    if len(trades) > limit:
        print(f"... and {len(trades) - limit} more trades")


def print_resolution_log(resolutions: Sequence[MarketResolution], limit: int = 10):
    """Print the most recent market settlements."""
    print("\nResolution Log (most recent)")
    print("-" * 100)
    print(f"{'Market':<20}{'Outcome':<10}{'Final':<12}{'Strike':<12}{'YES':<8}{'NO':<8}"
          f"{'Cost':<10}{'Payout':<10}{'P&L'}")
    print("-" * 100)

    for r in list(resolutions)[-limit:]:
        print(f"{r.market_id[:18]:<20}{r.outcome:<10}${r.final_price:<11,.0f}${r.strike:<11,.0f}"
              f"{r.yes_shares:<8g}{r.no_shares:<8g}${r.total_cost:<9.2f}${r.total_payout:<9.2f}"
              f"{r.pnl:+.2f}")

    print("-" * 100)
    if len(resolutions) > limit:
        print(f"... and {len(resolutions) - limit} more resolutions")


# =============================================================================
# CONSOLE CHARTS
# =============================================================================

def generate_ascii_chart(curve: Sequence[PnLPoint], width: int = 60, height: int = 15) -> str:
    """
    Render cumulative P&L as a text chart.

    Points are sampled every len // width steps. Each column is filled down
    from its value; the row containing the value gets a half block.

    Returns:
        height chart rows plus an x-axis and a start/end date line,
        or "No data" for an empty curve
    """
    if height < 2:
        raise ValueError(f"height must be >= 2, got {height}")
    if not curve:
        return "No data"

    values = np.array([p.cumulative_pnl for p in curve])
    hi, lo = float(values.max()), float(values.min())
    span = (hi - lo) or 1.0
    sampled = values[::max(1, len(values) // width)]

    label_width = max(len(f"{hi:.2f}"), len(f"{lo:.2f}")) + 1
    lines = []
    for row in range(height):
        threshold = hi - row / (height - 1) * span
        row_min = hi - (row + 1) / (height - 1) * span

        label = ""
        if row == 0:
            label = f"{hi:.2f}"
        elif row == height - 1:
            label = f"{lo:.2f}"
        elif row == height // 2:
            label = f"{(hi + lo) / 2:.2f}"

        cells = "".join(
            "█" if v >= threshold else "▄" if row_min <= v < threshold else " "
            for v in sampled
        )
        lines.append(f"{label:>{label_width}} |{cells}")

    lines.append(" " * label_width + " +" + "-" * len(sampled))
    start, end = ms_to_iso(curve[0].timestamp)[:10], ms_to_iso(curve[-1].timestamp)[:10]
    gap = max(1, len(sampled) - len(start) - len(end))
    lines.append(" " * (label_width + 2) + start + " " * gap + end)
    return "\n".join(lines)


def print_pnl_curve(curve: Sequence[PnLPoint]):
    print("\nP&L Curve\n")
    print(generate_ascii_chart(curve))
    if curve:
        first, last = curve[0].cumulative_pnl, curve[-1].cumulative_pnl
        print(f"\n  Start: ${first:.2f} -> End: ${last:.2f} ({last - first:+.2f})")


def print_drawdown_analysis(curve: Sequence[PnLPoint]):
    """Print max/average drawdown and the share of points spent below the peak."""
    df = calculate_drawdown_curve(curve)
    if df.empty:
        print("\nNo drawdown data")
        return

    worst = df.loc[df['drawdown'].idxmax()]
    in_drawdown = (df['drawdown'] > 0).mean()

    print("\nDrawdown Analysis")
    print("-" * 40)
    print(f"  Max Drawdown:     ${worst['drawdown']:.2f}")
    print(f"  Max DD Date:      {ms_to_iso(int(worst['timestamp']))}")
    print(f"  Max DD Percent:   {worst['drawdown_pct'] * 100:.2f}%")
    print(f"  Avg Drawdown:     ${df['drawdown'].mean():.2f}")
    print(f"  Time in Drawdown: {in_drawdown * 100:.1f}%")
    print("-" * 40)
