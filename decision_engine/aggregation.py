"""
Bar Aggregation

Rolls fine bars (e.g. 1m) into coarser buckets (5m, 15m). The streaming
BarAggregator emits a completed bar only once a bar from the next bucket
arrives. aggregate_frame() and aggregate_bars() are the bulk pandas
equivalent over a whole frame and produce exactly the same bars.

Completed bar timestamps are the bucket's last millisecond:
    ts = bucket_start + bucket_ms - 1
"""

import logging
import re
from typing import Optional, List, Dict, Any, Iterable

import pandas as pd

from .errors import ConfigurationError
from .models import Bar

logger = logging.getLogger(__name__)

_UNIT_MINUTES = {'m': 1, 'min': 1, 'h': 60, 'hour': 60, 'd': 1440}
_TIMEFRAME_RE = re.compile(r'^(\d+)\s*([a-z]+)$')

OHLCV_COLUMNS = ['time', 'open', 'high', 'low', 'close', 'volume']


def timeframe_minutes(timeframe: str) -> int:
    """Parse a timeframe tag ("1m", "5min", "1h") into minutes."""
    match = _TIMEFRAME_RE.match(str(timeframe).strip().lower())
    if not match or match.group(2) not in _UNIT_MINUTES:
        raise ConfigurationError(f"Unsupported timeframe: {timeframe}")
    minutes = int(match.group(1)) * _UNIT_MINUTES[match.group(2)]
    if minutes < 1:
        raise ConfigurationError(f"Unsupported timeframe: {timeframe}")
    return minutes


def timeframe_to_ms(timeframe: str) -> int:
    return timeframe_minutes(timeframe) * 60_000


class BarAggregator:
    """
    Streaming bucket aggregator.

    Bucket start is floor(ts / bucket_ms) * bucket_ms. The in-progress bucket is
    never flushed on its own; push() returns the completed bar exactly when the
    incoming bar belongs to a different bucket.
    """

    def __init__(self, bucket_minutes: int, label: str = ""):
        if bucket_minutes < 1:
            raise ConfigurationError(f"bucket_minutes must be positive, got {bucket_minutes}")
        self.bucket_minutes = bucket_minutes
        self.bucket_ms = bucket_minutes * 60_000
        self.label = label or f"{bucket_minutes}m"

        self.current_bar: Optional[Dict[str, Any]] = None
        self.bars_completed = 0
        self.bars_received = 0

    def push(self, bar: Bar) -> Optional[Bar]:
        self.bars_received += 1
        bucket_start = (bar.ts // self.bucket_ms) * self.bucket_ms

        completed = None
        if self.current_bar is not None and bucket_start != self.current_bar['start']:
            completed = self._finalize_current_bar()

        if self.current_bar is None:
            self._start_new_bar(bucket_start, bar)
        else:
            self._update_bar(bar)
        return completed

    def pending(self) -> Optional[Bar]:
        """Snapshot of the in-progress bucket (not a completed bar)."""
        if self.current_bar is None:
            return None
        return self._to_bar(self.current_bar)

    def reset(self):
        self.current_bar = None

    def _start_new_bar(self, bucket_start: int, bar: Bar):
        self.current_bar = {
            'start': bucket_start,
            'open': bar.open,
            'high': bar.high,
            'low': bar.low,
            'close': bar.close,
            'volume': bar.volume,
        }

    def _update_bar(self, bar: Bar):
        cb = self.current_bar
        cb['high'] = max(cb['high'], bar.high)
        cb['low'] = min(cb['low'], bar.low)
        cb['close'] = bar.close
        cb['volume'] += bar.volume

    def _finalize_current_bar(self) -> Bar:
        completed = self._to_bar(self.current_bar)
        self.current_bar = None
        self.bars_completed += 1
        logger.debug(
            f"[{self.label}] Bar complete: ts={completed.ts} "
            f"O={completed.open:.2f} H={completed.high:.2f} "
            f"L={completed.low:.2f} C={completed.close:.2f} V={completed.volume:g}"
        )
        return completed

    def _to_bar(self, cb: Dict[str, Any]) -> Bar:
        return Bar(
            ts=cb['start'] + self.bucket_ms - 1,
            open=cb['open'],
            high=cb['high'],
            low=cb['low'],
            close=cb['close'],
            volume=cb['volume'],
        )

    def get_statistics(self) -> Dict[str, Any]:
        return {
            'label': self.label,
            'bucket_minutes': self.bucket_minutes,
            'bars_received': self.bars_received,
            'bars_completed': self.bars_completed,
            'has_pending': self.current_bar is not None,
        }


# ═══════════════════════════════════════════════════════════════════════════
# BULK (PANDAS) PATH
# ═══════════════════════════════════════════════════════════════════════════

def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    """Bars -> DataFrame with columns time, open, high, low, close, volume."""
    rows = [
        {'time': b.ts, 'open': b.open, 'high': b.high,
         'low': b.low, 'close': b.close, 'volume': b.volume}
        for b in bars
    ]
    return pd.DataFrame(rows, columns=OHLCV_COLUMNS)


def frame_to_bars(df: pd.DataFrame) -> List[Bar]:
    """DataFrame (time or ts column in epoch ms) -> Bars, sorted by time."""
    time_col = 'ts' if 'ts' in df.columns else 'time'
    missing = [c for c in (time_col, 'open', 'high', 'low', 'close') if c not in df.columns]
    if missing:
        raise ValueError(f"DataFrame missing required columns: {missing}")

    df = df.sort_values(time_col)
    volumes = df['volume'] if 'volume' in df.columns else pd.Series(0.0, index=df.index)
    return [
        Bar(ts=int(t), open=float(o), high=float(h), low=float(l),
            close=float(c), volume=float(v))
        for t, o, h, l, c, v in zip(df[time_col], df['open'], df['high'],
                                    df['low'], df['close'], volumes)
    ]


def aggregate_frame(df: pd.DataFrame, bucket_minutes: int,
                    include_partial: bool = False) -> pd.DataFrame:
    """
    Resample an OHLCV frame (time in epoch ms) into bucket_minutes bars.

    Buckets are left-closed and epoch-aligned. The trailing bucket is dropped
    unless include_partial is set, matching the streaming aggregator which only
    emits a bucket once the next one starts.
    """
    if bucket_minutes < 1:
        raise ConfigurationError(f"bucket_minutes must be positive, got {bucket_minutes}")
    if df.empty:
        return pd.DataFrame(columns=OHLCV_COLUMNS)

    df_copy = df.copy()
    df_copy.index = pd.to_datetime(df_copy['time'], unit='ms')
    df_copy = df_copy.sort_index()

    aggregated = df_copy.resample(
        f'{bucket_minutes}min', label='left', closed='left', origin='epoch'
    ).agg({
        'open': 'first',
        'high': 'max',
        'low': 'min',
        'close': 'last',
        'volume': 'sum',
    }).dropna(subset=['open'])

    if not include_partial:
        aggregated = aggregated.iloc[:-1]

    bucket_start_ms = (aggregated.index - pd.Timestamp(0)) // pd.Timedelta(milliseconds=1)
    aggregated = aggregated.reset_index(drop=True)
    aggregated.insert(0, 'time', [int(s) + bucket_minutes * 60_000 - 1 for s in bucket_start_ms])
    return aggregated[OHLCV_COLUMNS]


def aggregate_bars(bars: List[Bar], bucket_minutes: int) -> List[Bar]:
    """Bulk equivalent of feeding every bar through a BarAggregator."""
    if not bars:
        return []
    return frame_to_bars(aggregate_frame(bars_to_frame(bars), bucket_minutes))
